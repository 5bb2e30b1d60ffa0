"""
CPU delta tracking across polls.

V$SESSTAT and V$OSSTAT only expose cumulative counters, so a usage rate needs
the previous poll's reading. Each tracker holds exactly one previous sample
per connection and replaces it on every update.
"""

import logging
from typing import Dict, Mapping, Optional

logger = logging.getLogger(__name__)


def clamp_pct(value: float) -> float:
    return min(100.0, max(0.0, value))


class CpuDeltaTracker:
    """Per-session CPU share between two consecutive polls of one connection."""

    def __init__(self, num_cpus: Optional[int] = None):
        self.prev_cpu_by_sid: Dict[int, float] = {}
        self.prev_timestamp: Optional[float] = None
        self.num_cpus = num_cpus

    @property
    def has_baseline(self) -> bool:
        return self.prev_timestamp is not None

    def update(
        self,
        now: float,
        num_cpus: int,
        current_cpu_by_sid: Mapping[int, float],
    ) -> Dict[int, float]:
        """
        Compute CPU % per session since the previous poll and store the new baseline.

        Args:
            now: Wall-clock time of this sample, in seconds
            num_cpus: Cores available to the instance
            current_cpu_by_sid: Cumulative CPU centiseconds per session id

        Returns:
            {sid: cpu_percent} for sessions present in both samples. Sessions
            seen for the first time are absent, not zero.
        """
        percents: Dict[int, float] = {}

        if self.prev_timestamp is not None:
            interval_sec = now - self.prev_timestamp
            total_capacity_sec = interval_sec * num_cpus
            if total_capacity_sec > 0:
                for sid, current in current_cpu_by_sid.items():
                    if sid not in self.prev_cpu_by_sid:
                        continue
                    # Counter reset or sid reuse
                    delta_cs = max(0, current - self.prev_cpu_by_sid[sid])
                    delta_sec = delta_cs / 100
                    percents[sid] = clamp_pct(delta_sec / total_capacity_sec * 100)
            else:
                logger.debug(f"Non-positive CPU capacity ({total_capacity_sec}s), skipping deltas")

        self.prev_cpu_by_sid = dict(current_cpu_by_sid)
        self.prev_timestamp = now
        self.num_cpus = num_cpus
        return percents


class BusyIdleTracker:
    """Whole-host CPU busy % from V$OSSTAT BUSY_TIME / IDLE_TIME deltas."""

    def __init__(self):
        self.prev_busy: Optional[float] = None
        self.prev_idle: Optional[float] = None

    def reset(self) -> None:
        self.prev_busy = None
        self.prev_idle = None

    def update(self, busy: float, idle: float) -> Optional[float]:
        """Return busy % since the previous reading, or None without a baseline."""
        result = None
        if self.prev_busy is not None and self.prev_idle is not None:
            delta_busy = max(0, busy - self.prev_busy)
            delta_idle = max(0, idle - self.prev_idle)
            total = delta_busy + delta_idle
            if total > 0:
                result = clamp_pct(delta_busy / total * 100)

        self.prev_busy = busy
        self.prev_idle = idle
        return result
