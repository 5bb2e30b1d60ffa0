"""
Sampling Driver

Runs one poll for one connection:

1. Session detail query (V$SESSION + V$SQL + V$LOCK + V$SESSTAT); on failure
   the reduced-privilege fallback (V$SESSION only)
2. Per-session CPU % from the connection's CpuDeltaTracker
3. Instance CPU % from V$SYSMETRIC, else from V$OSSTAT busy/idle deltas
   (best effort, never fails the poll)
4. Classification, volume estimation, scoring and aggregation into a Snapshot

Queries for one poll run strictly one after another. A caller must not start
a second poll for a connection before the first settles; the registry entry's
state enforces that.

SECURITY: READ ONLY. Every statement SELECTs from V$ views; SQL text read
from V$SQL is classified, NEVER executed.
"""

import time
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .cpu_tracker import clamp_pct
from .errors import (
    ConnectionLostError,
    PollFailedError,
    PollInProgressError,
    is_connection_invalid,
)
from .models import RawSessionRow, Snapshot
from .queries import build_queries
from .registry import ConnectionEntry, PollState, SessionRegistry
from .scoring import score_row
from .snapshot import TOP_OFFENDERS, aggregate

logger = logging.getLogger(__name__)

HOST_CPU_METRIC = "Host CPU Utilization (%)"
CPU_PER_SEC_METRIC = "CPU Usage Per Sec"


@dataclass(frozen=True)
class SamplerSettings:
    min_duration_sec: int = 5
    top_offenders: int = TOP_OFFENDERS
    default_num_cpus: int = 1

    @classmethod
    def from_config(cls, cfg) -> "SamplerSettings":
        return cls(
            min_duration_sec=cfg.min_duration_sec,
            top_offenders=cfg.top_offenders,
            default_num_cpus=cfg.default_num_cpus,
        )


def _upper_keys(row: Mapping[str, Any]) -> Dict[str, Any]:
    return {str(k).upper(): v for k, v in row.items()}


def _number(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _positive_number(value: Any) -> Optional[float]:
    value = _number(value)
    return value if value is not None and value > 0 else None


class SamplingDriver:
    """Turns raw V$ rows into a scored Snapshot, one connection at a time."""

    def __init__(
        self,
        registry: SessionRegistry,
        settings: Optional[SamplerSettings] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry
        self.settings = settings or SamplerSettings()
        self.queries = build_queries(self.settings.min_duration_sec)
        self._clock = clock

    async def poll(self, connection_id: str) -> Snapshot:
        """
        Sample the connection's active sessions.

        Raises:
            ConnectionNotFoundError: Unknown connection id
            PollInProgressError: A poll for this connection has not settled
            ConnectionLostError: The session handle is dead; the connection
                and its CPU baselines are gone
            PollFailedError: Primary and fallback queries both failed; the
                connection stays registered
        """
        entry = self.registry.get(connection_id)
        if entry.state.in_flight:
            raise PollInProgressError(connection_id)

        try:
            raw_rows, is_fallback = await self._fetch_sessions(entry)
            now = self._clock()
            rows = [RawSessionRow.from_row(r) for r in raw_rows]
            cpu_by_sid = self._session_cpu(entry, raw_rows, rows, is_fallback, now)

            entry.state = PollState.METRICS_QUERYING
            db_cpu_percent = await self._read_db_cpu(entry)

            sessions = [score_row(row, is_fallback, cpu_by_sid.get(row.sid)) for row in rows]
            snapshot = aggregate(
                sessions,
                db_cpu_percent=db_cpu_percent,
                is_fallback=is_fallback,
                offender_limit=self.settings.top_offenders,
            )
        except BaseException:
            entry.state = PollState.FAILED
            raise

        entry.state = PollState.DONE
        logger.info(
            f"📊 {connection_id}: {snapshot.summary.active_sessions} active sessions, "
            f"{snapshot.summary.total_est_mb:.2f} MB, {snapshot.summary.detected_locks} locks"
            + (" (fallback)" if is_fallback else "")
        )
        return snapshot

    # ------------------------------------------------------------------
    # Session detail
    # ------------------------------------------------------------------

    async def _fetch_sessions(self, entry: ConnectionEntry) -> Tuple[List[Dict[str, Any]], bool]:
        entry.state = PollState.QUERYING
        try:
            return list(await entry.executor.execute(self.queries.primary) or []), False
        except Exception as e:
            await self._drop_if_invalid(entry, e)
            logger.warning(f"⚠️ Primary query failed on {entry.connection_id}, trying fallback: {e}")

        entry.state = PollState.FALLBACK_QUERYING
        try:
            return list(await entry.executor.execute(self.queries.fallback) or []), True
        except Exception as e:
            await self._drop_if_invalid(entry, e)
            logger.error(f"❌ Fallback query also failed on {entry.connection_id}: {e}")
            raise PollFailedError(str(e)) from e

    async def _drop_if_invalid(self, entry: ConnectionEntry, error: Exception) -> None:
        if not is_connection_invalid(error):
            return

        logger.error(f"❌ Connection {entry.connection_id} is no longer valid: {error}")
        self.registry.discard(entry.connection_id)
        try:
            await entry.executor.close()
        except Exception as close_error:
            logger.debug(f"Closing dead connection {entry.connection_id} raised: {close_error}")
        raise ConnectionLostError(entry.connection_id, str(error)) from error

    # ------------------------------------------------------------------
    # CPU
    # ------------------------------------------------------------------

    def _session_cpu(
        self,
        entry: ConnectionEntry,
        raw_rows: List[Dict[str, Any]],
        rows: List[RawSessionRow],
        is_fallback: bool,
        now: float,
    ) -> Dict[int, float]:
        num_cpus = entry.cpu_tracker.num_cpus or self.settings.default_num_cpus
        for raw in raw_rows:
            value = _positive_number(_upper_keys(raw).get("NUM_CPUS"))
            if value:
                num_cpus = int(value)
                break

        # The fallback query has no V$SESSTAT, so it leaves an empty baseline
        current = {} if is_fallback else {r.sid: r.cpu_cs for r in rows if r.cpu_cs is not None}
        return entry.cpu_tracker.update(now, num_cpus, current)

    async def _read_db_cpu(self, entry: ConnectionEntry) -> Optional[float]:
        pct = await self._sysmetric_cpu(entry)
        if pct is not None and pct > 0:
            # A busy/idle baseline from an earlier poll would span an unknown window
            entry.busy_idle_tracker.reset()
            return pct
        return await self._osstat_cpu(entry)

    async def _sysmetric_cpu(self, entry: ConnectionEntry) -> Optional[float]:
        try:
            rows = await entry.executor.execute(self.queries.metrics)
        except Exception as e:
            logger.debug(f"V$SYSMETRIC not available on {entry.connection_id}: {e}")
            return None

        metrics = {}
        for row in rows or []:
            row = _upper_keys(row)
            metrics[row.get("METRIC_NAME")] = row.get("VALUE")

        host_pct = _positive_number(metrics.get(HOST_CPU_METRIC))
        if host_pct:
            return clamp_pct(host_pct)

        # centiseconds of CPU per second, across all cores
        per_sec = _positive_number(metrics.get(CPU_PER_SEC_METRIC))
        num_cpus = _positive_number(metrics.get("NUM_CPUS")) or entry.cpu_tracker.num_cpus
        if per_sec and num_cpus:
            return clamp_pct(per_sec / num_cpus)
        return None

    async def _osstat_cpu(self, entry: ConnectionEntry) -> Optional[float]:
        try:
            rows = await entry.executor.execute(self.queries.metrics_fallback)
        except Exception as e:
            logger.debug(f"V$OSSTAT not available on {entry.connection_id}: {e}")
            return None

        stats = {}
        for row in rows or []:
            row = _upper_keys(row)
            stats[row.get("STAT_NAME")] = row.get("VALUE")

        busy, idle = _number(stats.get("BUSY_TIME")), _number(stats.get("IDLE_TIME"))
        if busy is None or idle is None:
            return None
        return entry.busy_idle_tracker.update(busy, idle)
