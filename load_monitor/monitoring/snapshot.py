"""
Snapshot aggregation and the filter/sort view over a snapshot's sessions.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from .models import (
    NO_TABLE,
    UNKNOWN_TABLE,
    ImpactTier,
    ScoredSession,
    Snapshot,
    Summary,
)

TOP_OFFENDERS = 5

SORTABLE_FIELDS = (
    "sid", "username", "owner", "machine", "osuser", "operation", "main_table",
    "duration_sec", "est_mb", "score", "impact", "wait_event", "locks", "cpu_percent",
)


def most_frequent_table(sessions: Iterable[ScoredSession]) -> str:
    """Most common known table; the first one seen wins a tie."""
    counts = {}
    for session in sessions:
        if session.main_table != UNKNOWN_TABLE:
            counts[session.main_table] = counts.get(session.main_table, 0) + 1

    top_table, top_count = NO_TABLE, 0
    for table, count in counts.items():
        if count > top_count:
            top_table, top_count = table, count
    return top_table


def top_offenders(sessions: Sequence[ScoredSession], limit: int = TOP_OFFENDERS) -> List[ScoredSession]:
    # sorted() is stable, so equal weights keep poll order
    ranked = sorted(sessions, key=lambda s: s.offender_weight, reverse=True)
    return ranked[:max(0, limit)]


def aggregate(
    sessions: Sequence[ScoredSession],
    db_cpu_percent: Optional[float] = None,
    is_fallback: bool = False,
    captured_at: Optional[datetime] = None,
    offender_limit: int = TOP_OFFENDERS,
) -> Snapshot:
    """
    Assemble one poll's scored sessions into a snapshot.

    Args:
        sessions: Scored sessions in poll order
        db_cpu_percent: Instance-wide CPU %, if any path produced one
        is_fallback: Whether the reduced-privilege query was used
        captured_at: Capture time (defaults to now, UTC)
        offender_limit: Size of the top offenders list

    Returns:
        Snapshot with summary and top offenders
    """
    sessions = list(sessions)
    captured_at = captured_at or datetime.now(timezone.utc)

    if db_cpu_percent is not None and db_cpu_percent <= 0:
        db_cpu_percent = None

    summary = Summary(
        active_sessions=len(sessions),
        total_est_mb=sum(s.est_mb for s in sessions),
        detected_locks=sum(s.locks or 0 for s in sessions),
        top_table=most_frequent_table(sessions),
        db_cpu_percent=None if db_cpu_percent is None else round(db_cpu_percent, 2),
    )

    return Snapshot(
        active_loads=sessions,
        summary=summary,
        top_offenders=top_offenders(sessions, offender_limit),
        timestamp=captured_at.isoformat(),
        is_fallback=is_fallback,
    )


def _tier_value(impact: Union[str, ImpactTier]) -> str:
    if isinstance(impact, ImpactTier):
        return impact.value
    return impact.upper()


@dataclass(frozen=True)
class SessionFilter:
    """Operator filters; empty/zero values match everything."""

    owner: str = ""
    operation: str = ""
    min_duration: float = 0
    impact: Union[str, ImpactTier] = ""
    table: str = ""

    def matches(self, session: ScoredSession) -> bool:
        if self.owner and self.owner.lower() not in (session.owner or "").lower():
            return False
        if self.operation and session.operation != self.operation.upper():
            return False
        if self.min_duration and session.duration_sec < self.min_duration:
            return False
        if self.impact and session.impact.value != _tier_value(self.impact):
            return False
        if self.table and self.table.lower() not in session.main_table.lower():
            return False
        return True


def filter_sessions(sessions: Iterable[ScoredSession], session_filter: Optional[SessionFilter]) -> List[ScoredSession]:
    if session_filter is None:
        return list(sessions)
    return [s for s in sessions if session_filter.matches(s)]


def check_sort_key(key: str) -> str:
    """Return the key unchanged, or raise ValueError if sessions cannot be sorted by it."""
    if key not in SORTABLE_FIELDS:
        raise ValueError(f"Invalid sort key '{key}'. Use: {', '.join(SORTABLE_FIELDS)}")
    return key


def sort_sessions(
    sessions: Iterable[ScoredSession],
    key: str = "duration_sec",
    descending: bool = True,
) -> List[ScoredSession]:
    """Sort by any ScoredSession field; sessions missing the value go last."""
    check_sort_key(key)

    sessions = list(sessions)
    present = [s for s in sessions if getattr(s, key) is not None]
    missing = [s for s in sessions if getattr(s, key) is None]

    def sort_value(session):
        value = getattr(session, key)
        if isinstance(value, ImpactTier):
            return value.rank
        if isinstance(value, str):
            return value.lower()
        return value

    return sorted(present, key=sort_value, reverse=descending) + missing


def snapshot_view(
    snapshot: Snapshot,
    session_filter: Optional[SessionFilter] = None,
    sort_by: str = "duration_sec",
    descending: bool = True,
) -> Dict[str, Any]:
    """
    Render a snapshot for the operator.

    Summary and top offenders always describe the whole poll; only the
    active_loads list is filtered and sorted.
    """
    data = snapshot.to_dict()
    sessions = sort_sessions(filter_sessions(snapshot.active_loads, session_filter), sort_by, descending)
    data["active_loads"] = [s.to_dict() for s in sessions]
    data["shown_sessions"] = len(sessions)
    return data
