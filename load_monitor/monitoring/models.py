"""
Active Load Data Models

Plain data carried through one poll: the raw session row coming back from
V$SESSION, the scored session handed to the operator, and the snapshot that
bundles a poll's sessions with its summary.
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

# Classifier found no table in the SQL text
UNKNOWN_TABLE = "(unknown)"
# Aggregation found no session with a known table
NO_TABLE = "N/A"
# Classifier found no DML/query keyword
NO_OPERATION = "N/A"


class ImpactTier(str, Enum):
    """Coarse severity of a session, ordered LOW < MEDIUM < HIGH."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]

    # str already defines every comparison, so all four are overridden by rank
    def __lt__(self, other):
        if not isinstance(other, ImpactTier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, ImpactTier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, ImpactTier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, ImpactTier):
            return NotImplemented
        return self.rank >= other.rank


_TIER_RANK = {ImpactTier.LOW: 0, ImpactTier.MEDIUM: 1, ImpactTier.HIGH: 2}


def _count(row: Mapping[str, Any], key: str) -> float:
    value = row.get(key)
    if value is None:
        return 0
    try:
        value = float(value) if not isinstance(value, (int, float)) else value
    except (TypeError, ValueError):
        return 0
    return max(0, value)


def _text(row: Mapping[str, Any], key: str) -> Optional[str]:
    value = row.get(key)
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


@dataclass(frozen=True)
class RawSessionRow:
    """One active session as returned by the detail query."""

    sid: int
    username: Optional[str] = None
    owner: Optional[str] = None
    machine: Optional[str] = None
    osuser: Optional[str] = None
    sql_text: Optional[str] = None
    wait_event: Optional[str] = None
    duration_sec: float = 0
    buffer_gets: float = 0
    disk_reads: float = 0
    rows_processed: float = 0
    executions: float = 0
    lock_count: float = 0
    # None when the query path could not read V$SESSTAT
    cpu_cs: Optional[float] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "RawSessionRow":
        """
        Build from a column-keyed row.

        Column names are matched case-insensitively; NULL or negative counters
        become zero.
        """
        upper = {str(k).upper(): v for k, v in row.items()}
        cpu = upper.get("CPU_CS")
        return cls(
            sid=int(_count(upper, "SID")),
            username=_text(upper, "USERNAME"),
            owner=_text(upper, "OWNER"),
            machine=_text(upper, "MACHINE"),
            osuser=_text(upper, "OSUSER"),
            sql_text=_text(upper, "SQL_TEXT"),
            wait_event=_text(upper, "EVENT"),
            duration_sec=_count(upper, "DURATION_SEC"),
            buffer_gets=_count(upper, "BUFFER_GETS"),
            disk_reads=_count(upper, "DISK_READS"),
            rows_processed=_count(upper, "ROWS_PROCESSED"),
            executions=_count(upper, "EXECUTIONS"),
            lock_count=_count(upper, "LOCK_COUNT"),
            cpu_cs=None if cpu is None else _count(upper, "CPU_CS"),
        )


@dataclass(frozen=True)
class ScoredSession:
    """A session after classification, volume estimation and scoring."""

    sid: int
    username: Optional[str]
    owner: Optional[str]
    machine: Optional[str]
    osuser: Optional[str]
    operation: str
    main_table: str
    duration_sec: float
    est_mb: float
    score: float
    impact: ImpactTier
    wait_event: Optional[str]
    sql_text: Optional[str]
    locks: float = 0
    cpu_percent: Optional[float] = None

    @property
    def offender_weight(self) -> float:
        """Ranking weight for the top offenders list (volume dominates duration)."""
        return self.duration_sec * 5 + self.est_mb * 10

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["impact"] = self.impact.value
        if self.cpu_percent is None:
            data.pop("cpu_percent")
        return data


@dataclass(frozen=True)
class Summary:
    active_sessions: int
    total_est_mb: float
    detected_locks: float
    top_table: str
    db_cpu_percent: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.db_cpu_percent is None:
            data.pop("db_cpu_percent")
        return data


@dataclass(frozen=True)
class Snapshot:
    """Everything one poll produced. Superseded by the next poll."""

    active_loads: List[ScoredSession]
    summary: Summary
    top_offenders: List[ScoredSession]
    timestamp: str
    is_fallback: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active_loads": [s.to_dict() for s in self.active_loads],
            "summary": self.summary.to_dict(),
            "top_offenders": [s.to_dict() for s in self.top_offenders],
            "timestamp": self.timestamp,
            "is_fallback": self.is_fallback,
        }
