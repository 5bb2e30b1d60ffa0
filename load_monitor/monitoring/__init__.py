"""
Active Load Sampling Module

Polls an Oracle instance for its active sessions and turns them into a scored,
ranked snapshot of current load.

Security Model:
- READ ONLY: All sampling queries only SELECT from system views (V$SESSION, V$SQL, V$LOCK, V$SESSTAT, V$SYSMETRIC, V$OSSTAT)
- NEVER EXECUTE: User SQL retrieved from V$SQL is classified for display, NEVER executed

Components:
- sql_classifier.py: Statement kind and main table from SQL text
- volume.py: Data volume estimate per session
- cpu_tracker.py: CPU % from cumulative counters across polls
- scoring.py: Impact score and tier
- snapshot.py: Summary, top offenders, filter/sort
- registry.py: Connection handles and per-connection state
- sampler.py: One poll, primary/fallback query chain and best-effort CPU metrics
"""

from .errors import (
    ConnectionLostError,
    ConnectionNotFoundError,
    PollFailedError,
    PollInProgressError,
    SamplerError,
)
from .models import NO_TABLE, UNKNOWN_TABLE, ImpactTier, ScoredSession, Snapshot
from .registry import SessionRegistry
from .sampler import SamplerSettings, SamplingDriver
from .snapshot import SessionFilter, check_sort_key, filter_sessions, snapshot_view, sort_sessions

__all__ = [
    'ConnectionLostError',
    'ConnectionNotFoundError',
    'PollFailedError',
    'PollInProgressError',
    'SamplerError',
    'NO_TABLE',
    'UNKNOWN_TABLE',
    'ImpactTier',
    'ScoredSession',
    'Snapshot',
    'SessionRegistry',
    'SamplerSettings',
    'SamplingDriver',
    'SessionFilter',
    'check_sort_key',
    'filter_sessions',
    'sort_sessions',
    'snapshot_view',
]
