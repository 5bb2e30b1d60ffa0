"""
Impact scoring: turns a scored row into one of three tiers.

Locks dominate (a blocker hurts everyone behind it), then volume, then raw
duration. The offender ranking in snapshot.py uses different weights.
"""

from typing import Optional, Tuple

from .models import ImpactTier, RawSessionRow, ScoredSession
from .sql_classifier import classify
from .volume import estimate_mb

DURATION_WEIGHT = 1
VOLUME_WEIGHT = 5
LOCK_WEIGHT = 50

HIGH_THRESHOLD = 400
MEDIUM_THRESHOLD = 100


def impact_tier(score: float) -> ImpactTier:
    if score > HIGH_THRESHOLD:
        return ImpactTier.HIGH
    if score > MEDIUM_THRESHOLD:
        return ImpactTier.MEDIUM
    return ImpactTier.LOW


def score_session(duration_sec: float, est_mb: float, lock_count: float) -> Tuple[float, ImpactTier]:
    """Return (score, tier) for one session."""
    score = (
        (duration_sec or 0) * DURATION_WEIGHT
        + (est_mb or 0) * VOLUME_WEIGHT
        + (lock_count or 0) * LOCK_WEIGHT
    )
    return score, impact_tier(score)


def score_row(
    row: RawSessionRow,
    is_fallback: bool = False,
    cpu_percent: Optional[float] = None,
) -> ScoredSession:
    """Run one raw row through the classifier, volume estimator and scorer."""
    operation, main_table = classify(row.sql_text)
    est_mb = estimate_mb(row, is_fallback)
    score, tier = score_session(row.duration_sec, est_mb, row.lock_count)

    return ScoredSession(
        sid=row.sid,
        username=row.username,
        owner=row.owner,
        machine=row.machine,
        osuser=row.osuser,
        operation=operation,
        main_table=main_table,
        duration_sec=row.duration_sec,
        est_mb=est_mb,
        score=score,
        impact=tier,
        wait_event=row.wait_event,
        sql_text=row.sql_text,
        locks=row.lock_count,
        cpu_percent=None if cpu_percent is None else round(cpu_percent, 2),
    )
