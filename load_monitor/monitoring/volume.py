"""
Data volume estimation for a session's current statement.

Buffer gets and disk reads are blocks; assume the default 8 KB block size.
"""

from .models import RawSessionRow

BLOCK_SIZE_BYTES = 8192
BYTES_PER_MB = 1024 * 1024

# MB credited per processed row when block counters are unavailable
MB_PER_ROW = 0.001
# MB credited per second of call duration when nothing else is known
MB_PER_SECOND = 0.01
MIN_REPORTED_MB = 0.01


def estimate_mb(row: RawSessionRow, is_fallback: bool = False) -> float:
    """
    Estimate how many MB the session's statement has touched.

    Args:
        row: Session row with execution counters
        is_fallback: True when the row came from the reduced-privilege query
            and block counters are meaningless

    Returns:
        Estimated MB, rounded to 2 decimals, never negative and never zero
        for a session with a positive duration
    """
    buffer_gets = max(0, row.buffer_gets or 0)
    disk_reads = max(0, row.disk_reads or 0)
    rows_processed = max(0, row.rows_processed or 0)
    duration_sec = max(0, row.duration_sec or 0)

    if is_fallback:
        est_mb = rows_processed * MB_PER_ROW
    else:
        est_mb = (buffer_gets * BLOCK_SIZE_BYTES + disk_reads * BLOCK_SIZE_BYTES) / BYTES_PER_MB
        if est_mb == 0 and rows_processed > 0:
            est_mb = rows_processed * MB_PER_ROW

    est_mb = round(est_mb, 2)
    if est_mb == 0 and duration_sec > 0:
        est_mb = max(round(duration_sec * MB_PER_SECOND, 2), MIN_REPORTED_MB)

    return max(0.0, est_mb)
