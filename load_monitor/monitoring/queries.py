"""
Query texts issued on every poll.

Four parameterless statements, all READ ONLY against V$ views:
- primary: session detail joined to V$SQL, V$LOCK and V$SESSTAT
- fallback: session detail from V$SESSION alone (reduced privileges)
- metrics: host CPU utilization from V$SYSMETRIC
- metrics_fallback: cumulative BUSY_TIME / IDLE_TIME from V$OSSTAT
"""

from dataclasses import dataclass

# SQL text reported when V$SQL is not readable
SQL_TEXT_UNAVAILABLE = "N/A (no permission on v$sql)"

_SESSION_FILTER = """
    WHERE s.type = 'USER'
      AND s.status = 'ACTIVE'
      AND s.username IS NOT NULL
      AND s.sql_id IS NOT NULL
      AND s.last_call_et > {min_duration_sec}
"""

_PRIMARY = """
    SELECT
        s.sid,
        s.username,
        s.schemaname AS owner,
        s.machine,
        s.osuser,
        s.status,
        s.sql_id,
        sa.sql_fulltext AS sql_text,
        s.event,
        s.last_call_et AS duration_sec,
        sa.executions,
        sa.rows_processed,
        sa.buffer_gets,
        sa.disk_reads,
        l.lock_count,
        c.cpu_cs,
        (SELECT value FROM v$osstat WHERE stat_name = 'NUM_CPUS') AS num_cpus
    FROM v$session s
    LEFT JOIN v$sql sa
      ON s.sql_id = sa.sql_id
     AND s.sql_child_number = sa.child_number
    LEFT JOIN (
        SELECT sid, COUNT(*) AS lock_count
        FROM v$lock
        WHERE block = 1
        GROUP BY sid
    ) l ON s.sid = l.sid
    LEFT JOIN (
        SELECT st.sid, st.value AS cpu_cs
        FROM v$sesstat st
        JOIN v$statname sn ON st.statistic# = sn.statistic#
        WHERE sn.name = 'CPU used by this session'
    ) c ON s.sid = c.sid
""" + _SESSION_FILTER

_FALLBACK = """
    SELECT
        s.sid,
        s.username,
        s.schemaname AS owner,
        s.machine,
        s.osuser,
        s.status,
        s.sql_id,
        '""" + SQL_TEXT_UNAVAILABLE + """' AS sql_text,
        s.event,
        s.last_call_et AS duration_sec,
        0 AS executions,
        0 AS rows_processed,
        0 AS buffer_gets,
        0 AS disk_reads,
        0 AS lock_count
    FROM v$session s
""" + _SESSION_FILTER

# group_id 2 is the 60 second system metric interval
METRICS = """
    SELECT metric_name, value
    FROM v$sysmetric
    WHERE group_id = 2
      AND metric_name IN ('Host CPU Utilization (%)', 'CPU Usage Per Sec')
    UNION ALL
    SELECT 'NUM_CPUS', value
    FROM v$osstat
    WHERE stat_name = 'NUM_CPUS'
"""

METRICS_FALLBACK = """
    SELECT stat_name, value
    FROM v$osstat
    WHERE stat_name IN ('BUSY_TIME', 'IDLE_TIME')
"""


@dataclass(frozen=True)
class QuerySet:
    primary: str
    fallback: str
    metrics: str = METRICS
    metrics_fallback: str = METRICS_FALLBACK


def build_queries(min_duration_sec: int = 5) -> QuerySet:
    """Render the session queries with the minimum call duration baked in."""
    min_duration_sec = max(0, int(min_duration_sec))
    return QuerySet(
        primary=_PRIMARY.format(min_duration_sec=min_duration_sec),
        fallback=_FALLBACK.format(min_duration_sec=min_duration_sec),
    )
