# test_sampler.py
"""
Tests for the SamplingDriver against an in-memory query executor.

Covers:
1. Primary path, CPU deltas across polls
2. Fallback path on a recoverable primary failure
3. Connection-invalid errors tearing the connection down
4. Best-effort instance CPU metrics and their V$OSSTAT fallback
5. Registry lifecycle (disconnect drops baselines)
"""

import asyncio

import pytest

from load_monitor.monitoring import (
    ConnectionLostError,
    ConnectionNotFoundError,
    PollFailedError,
    PollInProgressError,
    SamplerSettings,
    SamplingDriver,
    SessionRegistry,
)
from load_monitor.monitoring.models import NO_TABLE, UNKNOWN_TABLE, ImpactTier
from load_monitor.monitoring.queries import SQL_TEXT_UNAVAILABLE
from load_monitor.monitoring.registry import PollState


class FakeExecutor:
    """Answers each of the driver's four queries with rows or an exception."""

    def __init__(self, queries, primary=None, fallback=None, metrics=None, metrics_fallback=None):
        self.queries = queries
        self.responses = {
            "primary": primary if primary is not None else [],
            "fallback": fallback if fallback is not None else [],
            "metrics": metrics if metrics is not None else [],
            "metrics_fallback": metrics_fallback if metrics_fallback is not None else [],
        }
        self.executed = []
        self.closed = False

    def _name(self, query):
        for name in self.responses:
            if getattr(self.queries, name) == query:
                return name
        raise AssertionError("unexpected query")

    async def execute(self, query):
        name = self._name(query)
        self.executed.append(name)
        response = self.responses[name]
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self):
        self.closed = True


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now


def _primary_row(sid, cpu_cs, sql="SELECT * FROM SALES.ORDERS WHERE id = 1", duration=30,
                 buffer_gets=1280, rows=10, locks=None, num_cpus=4):
    return {
        "SID": sid, "USERNAME": "APP", "OWNER": "SALES", "MACHINE": "app01", "OSUSER": "svc",
        "SQL_TEXT": sql, "EVENT": "db file sequential read", "DURATION_SEC": duration,
        "EXECUTIONS": 1, "ROWS_PROCESSED": rows, "BUFFER_GETS": buffer_gets, "DISK_READS": 0,
        "LOCK_COUNT": locks, "CPU_CS": cpu_cs, "NUM_CPUS": num_cpus,
    }


def _fallback_row(sid, duration=50):
    return {
        "SID": sid, "USERNAME": "APP", "OWNER": "SALES", "SQL_TEXT": SQL_TEXT_UNAVAILABLE,
        "EVENT": "enq: TX - row lock contention", "DURATION_SEC": duration,
        "EXECUTIONS": 0, "ROWS_PROCESSED": 0, "BUFFER_GETS": 0, "DISK_READS": 0, "LOCK_COUNT": 0,
    }


HOST_CPU = [{"METRIC_NAME": "Host CPU Utilization (%)", "VALUE": 37.5}]


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def driver(registry, clock):
    return SamplingDriver(registry, SamplerSettings(min_duration_sec=5), clock=clock)


def _connect(registry, driver, **responses):
    executor = FakeExecutor(driver.queries, **responses)
    return registry.register(executor, name="test"), executor


def run(coro):
    return asyncio.run(coro)


# ========================================
# Primary path
# ========================================

def test_primary_poll_builds_snapshot(registry, driver):
    conn_id, executor = _connect(
        registry, driver,
        primary=[
            _primary_row(10, 100),
            _primary_row(11, 500, sql="UPDATE sales.orders SET x = 1", duration=200, buffer_gets=0, rows=0, locks=2),
        ],
        metrics=HOST_CPU,
    )

    snap = run(driver.poll(conn_id))

    assert executor.executed == ["primary", "metrics"]
    assert snap.is_fallback is False
    first, second = snap.active_loads
    assert (first.operation, first.main_table, first.est_mb) == ("SELECT", "SALES.ORDERS", 10.0)
    assert first.impact == ImpactTier.LOW
    assert (second.operation, second.est_mb, second.locks) == ("UPDATE", 2.0, 2)
    assert second.impact == ImpactTier.MEDIUM
    # No baseline yet
    assert first.cpu_percent is None and second.cpu_percent is None

    assert snap.summary.active_sessions == 2
    assert snap.summary.total_est_mb == pytest.approx(12.0)
    assert snap.summary.detected_locks == 2
    assert snap.summary.top_table == "SALES.ORDERS"
    assert snap.summary.db_cpu_percent == 37.5
    assert [s.sid for s in snap.top_offenders] == [11, 10]
    assert registry.get(conn_id).state == PollState.DONE


def test_second_poll_yields_cpu_percent(registry, driver, clock):
    conn_id, executor = _connect(registry, driver, primary=[_primary_row(10, 100)], metrics=HOST_CPU)
    run(driver.poll(conn_id))

    clock.now += 10
    executor.responses["primary"] = [_primary_row(10, 500), _primary_row(12, 50)]
    snap = run(driver.poll(conn_id))

    by_sid = {s.sid: s for s in snap.active_loads}
    # 4 CPU-seconds over 10 s on 4 cores
    assert by_sid[10].cpu_percent == pytest.approx(10.0)
    assert by_sid[12].cpu_percent is None
    assert "cpu_percent" not in by_sid[12].to_dict()


def test_num_cpus_falls_back_to_setting(registry, clock):
    driver = SamplingDriver(registry, SamplerSettings(default_num_cpus=2), clock=clock)
    conn_id, executor = _connect(registry, driver, primary=[_primary_row(1, 0, num_cpus=None)])
    run(driver.poll(conn_id))

    clock.now += 10
    executor.responses["primary"] = [_primary_row(1, 200, num_cpus=None)]
    snap = run(driver.poll(conn_id))
    assert snap.active_loads[0].cpu_percent == pytest.approx(10.0)


# ========================================
# Fallback path
# ========================================

def test_fallback_after_recoverable_failure(registry, driver):
    conn_id, executor = _connect(
        registry, driver,
        primary=Exception("ORA-00942: table or view does not exist"),
        fallback=[_fallback_row(20, duration=50)],
    )

    snap = run(driver.poll(conn_id))

    assert executor.executed[:2] == ["primary", "fallback"]
    assert snap.is_fallback is True
    session = snap.active_loads[0]
    assert session.operation == "N/A"
    assert session.main_table == UNKNOWN_TABLE
    assert session.est_mb == 0.5
    assert session.cpu_percent is None
    assert snap.summary.top_table == NO_TABLE
    assert conn_id in registry


def test_fallback_poll_resets_cpu_baseline(registry, driver, clock):
    conn_id, executor = _connect(registry, driver, primary=[_primary_row(10, 100)])
    run(driver.poll(conn_id))

    clock.now += 5
    executor.responses["primary"] = Exception("ORA-01031: insufficient privileges")
    executor.responses["fallback"] = [_fallback_row(10)]
    run(driver.poll(conn_id))

    clock.now += 5
    executor.responses["primary"] = [_primary_row(10, 900)]
    snap = run(driver.poll(conn_id))
    assert snap.active_loads[0].cpu_percent is None


def test_both_queries_fail(registry, driver):
    conn_id, executor = _connect(
        registry, driver,
        primary=Exception("ORA-00942: table or view does not exist"),
        fallback=Exception("ORA-01031: insufficient privileges"),
    )

    with pytest.raises(PollFailedError, match="ORA-01031"):
        run(driver.poll(conn_id))

    assert conn_id in registry
    assert executor.closed is False
    assert registry.get(conn_id).state == PollState.FAILED

    # Connection is still usable once the database cooperates
    executor.responses["primary"] = [_primary_row(1, 0)]
    assert run(driver.poll(conn_id)).summary.active_sessions == 1


# ========================================
# Connection invalidation
# ========================================

def test_dead_connection_on_primary_skips_fallback(registry, driver):
    conn_id, executor = _connect(
        registry, driver,
        primary=Exception("DPY-1001: not connected to database"),
        fallback=[_fallback_row(1)],
    )

    with pytest.raises(ConnectionLostError):
        run(driver.poll(conn_id))

    assert executor.executed == ["primary"]
    assert executor.closed is True
    assert conn_id not in registry


def test_dead_connection_on_fallback(registry, driver):
    conn_id, executor = _connect(
        registry, driver,
        primary=Exception("ORA-00942: table or view does not exist"),
        fallback=Exception("DPY-4011: the database or network closed the connection"),
    )

    with pytest.raises(ConnectionLostError):
        run(driver.poll(conn_id))
    assert conn_id not in registry

    with pytest.raises(ConnectionNotFoundError):
        run(driver.poll(conn_id))


def test_unknown_connection(driver):
    with pytest.raises(ConnectionNotFoundError, match="Connection not found."):
        run(driver.poll("conn_missing"))


def test_poll_in_flight_is_rejected(registry, driver):
    conn_id, _ = _connect(registry, driver)
    registry.get(conn_id).state = PollState.QUERYING
    with pytest.raises(PollInProgressError):
        run(driver.poll(conn_id))


# ========================================
# Instance CPU metrics
# ========================================

def test_cpu_usage_per_sec_normalized_by_cores(registry, driver):
    conn_id, _ = _connect(
        registry, driver,
        metrics=[
            {"METRIC_NAME": "Host CPU Utilization (%)", "VALUE": 0},
            {"METRIC_NAME": "CPU Usage Per Sec", "VALUE": 200},
            {"METRIC_NAME": "NUM_CPUS", "VALUE": 4},
        ],
    )
    snap = run(driver.poll(conn_id))
    assert snap.summary.db_cpu_percent == pytest.approx(50.0)


def test_osstat_delta_when_sysmetric_unavailable(registry, driver):
    conn_id, executor = _connect(
        registry, driver,
        metrics=Exception("ORA-00942: table or view does not exist"),
        metrics_fallback=[{"STAT_NAME": "BUSY_TIME", "VALUE": 1000}, {"STAT_NAME": "IDLE_TIME", "VALUE": 3000}],
    )

    first = run(driver.poll(conn_id))
    assert first.summary.db_cpu_percent is None

    executor.responses["metrics_fallback"] = [
        {"STAT_NAME": "BUSY_TIME", "VALUE": 1300},
        {"STAT_NAME": "IDLE_TIME", "VALUE": 3700},
    ]
    second = run(driver.poll(conn_id))
    assert second.summary.db_cpu_percent == pytest.approx(30.0)


def test_sysmetric_reading_discards_stale_busy_idle_baseline(registry, driver):
    conn_id, executor = _connect(
        registry, driver,
        metrics=Exception("ORA-00942: table or view does not exist"),
        metrics_fallback=[{"STAT_NAME": "BUSY_TIME", "VALUE": 1000}, {"STAT_NAME": "IDLE_TIME", "VALUE": 3000}],
    )
    run(driver.poll(conn_id))

    # V$SYSMETRIC answers once, so the V$OSSTAT sample above is now stale
    executor.responses["metrics"] = HOST_CPU
    assert run(driver.poll(conn_id)).summary.db_cpu_percent == 37.5
    assert registry.get(conn_id).busy_idle_tracker.prev_busy is None

    executor.responses["metrics"] = Exception("ORA-00942: table or view does not exist")
    executor.responses["metrics_fallback"] = [
        {"STAT_NAME": "BUSY_TIME", "VALUE": 9000},
        {"STAT_NAME": "IDLE_TIME", "VALUE": 9000},
    ]
    assert run(driver.poll(conn_id)).summary.db_cpu_percent is None

    executor.responses["metrics_fallback"] = [
        {"STAT_NAME": "BUSY_TIME", "VALUE": 9100},
        {"STAT_NAME": "IDLE_TIME", "VALUE": 9300},
    ]
    assert run(driver.poll(conn_id)).summary.db_cpu_percent == pytest.approx(25.0)


def test_metrics_failures_do_not_fail_poll(registry, driver):
    conn_id, executor = _connect(
        registry, driver,
        primary=[_primary_row(1, 0)],
        metrics=Exception("ORA-00942"),
        metrics_fallback=Exception("ORA-00942"),
    )
    snap = run(driver.poll(conn_id))
    assert executor.executed == ["primary", "metrics", "metrics_fallback"]
    assert snap.summary.db_cpu_percent is None
    assert "db_cpu_percent" not in snap.to_dict()["summary"]


# ========================================
# Registry lifecycle
# ========================================

def test_disconnect_drops_cpu_baselines(registry, driver, clock):
    conn_id, executor = _connect(registry, driver, primary=[_primary_row(10, 100)])
    run(driver.poll(conn_id))

    assert run(registry.close(conn_id)) is True
    assert executor.closed is True
    assert conn_id not in registry
    assert len(registry) == 0

    new_id, new_executor = _connect(registry, driver, primary=[_primary_row(10, 900)])
    assert new_id != conn_id
    clock.now += 10
    snap = run(driver.poll(new_id))
    assert snap.active_loads[0].cpu_percent is None


def test_close_unknown_connection(registry):
    assert run(registry.close("conn_missing")) is False


def test_independent_registries(clock):
    registry_a, registry_b = SessionRegistry(), SessionRegistry()
    driver_a = SamplingDriver(registry_a, clock=clock)
    driver_b = SamplingDriver(registry_b, clock=clock)
    conn_a, _ = _connect(registry_a, driver_a, primary=[_primary_row(1, 0)])

    assert conn_a not in registry_b
    with pytest.raises(ConnectionNotFoundError):
        run(driver_b.poll(conn_a))
    assert run(driver_a.poll(conn_a)).summary.active_sessions == 1
