import random
import threading
import time
from unittest.mock import MagicMock

import pytest

from tenantops.domain.errors import ClassifiedError, OperationCancelledError
from tenantops.domain.models.classification import ErrorCategory
from tenantops.domain.models.connection import ConnectionKey, ConnectionState
from tenantops.infrastructure.pool.connection_pool import ConnectionPool
from tenantops.infrastructure.resilience.backoff import BackoffPolicy
from tenantops.infrastructure.resilience.cancellation import CancellationToken
from tenantops.infrastructure.resilience.executor import OperationExecutor


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class Session:
    """Stand-in for an authenticated remote session."""

    def __init__(self, key, params):
        self.key = key
        self.params = params


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def connect():
    return MagicMock(side_effect=lambda key, params: Session(key, params))


@pytest.fixture
def disconnect():
    return MagicMock()


@pytest.fixture
def make_pool(executor, connect, disconnect, clock):
    def _make_pool(**kwargs):
        kwargs.setdefault("connect", connect)
        kwargs.setdefault("disconnect", disconnect)
        kwargs.setdefault("clock", clock)
        return ConnectionPool(executor, **kwargs)
    return _make_pool


def test_acquire_creates_and_reuses_connection(make_pool, connect, events_of):
    pool = make_pool()

    first = pool.acquire("contoso", "graph", auth_params={"app_id": "abc"})
    second = pool.acquire("contoso", "graph")

    assert first is second
    assert first.generation == 1
    assert first.key == ConnectionKey("contoso", "graph")
    assert first.session.params == {"app_id": "abc"}
    connect.assert_called_once()
    assert pool.stats()["created"] == 1
    assert pool.stats()["reused"] == 1
    assert len(events_of("ConnectionEstablished")) == 1
    assert len(events_of("ConnectionReused")) == 1


def test_distinct_keys_get_distinct_connections(make_pool):
    pool = make_pool()
    a = pool.acquire("contoso", "graph")
    b = pool.acquire("contoso", "exchange")
    c = pool.acquire("fabrikam", "graph")
    assert len({id(a), id(b), id(c)}) == 3
    assert len(pool) == 3
    assert ("contoso", "exchange") in pool


def test_concurrent_acquires_create_a_single_connection(executor):
    """At most one connection is established per key, however many callers race."""
    created = []
    lock = threading.Lock()

    def slow_connect(key, params):
        time.sleep(0.05)
        with lock:
            created.append(key)
        return Session(key, params)

    pool = ConnectionPool(executor, connect=slow_connect)
    results = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        results.append(pool.acquire("contoso", "graph"))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert len(created) == 1
    assert len(results) == 8
    assert all(r is results[0] for r in results)


def test_probe_success_reuses_connection(make_pool, connect):
    probe = MagicMock(return_value=True)
    pool = make_pool(probe=probe)

    first = pool.acquire("contoso", "graph")
    second = pool.acquire("contoso", "graph")

    assert first is second
    probe.assert_called_once_with(first.session)
    connect.assert_called_once()


@pytest.mark.parametrize("probe", [
    MagicMock(return_value=False),
    MagicMock(side_effect=RuntimeError("connection reset")),
])
def test_failed_probe_replaces_connection(make_pool, disconnect, events_of, probe):
    pool = make_pool(probe=probe)

    first = pool.acquire("contoso", "graph")
    second = pool.acquire("contoso", "graph")

    assert second is not first
    assert second.generation == 2
    assert first.state is ConnectionState.EVICTED
    disconnect.assert_called_once_with(first.session)
    assert pool.stats()["probe_failures"] == 1
    assert [e.reason for e in events_of("ConnectionEvicted")] == ["probe_failed"]


def test_probe_is_not_retried(make_pool):
    probe = MagicMock(side_effect=RuntimeError("Service Unavailable"))
    pool = make_pool(probe=probe)
    pool.acquire("contoso", "graph")
    pool.acquire("contoso", "graph")
    probe.assert_called_once()


def test_idle_connection_goes_stale(make_pool, clock, disconnect, events_of):
    pool = make_pool(idle_timeout=60)
    first = pool.acquire("contoso", "graph")

    clock.advance(61)
    second = pool.acquire("contoso", "graph")

    assert second is not first
    assert second.generation == 2
    disconnect.assert_called_once_with(first.session)
    assert [e.reason for e in events_of("ConnectionEvicted")] == ["stale"]


def test_use_within_idle_timeout_keeps_connection(make_pool, clock):
    pool = make_pool(idle_timeout=60)
    first = pool.acquire("contoso", "graph")
    clock.advance(59)
    assert pool.acquire("contoso", "graph") is first
    clock.advance(59)
    assert pool.acquire("contoso", "graph") is first


def test_force_replaces_connection(make_pool, disconnect):
    pool = make_pool()
    first = pool.acquire("contoso", "graph")
    second = pool.acquire("contoso", "graph", force=True)
    assert second is not first
    assert second.generation == 2
    disconnect.assert_called_once_with(first.session)


def test_capacity_evicts_least_recently_used(make_pool, clock, disconnect):
    pool = make_pool(max_connections=2)
    a = pool.acquire("a", "graph")
    clock.advance(1)
    b = pool.acquire("b", "graph")
    clock.advance(1)
    pool.acquire("a", "graph")  # a is now more recent than b
    clock.advance(1)
    c = pool.acquire("c", "graph")

    assert len(pool) == 2
    assert set(pool.keys()) == {a.key, c.key}
    assert b.state is ConnectionState.EVICTED
    disconnect.assert_called_once_with(b.session)


def test_newest_connection_survives_capacity_of_one(make_pool, clock):
    pool = make_pool(max_connections=1)
    pool.acquire("a", "graph")
    clock.advance(1)
    newest = pool.acquire("b", "graph")
    assert pool.keys() == [newest.key]


def test_sweep_enforces_lowered_capacity(make_pool, clock):
    pool = make_pool(max_connections=3)
    for tenant in ("a", "b", "c"):
        pool.acquire(tenant, "graph")
        clock.advance(1)

    pool.max_connections = 1
    evicted = pool.sweep()

    assert evicted == 2
    assert pool.keys() == [ConnectionKey("c", "graph")]


def test_sweep_removes_stale_entries(make_pool, clock):
    pool = make_pool(idle_timeout=60)
    pool.acquire("a", "graph")
    clock.advance(45)
    pool.acquire("b", "graph")
    clock.advance(30)

    assert pool.sweep() == 1
    assert pool.keys() == [ConnectionKey("b", "graph")]


def test_borrowed_connection_is_closed_after_release(make_pool, disconnect):
    pool = make_pool(max_connections=1)

    with pool.borrow("a", "graph") as leased:
        pool.acquire("b", "graph")
        assert leased.state is ConnectionState.EVICTED
        disconnect.assert_not_called()

    disconnect.assert_called_once_with(leased.session)


def test_disconnect_and_disconnect_all(make_pool, disconnect):
    pool = make_pool()
    pool.acquire("a", "graph")
    pool.acquire("b", "graph")

    assert pool.disconnect("a", "graph") is True
    assert pool.disconnect("a", "graph") is False
    assert pool.disconnect_all() == 1
    assert len(pool) == 0
    assert disconnect.call_count == 2


def test_disconnect_errors_are_logged_not_raised(make_pool):
    pool = make_pool(disconnect=MagicMock(side_effect=RuntimeError("already closed")))
    pool.acquire("a", "graph")
    assert pool.disconnect("a", "graph") is True


def test_closed_pool_refuses_acquire(make_pool, disconnect):
    with make_pool() as pool:
        pool.acquire("a", "graph")
    disconnect.assert_called_once()
    with pytest.raises(RuntimeError):
        pool.acquire("a", "graph")


def test_connect_failure_leaves_no_entry(make_pool):
    pool = make_pool(connect=MagicMock(side_effect=RuntimeError("401 Unauthorized")))

    with pytest.raises(ClassifiedError) as exc_info:
        pool.acquire("contoso", "graph")

    assert exc_info.value.classification.category is ErrorCategory.AUTHORIZATION
    assert exc_info.value.report.operation_name == "connect"
    assert exc_info.value.report.identity == "contoso@graph"
    assert "contoso@graph" not in [str(k) for k in pool.keys()]
    assert len(pool) == 0


def test_connect_returning_nothing_is_retried(make_pool):
    connect = MagicMock(return_value=None)
    pool = make_pool(connect=connect, connect_max_retries=1)
    with pytest.raises(ClassifiedError) as exc_info:
        pool.acquire("contoso", "graph")
    assert connect.call_count == 2
    assert exc_info.value.classification.category is ErrorCategory.NETWORK


def test_connect_timeouts_are_retried_with_backoff(mock_sink, events_of):
    """Connect times out twice, then succeeds on the third attempt."""
    base = 0.01
    executor = OperationExecutor(
        backoff=BackoffPolicy(base_delay=base, rng=random.Random(99)), event_sink=mock_sink,
    )
    connect = MagicMock(side_effect=[
        TimeoutError("Connection attempt timed out"),
        TimeoutError("Connection attempt timed out"),
        Session("contoso", {}),
    ])
    pool = ConnectionPool(executor, connect=connect, connect_max_retries=3)

    connection = pool.acquire("contoso", "graph")

    assert isinstance(connection.session, Session)
    assert connect.call_count == 3
    [established] = events_of("ConnectionEstablished")
    assert established.attempts == 3
    retries = events_of("RetryScheduled")
    assert [r.category for r in retries] == ["Timeout", "Timeout"]
    for r in retries:
        assert r.delay_seconds >= base * 1.5 * 2 ** (r.attempt - 1) * 0.8
        assert r.delay_seconds <= base * 1.5 * 2 ** (r.attempt - 1) * 1.2


def test_cancelled_token_aborts_acquire(make_pool, connect):
    pool = make_pool()
    token = CancellationToken()
    token.cancel()
    with pytest.raises(OperationCancelledError):
        pool.acquire("contoso", "graph", cancel_token=token)
    connect.assert_not_called()
    assert len(pool) == 0


def test_stats_report_pool_contents(make_pool):
    pool = make_pool(max_connections=5)
    pool.acquire("contoso", "graph")
    stats = pool.stats()
    assert stats["size"] == 1
    assert stats["max_connections"] == 5
    assert stats["keys"] == ["contoso@graph"]
    assert stats["evicted"] == 0


@pytest.mark.parametrize("kwargs", [{"max_connections": 0}, {"idle_timeout": 0}])
def test_invalid_pool_configuration(make_pool, kwargs):
    with pytest.raises(ValueError):
        make_pool(**kwargs)


def test_borrowed_connection_survives_eviction_right_after_acquire(make_pool, disconnect, clock, monkeypatch):
    pool = make_pool(max_connections=1)
    original_acquire = pool._acquire

    def acquire_then_compete(key, *args, **kwargs):
        connection = original_acquire(key, *args, **kwargs)
        if key.tenant == "a":
            clock.advance(1)
            pool.acquire("b", "graph")  # another worker fills the only slot
        return connection

    monkeypatch.setattr(pool, "_acquire", acquire_then_compete)

    with pool.borrow("a", "graph") as leased:
        assert leased.state is ConnectionState.EVICTED
        disconnect.assert_not_called()

    disconnect.assert_called_once_with(leased.session)


def test_release_closes_only_the_borrowed_generation(make_pool, disconnect):
    pool = make_pool()

    with pool.borrow("a", "graph") as first:
        second = pool.acquire("a", "graph", force=True)
        disconnect.assert_not_called()
        with pool.borrow("a", "graph") as again:
            assert again is second

    disconnect.assert_called_once_with(first.session)
    assert second.state is ConnectionState.LIVE
    assert pool.acquire("a", "graph") is second


def test_acquire_evicts_idle_entries_of_other_keys(make_pool, clock, disconnect, events_of):
    pool = make_pool(idle_timeout=60)
    a = pool.acquire("a", "graph")
    b = pool.acquire("b", "graph")

    clock.advance(3600)
    c = pool.acquire("c", "graph")

    assert pool.keys() == [c.key]
    assert disconnect.call_count == 2
    assert {call.args[0] for call in disconnect.call_args_list} == {a.session, b.session}
    assert sorted(e.identity for e in events_of("ConnectionEvicted") if e.reason == "stale") == ["a@graph", "b@graph"]


def test_close_forgets_per_key_bookkeeping(make_pool):
    pool = make_pool()
    for tenant in ("a", "b", "c"):
        pool.acquire(tenant, "graph")
    pool.close()
    assert pool._key_locks == {}
    assert pool._generations == {}
