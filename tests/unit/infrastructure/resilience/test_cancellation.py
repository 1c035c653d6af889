import threading
import time

import pytest

from tenantops.domain.errors import OperationCancelledError
from tenantops.infrastructure.resilience.cancellation import CancellationToken, NEVER_CANCELLED


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now


def test_new_token_is_not_cancelled():
    token = CancellationToken()
    assert token.cancelled is False
    assert token.deadline is None
    assert token.remaining() is None
    token.raise_if_cancelled()


def test_cancel_sets_reason_and_raises():
    token = CancellationToken()
    token.cancel("user abort")
    assert token.cancelled
    assert token.reason == "user abort"
    with pytest.raises(OperationCancelledError, match="user abort"):
        token.raise_if_cancelled()


def test_deadline_cancels_token():
    clock = FakeClock()
    token = CancellationToken(timeout=5.0, clock=clock)
    assert token.remaining() == pytest.approx(5.0)
    clock.now += 5.0
    assert token.cancelled
    assert token.reason == "deadline exceeded"
    assert token.remaining() == 0.0


def test_child_follows_parent_but_not_vice_versa():
    parent = CancellationToken()
    child = parent.child()
    child.cancel("child only")
    assert child.cancelled
    assert not parent.cancelled

    second = parent.child()
    parent.cancel("parent")
    assert second.cancelled
    assert second.reason == "parent"


def test_child_of_cancelled_parent_starts_cancelled():
    parent = CancellationToken()
    parent.cancel()
    assert parent.child().cancelled


def test_wait_returns_false_when_not_cancelled():
    token = CancellationToken()
    assert token.wait(0.01) is False


def test_wait_is_interrupted_by_cancel():
    token = CancellationToken()
    timer = threading.Timer(0.05, token.cancel)
    timer.start()
    started = time.monotonic()
    try:
        assert token.wait(10.0) is True
    finally:
        timer.cancel()
    assert time.monotonic() - started < 5.0


def test_wait_is_bounded_by_deadline():
    token = CancellationToken(timeout=0.05)
    started = time.monotonic()
    assert token.wait(10.0) is True
    assert time.monotonic() - started < 5.0


def test_shared_default_token_cannot_be_cancelled():
    with pytest.raises(RuntimeError):
        NEVER_CANCELLED.cancel()
    assert NEVER_CANCELLED.cancelled is False
    child = NEVER_CANCELLED.child()
    child.cancel()
    assert child.cancelled
    assert NEVER_CANCELLED.cancelled is False


def test_detached_child_no_longer_follows_parent():
    parent = CancellationToken()
    child = parent.child()
    parent.detach(child)
    parent.cancel("shutdown")
    assert not child.cancelled
    parent.detach(CancellationToken())


def test_cancelled_children_are_pruned():
    parent = CancellationToken()
    for _ in range(20):
        parent.child().cancel("done")
    live = parent.child()
    assert parent._children == [live]
