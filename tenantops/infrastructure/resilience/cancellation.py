"""Cancellation tokens with optional deadlines.

Every suspension point in the core (retry waits, probes, batch workers)
waits on a token instead of sleeping blindly, so a caller-level timeout or
cancellation aborts pending retries promptly.
"""

import logging
import threading
import time
from typing import Callable, List, Optional

from tenantops.domain.errors import OperationCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe cancellation flag with an optional monotonic deadline.

    A child token (see ``child()``) is cancelled whenever its parent is,
    but can also be cancelled on its own without affecting the parent.
    """

    def __init__(self, timeout: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self._event = threading.Event()
        self._clock = clock
        self._deadline: Optional[float] = clock() + timeout if timeout is not None else None
        self._reason: Optional[str] = None
        self._children: List["CancellationToken"] = []
        self._lock = threading.Lock()

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, None when there is no deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and self._clock() >= self._deadline:
            self.cancel("deadline exceeded")
            return True
        return False

    def cancel(self, reason: str = "cancelled") -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
            children = list(self._children)
        logger.debug(f"Cancellation requested: {reason}")
        for child in children:
            child.cancel(reason)

    def child(self) -> "CancellationToken":
        """Creates a token that inherits this token's cancellation and deadline."""
        token = CancellationToken(clock=self._clock)
        token._deadline = self._deadline
        with self._lock:
            already_cancelled = self._event.is_set()
            if not already_cancelled:
                self._children = [c for c in self._children if not c._event.is_set()]
                self._children.append(token)
        if already_cancelled:
            token.cancel(self._reason or "cancelled")
        return token

    def detach(self, child: "CancellationToken") -> None:
        """Stops propagating cancellation to ``child``. Unknown tokens are ignored."""
        with self._lock:
            self._children = [c for c in self._children if c is not child]

    def wait(self, seconds: float) -> bool:
        """Waits up to ``seconds`` or until cancelled.

        Returns:
            True if the token was cancelled (or the deadline passed) during the wait.
        """
        if self.cancelled:
            return True
        timeout = max(0.0, seconds)
        remaining = self.remaining()
        if remaining is not None and remaining <= timeout:
            if not self._event.wait(remaining):
                self.cancel("deadline exceeded")
            return True
        return self._event.wait(timeout) or self.cancelled

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelledError(f"Operation cancelled: {self._reason}")


class _NeverCancelled(CancellationToken):
    """Default token for callers that do not pass one."""

    def cancel(self, reason: str = "cancelled") -> None:
        raise RuntimeError("The shared default token cannot be cancelled; create a CancellationToken instead.")

    def child(self) -> CancellationToken:
        return CancellationToken(clock=self._clock)


NEVER_CANCELLED = _NeverCancelled()
