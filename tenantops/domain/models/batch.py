"""Batch value objects and the aggregated BatchReport.

The report pre-allocates one slot per input item so that workers only ever
write into their own slot. Slots are filled out of order as items complete
but the report always presents them in input order.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .classification import ErrorClassification
from .common import AuthMethod, Endpoint, ItemKey, TenantIdentity
from .connection import ConnectionKey
from .execution import FailureReport


class ItemStatus(str, Enum):
    SUCCEEDED = "Succeeded"
    ALREADY_EXISTS = "AlreadyExists"   # Conflict treated as a non-failing terminal state
    FAILED = "Failed"
    SKIPPED = "Skipped"                # Not started because the batch stopped on error
    CANCELLED = "Cancelled"            # Not started or aborted by batch cancellation


# Statuses that count as success in the report counters
_OK_STATUSES = (ItemStatus.SUCCEEDED, ItemStatus.ALREADY_EXISTS)


@dataclass
class BatchItem:
    """One independently retryable unit of work.

    When ``tenant`` is set the worker acquires a pooled connection for
    (tenant, endpoint) and calls ``operation(connection)``; otherwise the
    operation is called with no arguments.
    """

    key: ItemKey
    operation: Callable[..., Any]
    tenant: Optional[TenantIdentity] = None
    endpoint: Optional[Endpoint] = None
    auth_method: AuthMethod = AuthMethod("interactive")
    auth_params: Dict[str, Any] = field(default_factory=dict)
    critical: bool = False
    max_retries: Optional[int] = None  # Overrides the batch-wide retry count

    @property
    def uses_connection(self) -> bool:
        return self.tenant is not None

    @property
    def connection_key(self) -> Optional[ConnectionKey]:
        if self.tenant is None:
            return None
        return ConnectionKey(self.tenant, self.endpoint or Endpoint(""))


@dataclass(frozen=True)
class BatchItemResult:
    """Final outcome of one batch item."""

    index: int
    key: ItemKey
    status: ItemStatus
    attempts: int = 0
    elapsed_seconds: float = 0.0
    value: Any = None
    classification: Optional[ErrorClassification] = None
    error_message: Optional[str] = None
    failure: Optional[FailureReport] = None

    @property
    def ok(self) -> bool:
        return self.status in _OK_STATUSES

    @property
    def retried(self) -> bool:
        return self.attempts > 1

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "key": self.key,
            "status": self.status.value,
            "attempts": self.attempts,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "category": self.classification.category.value if self.classification else None,
            "error": self.error_message,
        }


class BatchReport:
    """Ordered collection of batch item outcomes plus aggregate counters."""

    def __init__(self, keys: List[ItemKey]):
        self._keys = list(keys)
        self._slots: List[Optional[BatchItemResult]] = [None] * len(self._keys)
        self._lock = threading.Lock()
        self._frozen = False
        self.duration_seconds: float = 0.0

    # --- Mutation (only while the batch is running) ---

    def record(self, result: BatchItemResult) -> None:
        """Writes an item result into the slot reserved for its index."""
        with self._lock:
            if self._frozen:
                raise RuntimeError("BatchReport is frozen; no further results can be recorded.")
            if not 0 <= result.index < len(self._slots):
                raise IndexError(f"No slot reserved for item index {result.index}")
            if self._slots[result.index] is not None:
                raise RuntimeError(f"Result for item '{result.key}' (index {result.index}) already recorded.")
            self._slots[result.index] = result

    def freeze(self, duration_seconds: float) -> None:
        with self._lock:
            self.duration_seconds = duration_seconds
            self._frozen = True

    def is_recorded(self, index: int) -> bool:
        with self._lock:
            return self._slots[index] is not None

    # --- Read access ---

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def items(self) -> List[BatchItemResult]:
        """Recorded results in input order."""
        with self._lock:
            return [slot for slot in self._slots if slot is not None]

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    def __getitem__(self, index: int) -> BatchItemResult:
        return self.items[index]

    def _count(self, *statuses: ItemStatus) -> int:
        return sum(1 for r in self.items if r.status in statuses)

    @property
    def total(self) -> int:
        return len(self._keys)

    @property
    def succeeded(self) -> int:
        return self._count(*_OK_STATUSES)

    @property
    def failed(self) -> int:
        return self._count(ItemStatus.FAILED)

    @property
    def already_exists(self) -> int:
        return self._count(ItemStatus.ALREADY_EXISTS)

    @property
    def skipped(self) -> int:
        return self._count(ItemStatus.SKIPPED)

    @property
    def cancelled(self) -> int:
        return self._count(ItemStatus.CANCELLED)

    @property
    def retried(self) -> int:
        return sum(1 for r in self.items if r.retried)

    @property
    def succeeded_items(self) -> List[BatchItemResult]:
        return [r for r in self.items if r.ok]

    @property
    def failed_items(self) -> List[BatchItemResult]:
        return [r for r in self.items if r.status is ItemStatus.FAILED]

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "retried": self.retried,
            "already_exists": self.already_exists,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
            "duration_seconds": round(self.duration_seconds, 3),
            "items": [r.to_dict() for r in self.items],
        }
