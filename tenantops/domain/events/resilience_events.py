"""Domain Events emitted by the resilience core.

Every attempt, retry decision, pool eviction and batch completion is
described by one of these events and handed to the injected EventSink.
"""

from dataclasses import dataclass, field, asdict
import time
from typing import Any, Dict, Optional


@dataclass
class DomainEvent:
    """Base class for domain events."""

    @property
    def name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event"] = self.name
        return data


# --- Operation Execution Events ---

@dataclass
class AttemptFailed(DomainEvent):
    """An attempt of an operation raised an error and was classified."""
    operation: str
    identity: Optional[str]
    attempt: int
    category: str
    retryable: bool
    error_message: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class RetryScheduled(DomainEvent):
    """A retry is scheduled after a backoff delay."""
    operation: str
    identity: Optional[str]
    attempt: int
    category: str
    delay_seconds: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class OperationSucceeded(DomainEvent):
    operation: str
    identity: Optional[str]
    attempts: int
    elapsed_seconds: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class OperationFailed(DomainEvent):
    """An operation failed definitively (retries exhausted or non-retryable)."""
    operation: str
    identity: Optional[str]
    attempts: int
    category: str
    severity: str
    error_message: str
    elapsed_seconds: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class FailureSuppressed(DomainEvent):
    """A terminal failure was degraded to an empty result by request."""
    operation: str
    identity: Optional[str]
    attempts: int
    category: str
    error_message: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class OperationCancelled(DomainEvent):
    operation: str
    identity: Optional[str]
    attempts: int
    timestamp: float = field(default_factory=time.time)


# --- Connection Pool Events ---

@dataclass
class ConnectionEstablished(DomainEvent):
    identity: str
    generation: int
    auth_method: str
    attempts: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class ConnectionReused(DomainEvent):
    identity: str
    generation: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class ConnectionEvicted(DomainEvent):
    identity: str
    generation: int
    reason: str  # 'explicit', 'stale', 'capacity', 'probe_failed', 'forced'
    timestamp: float = field(default_factory=time.time)


# --- Batch Events ---

@dataclass
class BatchItemCompleted(DomainEvent):
    batch_id: str
    identity: str
    index: int
    status: str
    attempts: int
    elapsed_seconds: float
    category: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class BatchCompleted(DomainEvent):
    batch_id: str
    total: int
    succeeded: int
    failed: int
    retried: int
    skipped: int
    cancelled: int
    duration_seconds: float
    outcome: str  # 'completed', 'aborted', 'cancelled'
    timestamp: float = field(default_factory=time.time)
