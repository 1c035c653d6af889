"""Value objects describing one resilient operation invocation.

Attempts exist only inside a single executor run; the ordered sequence is
kept in the final result or failure report and nowhere else.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Tuple

from .classification import ErrorClassification


class AttemptOutcome(str, Enum):
    SUCCESS = "Success"
    FAILURE = "Failure"


@dataclass(frozen=True)
class OperationAttempt:
    """One try of an operation body.

    Attributes:
        index: 1-based attempt number.
        started_at: Wall clock timestamp when the attempt started.
        duration: Seconds spent inside the operation body.
        outcome: Success or Failure.
        classification: Set for failed attempts only.
        error_message: Text of the raised error (failures only).
        error_type: Class name of the raised error (failures only).
        backoff_delay: Seconds waited after this attempt before the next one,
            None when no retry followed.
    """

    index: int
    started_at: float
    duration: float
    outcome: AttemptOutcome
    classification: Optional[ErrorClassification] = None
    error_message: Optional[str] = None
    error_type: Optional[str] = None
    backoff_delay: Optional[float] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is AttemptOutcome.SUCCESS


@dataclass(frozen=True)
class FailureReport:
    """Terminal failure of a logical operation after all permitted attempts."""

    operation_name: str
    identity: Optional[str]
    error_message: str
    error_type: str
    classification: ErrorClassification
    attempts: Tuple[OperationAttempt, ...]
    elapsed_seconds: float
    critical: bool = False

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def backoff_delays(self) -> Tuple[float, ...]:
        return tuple(a.backoff_delay for a in self.attempts if a.backoff_delay is not None)

    def summary(self) -> str:
        """One-line human readable description used in exception messages."""
        target = f" for {self.identity}" if self.identity else ""
        return (
            f"{self.operation_name}{target} failed after {self.attempt_count} attempt(s) "
            f"in {self.elapsed_seconds:.2f}s "
            f"[{self.classification.category.value}/{self.classification.severity.value}]: "
            f"{self.error_message}"
        )

    def to_dict(self) -> dict:
        return {
            "operation": self.operation_name,
            "identity": self.identity,
            "error_message": self.error_message,
            "error_type": self.error_type,
            "classification": self.classification.to_dict(),
            "attempt_count": self.attempt_count,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "critical": self.critical,
        }


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome returned by the executor for non-raising paths.

    A successful run carries the operation's value. A suppressed failure
    carries ``value=None`` plus the failure report.
    """

    value: Any
    attempts: Tuple[OperationAttempt, ...]
    elapsed_seconds: float
    failure: Optional[FailureReport] = None
    suppressed: bool = False

    @property
    def succeeded(self) -> bool:
        return self.failure is None

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def backoff_delays(self) -> Tuple[float, ...]:
        return tuple(a.backoff_delay for a in self.attempts if a.backoff_delay is not None)
