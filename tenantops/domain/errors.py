"""Exception types raised by the resilience core."""

from typing import Optional, Tuple, TYPE_CHECKING

from .models.execution import FailureReport, OperationAttempt

if TYPE_CHECKING:
    from .models.batch import BatchReport


class TenantOpsError(Exception):
    """Base class for all errors raised by tenantops."""


class ClassifiedError(TenantOpsError):
    """Raised when an operation fails definitively.

    Carries the full failure report: original error text, classification,
    every attempt made and the total elapsed time.
    """

    def __init__(self, report: FailureReport, original_exception: Optional[BaseException] = None):
        self.report = report
        self.original_exception = original_exception
        super().__init__(report.summary())

    @property
    def classification(self):
        return self.report.classification

    @property
    def attempts(self) -> int:
        return self.report.attempt_count


class OperationCancelledError(TenantOpsError):
    """Raised when an operation is cancelled or its deadline passes.

    Cancellation always wins over retry policy; this error is never retried.
    """

    def __init__(self, message: str = "Operation cancelled", attempts: Tuple[OperationAttempt, ...] = ()):
        self.attempts = attempts
        super().__init__(message)


class BatchAbortedError(TenantOpsError):
    """Raised when a batch stops early, either on a hard failure or on cancellation.

    The partial (frozen) report is available as ``report``.
    """

    def __init__(self, report: "BatchReport", reason: str, cause: Optional[BaseException] = None):
        self.report = report
        self.reason = reason  # 'failure' or 'cancelled'
        self.cause = cause
        failed = ", ".join(r.key for r in report.failed_items) or "none"
        super().__init__(
            f"Batch aborted ({reason}): {report.succeeded}/{report.total} succeeded, "
            f"failed items: {failed}"
        )
