"""Error classification value objects.

A classification is the structured verdict derived from a raw error:
which category it falls in, whether it is worth retrying, how hard to
back off and how severe it is.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    """Closed taxonomy of failure categories."""

    THROTTLING = "Throttling"
    TIMEOUT = "Timeout"
    AUTHORIZATION = "Authorization"
    NOT_FOUND = "NotFound"
    NETWORK = "Network"
    TENANT_CONFIG = "TenantConfig"
    QUOTA_EXCEEDED = "QuotaExceeded"
    SERVICE_UNAVAILABLE = "ServiceUnavailable"
    INVALID_REQUEST = "InvalidRequest"
    CONFLICT = "Conflict"
    CERTIFICATE = "Certificate"
    GENERAL = "General"


class Severity(str, Enum):
    """Severity levels attached to a classification."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


@dataclass(frozen=True)
class ErrorClassification:
    """Structured verdict for one failed attempt.

    Attributes:
        category: The matched error category.
        retryable: Whether the executor may try again.
        backoff_multiplier: Scales the base backoff delay (always >= 1.0).
        severity: How serious the failure is for reporting.
        matched_pattern: The pattern that triggered the match, None for General.
    """

    category: ErrorCategory
    retryable: bool
    backoff_multiplier: float
    severity: Severity
    matched_pattern: Optional[str] = None

    def __post_init__(self):
        if self.backoff_multiplier < 1.0:
            raise ValueError(f"backoff_multiplier must be >= 1.0, got {self.backoff_multiplier}")

    def as_non_retryable(self) -> "ErrorClassification":
        """Returns a copy that forbids retries (used for critical operations)."""
        if not self.retryable:
            return self
        return replace(self, retryable=False)

    def to_dict(self) -> dict:
        return {
            "category": self.category.value,
            "retryable": self.retryable,
            "backoff_multiplier": self.backoff_multiplier,
            "severity": self.severity.value,
            "matched_pattern": self.matched_pattern,
        }
