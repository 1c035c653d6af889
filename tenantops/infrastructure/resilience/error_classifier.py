"""Table-driven classification of remote call failures.

Maps any raised error (or raw message) onto the closed ErrorCategory
taxonomy. Rules are evaluated in order and the first match wins, so more
specific categories (throttling, timeouts) sit above broader ones.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional, Pattern, Sequence, Tuple

from tenantops.domain.errors import ClassifiedError
from tenantops.domain.models.classification import ErrorCategory, ErrorClassification, Severity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassificationRule:
    """One row of the classification table."""

    category: ErrorCategory
    patterns: Tuple[str, ...]
    retryable: bool
    backoff_multiplier: float
    severity: Severity

    def compile(self) -> Pattern:
        alternatives = []
        for pattern in self.patterns:
            if pattern.isdigit():
                # Status codes only match as whole numbers ('4290' is not a 429)
                alternatives.append(rf"(?<!\d){pattern}(?!\d)")
            else:
                alternatives.append(re.escape(pattern))
        return re.compile("|".join(alternatives), re.IGNORECASE)


DEFAULT_RULES: Tuple[ClassificationRule, ...] = (
    ClassificationRule(ErrorCategory.THROTTLING, ("throttl", "rate limit", "429"), True, 3.0, Severity.LOW),
    ClassificationRule(ErrorCategory.TIMEOUT, ("timeout", "timed out"), True, 1.5, Severity.MEDIUM),
    ClassificationRule(ErrorCategory.AUTHORIZATION, ("unauthorized", "401", "forbidden", "403"), False, 1.0, Severity.HIGH),
    ClassificationRule(ErrorCategory.NOT_FOUND, ("not found", "404"), False, 1.0, Severity.MEDIUM),
    ClassificationRule(ErrorCategory.NETWORK, ("network", "connection", "dns"), True, 1.2, Severity.MEDIUM),
    ClassificationRule(ErrorCategory.TENANT_CONFIG, ("tenant", "subscription", "license"), False, 1.0, Severity.HIGH),
    ClassificationRule(ErrorCategory.QUOTA_EXCEEDED, ("quota", "storage", "limit exceeded"), False, 1.0, Severity.HIGH),
    ClassificationRule(ErrorCategory.SERVICE_UNAVAILABLE, ("service unavailable", "503", "502", "500"), True, 3.0, Severity.HIGH),
    ClassificationRule(ErrorCategory.INVALID_REQUEST, ("invalid", "bad request", "400"), False, 1.0, Severity.MEDIUM),
    ClassificationRule(ErrorCategory.CONFLICT, ("conflict", "409", "already exists"), False, 1.0, Severity.LOW),
    ClassificationRule(ErrorCategory.CERTIFICATE, ("certificate", "ssl", "tls"), True, 1.0, Severity.HIGH),
)

GENERAL_CLASSIFICATION = ErrorClassification(
    category=ErrorCategory.GENERAL,
    retryable=True,
    backoff_multiplier=1.0,
    severity=Severity.MEDIUM,
)

# Attributes commonly used by HTTP client exceptions to expose a status code
_STATUS_ATTRIBUTES = ("status_code", "status")


def describe_error(error: Any) -> str:
    """Builds the message text the classifier matches against.

    Exceptions contribute their message and any integer status code
    attribute. Anything else is converted with ``str()``. Never raises.
    """
    if error is None:
        return ""
    if isinstance(error, str):
        return error
    try:
        message = str(error)
    except Exception:  # A broken __str__ must not break classification
        message = ""
    if isinstance(error, BaseException):
        for attr in _STATUS_ATTRIBUTES:
            status = getattr(error, attr, None)
            if isinstance(status, int) and not isinstance(status, bool):
                message = f"{message} {status}".strip()
                break
    return message


def _candidate_texts(error: Any) -> Tuple[str, ...]:
    # The message decides first; the exception type name (e.g. a bare
    # TimeoutError()) is only consulted when the message matches nothing.
    texts = (describe_error(error),)
    if isinstance(error, BaseException):
        texts += (type(error).__name__,)
    return texts


class ErrorClassifier:
    """Classifies errors with an ordered rule table. Stateless and thread-safe."""

    def __init__(self, rules: Optional[Sequence[ClassificationRule]] = None):
        self.rules: Tuple[ClassificationRule, ...] = tuple(rules) if rules is not None else DEFAULT_RULES
        self._compiled = [(rule, rule.compile()) for rule in self.rules]
        logger.debug(f"ErrorClassifier initialized with {len(self.rules)} rules")

    def classify(self, error: Any, *, critical: bool = False) -> ErrorClassification:
        """Classifies an error, exception or raw message.

        Args:
            error: An exception, message string, status code or None.
            critical: If True the result is forced to non-retryable.

        Returns:
            The classification of the first matching rule, or General.
        """
        classification = GENERAL_CLASSIFICATION
        if isinstance(error, ClassifiedError):
            # Already classified by a nested executor run
            classification = error.classification
        else:
            for text in _candidate_texts(error):
                matched = self._match(text)
                if matched is not None:
                    classification = matched
                    break
        if critical:
            classification = classification.as_non_retryable()
        return classification

    def classification_for(self, category: ErrorCategory) -> ErrorClassification:
        """Returns the table entry for a category (General when no rule names it)."""
        for rule in self.rules:
            if rule.category is category:
                return ErrorClassification(
                    category=rule.category,
                    retryable=rule.retryable,
                    backoff_multiplier=rule.backoff_multiplier,
                    severity=rule.severity,
                )
        return GENERAL_CLASSIFICATION

    def _match(self, text: str) -> Optional[ErrorClassification]:
        if not text:
            return None
        for rule, regex in self._compiled:
            match = regex.search(text)
            if match:
                return ErrorClassification(
                    category=rule.category,
                    retryable=rule.retryable,
                    backoff_multiplier=rule.backoff_multiplier,
                    severity=rule.severity,
                    matched_pattern=match.group(0).lower(),
                )
        return None


_default_classifier = ErrorClassifier()


def classify(error: Any, *, critical: bool = False) -> ErrorClassification:
    """Classifies an error using the default rule table."""
    return _default_classifier.classify(error, critical=critical)
