"""Service for executing remote operations with classified retries.

Runs a caller-supplied operation under a retry loop: every failure is
classified, non-retryable (or critical) failures end the run immediately,
retryable ones wait an exponentially growing, jittered delay first. The
run ends in an ExecutionResult or a ClassifiedError carrying the full
attempt history.
"""

import logging
import time
from typing import Any, Callable, List, Optional

from tenantops.domain.errors import ClassifiedError, OperationCancelledError
from tenantops.domain.events.resilience_events import (
    AttemptFailed, DomainEvent, FailureSuppressed, OperationCancelled,
    OperationFailed, OperationSucceeded, RetryScheduled,
)
from tenantops.domain.interfaces.event_sink import EventSink
from tenantops.domain.models.classification import ErrorCategory
from tenantops.domain.models.execution import (
    AttemptOutcome, ExecutionResult, FailureReport, OperationAttempt,
)
from tenantops.infrastructure.monitoring.event_sink import LoggingEventSink
from tenantops.infrastructure.resilience.backoff import BackoffPolicy
from tenantops.infrastructure.resilience.cancellation import CancellationToken, NEVER_CANCELLED
from tenantops.infrastructure.resilience.error_classifier import ErrorClassifier, describe_error

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3


class OperationExecutor:
    """Executes operations with classification, backoff and cancellation.

    The executor holds configuration only; every ``execute`` call owns its
    own attempt counter and history, so one instance is safely shared by
    many threads.
    """

    def __init__(
        self,
        classifier: Optional[ErrorClassifier] = None,
        backoff: Optional[BackoffPolicy] = None,
        event_sink: Optional[EventSink] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        throttle_retry_mode: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initializes the OperationExecutor.

        Args:
            classifier: Error classifier; defaults to the standard rule table.
            backoff: Backoff policy; defaults to 1s base, 300s ceiling.
            event_sink: Receives structured events; defaults to a LoggingEventSink.
            max_retries: Retries after the first attempt when a call does not override it.
            throttle_retry_mode: Doubles backoff for Throttling failures on top of their multiplier.
            clock: Monotonic clock used for durations.
        """
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")
        self.classifier = classifier or ErrorClassifier()
        self.backoff = backoff or BackoffPolicy()
        self.event_sink = event_sink or LoggingEventSink()
        self.max_retries = max_retries
        self.throttle_retry_mode = throttle_retry_mode
        self._clock = clock
        logger.debug(
            f"OperationExecutor initialized: max_retries={max_retries}, {self.backoff!r}, "
            f"throttle_retry_mode={throttle_retry_mode}"
        )

    def execute(
        self,
        operation: Callable[[], Any],
        *,
        name: Optional[str] = None,
        identity: Optional[str] = None,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        critical: bool = False,
        suppress: bool = False,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ExecutionResult:
        """Runs ``operation`` until it succeeds or fails definitively.

        Args:
            operation: Zero-argument callable performing one remote action.
            name: Operation name for logs and events (defaults to the callable's name).
            identity: Identity key (tenant/endpoint or item key) for logs and events.
            max_retries: Retries after the first attempt; 0 means exactly one attempt.
            base_delay: Overrides the backoff base delay for this call.
            critical: Fail fast on the first error regardless of classification.
            suppress: Return an empty result instead of raising on terminal failure.
            cancel_token: Cancels pending retries; cancellation is never retried.

        Returns:
            An ExecutionResult; ``failure`` is set only for suppressed failures.

        Raises:
            ClassifiedError: On terminal failure unless ``suppress`` is set.
            OperationCancelledError: If the token is cancelled or its deadline passes.
        """
        retries = self.max_retries if max_retries is None else max_retries
        if retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {retries}")
        backoff = self.backoff if base_delay is None else self.backoff.with_base_delay(base_delay)
        token = cancel_token or NEVER_CANCELLED
        op_name = name or getattr(operation, "__name__", None) or "operation"
        attempts: List[OperationAttempt] = []
        run_started = self._clock()
        attempt = 1

        while True:
            if token.cancelled:
                self._raise_cancelled(op_name, identity, attempts, token)

            started_at = time.time()
            attempt_started = self._clock()
            try:
                value = operation()
            except OperationCancelledError:
                self._raise_cancelled(op_name, identity, attempts, token)
            except Exception as e:
                duration = self._clock() - attempt_started
                classification = self.classifier.classify(e, critical=critical)
                message = describe_error(e) or type(e).__name__
                self._emit(AttemptFailed(
                    operation=op_name, identity=identity, attempt=attempt,
                    category=classification.category.value,
                    retryable=classification.retryable, error_message=message,
                ))

                if token.cancelled:
                    attempts.append(OperationAttempt(
                        attempt, started_at, duration, AttemptOutcome.FAILURE,
                        classification, message, type(e).__name__,
                    ))
                    self._raise_cancelled(op_name, identity, attempts, token)

                if attempt > retries or not classification.retryable:
                    attempts.append(OperationAttempt(
                        attempt, started_at, duration, AttemptOutcome.FAILURE,
                        classification, message, type(e).__name__,
                    ))
                    report = FailureReport(
                        operation_name=op_name,
                        identity=identity,
                        error_message=message,
                        error_type=type(e).__name__,
                        classification=classification,
                        attempts=tuple(attempts),
                        elapsed_seconds=self._clock() - run_started,
                        critical=critical,
                    )
                    return self._fail(report, e, suppress)

                delay = backoff.delay(
                    attempt,
                    classification.backoff_multiplier,
                    self.throttle_retry_mode and classification.category is ErrorCategory.THROTTLING,
                )
                attempts.append(OperationAttempt(
                    attempt, started_at, duration, AttemptOutcome.FAILURE,
                    classification, message, type(e).__name__, backoff_delay=delay,
                ))
                logger.warning(
                    f"Retryable {classification.category.value} error in {op_name}"
                    f"{f' for {identity}' if identity else ''} on attempt {attempt}/{retries + 1}: "
                    f"{message}. Waiting {delay:.2f}s..."
                )
                self._emit(RetryScheduled(
                    operation=op_name, identity=identity, attempt=attempt,
                    category=classification.category.value, delay_seconds=delay,
                ))
                if token.wait(delay):
                    self._raise_cancelled(op_name, identity, attempts, token)
                attempt += 1
                continue

            duration = self._clock() - attempt_started
            attempts.append(OperationAttempt(attempt, started_at, duration, AttemptOutcome.SUCCESS))
            elapsed = self._clock() - run_started
            self._emit(OperationSucceeded(
                operation=op_name, identity=identity, attempts=attempt, elapsed_seconds=elapsed,
            ))
            if attempt > 1:
                logger.info(f"{op_name} succeeded on attempt {attempt} after {elapsed:.2f}s")
            return ExecutionResult(value=value, attempts=tuple(attempts), elapsed_seconds=elapsed)

    def call(self, operation: Callable[[], Any], **kwargs: Any) -> Any:
        """Like ``execute`` but returns the operation's value directly."""
        return self.execute(operation, **kwargs).value

    # --- Internals ---

    def _fail(self, report: FailureReport, error: Exception, suppress: bool) -> ExecutionResult:
        classification = report.classification
        self._emit(OperationFailed(
            operation=report.operation_name, identity=report.identity,
            attempts=report.attempt_count, category=classification.category.value,
            severity=classification.severity.value, error_message=report.error_message,
            elapsed_seconds=report.elapsed_seconds,
        ))
        if suppress:
            logger.warning(f"Suppressed failure: {report.summary()}")
            self._emit(FailureSuppressed(
                operation=report.operation_name, identity=report.identity,
                attempts=report.attempt_count, category=classification.category.value,
                error_message=report.error_message,
            ))
            return ExecutionResult(
                value=None,
                attempts=report.attempts,
                elapsed_seconds=report.elapsed_seconds,
                failure=report,
                suppressed=True,
            )
        logger.error(report.summary())
        raise ClassifiedError(report, error) from error

    def _raise_cancelled(self, op_name: str, identity: Optional[str], attempts: List[OperationAttempt], token: CancellationToken) -> None:
        reason = token.reason or "cancelled"
        logger.warning(f"{op_name}{f' for {identity}' if identity else ''} cancelled after {len(attempts)} attempt(s): {reason}")
        self._emit(OperationCancelled(operation=op_name, identity=identity, attempts=len(attempts)))
        raise OperationCancelledError(f"{op_name} cancelled: {reason}", attempts=tuple(attempts))

    def _emit(self, event: DomainEvent) -> None:
        try:
            self.event_sink.emit(event)
        except Exception as e:
            logger.error(f"Event sink failed to publish {event.name}: {e}", exc_info=True)
