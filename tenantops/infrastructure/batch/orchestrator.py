"""Throttled fan-out of independent provisioning operations.

A fixed number of workers pull the next unclaimed item, borrow a pooled
connection for the item's tenant, and run the item through the
OperationExecutor. Every outcome is written into the report slot reserved
for the item's input index, so completion order never changes the report
order. Sequential mode is the same worker loop run once in the caller's
thread.
"""

import itertools
import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional

from tenantops.domain.errors import BatchAbortedError, ClassifiedError, OperationCancelledError
from tenantops.domain.events.resilience_events import BatchCompleted, BatchItemCompleted, DomainEvent
from tenantops.domain.interfaces.event_sink import EventSink
from tenantops.domain.models.batch import BatchItem, BatchItemResult, BatchReport, ItemStatus
from tenantops.domain.models.classification import ErrorCategory
from tenantops.domain.models.execution import ExecutionResult
from tenantops.infrastructure.pool.connection_pool import ConnectionPool
from tenantops.infrastructure.resilience.cancellation import CancellationToken, NEVER_CANCELLED
from tenantops.infrastructure.resilience.executor import OperationExecutor

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY_LIMIT = 5

ProgressCallback = Callable[[int, int, BatchItemResult], None]


@dataclass
class _BatchRun:
    """Mutable state shared by the workers of one run_batch call."""

    batch_id: str
    items: List[BatchItem]
    report: BatchReport
    token: CancellationToken
    continue_on_error: bool
    per_item_max_retries: Optional[int]
    on_progress: Optional[ProgressCallback]
    stop: threading.Event = field(default_factory=threading.Event)
    first_failure: Optional[Exception] = None
    completed: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock)
    _claims: Any = field(default_factory=itertools.count)

    def claim_next(self) -> Optional[int]:
        with self.lock:
            index = next(self._claims)
        return index if index < len(self.items) else None

    def record_hard_failure(self, error: Exception) -> None:
        with self.lock:
            if self.first_failure is None:
                self.first_failure = error
        self.stop.set()


class BatchOrchestrator:
    """Runs batches of BatchItems under a hard concurrency cap."""

    def __init__(
        self,
        executor: OperationExecutor,
        pool: Optional[ConnectionPool] = None,
        concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT,
        continue_on_error: bool = True,
        per_item_max_retries: Optional[int] = None,
        treat_conflict_as_success: bool = True,
        event_sink: Optional[EventSink] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initializes the BatchOrchestrator.

        Args:
            executor: Runs every item's operation with classified retries.
            pool: Supplies connections for items that name a tenant.
            concurrency_limit: Default worker count per batch.
            continue_on_error: Default failure policy.
            per_item_max_retries: Default retries per item (None uses the executor's default).
            treat_conflict_as_success: Report Conflict failures ('already exists') as ALREADY_EXISTS.
            event_sink: Receives batch events; defaults to the executor's sink.
            clock: Monotonic clock for durations.
        """
        if concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be >= 1, got {concurrency_limit}")
        self.executor = executor
        self.pool = pool
        self.concurrency_limit = concurrency_limit
        self.continue_on_error = continue_on_error
        self.per_item_max_retries = per_item_max_retries
        self.treat_conflict_as_success = treat_conflict_as_success
        self.event_sink = event_sink or executor.event_sink
        self._clock = clock

    def run_batch(
        self,
        items: Iterable[BatchItem],
        *,
        concurrency_limit: Optional[int] = None,
        continue_on_error: Optional[bool] = None,
        per_item_max_retries: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchReport:
        """Runs all items and returns the report in input order.

        Args:
            items: The batch items to run.
            concurrency_limit: Maximum number of items in flight (1 = sequential in this thread).
            continue_on_error: If False, the first hard failure stops unstarted items.
            per_item_max_retries: Retries per item unless the item overrides it.
            cancel_token: Cancels in-flight retries and prevents new items from starting.
            on_progress: Called from worker threads as ``on_progress(completed, total, result)``.

        Returns:
            The frozen BatchReport.

        Raises:
            BatchAbortedError: On a hard failure with continue_on_error=False, on an
                unexpected worker error (a raising on_progress, a closed pool) or on
                cancellation. The partial report is attached.
            ValueError: If an item needs a connection but no pool is configured.
        """
        items = list(items)
        limit = self.concurrency_limit if concurrency_limit is None else concurrency_limit
        if limit < 1:
            raise ValueError(f"concurrency_limit must be >= 1, got {limit}")
        if self.pool is None and any(item.uses_connection for item in items):
            raise ValueError("Batch items reference tenants but no ConnectionPool is configured")

        parent_token = cancel_token or NEVER_CANCELLED
        run = _BatchRun(
            batch_id=uuid.uuid4().hex[:8],
            items=items,
            report=BatchReport([item.key for item in items]),
            token=parent_token.child(),
            continue_on_error=self.continue_on_error if continue_on_error is None else continue_on_error,
            per_item_max_retries=self.per_item_max_retries if per_item_max_retries is None else per_item_max_retries,
            on_progress=on_progress,
        )
        workers = min(limit, len(items))
        logger.info(
            f"Batch {run.batch_id}: {len(items)} item(s), {max(workers, 1)} worker(s), "
            f"continue_on_error={run.continue_on_error}"
        )

        started = self._clock()
        try:
            if workers <= 1:
                self._worker_loop(run)
            else:
                with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"batch-{run.batch_id}") as pool:
                    futures = [pool.submit(self._worker_loop, run) for _ in range(workers)]
                    for future in futures:
                        future.result()
        finally:
            parent_token.detach(run.token)
            self._fill_unstarted(run)
            run.report.freeze(self._clock() - started)

        return self._finish(run)

    def run_sequential(self, items: Iterable[BatchItem], **kwargs: Any) -> BatchReport:
        """Runs the batch one item at a time in the caller's thread."""
        kwargs["concurrency_limit"] = 1
        return self.run_batch(items, **kwargs)

    # --- Workers ---

    def _worker_loop(self, run: _BatchRun) -> None:
        index = None
        try:
            while True:
                index = run.claim_next()
                if index is None:
                    return
                if run.stop.is_set() or run.token.cancelled:
                    # Leave the slot empty; _fill_unstarted marks it skipped/cancelled
                    continue
                result = self._run_item(run, index, run.items[index])
                self._record(run, result)
        except Exception as e:
            logger.error(f"Batch {run.batch_id}: worker stopped by unexpected error: {e}", exc_info=True)
            if index is not None and not run.report.is_recorded(index):
                run.report.record(BatchItemResult(
                    index=index,
                    key=run.items[index].key,
                    status=ItemStatus.FAILED,
                    error_message=f"{type(e).__name__}: {e}",
                ))
            run.record_hard_failure(e)

    def _run_item(self, run: _BatchRun, index: int, item: BatchItem) -> BatchItemResult:
        started = self._clock()
        retries = item.max_retries if item.max_retries is not None else run.per_item_max_retries
        try:
            execution = self._execute(run, item, retries)
        except ClassifiedError as e:
            report = e.report
            status = ItemStatus.FAILED
            if self.treat_conflict_as_success and report.classification.category is ErrorCategory.CONFLICT:
                status = ItemStatus.ALREADY_EXISTS
                logger.info(f"Batch {run.batch_id}: '{item.key}' already exists, treating as done")
            else:
                logger.error(f"Batch {run.batch_id}: item '{item.key}' failed: {report.summary()}")
                if not run.continue_on_error:
                    run.record_hard_failure(e)
            return BatchItemResult(
                index=index,
                key=item.key,
                status=status,
                attempts=report.attempt_count,
                elapsed_seconds=self._clock() - started,
                classification=report.classification,
                error_message=report.error_message,
                failure=report,
            )
        except OperationCancelledError as e:
            return BatchItemResult(
                index=index,
                key=item.key,
                status=ItemStatus.CANCELLED,
                attempts=len(e.attempts),
                elapsed_seconds=self._clock() - started,
                error_message=str(e),
            )

        return BatchItemResult(
            index=index,
            key=item.key,
            status=ItemStatus.SUCCEEDED,
            attempts=execution.attempt_count,
            elapsed_seconds=self._clock() - started,
            value=execution.value,
        )

    def _execute(self, run: _BatchRun, item: BatchItem, retries: Optional[int]) -> ExecutionResult:
        options = dict(
            name=getattr(item.operation, "__name__", None) or "batch_item",
            identity=str(item.key),
            max_retries=retries,
            critical=item.critical,
            cancel_token=run.token,
        )
        if not item.uses_connection:
            return self.executor.execute(item.operation, **options)

        with self.pool.borrow(
            item.tenant,
            item.endpoint or "",
            auth_method=item.auth_method,
            auth_params=item.auth_params,
            cancel_token=run.token,
        ) as connection:
            return self.executor.execute(lambda: item.operation(connection), **options)

    def _record(self, run: _BatchRun, result: BatchItemResult) -> None:
        run.report.record(result)
        with run.lock:
            run.completed += 1
            completed = run.completed
        self._emit(BatchItemCompleted(
            batch_id=run.batch_id,
            identity=str(result.key),
            index=result.index,
            status=result.status.value,
            attempts=result.attempts,
            elapsed_seconds=result.elapsed_seconds,
            category=result.classification.category.value if result.classification else None,
        ))
        if run.on_progress is not None:
            run.on_progress(completed, len(run.items), result)

    # --- Completion ---

    def _fill_unstarted(self, run: _BatchRun) -> None:
        status = ItemStatus.SKIPPED if run.stop.is_set() else ItemStatus.CANCELLED
        for index, item in enumerate(run.items):
            if not run.report.is_recorded(index):
                run.report.record(BatchItemResult(index=index, key=item.key, status=status))

    def _finish(self, run: _BatchRun) -> BatchReport:
        report = run.report
        if report.cancelled:
            outcome = "cancelled"
        elif run.stop.is_set():
            outcome = "aborted"
        else:
            outcome = "completed"
        self._emit(BatchCompleted(
            batch_id=run.batch_id,
            total=report.total,
            succeeded=report.succeeded,
            failed=report.failed,
            retried=report.retried,
            skipped=report.skipped,
            cancelled=report.cancelled,
            duration_seconds=report.duration_seconds,
            outcome=outcome,
        ))
        logger.info(
            f"Batch {run.batch_id} {outcome}: {report.succeeded}/{report.total} succeeded, "
            f"{report.failed} failed, {report.retried} retried in {report.duration_seconds:.2f}s"
        )
        if outcome == "cancelled":
            raise BatchAbortedError(report, "cancelled")
        if outcome == "aborted":
            raise BatchAbortedError(report, "failure", run.first_failure)
        return report

    def _emit(self, event: DomainEvent) -> None:
        try:
            self.event_sink.emit(event)
        except Exception as e:
            logger.error(f"Event sink failed to publish {event.name}: {e}", exc_info=True)
