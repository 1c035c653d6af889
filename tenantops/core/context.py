"""Application-owned composition of the resilience core.

Wires an OperationExecutor, a ConnectionPool and a BatchOrchestrator from
ResilienceSettings. The caller owns the returned context and closes it on
shutdown; nothing here is a process-wide singleton.
"""

import logging
import random
from typing import Any, Dict, Optional

from tenantops.domain.interfaces.event_sink import EventSink
from tenantops.infrastructure.batch.orchestrator import BatchOrchestrator
from tenantops.infrastructure.config.settings import ResilienceSettings, load_resilience_settings
from tenantops.infrastructure.monitoring.event_sink import LoggingEventSink
from tenantops.infrastructure.pool.connection_pool import (
    ConnectBody, ConnectionPool, DisconnectBody, ProbeBody,
)
from tenantops.infrastructure.resilience.backoff import BackoffPolicy
from tenantops.infrastructure.resilience.error_classifier import ErrorClassifier
from tenantops.infrastructure.resilience.executor import OperationExecutor

logger = logging.getLogger(__name__)


class ResilienceContext:
    """Holds the wired executor, pool and orchestrator for one application."""

    def __init__(
        self,
        settings: ResilienceSettings,
        executor: OperationExecutor,
        pool: ConnectionPool,
        orchestrator: BatchOrchestrator,
    ):
        self.settings = settings
        self.executor = executor
        self.pool = pool
        self.orchestrator = orchestrator
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Disconnects every pooled connection. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        logger.info("Shutting down resilience context")
        self.pool.close()

    def describe(self) -> Dict[str, Any]:
        return {"settings": self.settings.to_dict(), "pool": self.pool.stats()}

    def __enter__(self) -> "ResilienceContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def create_context(
    connect: ConnectBody,
    probe: Optional[ProbeBody] = None,
    disconnect: Optional[DisconnectBody] = None,
    settings: Optional[ResilienceSettings] = None,
    event_sink: Optional[EventSink] = None,
    classifier: Optional[ErrorClassifier] = None,
    rng: Optional[random.Random] = None,
) -> ResilienceContext:
    """Creates and wires up the resilience components.

    Args:
        connect: Connect body handed to the pool.
        probe: Optional liveness probe for pooled sessions.
        disconnect: Optional session close body.
        settings: Settings to use; loaded from configuration when None.
        event_sink: Event sink shared by all components; defaults to a LoggingEventSink.
        classifier: Classifier override (e.g. with additional rules).
        rng: Random source for backoff jitter.

    Returns:
        A ResilienceContext the caller must close.
    """
    settings = settings or load_resilience_settings()
    sink = event_sink or LoggingEventSink()
    backoff = BackoffPolicy(
        base_delay=settings.base_delay_seconds,
        max_delay=settings.max_delay_seconds,
        rng=rng,
    )
    executor = OperationExecutor(
        classifier=classifier,
        backoff=backoff,
        event_sink=sink,
        max_retries=settings.max_retries,
        throttle_retry_mode=settings.throttle_retry_mode,
    )
    pool = ConnectionPool(
        executor,
        connect,
        probe=probe,
        disconnect=disconnect,
        max_connections=settings.max_connections,
        idle_timeout=settings.idle_timeout_seconds,
        connect_max_retries=settings.connect_max_retries,
        event_sink=sink,
    )
    orchestrator = BatchOrchestrator(
        executor,
        pool=pool,
        concurrency_limit=settings.batch_concurrency,
        continue_on_error=settings.continue_on_error,
        event_sink=sink,
    )
    logger.info("Resilience context initialized.")
    return ResilienceContext(settings, executor, pool, orchestrator)
