"""EventSink implementations backed by the standard logging module.

Each domain event becomes one log record. The event fields are attached
to the record via ``extra`` so structured handlers (JSON formatters, log
shippers) can pick them up without parsing the message.
"""

import logging
from typing import Dict, Optional, Type

from tenantops.domain.events.resilience_events import (
    AttemptFailed, DomainEvent, FailureSuppressed, OperationCancelled,
    OperationFailed, RetryScheduled, ConnectionEvicted,
)
from tenantops.domain.interfaces.event_sink import EventSink

DEFAULT_EVENT_LOGGER = "tenantops.events"

# Events that deserve more attention than the sink's default level
DEFAULT_LEVEL_OVERRIDES: Dict[Type[DomainEvent], int] = {
    AttemptFailed: logging.WARNING,
    RetryScheduled: logging.INFO,
    OperationFailed: logging.ERROR,
    FailureSuppressed: logging.WARNING,
    OperationCancelled: logging.WARNING,
    ConnectionEvicted: logging.INFO,
}


class LoggingEventSink(EventSink):
    """Writes domain events to a logger. Thread-safe (logging handlers lock internally)."""

    def __init__(
        self,
        logger_name: str = DEFAULT_EVENT_LOGGER,
        level: int = logging.DEBUG,
        level_overrides: Optional[Dict[Type[DomainEvent], int]] = None,
    ):
        self._logger = logging.getLogger(logger_name)
        self.level = level
        self.level_overrides = dict(DEFAULT_LEVEL_OVERRIDES if level_overrides is None else level_overrides)

    def level_for(self, event: DomainEvent) -> int:
        return self.level_overrides.get(type(event), self.level)

    def emit(self, event: DomainEvent) -> None:
        data = event.to_dict()
        fields = " ".join(f"{k}={v}" for k, v in data.items() if k not in ("event", "timestamp") and v is not None)
        self._logger.log(
            self.level_for(event),
            f"EVENT {event.name}: {fields}",
            extra={"event": event.name, "event_data": data},
        )
