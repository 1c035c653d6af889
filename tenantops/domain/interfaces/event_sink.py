"""Interface for structured event sinks.

The core never performs its own file or console I/O; it hands every
domain event to an injected sink.
"""

import abc

from ..events.resilience_events import DomainEvent


class EventSink(abc.ABC):
    """Abstract Base Class for receiving domain events."""

    @abc.abstractmethod
    def emit(self, event: DomainEvent) -> None:
        """Publishes one event.

        Implementations must be thread-safe; events arrive from pool and
        batch worker threads concurrently.

        Args:
            event: The domain event to publish.
        """
        pass
