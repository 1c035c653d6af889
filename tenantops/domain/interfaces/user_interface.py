"""Interface for presenting resilience results to a user.

Defines the contract for displaying classifications, backoff schedules,
settings and batch reports, allowing different UI implementations
(e.g., console, web dashboard).
"""

import abc
from typing import Any, Dict, List

from ..models.batch import BatchReport
from ..models.classification import ErrorClassification


class UserInterface(abc.ABC):
    """Abstract Base Class for user-facing output."""

    @abc.abstractmethod
    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message to the user."""
        pass

    @abc.abstractmethod
    def display_info(self, info_message: str, **kwargs: Any) -> None:
        """Displays an informational message to the user."""
        pass

    @abc.abstractmethod
    def display_classification(self, message: str, classification: ErrorClassification) -> None:
        """Displays the classification derived from an error message.

        Args:
            message: The raw error text that was classified.
            classification: The resulting verdict.
        """
        pass

    @abc.abstractmethod
    def display_backoff_schedule(self, category: str, delays: List[float]) -> None:
        """Displays the delay before each retry for a category.

        Args:
            category: Name of the error category the schedule applies to.
            delays: Delay in seconds after attempt 1, 2, ...
        """
        pass

    @abc.abstractmethod
    def display_settings(self, settings: Dict[str, Any]) -> None:
        """Displays effective configuration values."""
        pass

    @abc.abstractmethod
    def display_batch_report(self, report: BatchReport) -> None:
        """Displays per-item outcomes and aggregate counters of a batch run."""
        pass
