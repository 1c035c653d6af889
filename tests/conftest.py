import random

import pytest
from typer.testing import CliRunner
from unittest.mock import MagicMock

from tenantops.domain.interfaces.event_sink import EventSink
from tenantops.infrastructure.config import settings as settings_module
from tenantops.infrastructure.resilience.backoff import BackoffPolicy
from tenantops.infrastructure.resilience.executor import OperationExecutor


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture
def rng():
    """Seeded random source so jitter is reproducible."""
    return random.Random(1234)


@pytest.fixture
def mock_sink():
    """EventSink double that records every emitted event."""
    return MagicMock(spec=EventSink)


@pytest.fixture
def fast_backoff(rng):
    """Backoff with millisecond delays so retry tests stay quick."""
    return BackoffPolicy(base_delay=0.001, max_delay=0.01, rng=rng)


class FixedJitter(random.Random):
    """Random source whose jitter factor is always the same value."""

    def __init__(self, factor=1.0):
        super().__init__()
        self.factor = factor

    def uniform(self, a, b):
        return self.factor


@pytest.fixture
def make_backoff():
    """Factory for backoff policies with a fixed jitter factor."""
    def _make_backoff(base_delay=0.001, factor=1.0, max_delay=300.0):
        return BackoffPolicy(base_delay=base_delay, max_delay=max_delay, rng=FixedJitter(factor))
    return _make_backoff


@pytest.fixture
def executor(fast_backoff, mock_sink):
    return OperationExecutor(backoff=fast_backoff, event_sink=mock_sink, max_retries=3)


@pytest.fixture
def events_of(mock_sink):
    """Returns the events of one type passed to the mocked sink, in emission order."""
    def _events_of(event_name: str) -> list:
        return [c.args[0] for c in mock_sink.emit.call_args_list if type(c.args[0]).__name__ == event_name]
    return _events_of


@pytest.fixture(autouse=True)
def isolated_configuration(monkeypatch):
    """Keeps the user's config file, .env and TENANTOPS_* variables out of tests."""
    for key in settings_module.SETTING_KEYS.values():
        monkeypatch.delenv(settings_module.env_var_name(key), raising=False)
    monkeypatch.delenv("TENANTOPS_LOGGING_LEVEL", raising=False)
    monkeypatch.delenv("TENANTOPS_LOGGING_FILE", raising=False)
    monkeypatch.setattr(settings_module, "_config", {})
    monkeypatch.setattr(settings_module, "_loaded", True)
    settings_module.clear_test_config()
    yield
    settings_module.clear_test_config()


@pytest.fixture
def mock_console_display(mocker):
    """Mocks the ConsoleDisplay used by the CLI to capture output easily."""
    from tenantops import main
    from tenantops.infrastructure.cli.display import ConsoleDisplay

    mock = mocker.MagicMock(spec=ConsoleDisplay)
    mocker.patch.object(main, "_dependencies", {})
    mocker.patch.object(main, "ConsoleDisplay", return_value=mock)
    mocker.patch.object(main, "setup_logging")
    return mock
