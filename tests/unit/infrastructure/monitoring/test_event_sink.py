import logging

import pytest

from tenantops.domain.events.resilience_events import (
    AttemptFailed, ConnectionReused, OperationFailed, RetryScheduled,
)
from tenantops.infrastructure.monitoring.event_sink import LoggingEventSink
from tenantops.infrastructure.monitoring.logger_setup import parse_log_level, setup_logging


@pytest.fixture
def sink():
    return LoggingEventSink()


def test_event_is_logged_with_structured_extra(sink, caplog):
    caplog.set_level(logging.DEBUG, logger="tenantops.events")
    event = RetryScheduled(operation="connect", identity="contoso@graph", attempt=1, category="Timeout", delay_seconds=1.5)

    sink.emit(event)

    [record] = caplog.records
    assert record.name == "tenantops.events"
    assert record.levelno == logging.INFO
    assert record.getMessage().startswith("EVENT RetryScheduled:")
    assert "identity=contoso@graph" in record.getMessage()
    assert record.event == "RetryScheduled"
    assert record.event_data["delay_seconds"] == 1.5
    assert record.event_data["event"] == "RetryScheduled"


@pytest.mark.parametrize("event, level", [
    (AttemptFailed("op", None, 1, "Timeout", True, "timed out"), logging.WARNING),
    (OperationFailed("op", None, 1, "NotFound", "Medium", "missing", 0.1), logging.ERROR),
    (ConnectionReused("contoso@graph", 1), logging.DEBUG),
])
def test_default_levels(sink, event, level):
    assert sink.level_for(event) == level


def test_level_overrides_can_be_replaced(caplog):
    sink = LoggingEventSink(logger_name="custom.events", level=logging.INFO, level_overrides={})
    caplog.set_level(logging.DEBUG, logger="custom.events")
    sink.emit(AttemptFailed("op", "t", 2, "Network", True, "reset"))
    assert caplog.records[0].levelno == logging.INFO


def test_none_fields_are_left_out_of_message(sink, caplog):
    caplog.set_level(logging.DEBUG, logger="tenantops.events")
    sink.emit(AttemptFailed("op", None, 1, "General", True, "boom"))
    assert "identity=" not in caplog.records[0].getMessage()


@pytest.mark.parametrize("value, expected", [
    ("debug", logging.DEBUG), ("INFO", logging.INFO), (logging.ERROR, logging.ERROR),
    ("nonsense", logging.WARNING), (None, logging.WARNING),
])
def test_parse_log_level(value, expected):
    assert parse_log_level(value, logging.WARNING) == expected


def test_setup_logging_configures_root_and_file(tmp_path):
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    log_file = tmp_path / "tenantops.log"
    try:
        setup_logging(log_level=logging.DEBUG, log_file=str(log_file), event_level=logging.WARNING)
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 2
        assert logging.getLogger("tenantops.events").level == logging.WARNING
        logging.getLogger("tenantops.test").info("hello file")
        for handler in root.handlers:
            handler.flush()
        assert "hello file" in log_file.read_text(encoding="utf-8")
    finally:
        for handler in root.handlers[:]:
            root.removeHandler(handler)
            handler.close()
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)
        logging.getLogger("tenantops.events").setLevel(logging.NOTSET)
