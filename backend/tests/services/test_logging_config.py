import json
import logging

from backend.app.core.logging_config import JSONFormatter, RunIdFilter, configure_logging, run_id_var


def _record(message: str) -> logging.LogRecord:
    return logging.LogRecord("backend.app.services.pipeline", logging.WARNING, __file__, 1, message, (), None)


def test_json_formatter_includes_run_id():
    token = run_id_var.set("run-123")
    try:
        entry = json.loads(JSONFormatter().format(_record("VIN decode failed")))
    finally:
        run_id_var.reset(token)
    assert entry["run_id"] == "run-123"
    assert entry["level"] == "WARNING"
    assert entry["message"] == "VIN decode failed"


def test_json_formatter_carries_run_fields():
    record = _record("Store failed")
    record.stage = "store"
    record.vin = "JTMRFREV5JJ123456"
    entry = json.loads(JSONFormatter().format(record))
    assert entry["stage"] == "store"
    assert entry["vin"] == "JTMRFREV5JJ123456"
    assert "rule" not in entry
    assert entry["run_id"] is None


def test_run_id_filter_defaults_to_dash():
    record = _record("hello")
    assert RunIdFilter().filter(record)
    assert record.run_id == "-"
    assert record.vin_tag == ""


def test_configure_logging_replaces_handlers():
    root = logging.getLogger()
    saved = root.handlers[:], root.level
    try:
        configure_logging("debug", "text")
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert not isinstance(root.handlers[0].formatter, JSONFormatter)
        configure_logging("info", "json")
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
    finally:
        root.handlers[:] = saved[0]
        root.setLevel(saved[1])
