import io
import json
import logging
import sys

import pytest

from pgjournal.config import ServiceConfig
from pgjournal.log import JsonFormatter, SimpleFormatter, configure_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler.get_name() == "pgjournal":
            root.removeHandler(handler)
    root.setLevel(level)


def make_record(msg="hello", level=logging.INFO, **extra):
    record = logging.makeLogRecord(
        {"name": "pgjournal.runner", "levelno": level, "levelname": logging.getLevelName(level), "msg": msg}
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_fields():
    line = JsonFormatter("billing", "2.1.0").format(make_record(migration="0000_a"))

    payload = json.loads(line)
    assert payload["level"] == "info"
    assert payload["message"] == "hello"
    assert payload["logger"] == "pgjournal.runner"
    assert payload["service"] == "billing"
    assert payload["version"] == "2.1.0"
    assert payload["migration"] == "0000_a"
    assert "timestamp" in payload
    assert "stack" not in payload


def test_json_formatter_includes_stack():
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = logging.LogRecord(
            "pgjournal", logging.ERROR, __file__, 1, "failed", None, exc_info=sys.exc_info()
        )

    payload = json.loads(JsonFormatter("svc", "1").format(record))
    assert "RuntimeError: boom" in payload["stack"]


def test_simple_formatter():
    line = SimpleFormatter("billing").format(make_record("Applied", level=logging.WARNING))

    assert line.startswith("[WARNING] Applied {")
    meta = json.loads(line[len("[WARNING] Applied "):])
    assert meta["service"] == "billing"


def test_simple_formatter_color():
    line = SimpleFormatter("svc", color=True).format(make_record(level=logging.ERROR))
    assert line.startswith("[\033[31mERROR\033[0m]")


def test_configure_logging_json_output():
    stream = io.StringIO()
    configure_logging(ServiceConfig(log_format="json", log_level="debug"), stream=stream)

    logging.getLogger("pgjournal.test").debug("visible")

    payload = json.loads(stream.getvalue().splitlines()[-1])
    assert payload["message"] == "visible"
    assert payload["level"] == "debug"


def test_configure_logging_respects_level():
    stream = io.StringIO()
    configure_logging(
        ServiceConfig(log_level="warn", log_format="simple"), stream=stream
    )

    logging.getLogger("pgjournal.test").info("hidden")
    logging.getLogger("pgjournal.test").warning("shown")

    output = stream.getvalue()
    assert "hidden" not in output
    assert "[WARNING] shown" in output


def test_configure_logging_replaces_previous_handler():
    first = configure_logging(ServiceConfig(), stream=io.StringIO())
    second = configure_logging(ServiceConfig(), stream=io.StringIO())

    root = logging.getLogger()
    assert first not in root.handlers
    assert second in root.handlers
    assert sum(1 for h in root.handlers if h.get_name() == "pgjournal") == 1
