import json
import logging

from apolo.logging_config import JSONFormatter, ReadableFormatter, configure_logging


def _record(**extra):
    record = logging.LogRecord("apolo.state.sync", logging.ERROR, __file__, 10, "update_task failed", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_context_keys():
    entry = json.loads(JSONFormatter().format(_record(task_id="t1", operation="update_task")))
    assert entry["level"] == "ERROR"
    assert entry["logger"] == "apolo.state.sync"
    assert entry["message"] == "update_task failed"
    assert entry["task_id"] == "t1"
    assert entry["operation"] == "update_task"
    assert "project_id" not in entry


def test_readable_formatter_appends_context():
    line = ReadableFormatter().format(_record(project_id="p1"))
    assert "update_task failed" in line
    assert line.endswith("[project_id=p1]")


def test_configure_logging_replaces_handler():
    configure_logging("DEBUG", "json")
    logger = configure_logging("WARNING", "text")
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0].formatter, ReadableFormatter)
    assert logger.level == logging.WARNING
    configure_logging()
