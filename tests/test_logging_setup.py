"""Tests for the JSONL logging sink."""

import json
import logging

import pytest

from psmodule_import.logging_setup import JsonlHandler
from psmodule_import.logging_setup import init_json_logging


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    level = root.level
    yield root
    for handler in list(root.handlers):
        if isinstance(handler, JsonlHandler):
            root.removeHandler(handler)
    root.setLevel(level)


def test_records_are_json_lines(tmp_path, root_logger):
    log_path = tmp_path / "logs" / "out.jsonl"
    init_json_logging(str(log_path), "debug")

    logging.getLogger("psmodule_import.test").info("hello %s", "world", extra={"module_name": "Foo"})

    line = json.loads(log_path.read_text().splitlines()[-1])
    assert line["message"] == "hello world"
    assert line["lvl"] == "INFO"
    assert line["logger"] == "psmodule_import.test"
    assert line["schema"]["name"] == "psmodule.log"
    assert line["module_name"] == "Foo"
    assert "pathname" not in line


def test_reinitializing_replaces_handler(tmp_path, root_logger):
    init_json_logging(str(tmp_path / "a.jsonl"))
    init_json_logging(str(tmp_path / "b.jsonl"))

    handlers = [h for h in root_logger.handlers if isinstance(h, JsonlHandler)]
    assert len(handlers) == 1
    assert handlers[0].path == tmp_path / "b.jsonl"


def test_environment_configures_path_and_level(tmp_path, monkeypatch, root_logger):
    monkeypatch.setenv("PSMODULE_LOG_PATH", str(tmp_path / "env.jsonl"))
    monkeypatch.setenv("PSMODULE_LOG_LEVEL", "warning")

    init_json_logging()

    assert root_logger.level == logging.WARNING
    handler = next(h for h in root_logger.handlers if isinstance(h, JsonlHandler))
    assert handler.path == tmp_path / "env.jsonl"


def test_module_tag_becomes_event(tmp_path, root_logger):
    log_path = tmp_path / "out.jsonl"
    init_json_logging(str(log_path), "debug")

    logging.getLogger("psmodule_import.module_resolution.resolver").debug("[module:resolve] Foo -> not found")

    line = json.loads(log_path.read_text().splitlines()[-1])
    assert line["event"] == "module.resolve"
    assert line["message"] == "Foo -> not found"


def test_exception_is_summarized(tmp_path, root_logger):
    log_path = tmp_path / "out.jsonl"
    init_json_logging(str(log_path))

    try:
        raise ValueError("bad manifest")
    except ValueError:
        logging.getLogger("psmodule_import.test").exception("Import failed")

    line = json.loads(log_path.read_text().splitlines()[-1])
    assert line["message"] == "Import failed"
    assert line["error"] == "ValueError: bad manifest"


def test_http_request_logging_is_quieted(tmp_path, root_logger, monkeypatch):
    monkeypatch.setattr(logging.getLogger("httpx"), "level", logging.NOTSET)

    init_json_logging(str(tmp_path / "out.jsonl"), "info")

    assert logging.getLogger("httpx").level == logging.WARNING
