"""Tests for onlinenow.logging_config."""

import logging

import pytest

from onlinenow.logging_config import configure_logging, parse_level


@pytest.fixture
def restore_logging():
    """Put the root logger back the way pytest set it up."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestParseLevel:
    def test_known_names(self):
        assert parse_level("debug") == logging.DEBUG
        assert parse_level(" WARNING ") == logging.WARNING

    def test_unknown_or_empty(self):
        assert parse_level("verbose") is None
        assert parse_level("") is None
        assert parse_level(None) is None


class TestConfigureLogging:
    def test_default_is_info(self, restore_logging):
        assert configure_logging({}) == logging.INFO
        assert logging.getLogger().level == logging.INFO

    def test_level_from_environment(self, restore_logging):
        assert configure_logging({"ONLINENOW_LOG_LEVEL": "DEBUG"}) == logging.DEBUG
        # urllib3 connection chatter stays out of DEBUG traces
        assert logging.getLogger("urllib3").level == logging.INFO

    def test_unknown_level_falls_back_to_info(self, restore_logging):
        assert configure_logging({"ONLINENOW_LOG_LEVEL": "chatty"}) == logging.INFO

    def test_log_file(self, restore_logging, tmp_path):
        path = tmp_path / "onlinenow.log"

        configure_logging({"ONLINENOW_LOG_FILE": str(path)})
        logging.getLogger("onlinenow.test").info("probe finished")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "probe finished" in path.read_text(encoding="utf-8")

    def test_unwritable_log_file_keeps_stderr(self, restore_logging, tmp_path):
        missing = tmp_path / "missing-dir" / "onlinenow.log"

        configure_logging({"ONLINENOW_LOG_FILE": str(missing)})

        assert len(logging.getLogger().handlers) == 1
