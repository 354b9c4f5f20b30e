"""
Tests for the shared logging setup.
"""

import logging

from api.logging_config import PACKAGE_LOGGERS, logger, setup_logging


class TestSetupLogging:

    def test_module_loggers_reach_publisher_handlers(self):
        for package in PACKAGE_LOGGERS:
            package_logger = logging.getLogger(package)
            assert set(logger.handlers) <= set(package_logger.handlers)

    def test_error_file_receives_module_errors(self, tmp_path, monkeypatch):
        monkeypatch.setattr("api.logging_config.LOG_DIR", tmp_path)
        named = setup_logging("publisher_test", packages=("publisher_test_pkg",))
        module_logger = logging.getLogger("publisher_test_pkg.worker")

        module_logger.error("worker exploded")
        for handler in named.handlers:
            handler.flush()

        assert "worker exploded" in (tmp_path / "publisher_test_errors.log").read_text()

    def test_setup_is_idempotent(self):
        before = list(logger.handlers)
        assert setup_logging() is logger
        assert logger.handlers == before
