"""Tests for logging setup and the resource log adapter."""

import logging

from tabular_datastore.utils.logging import ResourceLogAdapter, get_logger, setup_logging


class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_writes_run_log(self, temp_dir):
        logger = setup_logging(temp_dir, verbose=False)
        get_logger("importers.csv").info("loaded people__1")

        log_files = list((temp_dir / "logs").glob("datastore_*.log"))
        assert len(log_files) == 1
        for handler in logger.handlers:
            handler.flush()
        assert "loaded people__1" in log_files[0].read_text(encoding="utf-8")

    def test_repeated_setup_does_not_duplicate_handlers(self, temp_dir):
        setup_logging(temp_dir)
        logger = setup_logging(temp_dir)

        assert len(logger.handlers) == 2

    def test_console_level(self, temp_dir):
        logger = setup_logging(temp_dir, verbose=False)
        levels = sorted(handler.level for handler in logger.handlers)

        assert levels == [logging.DEBUG, logging.INFO]


class TestResourceLogAdapter:
    """Tests for resource-prefixed messages."""

    def test_prefix(self):
        adapter = ResourceLogAdapter(get_logger("test"), "abc-123__2")
        msg, kwargs = adapter.process("Localizing", {})

        assert msg == "[RESOURCE abc-123__2] Localizing"
        assert kwargs == {}

    def test_child_logger_names(self):
        assert get_logger().name == "tabular_datastore"
        assert get_logger("worker").name == "tabular_datastore.worker"
