"""Tests for the package logger setup."""

from __future__ import annotations

import logging

from bayesdrive.logging_config import LOGGER_NAME, setup_logging


def test_repeated_setup_does_not_stack_handlers(tmp_path):
    log_file = tmp_path / "run.log"
    setup_logging(log_file=str(log_file))
    logger = setup_logging(logging.DEBUG, log_file=str(log_file))
    try:
        assert logger.name == LOGGER_NAME
        assert len(logger.handlers) == 2
        logging.getLogger("bayesdrive.model.quap").info("fitted")
        for handler in logger.handlers:
            handler.flush()
        assert log_file.read_text().count("fitted") == 1
        assert logging.getLogger("matplotlib").level == logging.WARNING
    finally:
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()
