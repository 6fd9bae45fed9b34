"""Tests for application logging setup."""
import logging

import pytest

from cyclecoach.logging_config import setup_logging


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    root.handlers = [h for h in saved_handlers if not isinstance(h, logging.FileHandler)]
    yield root
    for handler in root.handlers:
        if handler not in saved_handlers:
            handler.close()
    root.handlers = saved_handlers
    root.setLevel(saved_level)


def test_repeated_setup_does_not_stack_handlers(root_logger):
    setup_logging()
    count = len(root_logger.handlers)

    setup_logging(logging.DEBUG)

    assert len(root_logger.handlers) == count
    assert sum(isinstance(h, logging.FileHandler) for h in root_logger.handlers) == 1
    assert root_logger.level == logging.DEBUG


def test_setup_leaves_no_marker_on_the_root_logger(root_logger):
    setup_logging()
    assert not any(name.startswith("_cyclecoach") for name in vars(root_logger))
