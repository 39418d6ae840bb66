"""
Unit tests for logging setup.
"""

import logging

import json_log_formatter
import pytest

from catalog.lrm_server.config import ObservabilityConfig, ServerConfig
from catalog.lrm_server.main import setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers = handlers
    root.setLevel(level)


def test_json_format(restore_root_logger):
    setup_logging(ServerConfig(observability=ObservabilityConfig(log_level="debug")))
    assert restore_root_logger.level == logging.DEBUG
    (handler,) = restore_root_logger.handlers
    assert isinstance(handler.formatter, json_log_formatter.JSONFormatter)


def test_text_format(restore_root_logger):
    setup_logging(ServerConfig(observability=ObservabilityConfig(log_format="text")))
    (handler,) = restore_root_logger.handlers
    assert not isinstance(handler.formatter, json_log_formatter.JSONFormatter)
    assert restore_root_logger.level == logging.INFO
