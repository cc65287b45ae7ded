from __future__ import annotations

import logging

import pytest

from utils.logger import LOG_FILE_NAME, configure_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_records_are_tagged_with_account(tmp_path, restore_root_logger):
    log_path = configure_logging(tmp_path / "logs", "debug", account="work")

    logging.getLogger("services.triage_service").info("Cycle summary: 3 processed")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert log_path == tmp_path / "logs" / LOG_FILE_NAME
    line = log_path.read_text(encoding="utf-8").splitlines()[-1]
    assert "| INFO | work | services.triage_service | Cycle summary: 3 processed" in line


def test_client_libraries_are_quieted(tmp_path, restore_root_logger):
    configure_logging(tmp_path, "DEBUG")
    assert logging.getLogger("openai").level == logging.WARNING
    assert logging.getLogger("googleapiclient.discovery_cache").level == logging.WARNING
