from __future__ import annotations

import logging
import logging.config
from pathlib import Path

LOG_FILE_NAME = "triage_assistant.log"
QUIET_LOGGERS = ("googleapiclient.discovery_cache", "httpx", "openai")


class AccountFilter(logging.Filter):
    """Stamps every record with the mailbox account being triaged."""

    def __init__(self, account: str = "-"):
        super().__init__()
        self.account = account

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "account"):
            record.account = self.account
        return True


def configure_logging(
    log_dir: Path,
    level: str = "INFO",
    account: str = "-",
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
) -> Path:
    """Send triage logs to the console and a rotating file under ``log_dir``.

    Both handlers tag records with ``account`` so that logs from several
    mailboxes sharing one log directory can be told apart. Chatty client
    libraries are held at WARNING.
    """

    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_FILE_NAME

    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "account": {"()": AccountFilter, "account": account},
        },
        "formatters": {
            "standard": {
                "format": "%(asctime)s | %(levelname)s | %(account)s | %(name)s | %(message)s",
            },
            "console": {
                "format": "%(levelname)s | %(account)s | %(message)s",
            },
        },
        "handlers": {
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "formatter": "standard",
                "filters": ["account"],
                "filename": str(log_path),
                "maxBytes": max_bytes,
                "backupCount": backup_count,
                "encoding": "utf-8",
            },
            "stdout": {
                "class": "logging.StreamHandler",
                "formatter": "console",
                "filters": ["account"],
            },
        },
        "loggers": {name: {"level": "WARNING"} for name in QUIET_LOGGERS},
        "root": {
            "handlers": ["file", "stdout"],
            "level": level.upper(),
        },
    }

    logging.config.dictConfig(config)
    logging.getLogger(__name__).debug("Logging configured at %s for account %s", level, account)
    return log_path
