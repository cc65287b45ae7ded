from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

LOGGER = logging.getLogger(__name__)

WATERMARK_KEY = "watermark"
LAST_CLEANUP_KEY = "last_cleanup"


@dataclass(slots=True)
class ProcessedEmail:
    account: str
    message_id: str
    processed_at: datetime


class StateStore:
    """SQLite-backed triage state: processed message ids plus per-account timestamps."""

    def __init__(self, db_path: Path):
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path)

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS processed_emails (
                    account TEXT NOT NULL,
                    message_id TEXT NOT NULL,
                    processed_at TEXT NOT NULL,
                    PRIMARY KEY (account, message_id)
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_processed_account
                ON processed_emails(account)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS account_state (
                    account TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    PRIMARY KEY (account, key)
                )
                """
            )

    def is_processed(self, account: str, message_id: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM processed_emails WHERE account=? AND message_id=?",
                (account, message_id),
            ).fetchone()
        return row is not None

    def mark_processed(self, account: str, message_id: str) -> None:
        timestamp = datetime.now(timezone.utc).isoformat()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO processed_emails(account, message_id, processed_at)
                VALUES (?, ?, ?)
                """,
                (account, message_id, timestamp),
            )
        LOGGER.debug("Recorded %s for account %s", message_id, account)

    def recent_entries(self, account: str | None = None, limit: int = 10) -> list[ProcessedEmail]:
        query = "SELECT account, message_id, processed_at FROM processed_emails"
        params: tuple = ()
        if account is not None:
            query += " WHERE account=?"
            params = (account,)
        with self._connect() as conn:
            rows = conn.execute(f"{query} ORDER BY processed_at DESC LIMIT ?", (*params, limit)).fetchall()
        return [ProcessedEmail(row[0], row[1], datetime.fromisoformat(row[2])) for row in rows]

    def get_watermark(self, account: str) -> Optional[datetime]:
        return self._get_timestamp(account, WATERMARK_KEY)

    def set_watermark(self, account: str, when: datetime) -> None:
        self._set_timestamp(account, WATERMARK_KEY, when)

    def get_last_cleanup(self, account: str) -> Optional[datetime]:
        return self._get_timestamp(account, LAST_CLEANUP_KEY)

    def set_last_cleanup(self, account: str, when: datetime) -> None:
        self._set_timestamp(account, LAST_CLEANUP_KEY, when)

    def _get_timestamp(self, account: str, key: str) -> Optional[datetime]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM account_state WHERE account=? AND key=?",
                (account, key),
            ).fetchone()
        return datetime.fromisoformat(row[0]) if row else None

    def _set_timestamp(self, account: str, key: str, when: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO account_state(account, key, value) VALUES (?, ?, ?)",
                (account, key, when.isoformat()),
            )
        LOGGER.debug("Stored %s=%s for account %s", key, when.isoformat(), account)
