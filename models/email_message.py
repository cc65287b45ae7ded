from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Tuple


@dataclass(frozen=True, slots=True)
class EmailMessage:
    """Simplified, read-only representation of a Gmail message."""

    id: str
    thread_id: str | None
    subject: str
    body: str
    snippet: str = ""
    sender: str = ""
    recipient: str = ""
    message_id_header: str = ""
    labels: Tuple[str, ...] = field(default_factory=tuple)
    received_at: datetime | None = None

    @property
    def sender_name(self) -> str:
        name = self.sender.split("<")[0].strip().strip('"').strip("'")
        return name or "there"

    def age_days(self, now: datetime) -> float:
        if self.received_at is None:
            return 0.0
        received = self.received_at
        if received.tzinfo is None:
            received = received.replace(tzinfo=timezone.utc)
        return (now - received).total_seconds() / 86400
