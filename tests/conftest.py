"""Shared fakes and fixtures for tests."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Sequence

import pytest

from models.email_message import EmailMessage


class FakeClock:
    """Manual clock whose ``sleep`` advances time instead of blocking."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeModel:
    """Returns scripted responses in order; exception instances are raised."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.prompts: List[str] = []

    def generate(self, prompt, config):  # noqa: ARG002
        self.prompts.append(prompt)
        if not self.responses:
            raise RuntimeError("no scripted response left")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class FakeGmail:
    def __init__(self, messages: Sequence[EmailMessage] = ()):
        self.messages: Dict[str, EmailMessage] = {message.id: message for message in messages}
        self.label_ids: Dict[str, str] = {}
        self.modified: List[tuple] = []
        self.drafts: List[tuple] = []
        self.sent: List[tuple] = []
        self.trashed: List[str] = []
        self.queries: List[tuple] = []
        self.fail_list = False
        self.fail_get: set = set()
        self.fail_modify: set = set()
        self.fail_raw: set = set()
        self.fail_trash: set = set()

    def list_message_ids(self, query: str, max_results: int) -> List[str]:
        self.queries.append((query, max_results))
        if self.fail_list:
            raise RuntimeError("listing failed")
        return list(self.messages)[:max_results]

    def get_message(self, message_id: str) -> EmailMessage:
        if message_id in self.fail_get:
            raise RuntimeError(f"cannot fetch {message_id}")
        return self.messages[message_id]

    def get_raw_message(self, message_id: str) -> Dict:
        if message_id in self.fail_raw:
            raise RuntimeError(f"cannot export {message_id}")
        return {"id": message_id, "snippet": self.messages[message_id].snippet}

    def ensure_label(self, name: str) -> str:
        if name not in self.label_ids:
            self.label_ids[name] = f"Label_{len(self.label_ids) + 1}"
        return self.label_ids[name]

    def modify_labels(self, message_id: str, add=(), remove=()) -> Dict:
        if message_id in self.fail_modify:
            raise RuntimeError(f"cannot modify {message_id}")
        self.modified.append((message_id, list(add), list(remove)))
        return {}

    def create_draft(self, message: EmailMessage, body_text: str) -> str:
        self.drafts.append((message.id, body_text))
        return f"draft-{len(self.drafts)}"

    def send_reply(self, message: EmailMessage, body_text: str) -> str:
        self.sent.append((message.id, body_text))
        return f"sent-{len(self.sent)}"

    def trash_message(self, message_id: str) -> None:
        if message_id in self.fail_trash:
            raise RuntimeError(f"cannot trash {message_id}")
        self.trashed.append(message_id)

    def labels_added(self, message_id: str) -> List[str]:
        names = {label_id: name for name, label_id in self.label_ids.items()}
        return [names[label_id] for mid, add, _ in self.modified if mid == message_id for label_id in add]

    def labels_removed(self, message_id: str) -> List[str]:
        return [label for mid, _, remove in self.modified if mid == message_id for label in remove]


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def build_message(
    message_id: str = "m1",
    subject: str = "Hello",
    body: str = "Just checking in about next week.",
    sender: str = "Friend <friend@example.com>",
    **extra,
) -> EmailMessage:
    extra.setdefault("thread_id", f"t-{message_id}")
    extra.setdefault("recipient", "me@example.com")
    extra.setdefault("message_id_header", f"<{message_id}@mail.example.com>")
    extra.setdefault("received_at", NOW)
    return EmailMessage(id=message_id, subject=subject, body=body, sender=sender, **extra)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_message():
    return build_message


@pytest.fixture
def fake_model():
    return FakeModel


@pytest.fixture
def fake_gmail():
    return FakeGmail
