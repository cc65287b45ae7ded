from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ReplyDecision:
    needs_reply: bool
    reason: str
    confidence: int


@dataclass(frozen=True, slots=True)
class DraftResult:
    """Outcome of the smart-draft step for one message."""

    should_create_draft: bool
    reason: str
    confidence: int
    draft_content: str | None = None
    draft_id: str | None = None
