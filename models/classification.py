from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Tuple

from utils.errors import ModelResponseError


class Category(str, Enum):
    IMPORTANT = "Important"
    PROMOTIONAL = "Promotional"
    SOCIAL = "Social"
    UPDATES = "Updates"
    SPAM = "Spam"
    NEWSLETTER = "Newsletter"

    @classmethod
    def parse(cls, value: Any) -> "Category":
        if not isinstance(value, str) or not value.strip():
            raise ModelResponseError("category is missing")
        lookup = {member.value.lower(): member for member in cls}
        try:
            return lookup[value.strip().lower()]
        except KeyError:
            raise ModelResponseError(f"Unknown category {value!r}") from None


class Priority(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

    @classmethod
    def parse(cls, value: Any) -> "Priority":
        if not isinstance(value, str) or not value.strip():
            raise ModelResponseError("priority is missing")
        lookup = {member.value.lower(): member for member in cls}
        try:
            return lookup[value.strip().lower()]
        except KeyError:
            raise ModelResponseError(f"Unknown priority {value!r}") from None


def clamp_confidence(value: float) -> int:
    return int(max(0, min(100, round(value))))


@dataclass(frozen=True, slots=True)
class ClassificationResult:
    """Outcome of classifying one message, either by the model or a fallback rule."""

    category: Category
    priority: Priority
    needs_reply: bool
    confidence: int
    analysis: str = ""
    suggested_actions: Tuple[str, ...] = field(default_factory=tuple)
    source: str = "ai"

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", clamp_confidence(self.confidence))

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], source: str = "ai") -> "ClassificationResult":
        """Validate a decoded model response.

        Category and priority must be present and belong to their closed
        enumerations; anything else raises :class:`ModelResponseError`.
        """

        if not isinstance(payload, Mapping):
            raise ModelResponseError("Model response is not a JSON object")
        category = Category.parse(payload.get("category"))
        priority = Priority.parse(payload.get("priority"))

        raw_confidence = payload.get("confidence", 50)
        if isinstance(raw_confidence, bool) or not isinstance(raw_confidence, (int, float)):
            raise ModelResponseError(f"confidence must be a number, got {raw_confidence!r}")

        actions = payload.get("suggestedActions") or payload.get("suggested_actions") or []
        if not isinstance(actions, list):
            actions = [actions]

        return cls(
            category=category,
            priority=priority,
            needs_reply=bool(payload.get("needsReply", payload.get("needs_reply", False))),
            confidence=raw_confidence,
            analysis=str(payload.get("analysis", "")),
            suggested_actions=tuple(str(action) for action in actions),
            source=source,
        )
