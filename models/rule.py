from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple


@dataclass(slots=True)
class KeywordCondition:
    """Matches when any keyword occurs in any of the listed message fields."""

    fields: Tuple[str, ...]
    keywords: List[str]

    def normalized_keywords(self) -> List[str]:
        return [kw.lower() for kw in self.keywords]


@dataclass(slots=True)
class FilterRule:
    """Keyword-based rule mapping message text to a verdict.

    ``mode="any"`` fires when any condition matches, ``mode="all"`` only when
    every condition does. Higher ``priority`` rules are evaluated first.
    """

    name: str
    verdict: str
    conditions: List[KeywordCondition]
    mode: str = "any"
    priority: int = 0
    reason: Optional[str] = None

    @property
    def description(self) -> str:
        return self.reason or self.name
