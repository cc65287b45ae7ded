from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Sequence

from models.rule import FilterRule, KeywordCondition

MESSAGE_FIELDS = ("sender", "subject", "body")


class RulesEngine:
    """Evaluates a declarative keyword rule table in priority order."""

    def __init__(self, rules: Iterable[FilterRule]):
        # sorted() is stable, so rules of equal priority keep their table order
        self._rules: List[FilterRule] = sorted(rules, key=lambda r: r.priority, reverse=True)

    @property
    def rules(self) -> Sequence[FilterRule]:
        return tuple(self._rules)

    @classmethod
    def from_file(cls, rules_file: Path) -> "RulesEngine":
        if not rules_file.exists():
            raise FileNotFoundError(f"Missing rules file: {rules_file}")
        data = json.loads(rules_file.read_text(encoding="utf-8"))
        return cls(rule_from_dict(item) for item in data.get("rules", []))

    def first_match(self, sender: str = "", subject: str = "", body: str = "") -> Optional[FilterRule]:
        text = _lowered(sender, subject, body)
        for rule in self._rules:
            if _rule_matches(rule, text):
                return rule
        return None

    def match(self, sender: str = "", subject: str = "", body: str = "") -> List[FilterRule]:
        text = _lowered(sender, subject, body)
        return [rule for rule in self._rules if _rule_matches(rule, text)]


def rule_from_dict(item: Mapping) -> FilterRule:
    conditions = [
        KeywordCondition(fields=tuple(cond.get("fields", MESSAGE_FIELDS)), keywords=list(cond.get("keywords", [])))
        for cond in item.get("conditions", [])
    ]
    return FilterRule(
        name=item["name"],
        verdict=item["verdict"],
        conditions=conditions,
        mode=item.get("mode", "any"),
        priority=item.get("priority", 0),
        reason=item.get("reason"),
    )


def keyword_hits(keywords: Iterable[str], *texts: str) -> List[str]:
    """Return the keywords that occur (case-insensitively) in any of ``texts``."""

    lowered = [(text or "").lower() for text in texts]
    return [kw for kw in keywords if any(kw.lower() in text for text in lowered)]


def _lowered(sender: str, subject: str, body: str) -> Mapping[str, str]:
    return {
        "sender": (sender or "").lower(),
        "subject": (subject or "").lower(),
        "body": (body or "").lower(),
    }


def _condition_matches(condition: KeywordCondition, text: Mapping[str, str]) -> bool:
    keywords = condition.normalized_keywords()
    return any(kw in text.get(name, "") for name in condition.fields for kw in keywords)


def _rule_matches(rule: FilterRule, text: Mapping[str, str]) -> bool:
    if not rule.conditions:
        return False
    hits = (_condition_matches(cond, text) for cond in rule.conditions)
    return all(hits) if rule.mode == "all" else any(hits)
