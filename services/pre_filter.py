from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from models.classification import Category
from models.rule import FilterRule, KeywordCondition
from utils.errors import InvalidRuleError, ModelResponseError
from utils.rules_engine import RulesEngine

LOGGER = logging.getLogger(__name__)

SENDER = ("sender",)
SUBJECT = ("subject",)
BODY = ("body",)

# First match wins; order mirrors the priorities below.
DEFAULT_PRE_FILTER_RULES = (
    FilterRule(
        name="automated_sender",
        verdict=Category.UPDATES.value,
        reason="Automated sender",
        priority=50,
        conditions=[KeywordCondition(SENDER, ["noreply", "no-reply", "donotreply", "automated"])],
    ),
    FilterRule(
        name="marketing",
        verdict=Category.PROMOTIONAL.value,
        reason="Marketing/Newsletter",
        priority=40,
        conditions=[
            KeywordCondition(BODY, ["unsubscribe", "marketing@"]),
            KeywordCondition(SUBJECT, ["newsletter", "promotion", "deal", "sale"]),
        ],
    ),
    FilterRule(
        name="social_network",
        verdict=Category.SOCIAL.value,
        reason="Social media notification",
        priority=30,
        conditions=[KeywordCondition(SENDER, ["facebook", "twitter", "linkedin", "instagram"])],
    ),
    FilterRule(
        name="social_notification",
        verdict=Category.SOCIAL.value,
        reason="Social media notification",
        priority=30,
        mode="all",
        conditions=[KeywordCondition(SENDER, ["notification"]), KeywordCondition(SENDER, ["social"])],
    ),
    FilterRule(
        name="social_like",
        verdict=Category.SOCIAL.value,
        reason="Social media notification",
        priority=30,
        mode="all",
        conditions=[KeywordCondition(SENDER, ["notification"]), KeywordCondition(SUBJECT, ["liked"])],
    ),
    FilterRule(
        name="shipping",
        verdict=Category.UPDATES.value,
        reason="Shipping/Order confirmation",
        priority=20,
        mode="all",
        conditions=[
            KeywordCondition(SUBJECT, ["order", "shipped", "delivery", "tracking"]),
            KeywordCondition(SENDER, ["amazon", "fedex", "ups", "shipping"]),
        ],
    ),
    FilterRule(
        name="system_maintenance",
        verdict=Category.UPDATES.value,
        reason="System notification",
        priority=10,
        conditions=[KeywordCondition(SUBJECT, ["backup", "server", "system", "maintenance"])],
    ),
    FilterRule(
        name="monitoring_alert",
        verdict=Category.UPDATES.value,
        reason="System notification",
        priority=10,
        mode="all",
        conditions=[KeywordCondition(SUBJECT, ["alert"]), KeywordCondition(SENDER, ["monitoring"])],
    ),
)


@dataclass(frozen=True, slots=True)
class PreFilterResult:
    skip: bool
    reason: str
    category: Optional[Category] = None


class PreFilter:
    """Heuristic pass that avoids a model call when the category is obvious."""

    def __init__(self, rules: Iterable[FilterRule] = DEFAULT_PRE_FILTER_RULES, engine: RulesEngine | None = None):
        self._engine = engine or RulesEngine(rules)
        self._categories = {id(rule): _verdict_category(rule) for rule in self._engine.rules}

    def evaluate(self, sender: str, subject: str, body: str) -> PreFilterResult:
        rule = self._engine.first_match(sender=sender, subject=subject, body=body)
        if rule is None:
            return PreFilterResult(skip=False, reason="Requires AI analysis")
        LOGGER.debug("Pre-filter rule %s matched", rule.name)
        return PreFilterResult(skip=True, reason=rule.description, category=self._categories[id(rule)])


def _verdict_category(rule: FilterRule) -> Category:
    try:
        return Category.parse(rule.verdict)
    except ModelResponseError as exc:
        raise InvalidRuleError(f"Rule {rule.name!r} has an invalid verdict {rule.verdict!r}") from exc
