from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from models.rule import FilterRule, KeywordCondition
from services.ignore_store import IgnorePatternStore
from utils.rules_engine import RulesEngine, keyword_hits
from utils.settings import SmartFilteringSettings

LOGGER = logging.getLogger(__name__)

SPAM = "spam"
PROMOTIONAL = "promotional"
SOCIAL = "social"
NEWSLETTER = "newsletter"
LEGITIMATE = "legitimate"

# Overlaps with the pre-filter marketing/newsletter rules on purpose: this table
# only decides the hard spam exclusion, the pre-filter decides labels.
EMAIL_TYPE_RULES = (
    FilterRule(
        name="spam_indicators",
        verdict=SPAM,
        priority=40,
        conditions=[
            KeywordCondition(
                ("subject", "body"),
                [
                    "free money", "click here now", "urgent action required", "act now",
                    "congratulations you won", "you are a winner", "claim your prize",
                    "nigerian prince", "inheritance", "lottery winner",
                ],
            )
        ],
    ),
    FilterRule(
        name="promotional_indicators",
        verdict=PROMOTIONAL,
        priority=30,
        conditions=[
            KeywordCondition(
                ("subject", "body"),
                [
                    "unsubscribe", "sale", "discount", "limited time", "offer",
                    "deal", "coupon", "promo", "special offer", "save money",
                ],
            )
        ],
    ),
    FilterRule(
        name="social_indicators",
        verdict=SOCIAL,
        priority=20,
        conditions=[
            KeywordCondition(
                ("sender", "subject"),
                [
                    "facebook", "twitter", "instagram", "linkedin", "social",
                    "friend request", "tagged you", "mentioned you",
                ],
            )
        ],
    ),
    FilterRule(
        name="newsletter_indicators",
        verdict=NEWSLETTER,
        priority=10,
        conditions=[
            KeywordCondition(
                ("subject", "body"),
                [
                    "newsletter", "weekly update", "monthly digest", "blog post",
                    "article", "news", "digest", "roundup",
                ],
            )
        ],
    ),
)

SPAM_SUBJECT_PATTERNS = (
    "winner", "congratulations", "claim your", "urgent action",
    "final notice", "act now", "limited time", "expire",
)

DEFINITE_SPAM_CONTENT_PATTERNS = (
    "click here now", "free money", "nigerian prince",
    "you have won", "claim your prize", "inheritance fund",
)

_EMAIL_TYPE_ENGINE = RulesEngine(EMAIL_TYPE_RULES)


def classify_email_type(sender: str, subject: str, content: str) -> str:
    """Coarse keyword classification: spam, promotional, social, newsletter or legitimate."""

    rule = _EMAIL_TYPE_ENGINE.first_match(sender=sender, subject=subject, body=content)
    return rule.verdict if rule else LEGITIMATE


@dataclass(frozen=True, slots=True)
class SpamVerdict:
    is_spam: bool
    reason: str = ""
    email_type: Optional[str] = None

    def __bool__(self) -> bool:
        return self.is_spam


class SpamFilter:
    """Ignore-list and keyword spam check that runs before the pre-filter."""

    def __init__(self, ignore_store: IgnorePatternStore, settings: SmartFilteringSettings | None = None):
        self._ignore_store = ignore_store
        self._settings = settings or SmartFilteringSettings()

    def update_settings(self, settings: SmartFilteringSettings) -> None:
        self._settings = settings

    def should_ignore(self, sender: str, subject: str = "", content: str = "") -> SpamVerdict:
        pattern = self._ignore_store.matches(sender)
        if pattern:
            return SpamVerdict(True, f"Sender matches ignore pattern '{pattern}'")

        if not self._settings.enable_enhanced_spam_detection:
            return SpamVerdict(False)

        if subject and content:
            email_type = classify_email_type(sender, subject, content)
            if email_type == SPAM:
                LOGGER.info("Classified as SPAM by keyword classifier")
                return SpamVerdict(True, "Keyword classifier verdict: spam", email_type)

        if subject and self._settings.enable_subject_analysis:
            hits = keyword_hits(SPAM_SUBJECT_PATTERNS, subject)
            if hits:
                return SpamVerdict(True, f"Spam subject pattern '{hits[0]}'")

        if content and self._settings.enable_content_analysis:
            hits = keyword_hits(DEFINITE_SPAM_CONTENT_PATTERNS, content)
            if hits:
                return SpamVerdict(True, f"Spam content pattern '{hits[0]}'")

        return SpamVerdict(False)
