from __future__ import annotations

import logging
import time
from datetime import date
from typing import Callable, Optional

from models.classification import Category, ClassificationResult, Priority
from services.model_client import GenerationConfig, TextModel, extract_json, is_rate_limit_error
from services.rate_governor import RateGovernor
from utils.rules_engine import keyword_hits

LOGGER = logging.getLogger(__name__)

MAX_ATTEMPTS = 2
BODY_PREVIEW_CHARS = 800
CLASSIFY_CONFIG = GenerationConfig(temperature=0.7, top_p=0.85, top_k=40, max_output_tokens=512)

FALLBACK_CONFIDENCE = 30
QUOTA_SKIP_CONFIDENCE = 50

PROMPT_TEMPLATE = """Analyze this email quickly. Return JSON only.

FROM: {sender}
TO: {recipient}
SUBJECT: {subject}
CONTENT: {content}

Categories: Important, Promotional, Social, Updates, Newsletter, Spam
Priority: High, Medium, Low
NeedsReply: true ONLY for personal messages requiring responses

Reply Rules:
- TRUE: Job offers, business inquiries, personal messages, meeting requests
- FALSE: Newsletters, promotions, notifications, automated emails

JSON format:
{{
  "category": "category",
  "priority": "priority",
  "needsReply": false,
  "confidence": 90,
  "analysis": "brief reason",
  "suggestedActions": ["action"]
}}"""


class AIClassifier:
    """Classify messages with the remote model, degrading to keyword heuristics.

    ``classify`` never raises. The classifier keeps its own conservative daily
    ceiling and a minimum spacing between calls, independent of the shared
    :class:`RateGovernor`.
    """

    def __init__(
        self,
        model: TextModel,
        governor: Optional[RateGovernor] = None,
        daily_limit: int = 1000,
        min_call_spacing: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        today: Callable[[], date] = date.today,
    ):
        self._model = model
        self._governor = governor
        self._daily_limit = daily_limit
        self._min_call_spacing = min_call_spacing
        self._sleep = sleep
        self._clock = clock
        self._today = today
        self._daily_calls = 0
        self._last_reset = today().isoformat()
        self._last_call_time: Optional[float] = None

    @property
    def daily_calls(self) -> int:
        return self._daily_calls

    def classify(self, body: str, sender: str, recipient: str, subject: str) -> ClassificationResult:
        self._reset_daily_counter_if_needed()
        if self._daily_calls > self._daily_limit or (self._governor and self._governor.daily_exhausted()):
            LOGGER.warning("Skipping AI analysis to preserve quota")
            return ClassificationResult(
                category=Category.UPDATES,
                priority=Priority.MEDIUM,
                needs_reply=False,
                confidence=QUOTA_SKIP_CONFIDENCE,
                analysis="Analysis skipped to preserve daily quota",
                suggested_actions=("Mark as read",),
                source="quota",
            )

        prompt = build_prompt(body, sender, recipient, subject)
        last_error: Optional[BaseException] = None

        for attempt in range(1, MAX_ATTEMPTS + 1):
            self._respect_spacing()
            counted = False
            try:
                LOGGER.info("Model analysis (attempt %s/%s)...", attempt, MAX_ATTEMPTS)
                started = self._clock()
                text = self._model.generate(prompt, CLASSIFY_CONFIG)
                self._count_call()
                counted = True
                result = ClassificationResult.from_payload(extract_json(text))
                LOGGER.info(
                    "Email categorized: %s (%s priority), confidence %s%%, reply needed: %s [%.1fs]",
                    result.category.value,
                    result.priority.value,
                    result.confidence,
                    result.needs_reply,
                    self._clock() - started,
                )
                return result
            except Exception as exc:  # noqa: BLE001 - every failure degrades to the fallback
                last_error = exc
                if not counted:
                    self._count_call()
                LOGGER.error("Attempt %s failed: %s", attempt, exc)
                if attempt == MAX_ATTEMPTS:
                    break
                if is_rate_limit_error(exc):
                    LOGGER.info("Rate limit hit, retrying in %ss...", attempt * 2)
                    self._sleep(attempt * 2)
                else:
                    self._sleep(1)

        LOGGER.warning("AI analysis failed after %s attempts, using fallback", MAX_ATTEMPTS)
        return fallback_classification(sender, subject, last_error)

    def _respect_spacing(self) -> None:
        if self._last_call_time is None:
            return
        elapsed = self._clock() - self._last_call_time
        if elapsed < self._min_call_spacing:
            wait = self._min_call_spacing - elapsed
            LOGGER.debug("Rate limiting: waiting %.1fs...", wait)
            self._sleep(wait)

    def _count_call(self) -> None:
        self._last_call_time = self._clock()
        self._daily_calls += 1

    def _reset_daily_counter_if_needed(self) -> None:
        today = self._today().isoformat()
        if today != self._last_reset:
            self._daily_calls = 0
            self._last_reset = today
            LOGGER.info("Daily classifier usage counter reset")


def build_prompt(body: str, sender: str, recipient: str, subject: str) -> str:
    return PROMPT_TEMPLATE.format(
        sender=sender,
        recipient=recipient,
        subject=subject,
        content=(body or "")[:BODY_PREVIEW_CHARS],
    )


def fallback_priority(sender: str, subject: str) -> Priority:
    if keyword_hits(("urgent", "important", "interview", "job"), subject):
        return Priority.HIGH
    if keyword_hits(("noreply", "no-reply"), sender) or keyword_hits(("newsletter", "unsubscribe"), subject):
        return Priority.LOW
    return Priority.MEDIUM


def fallback_needs_reply(sender: str, subject: str) -> bool:
    if keyword_hits(("noreply", "no-reply", "automated", "system"), sender):
        return False
    if keyword_hits(("newsletter", "unsubscribe"), subject):
        return False
    return bool(keyword_hits(("interview", "job", "opportunity", "meeting"), subject))


def fallback_classification(sender: str, subject: str, error: Optional[BaseException] = None) -> ClassificationResult:
    return ClassificationResult(
        category=Category.UPDATES,
        priority=fallback_priority(sender, subject),
        needs_reply=fallback_needs_reply(sender, subject),
        confidence=FALLBACK_CONFIDENCE,
        analysis=f"Fallback analysis due to API error: {error or 'Unknown error'}",
        suggested_actions=("Review manually",),
        source="fallback",
    )
