from __future__ import annotations

import logging
from typing import Any, Optional

from models.classification import Category, Priority
from models.draft import DraftResult, ReplyDecision
from models.email_message import EmailMessage
from services.model_client import GenerationConfig, TextModel
from services.rate_governor import RateGovernor
from utils.rules_engine import keyword_hits
from utils.settings import DraftSettings

LOGGER = logging.getLogger(__name__)

AUTOMATED_SENDERS = (
    "noreply", "no-reply", "donotreply", "do-not-reply",
    "automated", "system", "support@", "admin@",
    "notifications@", "updates@", "news@",
    "amazon.com", "paypal.com", "google.com",
    "facebook.com", "twitter.com", "linkedin.com",
    "github.com", "stackoverflow.com",
)

NO_REPLY_SUBJECTS = (
    "confirmation", "receipt", "order", "shipped", "delivered",
    "newsletter", "digest", "update", "notification",
    "password", "reset", "verify", "activated",
    "welcome", "thank you for", "subscription",
)

NON_REPLY_CATEGORIES = (Category.PROMOTIONAL, Category.NEWSLETTER, Category.UPDATES, Category.SPAM)

DRAFT_BODY_PREVIEW_CHARS = 800
DRAFT_CONFIG = GenerationConfig(temperature=0.7, top_p=0.8, top_k=40, max_output_tokens=300)

TEMPLATE_BODY = (
    'Thank you for your email regarding "{subject}".\n\n'
    "I appreciate you reaching out and will review this carefully. "
    "I'll get back to you with a proper response shortly.\n\n"
    "{sign_off},\n{sender_name}"
)

AI_DRAFT_PROMPT = """Create a professional, contextual reply draft for this email:

FROM: {sender}
SUBJECT: {subject}
CONTENT: {content}
CATEGORY: {category}
PRIORITY: {priority}

Create a response that:
1. Acknowledges their message appropriately
2. Is professional but warm in tone
3. Addresses any questions or requests mentioned
4. Is concise (2-4 sentences max)
5. Ends with appropriate next steps or closing

Do not include:
- Email headers (To:, From:, Subject:)
- Salutation (Dear/Hi will be added automatically)
- Signature (will be added automatically)

Just provide the main body content of the reply."""


def should_reply(message: EmailMessage, category: Category, priority: Priority) -> ReplyDecision:
    """Decide whether a message warrants a human reply, cheapest checks first."""

    if keyword_hits(AUTOMATED_SENDERS, message.sender):
        return ReplyDecision(False, "Automated sender - no reply needed", 95)
    if keyword_hits(NO_REPLY_SUBJECTS, message.subject):
        return ReplyDecision(False, "Automated notification - no reply needed", 90)
    if category in NON_REPLY_CATEGORIES:
        return ReplyDecision(False, f"Category '{category.value}' typically doesn't require replies", 85)
    if category is Category.IMPORTANT or priority is Priority.HIGH:
        return ReplyDecision(True, "Important message that warrants a response", 85)
    return ReplyDecision(True, "Personal message that may warrant a response", 70)


class ReplyService:
    """Drafts replies for messages that need one and creates them in Gmail."""

    def __init__(
        self,
        gmail: Any,
        settings: DraftSettings,
        sender_name: str,
        model: Optional[TextModel] = None,
        governor: Optional[RateGovernor] = None,
        dry_run: bool = False,
    ):
        self._gmail = gmail
        self._settings = settings
        self._sender_name = sender_name
        self._model = model
        self._governor = governor
        self._dry_run = dry_run

    def update_settings(self, settings: DraftSettings) -> None:
        self._settings = settings

    def generate_draft(self, message: EmailMessage, category: Category, priority: Priority) -> Optional[str]:
        try:
            if self._settings.use_ai_drafts and self._model is not None:
                if self._governor is not None and self._governor.should_skip_non_essential():
                    LOGGER.info("Quota running low; using template draft for %s", message.id)
                else:
                    return self._ai_draft(message, category, priority)
            return self._template_draft(message)
        except Exception as exc:  # noqa: BLE001 - a failed draft only skips drafting
            LOGGER.error("Error generating draft content for %s: %s", message.id, exc)
            return None

    def create_smart_draft(self, message: EmailMessage, category: Category, priority: Priority) -> DraftResult:
        try:
            decision = should_reply(message, category, priority)
            if not decision.needs_reply:
                LOGGER.info("No draft for %r: %s", message.subject[:50], decision.reason)
                return DraftResult(False, decision.reason, decision.confidence)

            content = self.generate_draft(message, category, priority)
            if not content:
                return DraftResult(False, "Failed to generate appropriate draft content", 50)

            if self._dry_run:
                LOGGER.info("[dry-run] Would create draft for %r", message.subject[:50])
                return DraftResult(True, "Draft generated (dry run)", decision.confidence, content)

            draft_id = self._gmail.create_draft(message, content)
            return DraftResult(
                True,
                "Created smart draft for email requiring response",
                decision.confidence,
                draft_content=content,
                draft_id=draft_id,
            )
        except Exception as exc:  # noqa: BLE001 - drafting never fails the message
            LOGGER.error("Error in create_smart_draft for %s: %s", message.id, exc)
            return DraftResult(False, f"Error occurred while creating draft: {exc}", 0)

    def _template_draft(self, message: EmailMessage) -> str:
        return TEMPLATE_BODY.format(
            subject=message.subject,
            sign_off=self._settings.sign_off,
            sender_name=self._sender_name,
        )

    def _ai_draft(self, message: EmailMessage, category: Category, priority: Priority) -> str:
        prompt = AI_DRAFT_PROMPT.format(
            sender=message.sender,
            subject=message.subject,
            content=(message.body or "")[:DRAFT_BODY_PREVIEW_CHARS],
            category=category.value,
            priority=priority.value,
        )
        body = self._model.generate(prompt, DRAFT_CONFIG).strip()
        return f"Hi {message.sender_name},\n\n{body}\n\n{self._settings.sign_off},\n{self._sender_name}"
