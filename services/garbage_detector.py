from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from models.email_message import EmailMessage
from models.garbage import (
    GarbageAnalysis,
    GarbageCategory,
    GarbageCleanupResult,
    Recommendation,
    SafetyCheck,
)
from services.model_client import GenerationConfig, TextModel, extract_json
from services.rate_governor import RateGovernor
from utils.errors import ModelResponseError
from utils.rules_engine import keyword_hits
from utils.settings import GarbageCleanupSettings

LOGGER = logging.getLogger(__name__)

CLEANUP_QUERY = "in:inbox OR in:spam"
AI_CONFIRMATION_THRESHOLD = 70
AI_BODY_PREVIEW_CHARS = 500
PROTECTED_IN_REPORT = 5
GARBAGE_CONFIG = GenerationConfig(temperature=0.2, top_p=0.8, top_k=40, max_output_tokens=512)

IMPORTANT_PATTERNS: Dict[str, Tuple[str, ...]] = {
    "work_business": (
        "meeting", "deadline", "project", "urgent", "important", "invoice",
        "receipt", "confirmation", "appointment", "contract", "proposal",
        "report", "presentation", "client", "customer", "vendor", "supplier",
    ),
    "financial": (
        "bank", "payment", "transaction", "statement", "bill", "invoice",
        "receipt", "tax", "financial", "account", "balance", "credit",
        "debit", "transfer", "subscription", "renewal",
    ),
    "personal": (
        "family", "friend", "personal", "birthday", "anniversary",
        "wedding", "graduation", "celebration", "invitation",
    ),
    "security_system": (
        "password reset", "security alert", "account verification",
        "two-factor", "2fa", "login attempt", "suspicious activity",
        "verification code", "activation", "confirmation code",
    ),
    "health_legal": (
        "doctor", "appointment", "medical", "health", "prescription",
        "legal", "court", "attorney", "lawyer", "insurance",
    ),
}

TRUSTED_DOMAINS = (
    "bank", "paypal", "amazon", "google", "microsoft", "apple",
    "government", "irs", "official", "support", "security",
    "stripe", "visa", "mastercard", "amex", "discover",
)

OBVIOUS_SPAM_PHRASES = (
    "viagra", "cialis", "lottery winner", "congratulations you have won",
    "nigerian prince", "inheritance claim", "tax refund pending",
    "click here to claim", "you are the winner", "claim your prize now",
    "free money", "make money fast", "work from home scam",
)

DISPOSABLE_DOMAINS = (
    "tempmail", "guerrillamail", "10minutemail", "mailinator",
    "throwaway", "temp-mail", "discard.email",
)

OLD_PROMO_PATTERNS = ("unsubscribe", "promotional", "marketing email")

SPAM_PHRASE_SCORE = 25
DISPOSABLE_DOMAIN_SCORE = 30
OLD_PROMO_SCORE = 20
EMPTY_MESSAGE_SCORE = 25

SAFETY_OVERRIDES = {
    "business_detected": SafetyCheck.FAILED_BUSINESS_DETECTED,
    "important_detected": SafetyCheck.FAILED_IMPORTANT_DETECTED,
}

AI_PROMPT_TEMPLATE = """CRITICAL SAFETY INSTRUCTION: You are analyzing an email for potential deletion. Be EXTREMELY CONSERVATIVE.
When in doubt, ALWAYS recommend KEEP. Only recommend deletion for obvious spam/garbage.

NEVER recommend deletion if the email contains:
- Work/business communications (meetings, deadlines, projects)
- Financial information (invoices, receipts, payments, banking)
- Personal communications from real people
- System notifications (password resets, security alerts, verifications)
- Appointment confirmations or important dates
- Educational content or courses
- Legal or government communications

Only consider for deletion if it's clearly:
- Obvious spam (viagra, lottery scams, inheritance scams)
- Completely empty or meaningless emails
- Emails from known temporary/fake domains
- Very old promotional emails with zero value

Email to analyze:
Subject: {subject}
From: {sender}
Body (first {preview} chars): {body}

Respond in JSON format:
{{
  "isGarbage": boolean,
  "confidence": number (0-100),
  "reasons": ["specific reason"],
  "category": "obvious_spam" | "promotional_old" | "important" | "safe",
  "recommendation": "delete" | "keep",
  "safetyOverride": "none" | "important_detected" | "business_detected"
}}"""


class GarbageDetector:
    """Two-layer garbage detection with an importance veto in front of every deletion.

    The pattern layer scores cheap signals. Only a confident pattern verdict is
    sent to the model for confirmation, and the model may veto but never force
    a deletion. Deletion moves messages to the trash and is skipped entirely in
    dry-run mode, which is on when either the settings or the caller ask for it.
    """

    def __init__(
        self,
        settings: GarbageCleanupSettings,
        gmail: Any,
        model: Optional[TextModel] = None,
        governor: Optional[RateGovernor] = None,
        backup_dir: Path = Path("email_backups"),
        dry_run: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._settings = settings
        self._gmail = gmail
        self._model = model
        self._governor = governor
        self._backup_dir = backup_dir
        self._global_dry_run = dry_run
        self._sleep = sleep
        self._now = now

    @property
    def dry_run(self) -> bool:
        return self._global_dry_run or self._settings.dry_run_mode

    def update_settings(self, settings: GarbageCleanupSettings) -> None:
        self._settings = settings

    def analyze(self, message: EmailMessage) -> GarbageAnalysis:
        pattern = self.detect_patterns(message)
        if pattern.vetoed:
            return pattern
        if not pattern.is_garbage:
            return pattern
        if pattern.confidence < AI_CONFIRMATION_THRESHOLD:
            LOGGER.info("Pattern verdict for %s below confirmation threshold; flagging for review", message.id)
            return _review(pattern, "Pattern confidence too low for deletion")
        if self._model is None:
            return _review(pattern, "AI confirmation unavailable")
        if self._governor is not None and self._governor.should_skip_non_essential():
            return _review(pattern, "AI confirmation skipped to preserve quota")

        confirmation = self._confirm_with_model(message)
        if confirmation.vetoed:
            return confirmation
        if not confirmation.is_garbage:
            return _review(pattern, "AI did not confirm garbage verdict", *confirmation.reasons)

        reasons = list(dict.fromkeys([*pattern.reasons, *confirmation.reasons]))
        return GarbageAnalysis(
            is_garbage=True,
            confidence=max(pattern.confidence, confirmation.confidence),
            reasons=reasons,
            category=confirmation.category,
            recommendation=Recommendation.DELETE,
            safety_check=SafetyCheck.PASSED,
        )

    def important_match(self, subject: str, sender: str, body: str) -> Optional[str]:
        for family, patterns in IMPORTANT_PATTERNS.items():
            hit = keyword_hits(patterns, subject, sender, body)
            if hit:
                LOGGER.info("Message marked as important (%s): %s", family, hit[0])
                return f"{family}: {hit[0]}"
        hit = keyword_hits(TRUSTED_DOMAINS, sender)
        if hit:
            LOGGER.info("Message marked as important (trusted domain): %s", hit[0])
            return f"trusted domain: {hit[0]}"
        return None

    def detect_patterns(self, message: EmailMessage) -> GarbageAnalysis:
        subject, sender, body = message.subject or "", message.sender or "", message.body or ""
        if self.important_match(subject, sender, body):
            return GarbageAnalysis(
                is_garbage=False,
                confidence=0,
                reasons=["Detected as important email"],
                category=GarbageCategory.IMPORTANT,
                recommendation=Recommendation.KEEP,
                safety_check=SafetyCheck.FAILED_IMPORTANT_DETECTED,
            )

        score = 0
        reasons: List[str] = []
        category = GarbageCategory.SAFE

        spam_hits = keyword_hits(OBVIOUS_SPAM_PHRASES, subject, body)
        if len(spam_hits) >= 2:
            score += SPAM_PHRASE_SCORE
            reasons.append(f"Multiple obvious spam patterns detected ({len(spam_hits)})")
            category = GarbageCategory.OBVIOUS_SPAM

        if keyword_hits(DISPOSABLE_DOMAINS, sender):
            score += DISPOSABLE_DOMAIN_SCORE
            reasons.append("Suspicious temporary email domain")
            category = GarbageCategory.SUSPICIOUS_DOMAIN

        age = message.age_days(self._now())
        if age > self._settings.only_delete_older_than_days:
            if keyword_hits(OLD_PROMO_PATTERNS, body) and len(body.strip()) < 200:
                score += OLD_PROMO_SCORE
                reasons.append(f"Old promotional email ({int(age)} days) with minimal content")
                if category is GarbageCategory.SAFE:
                    category = GarbageCategory.PROMOTIONAL_OLD

        if len(body.strip()) < 10 and len(subject.strip()) < 5:
            score += EMPTY_MESSAGE_SCORE
            reasons.append("Extremely short/empty email")

        needed = 2 if self._settings.require_multiple_indicators else 1
        is_garbage = score >= self._settings.confidence_threshold and len(reasons) >= needed
        return GarbageAnalysis(
            is_garbage=is_garbage,
            confidence=min(score, 100),
            reasons=reasons,
            category=category if is_garbage else GarbageCategory.SAFE,
            recommendation=Recommendation.DELETE if is_garbage else Recommendation.KEEP,
            safety_check=SafetyCheck.PASSED,
        )

    def run_garbage_cleanup(self) -> GarbageCleanupResult:
        dry_run = self.dry_run
        if not self._settings.enabled:
            return GarbageCleanupResult(dry_run=dry_run, report="Garbage cleanup is disabled")

        LOGGER.info("Starting garbage email cleanup (dry run: %s)", dry_run)
        result = GarbageCleanupResult(dry_run=dry_run)
        analyzed: List[Tuple[EmailMessage, GarbageAnalysis]] = []

        try:
            message_ids = self._gmail.list_message_ids(CLEANUP_QUERY, self._settings.max_emails_to_analyze)
        except Exception as exc:  # noqa: BLE001 - a failed listing ends this cleanup only
            LOGGER.error("Cleanup listing failed: %s", exc)
            result.errors.append(f"Cleanup failed: {exc}")
            result.report = generate_cleanup_report(analyzed, dry_run)
            return result

        for message_id in message_ids:
            try:
                message = self._gmail.get_message(message_id)
                analysis = self.analyze(message)
            except Exception as exc:  # noqa: BLE001 - one bad message never stops the cleanup
                LOGGER.error("Failed to analyze message %s: %s", message_id, exc)
                result.errors.append(f"Failed to analyze message {message_id}: {exc}")
                continue
            analyzed.append((message, analysis))
            result.total_analyzed += 1
            if analysis.vetoed:
                result.skipped_important += 1
            elif analysis.deletable:
                result.marked_for_deletion += 1
            self._sleep(self._settings.delay_between_messages_seconds)

        result.report = generate_cleanup_report(analyzed, dry_run)

        if dry_run:
            LOGGER.info("Dry run: %s message(s) would be moved to trash", result.marked_for_deletion)
            return result

        for message, analysis in analyzed:
            if not analysis.deletable:
                continue
            if self._settings.backup_before_delete and not self.backup_message(message.id):
                result.errors.append(f"Failed to backup {message.id}, skipping deletion")
                continue
            try:
                self._gmail.trash_message(message.id)
            except Exception as exc:  # noqa: BLE001 - deletion failures are reported, not retried
                LOGGER.error("Failed to delete %s: %s", message.id, exc)
                result.errors.append(f"Failed to delete {message.id}: {exc}")
                continue
            result.actually_deleted += 1

        LOGGER.info(
            "Garbage cleanup completed: %s analyzed, %s deleted, %s protected, %s error(s)",
            result.total_analyzed,
            result.actually_deleted,
            result.skipped_important,
            len(result.errors),
        )
        return result

    def backup_message(self, message_id: str) -> bool:
        try:
            raw = self._gmail.get_raw_message(message_id)
            self._backup_dir.mkdir(parents=True, exist_ok=True)
            stamp = int(self._now().timestamp() * 1000)
            backup_file = self._backup_dir / f"{message_id}_{stamp}.json"
            backup_file.write_text(json.dumps(raw, indent=2, ensure_ascii=False), encoding="utf-8")
        except Exception as exc:  # noqa: BLE001 - a missing backup blocks the deletion
            LOGGER.error("Failed to backup email %s: %s", message_id, exc)
            return False
        LOGGER.info("Email backup created: %s", backup_file)
        return True

    def _confirm_with_model(self, message: EmailMessage) -> GarbageAnalysis:
        prompt = AI_PROMPT_TEMPLATE.format(
            subject=message.subject,
            sender=message.sender,
            preview=AI_BODY_PREVIEW_CHARS,
            body=(message.body or "")[:AI_BODY_PREVIEW_CHARS],
        )
        try:
            payload = extract_json(self._model.generate(prompt, GARBAGE_CONFIG))
            return parse_ai_verdict(payload)
        except Exception as exc:  # noqa: BLE001 - any model failure defaults to keep
            LOGGER.error("AI garbage analysis failed: %s", exc)
            return GarbageAnalysis(
                is_garbage=False,
                confidence=0,
                reasons=["AI analysis failed - defaulting to keep for safety"],
                category=GarbageCategory.SAFE,
                recommendation=Recommendation.KEEP,
                safety_check=SafetyCheck.FAILED_IMPORTANT_DETECTED,
            )


def parse_ai_verdict(payload: Any) -> GarbageAnalysis:
    if not isinstance(payload, dict):
        raise ModelResponseError("Garbage verdict is not a JSON object")
    confidence = payload.get("confidence", 0)
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise ModelResponseError(f"Invalid confidence {confidence!r}")
    reasons = [str(reason) for reason in payload.get("reasons") or []]
    try:
        category = GarbageCategory(str(payload.get("category", "safe")).lower())
    except ValueError:
        category = GarbageCategory.SAFE

    override = str(payload.get("safetyOverride", "none")).lower()
    if override != "none":
        reasons.append("AI safety override triggered")
        return GarbageAnalysis(
            is_garbage=False,
            confidence=round(confidence),
            reasons=reasons,
            category=category,
            recommendation=Recommendation.KEEP,
            safety_check=SAFETY_OVERRIDES.get(override, SafetyCheck.FAILED_IMPORTANT_DETECTED),
        )

    is_garbage = payload.get("isGarbage") is True
    return GarbageAnalysis(
        is_garbage=is_garbage,
        confidence=round(confidence),
        reasons=reasons,
        category=category,
        recommendation=Recommendation.DELETE if is_garbage else Recommendation.KEEP,
        safety_check=SafetyCheck.PASSED,
    )


def _review(pattern: GarbageAnalysis, *reasons: str) -> GarbageAnalysis:
    return GarbageAnalysis(
        is_garbage=False,
        confidence=pattern.confidence,
        reasons=[*pattern.reasons, *reasons],
        category=pattern.category,
        recommendation=Recommendation.REVIEW,
        safety_check=SafetyCheck.PASSED,
    )


def generate_cleanup_report(results: Sequence[Tuple[EmailMessage, GarbageAnalysis]], dry_run: bool) -> str:
    garbage = [(message, analysis) for message, analysis in results if analysis.is_garbage]
    protected = [message for message, analysis in results if analysis.vetoed]

    lines = [
        "GARBAGE EMAIL CLEANUP REPORT",
        "=" * 50,
        "",
        "Summary:",
        f"- Total emails analyzed: {len(results)}",
        f"- Marked as garbage: {len(garbage)}",
        f"- Protected as important: {len(protected)}",
        f"- Dry run mode: {'YES' if dry_run else 'NO'}",
        "",
    ]
    if garbage:
        lines.append("Emails marked for deletion:")
        for index, (message, analysis) in enumerate(garbage, start=1):
            lines.append(f"{index}. Subject: {(message.subject or 'No Subject')[:50]}")
            lines.append(f"   From: {message.sender or 'Unknown'}")
            lines.append(f"   Confidence: {analysis.confidence}%")
            lines.append(f"   Reasons: {', '.join(analysis.reasons)}")
            lines.append("")
    if protected:
        lines.append("Important emails protected:")
        for index, message in enumerate(protected[:PROTECTED_IN_REPORT], start=1):
            lines.append(f"{index}. {(message.subject or 'No Subject')[:60]}")
        if len(protected) > PROTECTED_IN_REPORT:
            lines.append(f"... and {len(protected) - PROTECTED_IN_REPORT} more")
    return "\n".join(lines)
