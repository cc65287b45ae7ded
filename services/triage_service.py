from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional, Sequence

from models.classification import ClassificationResult
from models.email_message import EmailMessage
from models.garbage import GarbageCleanupResult
from models.run_statistics import RunStatistics
from services.ai_classifier import AIClassifier
from services.garbage_detector import GarbageDetector
from services.persistence_service import StateStore
from services.pre_filter import PreFilter
from services.reply_service import ReplyService
from services.spam_filter import SpamFilter
from services.statistics_service import StatisticsService
from utils.settings import Settings, SettingsStore

LOGGER = logging.getLogger(__name__)

UNREAD = "UNREAD"
INBOX = "INBOX"


class TriageService:
    """Drives one polling cycle: fetch, spam check, pre-filter, classify, label, draft, cleanup.

    Errors are contained per message. A message that fails is labeled for
    manual review and the cycle moves on. In dry-run mode every Gmail mutation
    is logged instead of executed and no state is persisted.
    """

    def __init__(
        self,
        account: str,
        gmail: Any,
        settings_store: SettingsStore,
        state_store: StateStore,
        stats_service: StatisticsService,
        spam_filter: SpamFilter,
        pre_filter: PreFilter,
        classifier: AIClassifier,
        reply_service: ReplyService,
        garbage_detector: Optional[GarbageDetector] = None,
        dry_run: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._account = account
        self._gmail = gmail
        self._settings_store = settings_store
        self._state = state_store
        self._stats_service = stats_service
        self._spam_filter = spam_filter
        self._pre_filter = pre_filter
        self._classifier = classifier
        self._reply_service = reply_service
        self._garbage_detector = garbage_detector
        self._dry_run = dry_run
        self._sleep = sleep
        self._now = now
        self.stats = RunStatistics()

    def build_query(self, settings: Settings) -> str:
        query = "is:unread"
        if settings.email_processing.check_since_last_run:
            watermark = self._state.get_watermark(self._account)
            if watermark is not None:
                query += f" after:{int(watermark.timestamp())}"
        return query

    def process_cycle(self) -> RunStatistics:
        settings = self._settings_store.load()
        self._spam_filter.update_settings(settings.smart_filtering)
        self._reply_service.update_settings(settings.drafts)
        self.stats.reset()
        cycle_started = self._now()
        query = self.build_query(settings)

        try:
            message_ids = self._gmail.list_message_ids(query, settings.email_processing.max_emails_per_check)
        except Exception as exc:  # noqa: BLE001 - the next cycle starts fresh
            LOGGER.error("Failed to list messages for %s: %s", self._account, exc)
            return self.stats

        if not message_ids:
            LOGGER.info("No new emails to process")
        fetched = 0
        for message_id in message_ids:
            if self._state.is_processed(self._account, message_id):
                LOGGER.debug("Skipping already processed message %s", message_id)
                continue
            if fetched:
                self._sleep(settings.rate_limiting.delay_between_emails_seconds)
            fetched += 1
            self._process_message(message_id, settings)

        if not self._dry_run:
            self._state.set_watermark(self._account, cycle_started)
        self._stats_service.record_cycle(self._account, self.stats)
        self._log_summary()
        self.run_scheduled_cleanup(settings)
        return self.stats

    def run_scheduled_cleanup(self, settings: Settings) -> Optional[GarbageCleanupResult]:
        cleanup = settings.garbage_cleanup
        if self._garbage_detector is None or not cleanup.enabled:
            return None
        self._garbage_detector.update_settings(cleanup)
        now = self._now()
        if cleanup.schedule_cleanup:
            last_run = self._state.get_last_cleanup(self._account)
            if last_run is not None and now - last_run < timedelta(hours=cleanup.cleanup_interval_hours):
                LOGGER.debug("Garbage cleanup not due yet (last run %s)", last_run.isoformat())
                return None
        try:
            result = self._garbage_detector.run_garbage_cleanup()
        except Exception as exc:  # noqa: BLE001 - cleanup never aborts the cycle
            LOGGER.error("Garbage cleanup failed: %s", exc)
            return None
        LOGGER.info("Garbage cleanup report:\n%s", result.report)
        for error in result.errors:
            LOGGER.warning("Cleanup error: %s", error)
        self._stats_service.record_cleanup(self._account, result.actually_deleted, result.skipped_important)
        if not self._dry_run:
            self._state.set_last_cleanup(self._account, now)
        return result

    def _process_message(self, message_id: str, settings: Settings) -> None:
        try:
            message = self._gmail.get_message(message_id)
            self.stats.total_processed += 1
            self._triage(message, settings)
            if not self._dry_run:
                self._state.mark_processed(self._account, message_id)
        except Exception as exc:  # noqa: BLE001 - one bad message never stops the cycle
            self.stats.errors += 1
            LOGGER.error("Error processing message %s: %s", message_id, exc)
            if self._flag_for_review(message_id, settings) and not self._dry_run:
                self._state.mark_processed(self._account, message_id)

    def _triage(self, message: EmailMessage, settings: Settings) -> None:
        labels = settings.labels
        LOGGER.info("Processing %r from %s", message.subject[:60], message.sender)

        verdict = self._spam_filter.should_ignore(message.sender, message.subject, message.body)
        if verdict.is_spam:
            self.stats.spam_filtered += 1
            LOGGER.info("Spam filtered: %s", verdict.reason)
            remove = [UNREAD, INBOX] if settings.email_processing.move_spam_to_spam_folder else [UNREAD]
            self._apply_labels(message.id, [labels.spam], remove)
            return

        if not (message.body or "").strip():
            LOGGER.info("Skipping message %s with empty body", message.id)
            return

        pre = self._pre_filter.evaluate(message.sender, message.subject, message.body)
        if pre.skip and pre.category is not None:
            self.stats.pre_filtered += 1
            self.stats.categories[pre.category.value] += 1
            LOGGER.info("Pre-filtered as %s (%s); model call saved", pre.category.value, pre.reason)
            names = [labels.for_category(pre.category.value), labels.pre_filtered]
            self._apply_labels(message.id, self._category_labels(names, settings), [UNREAD])
            return

        result = self._classifier.classify(message.body, message.sender, message.recipient, message.subject)
        self.stats.ai_analyzed += 1
        self.stats.categories[result.category.value] += 1
        names = self._category_labels([labels.for_category(result.category.value)], settings)
        if result.confidence < settings.ai_analysis.minimum_confidence_threshold:
            LOGGER.info("Low confidence (%s%%); flagging for review", result.confidence)
            names.append(labels.review_needed)
        self._apply_labels(message.id, names, [UNREAD])

        if self._wants_draft(result, settings):
            draft = self._reply_service.create_smart_draft(message, result.category, result.priority)
            if draft.should_create_draft:
                self.stats.drafts_created += 1
            else:
                self.stats.drafts_skipped += 1
            LOGGER.info("Draft decision: %s (confidence %s%%)", draft.reason, draft.confidence)

    def _wants_draft(self, result: ClassificationResult, settings: Settings) -> bool:
        analysis = settings.ai_analysis
        if result.category.value in analysis.ignored_categories:
            return False
        if not settings.email_processing.only_create_drafts_for_important:
            return True
        return result.needs_reply or result.category.value in analysis.requires_reply_categories

    @staticmethod
    def _category_labels(names: Iterable[str], settings: Settings) -> list[str]:
        return list(names) if settings.email_processing.auto_label_emails else []

    def _apply_labels(self, message_id: str, names: Sequence[str], remove: Sequence[str]) -> None:
        unique = list(dict.fromkeys(names))
        if self._dry_run:
            LOGGER.info("[dry-run] Would label %s with %s and remove %s", message_id, unique, list(remove))
            return
        label_ids = [self._gmail.ensure_label(name) for name in unique]
        self._gmail.modify_labels(message_id, add=label_ids, remove=remove)

    def _flag_for_review(self, message_id: str, settings: Settings) -> bool:
        """Label a failed message for manual review and take it out of the unread queue."""

        try:
            self._apply_labels(message_id, [settings.labels.review_needed], [UNREAD])
        except Exception as exc:  # noqa: BLE001 - the first failure is already counted
            LOGGER.error("Could not flag message %s for review: %s", message_id, exc)
            return False
        return True

    def _log_summary(self) -> None:
        stats = self.stats
        LOGGER.info(
            "Cycle summary: %s processed, %s pre-filtered, %s AI analyzed, %s spam filtered, "
            "%s drafts created, %s skipped, %s error(s), %s model call(s) saved",
            stats.total_processed,
            stats.pre_filtered,
            stats.ai_analyzed,
            stats.spam_filtered,
            stats.drafts_created,
            stats.drafts_skipped,
            stats.errors,
            stats.api_calls_saved,
        )
