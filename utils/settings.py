from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar

LOGGER = logging.getLogger(__name__)

SAFETY_MODES = ("ultra-conservative", "conservative", "normal")


@dataclass(slots=True)
class RateLimitSettings:
    max_requests_per_minute: int = 15
    daily_request_limit: int = 1500
    check_interval_minutes: int = 5
    delay_between_emails_seconds: float = 5.0


@dataclass(slots=True)
class EmailProcessingSettings:
    max_emails_per_check: int = 10
    only_create_drafts_for_important: bool = True
    auto_label_emails: bool = True
    move_spam_to_spam_folder: bool = True
    check_since_last_run: bool = False


@dataclass(slots=True)
class AIAnalysisSettings:
    minimum_confidence_threshold: int = 70
    requires_reply_categories: List[str] = field(default_factory=lambda: ["Important"])
    ignored_categories: List[str] = field(default_factory=lambda: ["Spam", "Promotional"])
    classifier_daily_limit: int = 1000
    min_call_spacing_seconds: float = 3.0


@dataclass(slots=True)
class LabelSettings:
    important: str = "📧 Important"
    promotional: str = "📧 Promotional"
    social: str = "📧 Social"
    updates: str = "📧 Updates"
    newsletter: str = "📧 Newsletter"
    spam: str = "🗑️ Spam"
    review_needed: str = "🔧 Review Needed"
    pre_filtered: str = "📂 Pre-filtered"

    def for_category(self, category: str) -> str:
        value = getattr(self, category.lower(), None)
        return value if isinstance(value, str) else f"📧 {category}"


@dataclass(slots=True)
class SmartFilteringSettings:
    enable_enhanced_spam_detection: bool = True
    enable_content_analysis: bool = True
    enable_subject_analysis: bool = True


@dataclass(slots=True)
class GarbageCleanupSettings:
    enabled: bool = False
    confidence_threshold: int = 85
    max_emails_to_analyze: int = 20
    only_delete_older_than_days: int = 30
    require_multiple_indicators: bool = True
    safety_mode: str = "ultra-conservative"
    dry_run_mode: bool = True
    backup_before_delete: bool = True
    schedule_cleanup: bool = False
    cleanup_interval_hours: int = 24
    delay_between_messages_seconds: float = 0.1


@dataclass(slots=True)
class DraftSettings:
    use_ai_drafts: bool = False
    sign_off: str = "Best regards"


@dataclass(slots=True)
class Settings:
    rate_limiting: RateLimitSettings = field(default_factory=RateLimitSettings)
    email_processing: EmailProcessingSettings = field(default_factory=EmailProcessingSettings)
    ai_analysis: AIAnalysisSettings = field(default_factory=AIAnalysisSettings)
    labels: LabelSettings = field(default_factory=LabelSettings)
    smart_filtering: SmartFilteringSettings = field(default_factory=SmartFilteringSettings)
    garbage_cleanup: GarbageCleanupSettings = field(default_factory=GarbageCleanupSettings)
    drafts: DraftSettings = field(default_factory=DraftSettings)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Settings":
        sections: Dict[str, Any] = {}
        for section in fields(cls):
            section_type = section.default_factory  # type: ignore[misc]
            sections[section.name] = _build_section(section_type, data.get(section.name) or {})
        return cls(**sections)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


T = TypeVar("T")


def _build_section(section_type: Type[T], raw: Mapping[str, Any]) -> T:
    if not isinstance(raw, Mapping):
        LOGGER.warning("Settings section %s is not an object; using defaults", section_type.__name__)
        return section_type()
    known = {f.name for f in fields(section_type)}
    unknown = set(raw) - known
    if unknown:
        LOGGER.debug("Ignoring unknown %s keys: %s", section_type.__name__, sorted(unknown))
    return section_type(**{key: value for key, value in raw.items() if key in known})


class SettingsStore:
    """Loads the JSON settings document once and caches it until refreshed."""

    def __init__(self, settings_file: Path):
        self._settings_file = settings_file
        self._cached: Optional[Settings] = None

    @property
    def path(self) -> Path:
        return self._settings_file

    def load(self) -> Settings:
        if self._cached is not None:
            return self._cached
        try:
            data = json.loads(self._settings_file.read_text(encoding="utf-8"))
            self._cached = Settings.from_dict(data)
        except (OSError, json.JSONDecodeError, TypeError, AttributeError) as exc:
            LOGGER.error("Error loading settings from %s, using defaults: %s", self._settings_file, exc)
            self._cached = Settings()
        return self._cached

    def refresh(self) -> None:
        self._cached = None

    def save(self, settings: Settings) -> None:
        self._settings_file.parent.mkdir(parents=True, exist_ok=True)
        self._settings_file.write_text(
            json.dumps(settings.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8"
        )
        LOGGER.info("Settings saved to %s", self._settings_file)
        self.refresh()
