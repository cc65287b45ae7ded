from __future__ import annotations

import json

from services.ignore_store import IgnorePatternStore
from services.spam_filter import SpamFilter, classify_email_type
from utils.settings import SmartFilteringSettings


def _filter(tmp_path, patterns=(), **settings) -> SpamFilter:
    store = IgnorePatternStore(tmp_path / "ignore.json")
    if patterns:
        store.add(patterns)
    return SpamFilter(store, SmartFilteringSettings(**settings))


def test_ignore_list_match_is_case_insensitive(tmp_path):
    spam_filter = _filter(tmp_path, ["noreply@glassdoor.com"])
    verdict = spam_filter.should_ignore("Glassdoor <NoReply@Glassdoor.com>", "Jobs for you", "New roles")
    assert verdict.is_spam is True
    assert "noreply@glassdoor.com" in verdict.reason


def test_keyword_classifier_spam_verdict(tmp_path):
    verdict = _filter(tmp_path).should_ignore("x@example.com", "Hello", "Claim your inheritance today")
    assert verdict
    assert verdict.email_type == "spam"


def test_promotional_type_is_not_excluded(tmp_path):
    assert classify_email_type("shop@example.com", "Summer offer", "20% discount") == "promotional"
    assert not _filter(tmp_path).should_ignore("shop@example.com", "Summer offer", "20% discount")


def test_subject_patterns_respect_setting(tmp_path):
    args = ("x@example.com", "Final notice for your account", "Please read")
    assert _filter(tmp_path).should_ignore(*args).is_spam is True
    assert _filter(tmp_path, enable_subject_analysis=False).should_ignore(*args).is_spam is False


def test_content_patterns_respect_setting(tmp_path):
    args = ("x@example.com", "Quick question", "You have won a cruise")
    assert _filter(tmp_path).should_ignore(*args).is_spam is True
    assert _filter(tmp_path, enable_content_analysis=False).should_ignore(*args).is_spam is False


def test_disabling_enhanced_detection_leaves_only_ignore_list(tmp_path):
    spam_filter = _filter(tmp_path, ["blocked.com"], enable_enhanced_spam_detection=False)
    assert spam_filter.should_ignore("x@example.com", "Act now, winner", "free money").is_spam is False
    assert spam_filter.should_ignore("a@blocked.com", "Hi", "Hi").is_spam is True


def test_legitimate_message_passes(tmp_path):
    verdict = _filter(tmp_path).should_ignore("friend@example.com", "Can we meet Friday?", "Let's grab coffee")
    assert verdict.is_spam is False
    assert classify_email_type("friend@example.com", "Can we meet Friday?", "Let's grab coffee") == "legitimate"


def test_ignore_store_appends_without_duplicates(tmp_path):
    store = IgnorePatternStore(tmp_path / "data" / "ignore.json")
    store.add(["a@x.com", "b@y.com"])
    updated = store.add(["b@y.com", " c@z.com ", ""])

    assert updated == ["a@x.com", "b@y.com", "c@z.com"]
    assert json.loads(store.path.read_text(encoding="utf-8")) == updated


def test_ignore_store_tolerates_missing_and_corrupt_files(tmp_path):
    store = IgnorePatternStore(tmp_path / "ignore.json")
    assert store.load() == []

    store.path.write_text("{not json", encoding="utf-8")
    assert store.load() == []
    assert store.matches("anyone@example.com") is None
