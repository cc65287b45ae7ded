from __future__ import annotations

import json
from datetime import date

from models.classification import Category, Priority
from services.ai_classifier import AIClassifier, build_prompt, fallback_classification
from services.model_client import extract_json
from services.rate_governor import RateGovernor

VALID = json.dumps(
    {
        "category": "Important",
        "priority": "High",
        "needsReply": True,
        "confidence": 92,
        "analysis": "Personal meeting request",
        "suggestedActions": ["Reply"],
    }
)


def _classifier(model, clock, **kwargs) -> AIClassifier:
    return AIClassifier(model, sleep=clock.sleep, clock=clock, **kwargs)


def test_parses_model_output_wrapped_in_noise(fake_model, clock):
    model = fake_model(f"Sure! ```json\n{VALID}\n``` hope that helps")
    result = _classifier(model, clock).classify("Let's grab coffee", "friend@example.com", "me", "Can we meet Friday?")

    assert result.category is Category.IMPORTANT
    assert result.priority is Priority.HIGH
    assert result.needs_reply is True
    assert result.confidence == 92
    assert result.source == "ai"


def test_prompt_embeds_only_first_800_body_chars():
    prompt = build_prompt("x" * 900, "a@example.com", "me", "Subject")
    assert "x" * 800 in prompt
    assert "x" * 801 not in prompt


def test_garbage_output_twice_falls_back(fake_model, clock):
    model = fake_model("not json at all", "still nothing")
    classifier = _classifier(model, clock, min_call_spacing=0)
    result = classifier.classify("body", "person@example.com", "me", "Catch up")

    assert result.confidence == 30
    assert result.category is Category.UPDATES
    assert result.source == "fallback"
    assert classifier.daily_calls == 2
    # one flat pause between the two attempts, none after the last
    assert clock.sleeps == [1]


def test_rate_limit_error_pauses_attempt_times_two(fake_model, clock):
    model = fake_model(RuntimeError("429: rate limit exceeded"), VALID)
    result = _classifier(model, clock).classify("body", "friend@example.com", "me", "Hi")

    assert result.category is Category.IMPORTANT
    assert clock.sleeps[0] == 2


def test_unknown_category_is_a_parse_failure(fake_model, clock):
    bad = json.dumps({"category": "Urgent", "priority": "High", "confidence": 80})
    result = _classifier(fake_model(bad, bad), clock).classify("body", "friend@example.com", "me", "Hi")
    assert result.source == "fallback"


def test_confidence_is_clamped_and_defaulted(fake_model, clock):
    high = json.dumps({"category": "Social", "priority": "low", "confidence": 250})
    missing = json.dumps({"category": "social", "priority": "Low"})
    classifier = _classifier(fake_model(high, missing), clock)

    assert classifier.classify("b", "s", "r", "x").confidence == 100
    assert classifier.classify("b", "s", "r", "x").confidence == 50


def test_min_spacing_between_calls(fake_model, clock):
    classifier = _classifier(fake_model(VALID, VALID), clock)
    classifier.classify("b", "s", "r", "x")
    clock.now += 1
    classifier.classify("b", "s", "r", "x")
    assert clock.sleeps == [2]


def test_daily_ceiling_skips_remote_call(fake_model, clock):
    model = fake_model(VALID, VALID, VALID)
    classifier = _classifier(model, clock, daily_limit=1)
    classifier.classify("b", "s", "r", "x")
    classifier.classify("b", "s", "r", "x")

    result = classifier.classify("b", "s", "r", "x")
    assert result.source == "quota"
    assert result.confidence == 50
    assert result.suggested_actions == ("Mark as read",)
    assert len(model.prompts) == 2


def test_exhausted_governor_skips_remote_call(fake_model, clock):
    governor = RateGovernor(15, 60, 1, clock=clock, today=lambda: date(2024, 6, 1), sleep=clock.sleep)
    governor.record(success=True)
    model = fake_model(VALID)
    result = _classifier(model, clock, governor=governor).classify("b", "s", "r", "x")

    assert result.source == "quota"
    assert model.prompts == []


def test_fallback_heuristics():
    urgent = fallback_classification("boss@example.com", "Urgent: interview schedule")
    assert urgent.priority is Priority.HIGH
    assert urgent.needs_reply is True

    automated = fallback_classification("noreply@service.com", "Your weekly newsletter")
    assert automated.priority is Priority.LOW
    assert automated.needs_reply is False

    plain = fallback_classification("someone@example.com", "Hello")
    assert plain.priority is Priority.MEDIUM
    assert plain.needs_reply is False
    assert plain.suggested_actions == ("Review manually",)


def test_extract_json_trims_surrounding_text():
    assert extract_json('noise {"a": {"b": 1}} trailing') == {"a": {"b": 1}}
