from __future__ import annotations

from datetime import date

import pytest

from models.classification import Category, Priority
from services.rate_governor import RateGovernor
from services.reply_service import ReplyService, should_reply
from utils.settings import DraftSettings


@pytest.mark.parametrize(
    ("sender", "subject", "category", "priority", "expected"),
    [
        ("noreply@github.com", "Review requested", Category.IMPORTANT, Priority.HIGH, (False, 95)),
        ("Ann <ann@example.com>", "Your order receipt", Category.IMPORTANT, Priority.HIGH, (False, 90)),
        ("Ann <ann@example.com>", "Quick idea", Category.NEWSLETTER, Priority.MEDIUM, (False, 85)),
        ("Ann <ann@example.com>", "Quick idea", Category.IMPORTANT, Priority.LOW, (True, 85)),
        ("Ann <ann@example.com>", "Quick idea", Category.SOCIAL, Priority.HIGH, (True, 85)),
        ("Ann <ann@example.com>", "Quick idea", Category.SOCIAL, Priority.MEDIUM, (True, 70)),
    ],
)
def test_should_reply_decision_table(make_message, sender, subject, category, priority, expected):
    decision = should_reply(make_message(sender=sender, subject=subject), category, priority)
    assert (decision.needs_reply, decision.confidence) == expected


def test_template_draft_is_created_in_gmail(make_message, fake_gmail):
    gmail = fake_gmail()
    service = ReplyService(gmail, DraftSettings(), "Sam Doe")
    message = make_message(subject="Can we meet Friday?")

    result = service.create_smart_draft(message, Category.IMPORTANT, Priority.HIGH)

    assert result.should_create_draft is True
    assert result.draft_id == "draft-1"
    assert 'regarding "Can we meet Friday?"' in result.draft_content
    assert result.draft_content.endswith("Best regards,\nSam Doe")
    assert gmail.drafts == [("m1", result.draft_content)]


def test_no_draft_when_reply_not_needed(make_message, fake_gmail):
    gmail = fake_gmail()
    result = ReplyService(gmail, DraftSettings(), "Sam").create_smart_draft(
        make_message(sender="updates@service.com"), Category.IMPORTANT, Priority.HIGH
    )
    assert result.should_create_draft is False
    assert result.confidence == 95
    assert gmail.drafts == []


def test_ai_draft_wraps_model_text(make_message, fake_gmail, fake_model):
    model = fake_model("  Friday works for me. See you at ten.  ")
    service = ReplyService(fake_gmail(), DraftSettings(use_ai_drafts=True), "Sam", model=model)

    text = service.generate_draft(make_message(sender="Ann Lee <ann@example.com>"), Category.IMPORTANT, Priority.HIGH)

    assert text == "Hi Ann Lee,\n\nFriday works for me. See you at ten.\n\nBest regards,\nSam"


def test_ai_draft_falls_back_to_template_when_quota_low(make_message, fake_gmail, fake_model, clock):
    governor = RateGovernor(100, 60, 10, clock=clock, today=lambda: date(2024, 6, 1), sleep=clock.sleep)
    for _ in range(9):
        governor.record(success=True)
    model = fake_model("unused")
    service = ReplyService(fake_gmail(), DraftSettings(use_ai_drafts=True), "Sam", model=model, governor=governor)

    text = service.generate_draft(make_message(), Category.IMPORTANT, Priority.HIGH)

    assert text.startswith("Thank you for your email")
    assert model.prompts == []


def test_model_failure_skips_drafting(make_message, fake_gmail, fake_model):
    gmail = fake_gmail()
    service = ReplyService(gmail, DraftSettings(use_ai_drafts=True), "Sam", model=fake_model(RuntimeError("boom")))

    result = service.create_smart_draft(make_message(), Category.IMPORTANT, Priority.HIGH)

    assert result.should_create_draft is False
    assert result.confidence == 50
    assert gmail.drafts == []


def test_dry_run_generates_without_creating(make_message, fake_gmail):
    gmail = fake_gmail()
    result = ReplyService(gmail, DraftSettings(), "Sam", dry_run=True).create_smart_draft(
        make_message(), Category.IMPORTANT, Priority.HIGH
    )
    assert result.should_create_draft is True
    assert result.draft_id is None
    assert gmail.drafts == []
