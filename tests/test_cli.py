from __future__ import annotations

from types import SimpleNamespace

from click.testing import CliRunner
from rich.console import Console

import main
from models.classification import ClassificationResult
from models.run_statistics import RunStatistics
from services.ignore_store import IgnorePatternStore
from services.persistence_service import StateStore
from services.rate_governor import RateGovernor
from services.reply_service import ReplyService
from services.statistics_service import StatisticsService
from utils.errors import InvalidRuleError, MissingCredentialsError
from utils.settings import DraftSettings, SettingsStore


class StubTriage:
    def __init__(self):
        self.cycles = 0

    def process_cycle(self) -> RunStatistics:
        self.cycles += 1
        return RunStatistics(total_processed=2, pre_filtered=1, ai_analyzed=1)


class StubClassifier:
    def classify(self, body, sender, recipient, subject):  # noqa: ARG002
        return ClassificationResult.from_payload({"category": "Important", "priority": "High", "needsReply": True})


def _app(tmp_path, gmail=None, dry_run=False):
    return SimpleNamespace(
        account=SimpleNamespace(name="work"),
        settings_store=SettingsStore(tmp_path / "settings.json"),
        ignore_store=IgnorePatternStore(tmp_path / "ignore.json"),
        stats=StatisticsService(tmp_path / "stats.json"),
        state_store=StateStore(tmp_path / "state.db"),
        governor=RateGovernor(15, 60, 1500),
        triage=StubTriage(),
        gmail=gmail,
        classifier=StubClassifier(),
        reply_service=ReplyService(gmail, DraftSettings(), "Sam"),
        console=Console(width=200),
        dry_run=dry_run,
    )


def _patch(monkeypatch, app):
    monkeypatch.setattr(main, "build_context", lambda env_file, account, dry_run=False: app)


def test_help_lists_commands():
    result = CliRunner().invoke(main.cli, ["--help"])
    assert result.exit_code == 0
    for command in ("run", "schedule", "cleanup", "reply", "ignore", "configure-cleanup", "stats"):
        assert command in result.output


def test_missing_credentials_exit_with_error(monkeypatch):
    def boom(env_file, account, dry_run=False):
        raise MissingCredentialsError("GEMINI_API_KEY (or OPENAI_API_KEY) is not set")

    monkeypatch.setattr(main, "build_context", boom)
    result = CliRunner().invoke(main.cli, ["run"])
    assert result.exit_code == 1
    assert "GEMINI_API_KEY" in result.output


def test_unknown_account_is_a_usage_error(monkeypatch):
    def boom(env_file, account, dry_run=False):
        raise KeyError(f"Unknown account '{account}'")

    monkeypatch.setattr(main, "build_context", boom)
    result = CliRunner().invoke(main.cli, ["--account", "nope", "run"])
    assert result.exit_code == 2


def test_run_prints_cycle_summary(monkeypatch, tmp_path):
    app = _app(tmp_path)
    _patch(monkeypatch, app)
    result = CliRunner().invoke(main.cli, ["run"])
    assert result.exit_code == 0, result.output
    assert app.triage.cycles == 1
    assert "Triage cycle for work" in result.output


def test_ignore_add_and_list(monkeypatch, tmp_path):
    app = _app(tmp_path)
    _patch(monkeypatch, app)
    runner = CliRunner()

    result = runner.invoke(main.cli, ["ignore", "add", "promo@shop.example", "alerts@site.example"])
    assert result.exit_code == 0, result.output
    assert "2 pattern(s)" in result.output

    result = runner.invoke(main.cli, ["ignore", "list"])
    assert "promo@shop.example" in result.output


def test_configure_cleanup_safe_mode_persists(monkeypatch, tmp_path):
    app = _app(tmp_path)
    _patch(monkeypatch, app)
    result = CliRunner().invoke(main.cli, ["configure-cleanup", "--action", "safe"])
    assert result.exit_code == 0, result.output

    cleanup = SettingsStore(tmp_path / "settings.json").load().garbage_cleanup
    assert cleanup.enabled is True
    assert cleanup.dry_run_mode is True
    assert cleanup.confidence_threshold == 85


def test_configure_cleanup_advanced_prompts(monkeypatch, tmp_path):
    app = _app(tmp_path)
    _patch(monkeypatch, app)
    result = CliRunner().invoke(
        main.cli, ["configure-cleanup", "--action", "advanced"], input="90\n15\nn\nconservative\n"
    )
    assert result.exit_code == 0, result.output

    cleanup = SettingsStore(tmp_path / "settings.json").load().garbage_cleanup
    assert cleanup.confidence_threshold == 90
    assert cleanup.max_emails_to_analyze == 15
    assert cleanup.dry_run_mode is False
    assert cleanup.safety_mode == "conservative"


def test_reply_sends_after_confirmation(monkeypatch, tmp_path, fake_gmail, make_message):
    gmail = fake_gmail([make_message("m9", subject="Can we meet Friday?")])
    app = _app(tmp_path, gmail=gmail)
    _patch(monkeypatch, app)

    result = CliRunner().invoke(main.cli, ["reply", "m9"], input="y\n")
    assert result.exit_code == 0, result.output
    assert [message_id for message_id, _ in gmail.sent] == ["m9"]
    assert 'regarding "Can we meet Friday?"' in gmail.sent[0][1]


def test_reply_declined_sends_nothing(monkeypatch, tmp_path, fake_gmail, make_message):
    gmail = fake_gmail([make_message("m9")])
    _patch(monkeypatch, _app(tmp_path, gmail=gmail))

    result = CliRunner().invoke(main.cli, ["reply", "m9"], input="n\n")
    assert result.exit_code == 0
    assert "Reply not sent." in result.output
    assert gmail.sent == []


def test_stats_without_history(monkeypatch, tmp_path):
    _patch(monkeypatch, _app(tmp_path))
    result = CliRunner().invoke(main.cli, ["stats"])
    assert "No stats recorded yet." in result.output


def test_invalid_rules_file_exits_with_error(monkeypatch):
    def boom(env_file, account, dry_run=False):
        raise InvalidRuleError("Rule 'work' has an invalid verdict 'Work'")

    monkeypatch.setattr(main, "build_context", boom)
    result = CliRunner().invoke(main.cli, ["run"])
    assert result.exit_code == 1
    assert "invalid verdict" in result.output


def test_stats_lists_recently_processed_messages(monkeypatch, tmp_path):
    app = _app(tmp_path)
    app.stats.record_cycle("work", RunStatistics(total_processed=2))
    app.state_store.mark_processed("work", "msg-1")
    app.state_store.mark_processed("home", "msg-other")
    _patch(monkeypatch, app)

    result = CliRunner().invoke(main.cli, ["stats"])

    assert result.exit_code == 0, result.output
    assert "Recently processed (work)" in result.output
    assert "msg-1" in result.output
    assert "msg-other" not in result.output
    assert "Model quota today: 0/1500" in result.output
