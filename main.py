from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Optional, Tuple

import click
import schedule
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from models.run_statistics import RunStatistics
from services.ai_classifier import AIClassifier
from services.auth_service import AuthService
from services.garbage_detector import GarbageDetector
from services.gmail_service import GmailService
from services.ignore_store import IgnorePatternStore
from services.model_client import RemoteModel
from services.persistence_service import StateStore
from services.pre_filter import PreFilter
from services.rate_governor import RateGovernor
from services.reply_service import ReplyService
from services.spam_filter import SpamFilter
from services.statistics_service import StatisticsService
from services.triage_service import TriageService
from utils.config import AccountConfig, AppConfig, load_config
from utils.errors import MissingCredentialsError, TriageError
from utils.logger import configure_logging
from utils.rules_engine import RulesEngine
from utils.settings import SAFETY_MODES, GarbageCleanupSettings, SettingsStore


LOGGER = logging.getLogger(__name__)

RATE_WINDOW_SECONDS = 60


@dataclass(slots=True)
class AppContext:
    config: AppConfig
    account: AccountConfig
    settings_store: SettingsStore
    gmail: GmailService
    governor: RateGovernor
    classifier: AIClassifier
    reply_service: ReplyService
    garbage_detector: GarbageDetector
    ignore_store: IgnorePatternStore
    stats: StatisticsService
    state_store: StateStore
    triage: TriageService
    console: Console
    dry_run: bool = False


def build_context(env_file: str, account_name: str | None, dry_run: bool = False) -> AppContext:
    config = load_config(env_file)
    account = config.get_account(account_name)
    configure_logging(config.log_dir, config.log_level, account=account.name)
    console = Console()

    if not config.model_api_key:
        raise MissingCredentialsError("GEMINI_API_KEY (or OPENAI_API_KEY) is not set")
    auth_service = AuthService(account)
    if not account.token_file.exists():
        auth_service.ensure_client_secrets()

    settings_store = SettingsStore(config.settings_file)
    settings = settings_store.load()
    governor = RateGovernor(
        max_requests=settings.rate_limiting.max_requests_per_minute,
        window_seconds=RATE_WINDOW_SECONDS,
        daily_limit=settings.rate_limiting.daily_request_limit,
    )
    model = RemoteModel(config.model_api_key, config.model_name, config.model_base_url, governor=governor)
    classifier = AIClassifier(
        model,
        governor,
        daily_limit=settings.ai_analysis.classifier_daily_limit,
        min_call_spacing=settings.ai_analysis.min_call_spacing_seconds,
    )

    ignore_store = IgnorePatternStore(config.ignore_patterns_file)
    if config.ignore_seed:
        ignore_store.add(config.ignore_seed)
    spam_filter = SpamFilter(ignore_store, settings.smart_filtering)
    if config.pre_filter_rules_file:
        pre_filter = PreFilter(engine=RulesEngine.from_file(config.pre_filter_rules_file))
    else:
        pre_filter = PreFilter()

    gmail_service = GmailService(account, auth_service)
    reply_service = ReplyService(gmail_service, settings.drafts, config.sender_name, model, governor, dry_run)
    garbage_detector = GarbageDetector(
        settings.garbage_cleanup, gmail_service, model, governor, config.backup_dir, dry_run=dry_run
    )
    stats = StatisticsService(config.stats_file)
    state_store = StateStore(config.db_path)
    triage = TriageService(
        account=account.name,
        gmail=gmail_service,
        settings_store=settings_store,
        state_store=state_store,
        stats_service=stats,
        spam_filter=spam_filter,
        pre_filter=pre_filter,
        classifier=classifier,
        reply_service=reply_service,
        garbage_detector=garbage_detector,
        dry_run=dry_run,
    )

    return AppContext(
        config=config,
        account=account,
        settings_store=settings_store,
        gmail=gmail_service,
        governor=governor,
        classifier=classifier,
        reply_service=reply_service,
        garbage_detector=garbage_detector,
        ignore_store=ignore_store,
        stats=stats,
        state_store=state_store,
        triage=triage,
        console=console,
        dry_run=dry_run,
    )


@click.group()
@click.option("--env-file", default=".env", show_default=True, help="Path to the .env file")
@click.option("--account", help="Account name defined in accounts.json")
@click.option("--dry-run/--apply", default=False, help="Preview actions without modifying Gmail")
@click.pass_context
def cli(ctx: click.Context, env_file: str, account: Optional[str], dry_run: bool) -> None:
    """Command-line interface for the Gmail triage assistant."""

    try:
        ctx.obj = build_context(env_file, account, dry_run=dry_run)
    except KeyError as exc:  # invalid account
        raise click.BadParameter(str(exc), param_hint="--account") from exc
    except (TriageError, FileNotFoundError) as exc:
        raise click.ClickException(str(exc)) from exc


@cli.command("run")
@click.pass_obj
def run_once(app: AppContext) -> None:
    """Triage unread emails once and print a summary."""

    stats = app.triage.process_cycle()
    app.console.print(_build_cycle_table(app, stats))


@cli.command("schedule")
@click.option("--interval", type=int, default=None, help="Interval in minutes (defaults to settings)")
@click.option(
    "--max-runtime", type=int, default=30, show_default=True, help="Stop starting new cycles after N minutes"
)
@click.pass_obj
def schedule_cycles(app: AppContext, interval: int | None, max_runtime: int) -> None:
    """Run triage cycles on an interval using the schedule library."""

    minutes = interval or app.settings_store.load().rate_limiting.check_interval_minutes
    scheduler = schedule.Scheduler()

    def job() -> None:
        app.settings_store.refresh()
        stats = app.triage.process_cycle()
        app.console.print(
            f"[scheduler] {stats.total_processed} processed, {stats.pre_filtered} pre-filtered, "
            f"{stats.ai_analyzed} AI analyzed, {stats.errors} error(s)."
        )

    app.console.print(
        f"Running every {minutes} minute(s) for account {app.account.name} "
        f"for up to {max_runtime} minute(s). Press Ctrl+C to stop."
    )
    deadline = time.monotonic() + max_runtime * 60
    job()
    scheduler.every(minutes).minutes.do(job)
    try:
        while time.monotonic() < deadline:
            scheduler.run_pending()
            time.sleep(1)
        app.console.print("Maximum runtime reached. Scheduler stopped.")
    except KeyboardInterrupt:
        app.console.print("Scheduler stopped.")
    finally:
        scheduler.clear()


@cli.command("cleanup")
@click.pass_obj
def cleanup(app: AppContext) -> None:
    """Run garbage detection and, outside dry-run mode, move confirmed garbage to trash."""

    result = app.garbage_detector.run_garbage_cleanup()
    title = "Garbage cleanup (dry run)" if result.dry_run else "Garbage cleanup"
    app.console.print(Panel(result.report, title=title))
    if result.total_analyzed:
        app.stats.record_cleanup(app.account.name, result.actually_deleted, result.skipped_important)
        app.console.print(
            f"Analyzed {result.total_analyzed}, marked {result.marked_for_deletion}, "
            f"deleted {result.actually_deleted}, protected {result.skipped_important}."
        )
    for error in result.errors:
        app.console.print(f"[red]{error}[/red]")


@cli.command("reply")
@click.argument("message_id")
@click.option("--yes", is_flag=True, help="Send without asking for confirmation")
@click.pass_obj
def reply(app: AppContext, message_id: str, yes: bool) -> None:
    """Generate a reply for MESSAGE_ID and send it after confirmation."""

    message = app.gmail.get_message(message_id)
    result = app.classifier.classify(message.body, message.sender, message.recipient, message.subject)
    content = app.reply_service.generate_draft(message, result.category, result.priority)
    if not content:
        app.console.print("[yellow]Could not generate a reply for this message.[/yellow]")
        return

    app.console.print(Panel(content, title=f"Reply to {message.sender}"))
    if not yes and not click.confirm("Send this reply?", default=False):
        app.console.print("Reply not sent.")
        return
    if app.dry_run:
        app.console.print("[bold blue]Dry-run[/bold blue] reply not sent.")
        return
    reply_id = app.gmail.send_reply(message, content)
    app.console.print(f"Reply sent (id: {reply_id}).")


@cli.command("create-label")
@click.argument("label_name")
@click.pass_obj
def create_label(app: AppContext, label_name: str) -> None:
    """Create a Gmail label if it does not exist."""

    label_id = app.gmail.ensure_label(label_name)
    app.console.print(f"Label {label_name} is ready (id: {label_id}).")


@cli.group("ignore")
def ignore() -> None:
    """Manage sender patterns that are always treated as spam."""


@ignore.command("add")
@click.argument("patterns", nargs=-1, required=True)
@click.pass_obj
def ignore_add(app: AppContext, patterns: Tuple[str, ...]) -> None:
    """Add one or more sender patterns to the ignore list."""

    updated = app.ignore_store.add(patterns)
    app.console.print(f"Ignore list now has {len(updated)} pattern(s).")


@ignore.command("list")
@click.pass_obj
def ignore_list(app: AppContext) -> None:
    """Show the ignore list."""

    patterns = app.ignore_store.load()
    if not patterns:
        app.console.print("Ignore list is empty.")
        return
    table = Table(title="Ignored sender patterns")
    table.add_column("#")
    table.add_column("Pattern")
    for index, pattern in enumerate(patterns, start=1):
        table.add_row(str(index), pattern)
    app.console.print(table)


@cli.command("settings")
@click.pass_obj
def show_settings(app: AppContext) -> None:
    """Print the effective settings document."""

    app.console.print_json(json.dumps(app.settings_store.load().to_dict(), ensure_ascii=False))


@cli.command("configure-cleanup")
@click.option(
    "--action",
    type=click.Choice(["safe", "disable", "advanced", "show"]),
    default=None,
    help="Skip the menu and apply this action",
)
@click.pass_obj
def configure_cleanup(app: AppContext, action: str | None) -> None:
    """Interactively configure garbage cleanup."""

    settings = app.settings_store.load()
    cleanup_settings = settings.garbage_cleanup
    if action is None:
        app.console.print("1. safe: enable cleanup in safe mode (dry run, threshold 85, backups)")
        app.console.print("2. disable: turn garbage cleanup off")
        app.console.print("3. advanced: set threshold, batch size, dry run and safety mode")
        app.console.print("4. show: print the current configuration")
        action = click.prompt(
            "Choose an action", type=click.Choice(["safe", "disable", "advanced", "show"]), default="show"
        )

    if action == "safe":
        cleanup_settings.enabled = True
        cleanup_settings.dry_run_mode = True
        cleanup_settings.confidence_threshold = 85
        cleanup_settings.safety_mode = "ultra-conservative"
        cleanup_settings.backup_before_delete = True
    elif action == "disable":
        cleanup_settings.enabled = False
    elif action == "advanced":
        cleanup_settings.confidence_threshold = click.prompt(
            "Confidence threshold", type=click.IntRange(50, 100), default=cleanup_settings.confidence_threshold
        )
        cleanup_settings.max_emails_to_analyze = click.prompt(
            "Max emails to analyze", type=click.IntRange(5, 100), default=cleanup_settings.max_emails_to_analyze
        )
        cleanup_settings.dry_run_mode = click.confirm("Dry run mode?", default=cleanup_settings.dry_run_mode)
        cleanup_settings.safety_mode = click.prompt(
            "Safety mode", type=click.Choice(SAFETY_MODES), default=cleanup_settings.safety_mode
        )

    if action != "show":
        app.settings_store.save(settings)
        app.console.print("[bold green]Garbage cleanup settings saved.[/bold green]")
    app.console.print(_build_cleanup_table(app.settings_store.load().garbage_cleanup))


@cli.command("stats")
@click.option("--recent", type=int, default=5, show_default=True, help="Show the N most recently processed messages")
@click.pass_obj
def stats(app: AppContext, recent: int) -> None:
    """Display local activity statistics."""

    snapshot = app.stats.snapshot()
    if not snapshot:
        app.console.print("No stats recorded yet.")
        return

    table = Table(title="Global stats")
    table.add_column("Metric")
    table.add_column("Value")
    table.add_row("Cycles", str(snapshot.get("cycles", 0)))
    table.add_row("Emails processed", str(snapshot.get("total_processed", 0)))
    table.add_row("Pre-filtered", str(snapshot.get("pre_filtered", 0)))
    table.add_row("AI analyzed", str(snapshot.get("ai_analyzed", 0)))
    table.add_row("Spam filtered", str(snapshot.get("spam_filtered", 0)))
    table.add_row("Drafts created", str(snapshot.get("drafts_created", 0)))
    table.add_row("Model calls saved", str(snapshot.get("api_calls_saved", 0)))
    table.add_row("Errors", str(snapshot.get("errors", 0)))
    table.add_row("Garbage deleted", str(snapshot.get("garbage_deleted", 0)))

    categories = snapshot.get("categories", {})
    if categories:
        category_str = ", ".join(f"{name}: {count}" for name, count in categories.items())
        table.add_row("Categories", category_str)

    app.console.print(table)

    accounts = snapshot.get("accounts", {})
    if accounts:
        acct_table = Table(title="Per-account stats")
        acct_table.add_column("Account")
        acct_table.add_column("Cycles")
        acct_table.add_column("Processed")
        acct_table.add_column("Drafts")
        acct_table.add_column("Categories")
        for name, data in accounts.items():
            category_counts = data.get("categories", {})
            category_str = ", ".join(f"{label}: {count}" for label, count in category_counts.items()) or "-"
            acct_table.add_row(
                name,
                str(data.get("cycles", 0)),
                str(data.get("total_processed", 0)),
                str(data.get("drafts_created", 0)),
                category_str,
            )
        app.console.print(acct_table)

    entries = app.state_store.recent_entries(app.account.name, limit=recent) if recent > 0 else []
    if entries:
        recent_table = Table(title=f"Recently processed ({app.account.name})")
        recent_table.add_column("Message ID")
        recent_table.add_column("Processed at")
        for entry in entries:
            recent_table.add_row(entry.message_id, entry.processed_at.strftime("%Y-%m-%d %H:%M:%S %Z"))
        app.console.print(recent_table)

    usage = app.governor.usage()
    app.console.print(f"[dim]Model quota today: {usage.daily_usage}/{usage.daily_limit}[/dim]")


def main() -> None:
    cli(standalone_mode=True)


def _build_cycle_table(app: AppContext, stats: RunStatistics) -> Table:
    title = f"Triage cycle for {app.account.name}" + (" (dry run)" if app.dry_run else "")
    table = Table(title=title)
    table.add_column("Metric")
    table.add_column("Value")
    table.add_row("Processed", str(stats.total_processed))
    table.add_row("Spam filtered", str(stats.spam_filtered))
    table.add_row("Pre-filtered", str(stats.pre_filtered))
    table.add_row("AI analyzed", str(stats.ai_analyzed))
    table.add_row("Drafts created", str(stats.drafts_created))
    table.add_row("Drafts skipped", str(stats.drafts_skipped))
    table.add_row("Errors", str(stats.errors))
    table.add_row("Model calls saved", str(stats.api_calls_saved))
    if stats.categories:
        table.add_row("Categories", ", ".join(f"{name}: {count}" for name, count in stats.categories.items()))
    return table


def _build_cleanup_table(settings: GarbageCleanupSettings) -> Table:
    table = Table(title="Garbage cleanup configuration")
    table.add_column("Setting")
    table.add_column("Value")
    table.add_row("Enabled", "yes" if settings.enabled else "no")
    table.add_row("Dry run", "yes" if settings.dry_run_mode else "no")
    table.add_row("Confidence threshold", str(settings.confidence_threshold))
    table.add_row("Max emails to analyze", str(settings.max_emails_to_analyze))
    table.add_row("Only delete older than (days)", str(settings.only_delete_older_than_days))
    table.add_row("Require multiple indicators", "yes" if settings.require_multiple_indicators else "no")
    table.add_row("Safety mode", settings.safety_mode)
    table.add_row("Backup before delete", "yes" if settings.backup_before_delete else "no")
    table.add_row("Scheduled", f"every {settings.cleanup_interval_hours}h" if settings.schedule_cleanup else "no")
    return table


if __name__ == "__main__":
    main()
