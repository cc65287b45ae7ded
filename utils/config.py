from __future__ import annotations

import base64
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

from services.model_client import DEFAULT_BASE_URL, DEFAULT_MODEL

PROJECT_ROOT = Path(__file__).resolve().parent.parent

DEFAULT_IGNORE_SEED = ("noreply@glassdoor.com", "noreply@reddit.com")


@dataclass(slots=True)
class AccountConfig:
    name: str
    credentials_file: Path
    token_file: Path
    user_id: str


@dataclass(slots=True)
class AppConfig:
    log_dir: Path
    log_level: str
    stats_file: Path
    db_path: Path
    settings_file: Path
    ignore_patterns_file: Path
    backup_dir: Path
    pre_filter_rules_file: Optional[Path]
    model_api_key: Optional[str]
    model_name: str
    model_base_url: Optional[str]
    sender_name: str
    accounts: Dict[str, AccountConfig]
    default_account: AccountConfig
    accounts_file: Path
    ignore_seed: List[str] = field(default_factory=list)

    def get_account(self, account_name: Optional[str]) -> AccountConfig:
        if not account_name:
            return self.default_account
        if account_name not in self.accounts:
            available = ", ".join(sorted(self.accounts))
            raise KeyError(f"Unknown account '{account_name}'. Available accounts: {available}")
        return self.accounts[account_name]


def _resolve_path(value: str | None, fallback: str) -> Path:
    candidate = Path(value or fallback)
    if not candidate.is_absolute():
        candidate = PROJECT_ROOT / candidate
    return candidate


def _maybe_write_secret_file(target: Path, inline_value: str | None, b64_value: str | None) -> None:
    if not inline_value and not b64_value:
        return
    target.parent.mkdir(parents=True, exist_ok=True)
    if inline_value:
        target.write_text(inline_value, encoding="utf-8")
        return
    try:
        decoded = base64.b64decode(b64_value or "")
    except Exception as exc:  # noqa: BLE001
        raise ValueError("Failed to decode base64 secret payload") from exc
    target.write_bytes(decoded)


def _split_list(value: str | None, fallback: tuple[str, ...]) -> List[str]:
    if value is None:
        return list(fallback)
    return [item.strip() for item in value.split(",") if item.strip()]


def load_config(env_file: str | os.PathLike[str] | None = None) -> AppConfig:
    """Load configuration values from a .env file and environment variables."""

    if env_file:
        load_dotenv(env_file, override=False)
    else:
        load_dotenv(override=False)

    credentials_file = _resolve_path(os.getenv("GOOGLE_CLIENT_SECRETS"), "credentials.json")
    token_file = _resolve_path(os.getenv("GOOGLE_TOKEN_PATH"), "token.json")
    log_dir = _resolve_path(os.getenv("LOG_DIR"), "logs")
    stats_file = _resolve_path(os.getenv("STATS_FILE"), "data/stats.json")
    db_path = _resolve_path(os.getenv("DB_PATH"), "data/triage_assistant.db")
    settings_file = _resolve_path(os.getenv("SETTINGS_FILE"), "config/settings.json")
    ignore_patterns_file = _resolve_path(os.getenv("IGNORE_PATTERNS_FILE"), "data/ignore_patterns.json")
    backup_dir = _resolve_path(os.getenv("BACKUP_DIR"), "email_backups")
    accounts_file = _resolve_path(os.getenv("GMAIL_ACCOUNTS_FILE"), "accounts.json")

    rules_value = os.getenv("PRE_FILTER_RULES_FILE")
    pre_filter_rules_file = _resolve_path(rules_value, "") if rules_value else None

    log_dir.mkdir(parents=True, exist_ok=True)
    stats_file.parent.mkdir(parents=True, exist_ok=True)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    _maybe_write_secret_file(
        credentials_file,
        os.getenv("GOOGLE_CLIENT_SECRETS_JSON"),
        os.getenv("GOOGLE_CLIENT_SECRETS_B64"),
    )
    _maybe_write_secret_file(
        token_file,
        os.getenv("GOOGLE_TOKEN_JSON"),
        os.getenv("GOOGLE_TOKEN_B64"),
    )

    default_account = AccountConfig(
        name="default",
        credentials_file=credentials_file,
        token_file=token_file,
        user_id=os.getenv("GMAIL_USER_ID", "me"),
    )
    accounts: Dict[str, AccountConfig] = {default_account.name: default_account}

    if accounts_file.exists():
        data = json.loads(accounts_file.read_text(encoding="utf-8"))
        for item in data.get("accounts", []):
            name = item.get("name")
            if not name:
                continue
            accounts[name] = AccountConfig(
                name=name,
                credentials_file=_resolve_path(item.get("credentials_file"), "credentials.json"),
                token_file=_resolve_path(item.get("token_file"), "token.json"),
                user_id=item.get("user_id", "me"),
            )

    return AppConfig(
        log_dir=log_dir,
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        stats_file=stats_file,
        db_path=db_path,
        settings_file=settings_file,
        ignore_patterns_file=ignore_patterns_file,
        backup_dir=backup_dir,
        pre_filter_rules_file=pre_filter_rules_file,
        model_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("OPENAI_API_KEY"),
        model_name=os.getenv("MODEL_NAME", DEFAULT_MODEL),
        model_base_url=os.getenv("MODEL_BASE_URL", DEFAULT_BASE_URL) or None,
        sender_name=os.getenv("SENDER_NAME", "Your Name"),
        accounts=accounts,
        default_account=default_account,
        accounts_file=accounts_file,
        ignore_seed=_split_list(os.getenv("IGNORE_SEED"), DEFAULT_IGNORE_SEED),
    )
