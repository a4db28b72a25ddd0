"""Single source of truth for all configuration and secrets.

All modules import from here — never from os.environ directly.

Values are read from a plain .env file at secrets/mailfiler.env (chmod 600)
when it exists; process environment variables take precedence.
"""

import os
from pathlib import Path

from dotenv import dotenv_values

from mailfiler.schemas.mail import AccountConfig

PROJECT_ROOT = Path(__file__).resolve().parent.parent
ENV_FILE = Path(os.environ.get("MAILFILER_ENV_FILE", PROJECT_ROOT / "secrets" / "mailfiler.env"))


def _load(path: Path) -> dict[str, str | None]:
    """Merge the dotenv file (if any) with the process environment."""
    values: dict[str, str | None] = dict(dotenv_values(path)) if path.exists() else {}
    values.update(os.environ)
    return values


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


_env = _load(ENV_FILE)

# --- Storage ---
RULES_PATH: str = _env.get("MAILFILER_RULES_PATH") or str(PROJECT_ROOT / "data" / "mail-rules.json")
STATE_DB_PATH: str = _env.get("MAILFILER_STATE_DB_PATH") or str(PROJECT_ROOT / "data" / "state.db")
STATE_SCOPE: str = _env.get("MAILFILER_STATE_SCOPE") or "default"
BACKUP_DIR: str = _env.get("MAILFILER_BACKUP_DIR") or str(PROJECT_ROOT / "data" / "backups")
FILING_LOG_PATH: str = _env.get("MAILFILER_FILING_LOG_PATH") or str(
    PROJECT_ROOT / "data" / "filing.jsonl"
)

# --- Engine ---
THREAD_LIMIT_PER_LABEL: int = int(_env.get("MAILFILER_THREAD_LIMIT_PER_LABEL") or "30")
MAX_DISCOVERY_TIME_MS: int = int(_env.get("MAILFILER_MAX_DISCOVERY_TIME_MS") or str(5 * 60 * 1000))
AUTO_CONSOLIDATE: bool = _flag(_env.get("MAILFILER_AUTO_CONSOLIDATE"))

# --- IMAP ---
IMAP_SERVER: str = _env.get("IMAP_SERVER") or ""
IMAP_PORT: int = int(_env.get("IMAP_PORT") or "993")
IMAP_EMAIL: str = _env.get("IMAP_EMAIL") or ""
IMAP_PASSWORD: str = _env.get("IMAP_PASSWORD") or ""
IMAP_SSL: bool = _flag(_env.get("IMAP_SSL") or "true")
IMAP_INBOX: str = _env.get("IMAP_INBOX") or "INBOX"


def missing_imap_settings() -> list[str]:
    """Return the names of required IMAP settings that are unset."""
    required = {
        "IMAP_SERVER": IMAP_SERVER,
        "IMAP_EMAIL": IMAP_EMAIL,
        "IMAP_PASSWORD": IMAP_PASSWORD,
    }
    return [name for name, value in required.items() if not value]


def load_account_config() -> AccountConfig:
    """Build the account config from the IMAP_* settings."""
    return AccountConfig(
        server=IMAP_SERVER,
        email=IMAP_EMAIL,
        password=IMAP_PASSWORD,
        inbox_folder=IMAP_INBOX,
        port=IMAP_PORT,
        ssl=IMAP_SSL,
    )
