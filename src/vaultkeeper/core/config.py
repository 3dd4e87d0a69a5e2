# Core Module - Settings
#
# Environment-driven configuration. A `.env` file in the working directory
# is loaded first (python-dotenv); real environment variables win.
#
#   VAULTKEEPER_DB_PATH              data/vault.db
#   VAULTKEEPER_AUDIT_DIR            ./audit_logs
#   VAULTKEEPER_MAX_REFERENCE_DEPTH  10
#   VAULTKEEPER_TRASH_ID             trash
#   VAULTKEEPER_HOST                 127.0.0.1
#   VAULTKEEPER_PORT                 8000
#   VAULTKEEPER_SESSION_TOKEN        (generated per process)

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_MAX_REFERENCE_DEPTH = 10
DEFAULT_TRASH_ID = "trash"


@dataclass(frozen=True)
class Settings:
    db_path: Path = Path("data/vault.db")
    audit_dir: Path = Path("./audit_logs")
    max_reference_depth: int = DEFAULT_MAX_REFERENCE_DEPTH
    trash_id: str = DEFAULT_TRASH_ID
    host: str = "127.0.0.1"
    port: int = 8000
    session_token: Optional[str] = field(default=None, repr=False)


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Build Settings from the environment (and an optional .env file).

    Raises:
        ValueError: If an integer variable cannot be parsed.
    """
    load_dotenv(env_file, override=False)

    return Settings(
        db_path=Path(os.getenv("VAULTKEEPER_DB_PATH", "data/vault.db")),
        audit_dir=Path(os.getenv("VAULTKEEPER_AUDIT_DIR", "./audit_logs")),
        max_reference_depth=_env_int(
            "VAULTKEEPER_MAX_REFERENCE_DEPTH", DEFAULT_MAX_REFERENCE_DEPTH, minimum=1
        ),
        trash_id=os.getenv("VAULTKEEPER_TRASH_ID", DEFAULT_TRASH_ID) or DEFAULT_TRASH_ID,
        host=os.getenv("VAULTKEEPER_HOST", "127.0.0.1"),
        port=_env_int("VAULTKEEPER_PORT", 8000, minimum=1),
        session_token=os.getenv("VAULTKEEPER_SESSION_TOKEN") or None,
    )
