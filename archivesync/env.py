import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from .errors import ConfigError
from .retry import BACKOFF_KINDS

DEFAULT_CATALOG_URL = "https://api.chess.com"
DEFAULT_DATABASE_PATH = "data/archivesync.db"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def load_env() -> None:
    """Load .env from project root if present.

    Values already set in the process environment win.
    """
    env_path = Path.cwd() / ".env"
    if not env_path.exists():
        return
    load_dotenv(dotenv_path=env_path, override=False)


@dataclass(frozen=True)
class Config:
    catalog_url: str
    database_path: Path
    queue_url: Optional[str] = None
    aws_region: Optional[str] = None
    persist_backoff: str = "fixed"
    persist_retry_delay_ms: int = 100
    persist_max_attempts: int = 10
    persist_max_elapsed_s: int = 30
    dedup_window_s: int = 300
    catalog_timeout_s: int = 15
    log_level: str = "INFO"
    log_dir: Optional[Path] = None

    @property
    def uses_sqs(self) -> bool:
        return self.queue_url is not None


def _positive_int(environ: Mapping[str, str], key: str, default: int, problems: list) -> int:
    raw = environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        problems.append(f"{key} must be an integer, got {raw!r}")
        return default
    if value <= 0:
        problems.append(f"{key} must be positive, got {value}")
    return value


def load_config(environ: Optional[Mapping[str, str]] = None) -> Config:
    """
    Read and validate configuration from the environment.

    All problems are collected and raised together as one ConfigError, so a
    misconfigured deployment fails at startup with the full list.
    """
    if environ is None:
        environ = os.environ
    problems: list = []

    catalog_url = environ.get("CATALOG_URL", DEFAULT_CATALOG_URL).strip().rstrip("/")
    if not catalog_url.startswith(("http://", "https://")):
        problems.append(f"CATALOG_URL must be an http(s) URL, got {catalog_url!r}")

    database_path = environ.get("DATABASE_PATH", DEFAULT_DATABASE_PATH).strip()
    if not database_path:
        problems.append("DATABASE_PATH must not be empty")

    queue_url = environ.get("DOWNLOAD_GAMES_QUEUE_URL") or None
    aws_region = environ.get("AWS_REGION") or None
    if queue_url and not aws_region:
        problems.append("AWS_REGION is required when DOWNLOAD_GAMES_QUEUE_URL is set")

    persist_backoff = environ.get("PERSIST_BACKOFF", "fixed").strip().lower()
    if persist_backoff not in BACKOFF_KINDS:
        problems.append(
            f"PERSIST_BACKOFF must be one of {', '.join(BACKOFF_KINDS)}, got {persist_backoff!r}"
        )

    log_level = environ.get("LOG_LEVEL", "INFO").strip().upper()
    if log_level not in LOG_LEVELS:
        problems.append(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {log_level!r}")

    log_dir = environ.get("LOG_DIR") or None

    config = Config(
        catalog_url=catalog_url,
        database_path=Path(database_path),
        queue_url=queue_url,
        aws_region=aws_region,
        persist_backoff=persist_backoff,
        persist_retry_delay_ms=_positive_int(environ, "PERSIST_RETRY_DELAY_MS", 100, problems),
        persist_max_attempts=_positive_int(environ, "PERSIST_MAX_ATTEMPTS", 10, problems),
        persist_max_elapsed_s=_positive_int(environ, "PERSIST_MAX_ELAPSED_S", 30, problems),
        dedup_window_s=_positive_int(environ, "DEDUP_WINDOW_S", 300, problems),
        catalog_timeout_s=_positive_int(environ, "CATALOG_TIMEOUT_S", 15, problems),
        log_level=log_level,
        log_dir=Path(log_dir) if log_dir else None,
    )

    if problems:
        raise ConfigError(problems)
    return config
