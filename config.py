"""Configuration for the ShopGuard compliance scanner.

Every setting comes from an environment variable; unset variables fall back
to the dataclass defaults below. Config.validate() reports the first
problem as a message instead of raising, so the CLI can print it and exit.

Environment Variables:
    Provider:
        OPENAI_API_KEY: API key for the hosted API (not needed when every
            model points at a local server)

    Models (openai:model or openai:model@base_url):
        CLASSIFIER_MODEL: Per-category classification model
        SUMMARY_MODEL: Per-site summary model
        REQUEST_TIMEOUT: Model request timeout in seconds

    Scan:
        EXCLUDED_CATEGORIES: Comma-separated policy keys to skip
        BATCH_SIZE: Products classified concurrently
        SUMMARY_ENABLED: Summarize each site after classification
        PRODUCTS_PER_PAGE: Products requested from the Store API (1-100)
        FETCH_TIMEOUT: Store API request timeout in seconds

    Storage and logs:
        DB_PATH: SQLite database file
        LOG_DIR: Directory for shopguard.log
        LOG_LEVEL: DEBUG, INFO, WARNING, ERROR or CRITICAL
        LOG_FORMAT: 'text' or 'json'
        LOG_BACKUP_COUNT: Rotated log files kept
        LOG_MAX_BYTES: Rotate at this size (0 = rotate daily)

    Tracing:
        ENABLE_LOGFIRE: Send spans to Logfire (pip install 'shopguard[tracing]')
        LOGFIRE_TOKEN: Logfire write token
"""

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar

from policies import POLICY_CATALOG, parse_category_keys, unknown_category_keys

T = TypeVar("T")

DEFAULT_MODEL = "openai:gpt-4o-mini"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})


def _env(key: str, default: str = "") -> str:
    return os.environ.get(key, default)


def _env_number(key: str, default: T, parse: Callable[[str], T]) -> T:
    """Parse a numeric variable, keeping the default when unset or empty.

    Raises:
        ValueError: If the variable is set but does not parse
    """
    raw = os.environ.get(key)
    if not raw:
        return default
    try:
        return parse(raw)
    except ValueError:
        raise ValueError(f"Invalid {parse.__name__} value for {key}: '{raw}'") from None


def _env_bool(key: str, default: bool = False) -> bool:
    """Read a yes/no variable; unrecognized values keep the default."""
    raw = os.environ.get(key, "").strip().lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    return default


@dataclass
class Config:
    """Scanner settings.

    Example:
        >>> config = Config.load()
        >>> if error := config.validate():
        ...     sys.exit(f"Configuration error: {error}")
    """

    # === Provider ===
    openai_api_key: str = ""  # OPENAI_API_KEY

    # === Models ===
    # openai:<model> for the hosted API, openai:<model>@<base_url> for a
    # local OpenAI-compatible server (e.g. LM Studio on :1234)
    classifier_model: str = DEFAULT_MODEL  # CLASSIFIER_MODEL
    summary_model: str = DEFAULT_MODEL  # SUMMARY_MODEL
    request_timeout: float = 60.0  # REQUEST_TIMEOUT (seconds)

    # === Scan ===
    excluded_categories: frozenset[str] = field(default_factory=frozenset)  # EXCLUDED_CATEGORIES
    batch_size: int = 5  # BATCH_SIZE
    summary_enabled: bool = True  # SUMMARY_ENABLED
    products_per_page: int = 25  # PRODUCTS_PER_PAGE
    fetch_timeout: int = 30  # FETCH_TIMEOUT (seconds)

    # === Storage ===
    db_path: Path = field(default_factory=lambda: Path("db/shopguard.sqlite"))  # DB_PATH

    # === Logging ===
    log_dir: Path = field(default_factory=lambda: Path("log"))  # LOG_DIR
    log_level: str = "INFO"  # LOG_LEVEL
    log_format: str = "text"  # LOG_FORMAT
    log_backup_count: int = 30  # LOG_BACKUP_COUNT
    log_max_bytes: int = 0  # LOG_MAX_BYTES (0 = daily rotation)

    # === Tracing (optional) ===
    enable_logfire: bool = False  # ENABLE_LOGFIRE
    logfire_token: str = ""  # LOGFIRE_TOKEN

    @classmethod
    def load(cls) -> "Config":
        """Build a Config from the current environment.

        Raises:
            ValueError: If a numeric variable does not parse
        """
        return cls(
            openai_api_key=_env("OPENAI_API_KEY"),
            classifier_model=_env("CLASSIFIER_MODEL", DEFAULT_MODEL),
            summary_model=_env("SUMMARY_MODEL", DEFAULT_MODEL),
            request_timeout=_env_number("REQUEST_TIMEOUT", 60.0, float),
            excluded_categories=parse_category_keys(_env("EXCLUDED_CATEGORIES")),
            batch_size=_env_number("BATCH_SIZE", 5, int),
            summary_enabled=_env_bool("SUMMARY_ENABLED", True),
            products_per_page=_env_number("PRODUCTS_PER_PAGE", 25, int),
            fetch_timeout=_env_number("FETCH_TIMEOUT", 30, int),
            db_path=Path(_env("DB_PATH", "db/shopguard.sqlite")),
            log_dir=Path(_env("LOG_DIR", "log")),
            log_level=_env("LOG_LEVEL", "INFO").upper(),
            log_format=_env("LOG_FORMAT", "text").lower(),
            log_backup_count=_env_number("LOG_BACKUP_COUNT", 30, int),
            log_max_bytes=_env_number("LOG_MAX_BYTES", 0, int),
            enable_logfire=_env_bool("ENABLE_LOGFIRE"),
            logfire_token=_env("LOGFIRE_TOKEN"),
        )

    @property
    def uses_remote_model(self) -> bool:
        """True if any configured model talks to the hosted API."""
        return any("@" not in m for m in (self.classifier_model, self.summary_model))

    def validate(self) -> str | None:
        """Check settings before a scan.

        Returns:
            The first problem found, or None if the config is usable
        """
        if self.uses_remote_model and not self.openai_api_key:
            return "OPENAI_API_KEY environment variable is required"
        if unknown := unknown_category_keys(self.excluded_categories):
            return f"Unknown EXCLUDED_CATEGORIES: {', '.join(unknown)}"
        if len(self.excluded_categories) >= len(POLICY_CATALOG):
            return "EXCLUDED_CATEGORIES must leave at least one active category"

        positive = {
            "BATCH_SIZE": self.batch_size,
            "FETCH_TIMEOUT": self.fetch_timeout,
            "REQUEST_TIMEOUT": self.request_timeout,
        }
        for name, value in positive.items():
            if value <= 0:
                return f"{name} must be positive"
        if not 1 <= self.products_per_page <= 100:
            return "PRODUCTS_PER_PAGE must be between 1 and 100"

        if self.log_level not in LOG_LEVELS:
            return f"Invalid LOG_LEVEL '{self.log_level}' - must be one of {', '.join(LOG_LEVELS)}"
        if self.log_format not in ("text", "json"):
            return f"Invalid LOG_FORMAT '{self.log_format}' - must be 'text' or 'json'"
        if self.log_backup_count < 0 or self.log_max_bytes < 0:
            return "LOG_BACKUP_COUNT and LOG_MAX_BYTES must be non-negative"
        return None
