"""Central configuration for bridge_alerts."""

from __future__ import annotations

import logging
import os
from typing import Set

from .models.settings import Settings

logger = logging.getLogger(__name__)


def _split_ints(s: str) -> Set[int]:
    """Parse comma-separated string into a set of integers.

    Args:
        s: Comma-separated string of integers (e.g., "123,456,789")

    Returns:
        Set of parsed integers. Invalid entries are silently skipped.

    Example:
        >>> _split_ints("123,456,invalid,789")
        {123, 456, 789}
    """
    out = set()
    for part in (s or "").split(","):
        p = part.strip()
        if p.lstrip("-").isdigit():
            out.add(int(p))
    return out


def _read_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, str(default)) or default)
    except Exception:
        return default


def _read_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    try:
        return int(raw) if raw else default
    except Exception:
        return default


def _read_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes"}


def _read_settings() -> Settings:
    """Read all configuration from environment variables.

    Returns:
        Settings object with all configuration values.

    Note:
        Invalid numeric values fall back to sensible defaults.
        Boolean values accept: 1/true/yes (case-insensitive) as True.
    """
    token = os.environ.get("BOT_TOKEN") or None
    allowed = _split_ints(os.environ.get("ALLOWED_CHAT_IDS", ""))
    rules_file = os.environ.get("RULES_FILE") or "/app/data/alert_rules.json"
    monitor_url = (os.environ.get("MONITOR_URL") or "").strip() or None
    poll_interval = _read_float("POLL_INTERVAL_S", 5.0)
    rule_reload = _read_float("RULE_RELOAD_S", 60.0)
    rule_watch = _read_float("RULE_WATCH_S", 2.0)

    # SMTP
    mail_host = (os.environ.get("MAIL_HOST") or "").strip() or None
    mail_port = _read_int("MAIL_PORT", 587)
    mail_secure = _read_bool("MAIL_SECURE", False)
    mail_user = os.environ.get("MAIL_USER") or None
    mail_pass = os.environ.get("MAIL_PASS") or None
    mail_from = os.environ.get("MAIL_FROM") or "Alerts"
    mail_to = os.environ.get("MAIL_TO") or None

    dispatch_attempts = max(1, _read_int("DISPATCH_MAX_ATTEMPTS", 3))
    dispatch_backoff = max(0.0, _read_float("DISPATCH_BACKOFF_S", 1.0))

    return Settings(
        BOT_TOKEN=token,
        ALLOWED_CHAT_IDS=allowed,
        RULES_FILE=rules_file,
        MONITOR_URL=monitor_url,
        POLL_INTERVAL_S=poll_interval,
        RULE_RELOAD_S=rule_reload,
        RULE_WATCH_S=rule_watch,
        MAIL_HOST=mail_host,
        MAIL_PORT=mail_port,
        MAIL_SECURE=mail_secure,
        MAIL_USER=mail_user,
        MAIL_PASS=mail_pass,
        MAIL_FROM=mail_from,
        MAIL_TO=mail_to,
        DISPATCH_MAX_ATTEMPTS=dispatch_attempts,
        DISPATCH_BACKOFF_S=dispatch_backoff,
    )


settings = _read_settings()


def validate_settings() -> None:
    """Validate critical configuration and log warnings for issues."""
    if settings.BOT_TOKEN is None:
        logger.error("BOT_TOKEN environment variable is not set")
    if not settings.ALLOWED_CHAT_IDS:
        logger.warning(
            "ALLOWED_CHAT_IDS is empty; alerts will not be sent to Telegram "
            "and query commands will be unauthorized."
        )
    if settings.MAIL_HOST and not settings.MAIL_TO:
        logger.warning("MAIL_HOST is set but MAIL_TO is empty; mail alerts disabled.")
    if settings.MONITOR_URL is None:
        logger.warning("MONITOR_URL is not set; telemetry polling disabled.")


# Exported constants
TOKEN: str | None = settings.BOT_TOKEN
ALLOWED: set[int] = settings.ALLOWED_CHAT_IDS
RULES_FILE: str = settings.RULES_FILE
MONITOR_URL: str | None = settings.MONITOR_URL
POLL_INTERVAL_S: float = settings.POLL_INTERVAL_S
RULE_RELOAD_S: float = settings.RULE_RELOAD_S
RULE_WATCH_S: float = settings.RULE_WATCH_S
DISPATCH_MAX_ATTEMPTS: int = settings.DISPATCH_MAX_ATTEMPTS
DISPATCH_BACKOFF_S: float = settings.DISPATCH_BACKOFF_S

validate_settings()
