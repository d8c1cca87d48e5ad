"""Configuration dataclass."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Set


@dataclass
class Settings:
    """Configuration settings for bridge_alerts.

    All settings are loaded from environment variables with sensible defaults.
    """

    BOT_TOKEN: str | None
    ALLOWED_CHAT_IDS: Set[int]
    RULES_FILE: str
    MONITOR_URL: str | None
    POLL_INTERVAL_S: float
    RULE_RELOAD_S: float
    RULE_WATCH_S: float
    MAIL_HOST: str | None
    MAIL_PORT: int
    MAIL_SECURE: bool
    MAIL_USER: str | None
    MAIL_PASS: str | None
    MAIL_FROM: str
    MAIL_TO: str | None
    DISPATCH_MAX_ATTEMPTS: int
    DISPATCH_BACKOFF_S: float
