"""Logging helpers for bridge_alerts
"""
import logging
import os

# Per-request chatter from the telemetry poller (httpx/httpcore) and from
# python-telegram-bot polling; "telegram" also covers "telegram.ext".
QUIET_LOGGERS = ("httpx", "httpcore", "telegram")


def setup_logging(level_name: str | None = None) -> None:
    level_name = (level_name or os.environ.get("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(level)

    quiet = max(level, logging.WARNING)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet)


__all__ = ["QUIET_LOGGERS", "setup_logging"]
