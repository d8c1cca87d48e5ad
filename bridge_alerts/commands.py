"""Command registry (single source of truth for help + wiring)."""

from __future__ import annotations

from .models.command_spec import CommandSpec, Group


_INFO_COMMANDS = (
    CommandSpec("start", "Info", "/start", "show help", "cmd_start"),
    CommandSpec("help", "Info", "/help", "this menu", "cmd_help"),
    CommandSpec("whoami", "Info", "/whoami", "show chat and user info", "cmd_whoami"),
)

_ALERT_COMMANDS = (
    CommandSpec(
        "alerts",
        "Alerts",
        "/alerts [rule_id]",
        "enabled rules and their trigger state",
        "cmd_alerts",
    ),
    CommandSpec(
        "alerthistory",
        "Alerts",
        "/alerthistory [n]",
        "last n alerts sent since startup",
        "cmd_alerthistory",
        aliases=("history",),
    ),
    CommandSpec(
        "reloadrules",
        "Alerts",
        "/reloadrules",
        "reload alert rules from the rule store",
        "cmd_reloadrules",
    ),
)


COMMANDS: tuple[CommandSpec, ...] = (
    *_INFO_COMMANDS,
    *_ALERT_COMMANDS,
)


GROUP_ORDER: tuple[Group, ...] = (
    "Alerts",
    "Info",
)
