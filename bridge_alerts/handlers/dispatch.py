"""Dispatch layer: the handler names referenced by the command registry."""

from __future__ import annotations

from . import alerts, meta


# Meta
cmd_start = meta.cmd_start
cmd_help = meta.cmd_help
cmd_whoami = meta.cmd_whoami

# Alerts
cmd_alerts = alerts.cmd_alerts
cmd_alerthistory = alerts.cmd_alerthistory
cmd_reloadrules = alerts.cmd_reloadrules
