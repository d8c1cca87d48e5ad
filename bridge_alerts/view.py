"""View layer for formatting Telegram messages (HTML)."""

from __future__ import annotations

import html
import time

from .alerting import format_number
from .models.events import Notification
from .models.rules import AlertRule, BitRule, ConnectionRule, ValueRule, rule_subject
from .models.snapshot import DispatchStats, EngineSnapshot


def bold(text: str) -> str:
    return f"<b>{html.escape(str(text))}</b>"


def code(text: str) -> str:
    return f"<code>{html.escape(str(text))}</code>"


def chunk(msg: str, size: int = 4000) -> list[str]:
    """Split message into chunks ensuring no chunk exceeds size limit."""
    if len(msg) <= size:
        return [msg]

    lines = msg.splitlines()
    chunks: list[str] = []
    current = ""
    for line in lines:
        if len(line) > size:
            if current:
                chunks.append(current)
                current = ""
            start = 0
            while start < len(line):
                chunks.append(line[start : start + size])
                start += size
            continue
        added_length = len(line) + (1 if current else 0)
        if len(current) + added_length > size and current:
            chunks.append(current)
            current = line
        else:
            current = f"{current}\n{line}" if current else line
    if current:
        chunks.append(current)
    return chunks


def _format_timestamp(ts: float | None) -> str:
    if not ts:
        return "never"
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(ts))


def describe_rule(rule: AlertRule) -> str:
    if isinstance(rule, ValueRule):
        op = ">" if rule.condition == "gt" else "<"
        return f"register {rule.register_id} {op} {format_number(rule.threshold)}"
    if isinstance(rule, BitRule):
        return f"register {rule.register_id} bit {rule.bit_position} = {rule.bit_value}"
    if isinstance(rule, ConnectionRule):
        return f"gateway {rule.gateway_id} {rule.condition}"
    raise TypeError(f"Unhandled rule type: {type(rule).__name__}")


def _state_label(state: bool | None) -> str:
    if state is None:
        return "not seen"
    return "TRIGGERED" if state else "ok"


def render_alert_status(rules: tuple[AlertRule, ...], snapshot: EngineSnapshot) -> str:
    lines = [
        f"{bold('Alert rules:')} {snapshot.rule_count} enabled | "
        f"{bold('Triggered:')} {len(snapshot.triggered_rule_ids)}",
        f"{bold('Last reload:')} {html.escape(_format_timestamp(snapshot.last_reload_ts))}"
        f" | reload failures {snapshot.reload_failures}"
        f" | events {snapshot.events_processed}",
    ]
    if not rules:
        lines.append("<i>No enabled rules.</i>")
        return "\n".join(lines)
    ordered = sorted(rules, key=lambda r: (rule_subject(r), r.name))
    for rule in ordered:
        state = snapshot.trigger_state.get(rule.id)
        lines.append(
            f"{code(rule.id)} {html.escape(rule.name)}: "
            f"{html.escape(describe_rule(rule))} ({_state_label(state)})"
        )
    return "\n".join(lines)


def render_rule_detail(rule: AlertRule, state: bool | None) -> str:
    lines = [
        f"{bold('Rule:')} {code(rule.id)} {html.escape(rule.name)}",
        f"{bold('Type:')} {html.escape(rule.rule_type)}",
        f"{bold('Condition:')} {html.escape(describe_rule(rule))}",
        f"{bold('Enabled:')} {'yes' if rule.enabled else 'no'}",
        f"{bold('State:')} {_state_label(state)}",
    ]
    if rule.message:
        lines.append(f"{bold('Message:')} {html.escape(rule.message)}")
    return "\n".join(lines)


def render_notification_history(notifications: list[Notification]) -> str:
    if not notifications:
        return "<i>No alerts sent since startup.</i>"
    lines = [bold("Recent alerts:")]
    for n in notifications:
        lines.append(
            f"{html.escape(_format_timestamp(n.triggered_at))} "
            f"{code(n.rule_id)} {html.escape(n.message or n.rule_name)}"
        )
    return "\n".join(lines)


def render_dispatch_stats(stats: DispatchStats, pending: int) -> str:
    line = (
        f"{bold('Dispatch:')} sent {stats.sent} failed {stats.failed} "
        f"dropped {stats.dropped} queued {pending} "
        f"last {html.escape(_format_timestamp(stats.last_sent_ts))}"
    )
    return line
