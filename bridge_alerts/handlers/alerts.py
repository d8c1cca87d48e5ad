from __future__ import annotations

import asyncio
import html
import logging

from telegram.constants import ParseMode

from .. import view
from ..errors import RuleNotFound, StoreUnavailable
from .common import guard, runtime_for

logger = logging.getLogger(__name__)

_DEFAULT_HISTORY = 10
_MAX_HISTORY = 50


async def cmd_alerts(update, context) -> None:
    if not await guard(update, context):
        return
    runtime = runtime_for(context)
    engine = runtime.engine
    args = [a.strip() for a in (context.args or []) if a.strip()]

    if args:
        rule_id = args[0]
        try:
            rule = await asyncio.to_thread(engine.store.get_rule, rule_id)
        except RuleNotFound:
            await update.message.reply_text("Rule not found.")
            return
        except StoreUnavailable as exc:
            logger.warning("Rule lookup failed: %s", exc)
            await update.message.reply_text(
                f"❌ Rule store unavailable: {html.escape(str(exc))}",
                parse_mode=ParseMode.HTML,
            )
            return
        msg = view.render_rule_detail(rule, engine.trigger_state_for(rule.id))
        await update.message.reply_text(msg, parse_mode=ParseMode.HTML)
        return

    msg = view.render_alert_status(engine.rules(), engine.snapshot())
    msg += "\n" + view.render_dispatch_stats(
        runtime.dispatcher.stats, runtime.dispatcher.pending()
    )
    for part in view.chunk(msg):
        await update.message.reply_text(part, parse_mode=ParseMode.HTML)


async def cmd_alerthistory(update, context) -> None:
    if not await guard(update, context):
        return
    limit = _DEFAULT_HISTORY
    if context.args:
        try:
            limit = max(1, min(int(context.args[0]), _MAX_HISTORY))
        except ValueError:
            await update.message.reply_text(
                f"Usage: /alerthistory [n]\nWhere n is between 1-{_MAX_HISTORY}"
            )
            return
    engine = runtime_for(context).engine
    msg = view.render_notification_history(engine.recent_notifications(limit))
    for part in view.chunk(msg):
        await update.message.reply_text(part, parse_mode=ParseMode.HTML)


async def cmd_reloadrules(update, context) -> None:
    if not await guard(update, context):
        return
    engine = runtime_for(context).engine
    ok = await engine.refresh_rules()
    if ok:
        msg = f"Reloaded {len(engine.rules())} enabled rules."
    else:
        msg = (
            "⚠️ Rule store unavailable; still using "
            f"{len(engine.rules())} previously loaded rules."
        )
    await update.message.reply_text(msg)
