"""Alert rule evaluation over the live signal stream.

Trigger state (rule id -> currently triggered) lives only in this process. It
starts empty, each rule's entry is created on its first relevant event, and all
of it is gone after a restart; nothing here is written back to the rule store.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections import deque
from typing import Callable

from .errors import StoreUnavailable
from .models.events import ConnectionChange, Notification, SignalEvent, ValueUpdate
from .models.rules import AlertRule, BitRule, ConnectionRule, ValueRule
from .models.snapshot import EngineSnapshot
from .rule_store import RuleStore

logger = logging.getLogger(__name__)

HISTORY_SIZE = 100
RELOAD_DEBOUNCE_S = 0.5

_UNSEEN = object()

_REGISTER = "register"
_GATEWAY = "gateway"


def _subject_key(rule: AlertRule) -> tuple[str, str]:
    if isinstance(rule, (ValueRule, BitRule)):
        return _REGISTER, rule.register_id
    if isinstance(rule, ConnectionRule):
        return _GATEWAY, rule.gateway_id
    raise TypeError(f"Unhandled rule type: {type(rule).__name__}")


def _event_key(event: SignalEvent) -> tuple[str, str]:
    if isinstance(event, ValueUpdate):
        return _REGISTER, event.register_id
    if isinstance(event, ConnectionChange):
        return _GATEWAY, event.gateway_id
    raise TypeError(f"Unhandled event type: {type(event).__name__}")


def _bit_is_set(value: float, position: int) -> int:
    if not math.isfinite(value):
        return -1
    return (int(value) >> position) & 1


def is_triggered(rule: AlertRule, event: SignalEvent) -> bool | None:
    """Compute the trigger boolean of ``rule`` for ``event``.

    Returns ``None`` when the event kind does not apply to the rule kind.
    Value comparisons are strict, so a reading equal to the threshold never
    triggers.
    """
    if isinstance(rule, ValueRule):
        if not isinstance(event, ValueUpdate):
            return None
        if rule.condition == "gt":
            return event.value > rule.threshold
        if rule.condition == "lt":
            return event.value < rule.threshold
        raise ValueError(f"Unhandled value condition: {rule.condition!r}")
    if isinstance(rule, BitRule):
        if not isinstance(event, ValueUpdate):
            return None
        return _bit_is_set(event.value, rule.bit_position) == rule.bit_value
    if isinstance(rule, ConnectionRule):
        if not isinstance(event, ConnectionChange):
            return None
        if rule.condition == "connected":
            return event.connected is True
        if rule.condition == "disconnected":
            return event.connected is False
        raise ValueError(f"Unhandled connection condition: {rule.condition!r}")
    raise TypeError(f"Unhandled rule type: {type(rule).__name__}")


def format_number(value: float) -> str:
    if math.isfinite(value) and value == int(value):
        return str(int(value))
    return f"{value:.4f}".rstrip("0").rstrip(".")


def _default_message(rule: AlertRule) -> str:
    if isinstance(rule, ValueRule):
        op = ">" if rule.condition == "gt" else "<"
        return f"{{ruleName}}: value {{value}} {op} {{threshold}}"
    if isinstance(rule, BitRule):
        return f"{{ruleName}}: bit {rule.bit_position} is {rule.bit_value} (value {{value}})"
    if isinstance(rule, ConnectionRule):
        return f"{{ruleName}}: gateway {rule.gateway_id} is {{status}}"
    raise TypeError(f"Unhandled rule type: {type(rule).__name__}")


def render_message(rule: AlertRule, event: SignalEvent) -> str:
    """Fill the rule's message template placeholders from the event."""
    text = rule.message or _default_message(rule)
    text = text.replace("{ruleName}", rule.name)
    if isinstance(event, ValueUpdate):
        text = text.replace("{value}", format_number(event.value))
        if isinstance(rule, ValueRule):
            text = text.replace("{threshold}", format_number(rule.threshold))
    elif isinstance(event, ConnectionChange):
        status = "connected" if event.connected else "disconnected"
        text = text.replace("{status}", status)
    return text


def build_notification(
    rule: AlertRule, event: SignalEvent, triggered_at: float
) -> Notification:
    return Notification(
        rule_id=rule.id,
        rule_name=rule.name,
        subject=f"Alert: {rule.name}",
        message=render_message(rule, event),
        triggered_at=triggered_at,
    )


class AlertEngine:
    """Edge-triggered evaluation of enabled rules.

    Each rule is either untriggered (the initial state) or triggered. Only the
    untriggered -> triggered transition produces a notification; staying
    triggered or clearing is silent. Disabled rules are not part of the rule
    snapshot, so their last trigger state is kept as is until they are enabled
    again and compared against the next relevant event.
    """

    def __init__(
        self,
        store: RuleStore,
        dispatcher=None,
        history_size: int = HISTORY_SIZE,
        reload_debounce_s: float = RELOAD_DEBOUNCE_S,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.reload_debounce_s = reload_debounce_s
        self._clock = clock
        self._rules: tuple[AlertRule, ...] = ()
        self._index: dict[tuple[str, str], tuple[AlertRule, ...]] = {}
        self._trigger_state: dict[str, bool] = {}
        self._lock = asyncio.Lock()
        self._history: deque[Notification] = deque(maxlen=max(1, history_size))
        self._last_reload_ts: float | None = None
        self._reload_failures = 0
        self._events_processed = 0
        self._pending_reload: asyncio.Task | None = None

    # -- rule snapshot -------------------------------------------------

    def set_rules(self, rules: list[AlertRule], known_ids: set[str] | None = None) -> None:
        """Replace the rule snapshot in one step.

        ``known_ids`` is every id still in the store, disabled rules included.
        Trigger state of any other rule is forgotten; disabled rules keep theirs.
        """
        enabled = tuple(r for r in rules if r.enabled)
        index: dict[tuple[str, str], list[AlertRule]] = {}
        for rule in enabled:
            index.setdefault(_subject_key(rule), []).append(rule)
        self._rules = enabled
        self._index = {key: tuple(items) for key, items in index.items()}
        self._last_reload_ts = self._clock()
        if known_ids is not None:
            keep = set(known_ids) | {r.id for r in enabled}
            for rule_id in [i for i in self._trigger_state if i not in keep]:
                del self._trigger_state[rule_id]
                logger.debug("Forgot trigger state of deleted rule %s", rule_id)

    def rules(self) -> tuple[AlertRule, ...]:
        return self._rules

    def _fetch_rules(self) -> tuple[list[AlertRule], set[str]]:
        return self.store.list_enabled_rules(), self.store.rule_ids()

    async def refresh_rules(self) -> bool:
        """Reload enabled rules from the store.

        When the store is unavailable the previous snapshot stays in effect.
        """
        try:
            rules, known_ids = await asyncio.to_thread(self._fetch_rules)
        except StoreUnavailable as exc:
            self._reload_failures += 1
            logger.warning("Rule store unavailable, keeping %d rules: %s", len(self._rules), exc)
            return False
        except asyncio.CancelledError:
            raise
        except Exception:
            self._reload_failures += 1
            logger.exception("Failed to load alert rules")
            return False
        self.set_rules(rules, known_ids)
        logger.info("%d alert rules loaded.", len(self._rules))
        return True

    def request_reload(self) -> None:
        """Schedule a reload, collapsing bursts of edits into one fetch."""
        if self._pending_reload is not None and not self._pending_reload.done():
            self._pending_reload.cancel()
        self._pending_reload = asyncio.create_task(self._debounced_reload())

    async def _debounced_reload(self) -> None:
        await asyncio.sleep(self.reload_debounce_s)
        await self.refresh_rules()

    async def cancel_pending_reload(self) -> None:
        task, self._pending_reload = self._pending_reload, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def reload_loop(self, interval_s: float) -> None:
        logger.info("Starting rule reload loop (interval=%ss)", interval_s)
        while True:
            try:
                await asyncio.sleep(interval_s)
                await self.refresh_rules()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Rule reload loop error")

    async def watch_store(self, interval_s: float) -> None:
        """Request a debounced reload whenever the store reports a change."""
        logger.info("Watching rule store for changes (interval=%ss)", interval_s)
        last: object = _UNSEEN
        while True:
            try:
                token = await asyncio.to_thread(self.store.change_token)
            except asyncio.CancelledError:
                raise
            except StoreUnavailable as exc:
                logger.warning("Cannot check rule store for changes: %s", exc)
            except Exception:
                logger.exception("Rule watch loop error")
            else:
                if last is not _UNSEEN and token != last:
                    logger.info("Rule store changed, scheduling reload")
                    self.request_reload()
                last = token
            await asyncio.sleep(interval_s)

    # -- evaluation ----------------------------------------------------

    async def evaluate(self, event: SignalEvent) -> list[Notification]:
        """Update trigger state for ``event`` and return new notifications."""
        self._events_processed += 1
        rules = self._index.get(_event_key(event))
        if not rules:
            return []

        notifications: list[Notification] = []
        async with self._lock:
            now = self._clock()
            for rule in rules:
                triggered = is_triggered(rule, event)
                if triggered is None:
                    continue
                previous = self._trigger_state.get(rule.id, False)
                self._trigger_state[rule.id] = triggered
                if triggered and not previous:
                    logger.info("Alert rule triggered: %s (%s)", rule.name, rule.id)
                    notification = build_notification(rule, event, now)
                    self._history.appendleft(notification)
                    notifications.append(notification)
                elif previous and not triggered:
                    logger.info("Alert rule cleared: %s (%s)", rule.name, rule.id)
        return notifications

    async def process(self, event: SignalEvent) -> list[Notification]:
        """Evaluate and hand notifications to the dispatcher without waiting."""
        notifications = await self.evaluate(event)
        if self.dispatcher is not None:
            for notification in notifications:
                self.dispatcher.submit(notification)
        return notifications

    async def run(self, events) -> None:
        """Consume events until the subscription ends."""
        logger.info("Starting alert evaluation loop")
        async for event in events:
            try:
                await self.process(event)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Failed evaluating event %s", event)
        logger.info("Alert evaluation loop stopped")

    # -- query interface -----------------------------------------------

    def trigger_state_for(self, rule_id: str) -> bool | None:
        return self._trigger_state.get(rule_id)

    def snapshot(self) -> EngineSnapshot:
        return EngineSnapshot(
            trigger_state=dict(self._trigger_state),
            rule_count=len(self._rules),
            last_reload_ts=self._last_reload_ts,
            reload_failures=self._reload_failures,
            events_processed=self._events_processed,
        )

    def recent_notifications(self, limit: int = 10) -> list[Notification]:
        """Newest first."""
        return list(self._history)[: max(0, limit)]


__all__ = [
    "AlertEngine",
    "build_notification",
    "format_number",
    "is_triggered",
    "render_message",
]
