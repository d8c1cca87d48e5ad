"""Signal feed: normalizes raw telemetry payloads and fans events out.

Pollers push raw ``registerUpdated`` / ``connectionStatusChanged`` payloads;
subscribers receive typed events in the order they were published. Duplicate
readings are passed through untouched.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Any

from .errors import MalformedEvent
from .models.events import ConnectionChange, SignalEvent, ValueUpdate

logger = logging.getLogger(__name__)

REGISTER_UPDATED = "registerUpdated"
CONNECTION_STATUS_CHANGED = "connectionStatusChanged"
SUBSCRIPTION_QUEUE_SIZE = 1000

_CLOSED = object()


def _parse_timestamp(raw: object, *, millis: bool) -> float:
    if raw is None or isinstance(raw, bool):
        return time.time()
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return time.time()
    if not math.isfinite(value) or value <= 0:
        return time.time()
    return value / 1000.0 if millis else value


def _parse_subject(payload: dict[str, Any], key: str) -> str:
    raw = payload.get(key)
    if raw is None or isinstance(raw, bool):
        raise MalformedEvent(f"missing '{key}'")
    subject = str(raw).strip()
    if not subject:
        raise MalformedEvent(f"empty '{key}'")
    return subject


def _parse_register_update(payload: dict[str, Any]) -> ValueUpdate:
    register_id = _parse_subject(payload, "id")
    raw_value = payload.get("value")
    if raw_value is None:
        raise MalformedEvent("missing 'value'")
    try:
        value = float(raw_value)
    except (TypeError, ValueError) as exc:
        raise MalformedEvent(f"non-numeric value {raw_value!r}") from exc
    if math.isnan(value):
        raise MalformedEvent("value is NaN")
    return ValueUpdate(
        register_id=register_id,
        value=value,
        timestamp=_parse_timestamp(payload.get("lastUpdated"), millis=True),
    )


def _parse_connection_change(payload: dict[str, Any]) -> ConnectionChange | None:
    gateway_id = _parse_subject(payload, "gatewayId")
    connected = payload.get("connected")
    if not isinstance(connected, bool):
        status = str(payload.get("status") or "").strip().lower()
        if status == "connected":
            connected = True
        elif status == "disconnected":
            connected = False
        elif status == "unknown":
            return None
        else:
            raise MalformedEvent(f"invalid status {payload.get('status')!r}")
    return ConnectionChange(
        gateway_id=gateway_id,
        connected=connected,
        timestamp=_parse_timestamp(payload.get("timestamp"), millis=False),
    )


def normalize_event(kind: str, payload: object) -> SignalEvent | None:
    """Turn a raw poller payload into a signal event.

    Returns ``None`` for payloads that are malformed (logged as a warning) or
    that carry no usable state, such as an ``unknown`` gateway status.
    """
    if not isinstance(payload, dict):
        logger.warning("Dropping %s event: payload is not an object", kind)
        return None
    try:
        if kind == REGISTER_UPDATED:
            return _parse_register_update(payload)
        if kind == CONNECTION_STATUS_CHANGED:
            event = _parse_connection_change(payload)
            if event is None:
                logger.debug(
                    "Ignoring unknown status for gateway %s", payload.get("gatewayId")
                )
            return event
        raise MalformedEvent(f"unknown event kind {kind!r}")
    except MalformedEvent as exc:
        logger.warning("Dropping malformed %s event: %s", kind, exc)
        return None


class Subscription:
    """Async iterator over events published after it was created.

    At most ``maxsize`` events wait for the consumer; newer events are dropped
    with a warning while it is full.
    """

    def __init__(self, feed: "SignalFeed", maxsize: int = SUBSCRIPTION_QUEUE_SIZE) -> None:
        self._feed = feed
        self.maxsize = max(1, maxsize)
        # One extra slot so the close marker always fits.
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=self.maxsize + 1)
        self.closed = False
        self.dropped = 0

    def _offer(self, event: SignalEvent) -> bool:
        if self.closed:
            return False
        if self._queue.qsize() >= self.maxsize:
            self.dropped += 1
            logger.warning(
                "Subscriber queue full (%d), dropping %s", self.maxsize, type(event).__name__
            )
            return False
        self._queue.put_nowait(event)
        return True

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._feed._unsubscribe(self)
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> SignalEvent:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


class SignalFeed:
    def __init__(self, queue_size: int = SUBSCRIPTION_QUEUE_SIZE) -> None:
        self.queue_size = queue_size
        self._subscribers: list[Subscription] = []
        self._closed = False
        self.published = 0
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self) -> Subscription:
        if self._closed:
            raise RuntimeError("Signal feed is closed")
        sub = Subscription(self, self.queue_size)
        self._subscribers.append(sub)
        return sub

    def _unsubscribe(self, sub: Subscription) -> None:
        try:
            self._subscribers.remove(sub)
        except ValueError:
            pass

    def publish(self, event: SignalEvent) -> None:
        if self._closed:
            return
        self.published += 1
        for sub in list(self._subscribers):
            sub._offer(event)

    def publish_raw(self, kind: str, payload: object) -> bool:
        """Normalize and publish a raw payload. Returns False when it was dropped."""
        event = normalize_event(kind, payload)
        if event is None:
            self.dropped += 1
            return False
        self.publish(event)
        return True

    def publish_register_update(self, payload: object) -> bool:
        return self.publish_raw(REGISTER_UPDATED, payload)

    def publish_connection_status(self, payload: object) -> bool:
        return self.publish_raw(CONNECTION_STATUS_CHANGED, payload)

    def close(self) -> None:
        """End every subscription; later publishes are ignored."""
        if self._closed:
            return
        self._closed = True
        for sub in list(self._subscribers):
            sub.close()


__all__ = [
    "CONNECTION_STATUS_CHANGED",
    "REGISTER_UPDATED",
    "SignalFeed",
    "Subscription",
    "normalize_event",
]
