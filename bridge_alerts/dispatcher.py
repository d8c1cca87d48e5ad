"""Notification dispatcher (queue + worker with bounded retry)."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Iterable

from .errors import TransportError
from .models.events import Notification
from .models.snapshot import DispatchStats
from .transports import Transport

logger = logging.getLogger(__name__)

_QUEUE_MAX = 500


class Dispatcher:
    """Delivers notifications off the evaluation path.

    ``submit`` never blocks the caller. A worker task pulls notifications from
    the queue and hands each one to every transport; a transport gets up to
    ``max_attempts`` tries with exponential backoff, after which the
    notification is given up for that transport and logged.
    """

    def __init__(
        self,
        transports: Iterable[Transport],
        max_attempts: int = 3,
        base_delay_s: float = 1.0,
        queue_size: int = _QUEUE_MAX,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.transports = list(transports)
        self.max_attempts = max(1, int(max_attempts))
        self.base_delay_s = max(0.0, float(base_delay_s))
        self.stats = DispatchStats()
        self._queue: asyncio.Queue[Notification] = asyncio.Queue(maxsize=queue_size)
        self._sleep = sleep
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._worker(), name="alert-dispatcher")

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def join(self) -> None:
        """Wait until every queued notification has been handled."""
        await self._queue.join()

    def submit(self, notification: Notification) -> bool:
        try:
            self._queue.put_nowait(notification)
        except asyncio.QueueFull:
            self.stats.dropped += 1
            logger.warning(
                "Dispatch queue full, dropping alert for rule %s", notification.rule_id
            )
            return False
        return True

    async def _send_with_retry(
        self, transport: Transport, notification: Notification
    ) -> bool:
        for attempt in range(self.max_attempts):
            try:
                await transport.send(notification)
                return True
            except TransportError as exc:
                self.stats.last_error = str(exc)
                logger.error(
                    "Attempt %d/%d to send alert %s via %s failed: %s",
                    attempt + 1,
                    self.max_attempts,
                    notification.rule_id,
                    transport.name,
                    exc,
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.stats.last_error = str(exc)
                logger.exception(
                    "Unexpected error sending alert %s via %s",
                    notification.rule_id,
                    transport.name,
                )
            if attempt < self.max_attempts - 1:
                await self._sleep(self.base_delay_s * (2**attempt))
        return False

    async def dispatch(self, notification: Notification) -> bool:
        """Deliver through every transport. True if at least one succeeded."""
        if not self.transports:
            logger.warning("No transports configured; alert %s lost", notification.rule_id)
            self.stats.failed += 1
            return False
        results = [
            await self._send_with_retry(transport, notification)
            for transport in self.transports
        ]
        if any(results):
            self.stats.sent += 1
            self.stats.last_sent_ts = time.time()
            return True
        self.stats.failed += 1
        logger.error(
            "Giving up on alert %s (%s) after %d attempts",
            notification.rule_id,
            notification.rule_name,
            self.max_attempts,
        )
        return False

    async def _worker(self) -> None:
        logger.info(
            "Starting alert dispatcher (transports=%s)",
            ", ".join(t.name for t in self.transports) or "none",
        )
        while True:
            notification = await self._queue.get()
            try:
                await self.dispatch(notification)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Dispatcher worker error")
            finally:
                self._queue.task_done()


__all__ = ["Dispatcher"]
