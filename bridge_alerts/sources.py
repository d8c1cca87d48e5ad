"""Telemetry poller feeding the signal feed from the monitoring HTTP API."""

from __future__ import annotations

import asyncio
import logging
import time

import httpx

from .feed import CONNECTION_STATUS_CHANGED, SignalFeed, normalize_event

logger = logging.getLogger(__name__)


class TelemetryPoller:
    """Polls ``/registers`` and ``/gateways`` of the monitoring service.

    Register readings are published on every poll, duplicates included.
    Gateway connectivity is published only when it differs from the previous
    poll, whether reported as a ``status`` string or a ``connected`` flag, so
    the feed sees transitions rather than a steady stream of states.
    """

    def __init__(
        self,
        feed: SignalFeed,
        base_url: str,
        interval_s: float = 5.0,
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.feed = feed
        self.base_url = base_url.rstrip("/")
        self.interval_s = interval_s
        self.timeout_s = timeout_s
        self._transport = transport
        self._gateway_connected: dict[str, bool] = {}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout_s, transport=self._transport
        )

    async def _get_list(self, client: httpx.AsyncClient, path: str) -> list | None:
        try:
            response = await client.get(path)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            logger.warning("Telemetry request %s failed: %s", path, exc)
            return None
        except ValueError as exc:
            logger.warning("Telemetry response %s is not JSON: %s", path, exc)
            return None
        if not isinstance(data, list):
            logger.warning("Telemetry response %s is not a list", path)
            return None
        return data

    async def poll_once(self, client: httpx.AsyncClient) -> int:
        published = 0
        registers = await self._get_list(client, "/registers")
        for item in registers or []:
            if self.feed.publish_register_update(item):
                published += 1

        gateways = await self._get_list(client, "/gateways")
        for item in gateways or []:
            event = normalize_event(CONNECTION_STATUS_CHANGED, item)
            if event is None:
                self.feed.dropped += 1
                continue
            if self._gateway_connected.get(event.gateway_id) == event.connected:
                continue
            self._gateway_connected[event.gateway_id] = event.connected
            self.feed.publish(event)
            published += 1
        return published

    async def run(self) -> None:
        logger.info(
            "Starting telemetry poller for %s (interval=%ss)",
            self.base_url,
            self.interval_s,
        )
        async with self._client() as client:
            while True:
                try:
                    start = time.monotonic()
                    await self.poll_once(client)
                    elapsed = time.monotonic() - start
                    await asyncio.sleep(max(0.0, self.interval_s - elapsed))
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("Telemetry poller error")
                    await asyncio.sleep(self.interval_s)


__all__ = ["TelemetryPoller"]
