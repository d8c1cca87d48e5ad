"""Background jobs (started once per Application)."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from . import config
from .alerting import AlertEngine
from .dispatcher import Dispatcher
from .feed import SignalFeed, Subscription
from .models.settings import Settings
from .rule_store import JsonRuleStore
from .sources import TelemetryPoller
from .transports import LogTransport, MailSettings, MailTransport, TelegramTransport

logger = logging.getLogger(__name__)

RUNTIME_KEY = "alert_runtime"

_TASK_ENGINE = "alert_engine"
_TASK_RELOAD = "rule_reload"
_TASK_WATCH = "rule_watch"
_TASK_POLLER = "telemetry_poller"


@dataclass
class AlertRuntime:
    """Feed, engine, dispatcher and their tasks for one process."""

    feed: SignalFeed
    engine: AlertEngine
    dispatcher: Dispatcher
    poller: TelemetryPoller | None = None
    reload_interval_s: float = 60.0
    watch_interval_s: float = 0.0
    tasks: dict[str, asyncio.Task] = field(default_factory=dict)
    subscription: Subscription | None = None

    @property
    def started(self) -> bool:
        task = self.tasks.get(_TASK_ENGINE)
        return task is not None and not task.done()

    async def start(self) -> None:
        if self.started:
            return
        await self.engine.refresh_rules()
        self.dispatcher.start()
        self.subscription = self.feed.subscribe()
        self.tasks[_TASK_ENGINE] = asyncio.create_task(
            self.engine.run(self.subscription), name=_TASK_ENGINE
        )
        if self.reload_interval_s > 0:
            self.tasks[_TASK_RELOAD] = asyncio.create_task(
                self.engine.reload_loop(self.reload_interval_s), name=_TASK_RELOAD
            )
        if self.watch_interval_s > 0:
            self.tasks[_TASK_WATCH] = asyncio.create_task(
                self.engine.watch_store(self.watch_interval_s), name=_TASK_WATCH
            )
        if self.poller is not None:
            self.tasks[_TASK_POLLER] = asyncio.create_task(
                self.poller.run(), name=_TASK_POLLER
            )

    async def stop(self) -> None:
        self.feed.close()
        for name, task in list(self.tasks.items()):
            if name != _TASK_ENGINE:
                task.cancel()
        # The engine loop ends on its own once the feed is closed.
        results = await asyncio.gather(*self.tasks.values(), return_exceptions=True)
        for name, result in zip(list(self.tasks), results):
            if isinstance(result, Exception):
                logger.warning("Task %s ended with error: %s", name, result)
        self.tasks.clear()
        await self.engine.cancel_pending_reload()
        await self.dispatcher.stop()
        logger.info("Alert runtime stopped")


def build_transports(settings: Settings, bot=None) -> list:
    transports: list = []
    mail = MailSettings.from_settings(settings)
    if mail is not None:
        transports.append(MailTransport(mail))
    if bot is not None and settings.ALLOWED_CHAT_IDS:
        transports.append(TelegramTransport(bot, settings.ALLOWED_CHAT_IDS))
    if not transports:
        logger.warning("No mail or Telegram transport configured; alerts go to the log")
        transports.append(LogTransport())
    return transports


def build_runtime(settings: Settings | None = None, bot=None) -> AlertRuntime:
    settings = settings or config.settings
    feed = SignalFeed()
    dispatcher = Dispatcher(
        build_transports(settings, bot),
        max_attempts=settings.DISPATCH_MAX_ATTEMPTS,
        base_delay_s=settings.DISPATCH_BACKOFF_S,
    )
    engine = AlertEngine(JsonRuleStore(settings.RULES_FILE), dispatcher=dispatcher)
    poller = None
    if settings.MONITOR_URL:
        poller = TelemetryPoller(
            feed, settings.MONITOR_URL, interval_s=settings.POLL_INTERVAL_S
        )
    return AlertRuntime(
        feed=feed,
        engine=engine,
        dispatcher=dispatcher,
        poller=poller,
        reload_interval_s=settings.RULE_RELOAD_S,
        watch_interval_s=settings.RULE_WATCH_S,
    )


def get_runtime(app) -> AlertRuntime:
    runtime = app.bot_data.get(RUNTIME_KEY)
    if runtime is None:
        runtime = build_runtime(bot=getattr(app, "bot", None))
        app.bot_data[RUNTIME_KEY] = runtime
    return runtime


async def ensure_started(app) -> AlertRuntime:
    runtime = get_runtime(app)
    await runtime.start()
    return runtime


async def shutdown(app) -> None:
    runtime = app.bot_data.get(RUNTIME_KEY)
    if runtime is not None:
        await runtime.stop()
