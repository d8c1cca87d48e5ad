"""Shared test fixtures and dummy classes."""

from __future__ import annotations

from typing import Any

import pytest

from bridge_alerts.errors import TransportError
from bridge_alerts.models.events import Notification


class DummyChat:
    """Dummy Telegram chat for testing."""

    def __init__(self, chat_id: int) -> None:
        self.id = chat_id
        self.type = "private"
        self.sent: list[str] = []

    async def send_message(self, text: str) -> None:
        self.sent.append(text)


class DummyUser:
    """Dummy Telegram user for testing."""

    def __init__(self, user_id: int, username: str | None = None) -> None:
        self.id = user_id
        self.username = username


class DummyMessage:
    """Dummy Telegram message for testing."""

    def __init__(self) -> None:
        self.replies: list[str] = []

    async def reply_text(self, text: str, **_: Any) -> None:
        self.replies.append(text)


class DummyUpdate:
    """Dummy Telegram update for testing."""

    def __init__(self, chat_id: int, user_id: int) -> None:
        self.effective_chat = DummyChat(chat_id)
        self.effective_user = DummyUser(user_id)
        self.message = DummyMessage()


class DummyApplication:
    """Dummy Telegram application for testing."""

    def __init__(self) -> None:
        self.bot_data: dict[str, object] = {}
        self.bot = None


class DummyContext:
    """Dummy Telegram context for testing."""

    def __init__(self, args: list[str] | None = None) -> None:
        self.args = args or []
        self.application = DummyApplication()


class DummyBot:
    """Dummy Telegram bot recording sent messages."""

    def __init__(self, failing: set[int] | None = None) -> None:
        self.sent: list[tuple[int, str]] = []
        self.failing = failing or set()

    async def send_message(self, chat_id: int, text: str, **_: Any) -> None:
        from telegram.error import TelegramError

        if chat_id in self.failing:
            raise TelegramError("chat not found")
        self.sent.append((chat_id, text))


class RecordingTransport:
    """Transport that records notifications and can fail a number of times."""

    def __init__(self, name: str = "recording", fail_times: int = 0) -> None:
        self.name = name
        self.fail_times = fail_times
        self.attempts = 0
        self.delivered: list[Notification] = []

    async def send(self, notification: Notification) -> None:
        self.attempts += 1
        if self.attempts <= self.fail_times:
            raise TransportError("mail server unreachable")
        self.delivered.append(notification)


async def no_sleep(_: float) -> None:
    return None


def value_rule_doc(
    rule_id: str = "r1",
    register_id: str = "R1",
    condition: str = "gt",
    threshold: float = 50,
    enabled: bool = True,
    message: str = "",
) -> dict:
    return {
        "_id": rule_id,
        "name": f"rule {rule_id}",
        "ruleType": "value",
        "registerId": register_id,
        "condition": condition,
        "threshold": threshold,
        "enabled": enabled,
        "message": message,
    }


def connection_rule_doc(
    rule_id: str = "c1",
    gateway_id: str = "G1",
    condition: str = "disconnected",
    enabled: bool = True,
    message: str = "",
) -> dict:
    return {
        "_id": rule_id,
        "name": f"rule {rule_id}",
        "ruleType": "connection",
        "gatewayId": gateway_id,
        "condition": condition,
        "enabled": enabled,
        "message": message,
    }


@pytest.fixture
def recording_transport() -> RecordingTransport:
    return RecordingTransport()
