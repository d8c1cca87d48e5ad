"""Notification transports (mail, Telegram, log)."""

from __future__ import annotations

import asyncio
import html
import logging
import smtplib
import ssl
from dataclasses import dataclass
from datetime import datetime
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Iterable, Protocol

from telegram.constants import ParseMode
from telegram.error import TelegramError

from .errors import TransportError
from .models.events import Notification
from .models.settings import Settings

logger = logging.getLogger(__name__)

_SMTP_TIMEOUT_S = 20.0


class Transport(Protocol):
    name: str

    async def send(self, notification: Notification) -> None: ...


@dataclass(frozen=True)
class MailSettings:
    host: str
    port: int
    secure: bool
    user: str | None
    password: str | None
    sender: str
    to: str

    @classmethod
    def from_settings(cls, settings: Settings) -> "MailSettings | None":
        if not settings.MAIL_HOST or not settings.MAIL_TO:
            return None
        return cls(
            host=settings.MAIL_HOST,
            port=settings.MAIL_PORT,
            secure=settings.MAIL_SECURE,
            user=settings.MAIL_USER,
            password=settings.MAIL_PASS,
            sender=settings.MAIL_FROM,
            to=settings.MAIL_TO,
        )


def _recipients(raw: str) -> list[str]:
    return [p.strip() for p in raw.replace(";", ",").split(",") if p.strip()]


class MailTransport:
    """SMTP delivery; the blocking client runs in a worker thread."""

    name = "mail"

    def __init__(self, settings: MailSettings, timeout_s: float = _SMTP_TIMEOUT_S):
        self.settings = settings
        self.timeout_s = timeout_s

    def build_message(self, notification: Notification) -> MIMEText:
        msg = MIMEText(notification.message, "plain", "utf-8")
        msg["Subject"] = notification.subject
        from_addr = self.settings.user or self.settings.sender
        msg["From"] = formataddr((self.settings.sender, from_addr))
        msg["To"] = ", ".join(_recipients(self.settings.to))
        return msg

    def _send_sync(self, msg: MIMEText) -> None:
        s = self.settings
        if s.secure:
            client: smtplib.SMTP = smtplib.SMTP_SSL(
                s.host, s.port, timeout=self.timeout_s,
                context=ssl.create_default_context(),
            )
        else:
            client = smtplib.SMTP(s.host, s.port, timeout=self.timeout_s)
        with client:
            if not s.secure:
                client.ehlo()
                if client.has_extn("starttls"):
                    client.starttls(context=ssl.create_default_context())
                    client.ehlo()
            if s.user and s.password:
                client.login(s.user, s.password)
            client.send_message(msg, to_addrs=_recipients(s.to))

    async def send(self, notification: Notification) -> None:
        msg = self.build_message(notification)
        try:
            await asyncio.to_thread(self._send_sync, msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise TransportError(f"SMTP delivery failed: {exc}") from exc
        logger.info(
            "Mail sent to %s with subject: %s", self.settings.to, notification.subject
        )


def format_telegram_message(notification: Notification) -> str:
    when = datetime.fromtimestamp(notification.triggered_at).strftime(
        "%Y-%m-%d %H:%M:%S"
    )
    body = html.escape(notification.message or notification.rule_name)
    return (
        f"<b>ALERT</b> {html.escape(notification.rule_name)}: {body}\n"
        f"<i>{html.escape(when)}</i> [rule <code>{html.escape(notification.rule_id)}</code>]"
    )


class TelegramTransport:
    """Sends alerts to allow-listed chats through the bot."""

    name = "telegram"

    def __init__(self, bot, chat_ids: Iterable[int]) -> None:
        self.bot = bot
        self.chat_ids = sorted(set(chat_ids))

    async def send(self, notification: Notification) -> None:
        if not self.chat_ids:
            raise TransportError("No chat ids configured")
        text = format_telegram_message(notification)
        delivered = 0
        last_error: Exception | None = None
        for chat_id in self.chat_ids:
            try:
                await self.bot.send_message(
                    chat_id=chat_id, text=text, parse_mode=ParseMode.HTML
                )
                delivered += 1
            except TelegramError as exc:
                last_error = exc
                logger.warning("Failed sending alert to chat_id=%s: %s", chat_id, exc)
        if not delivered:
            raise TransportError(f"Telegram delivery failed: {last_error}")


class LogTransport:
    """Writes alerts to the log; used when no other transport is configured."""

    name = "log"

    async def send(self, notification: Notification) -> None:
        logger.warning(
            "ALERT %s [%s]: %s",
            notification.rule_name,
            notification.rule_id,
            notification.message,
        )


__all__ = [
    "LogTransport",
    "MailSettings",
    "MailTransport",
    "TelegramTransport",
    "Transport",
    "format_telegram_message",
]
