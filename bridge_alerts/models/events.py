"""Signal events and notifications."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class ValueUpdate:
    register_id: str
    value: float
    timestamp: float


@dataclass(frozen=True)
class ConnectionChange:
    gateway_id: str
    connected: bool
    timestamp: float


SignalEvent = Union[ValueUpdate, ConnectionChange]


@dataclass(frozen=True)
class Notification:
    rule_id: str
    rule_name: str
    subject: str
    message: str
    triggered_at: float
