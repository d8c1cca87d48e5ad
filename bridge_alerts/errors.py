"""Exception types shared across the alerting pipeline."""

from __future__ import annotations


class RuleNotFound(KeyError):
    """Raised by a rule store when a rule id has no document."""


class RuleDocumentError(ValueError):
    """Raised when a stored rule document cannot be turned into a rule."""


class StoreUnavailable(RuntimeError):
    """Raised when the rule store cannot be read right now."""


class MalformedEvent(ValueError):
    """Raised while normalizing a telemetry payload that lacks required fields."""


class TransportError(RuntimeError):
    """Raised by a notification transport when delivery fails."""


__all__ = [
    "MalformedEvent",
    "RuleDocumentError",
    "RuleNotFound",
    "StoreUnavailable",
    "TransportError",
]
