"""Alert rule dataclasses and document parsing."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Union

from ..errors import RuleDocumentError

ValueCondition = Literal["gt", "lt"]
ConnectionCondition = Literal["disconnected", "connected"]

_VALUE_CONDITIONS = {"gt", "lt"}
_CONNECTION_CONDITIONS = {"disconnected", "connected"}
_MAX_BIT_POSITION = 63


@dataclass(frozen=True)
class ValueRule:
    id: str
    name: str
    message: str
    register_id: str
    condition: ValueCondition
    threshold: float
    enabled: bool = True
    rule_type: Literal["value"] = "value"


@dataclass(frozen=True)
class ConnectionRule:
    id: str
    name: str
    message: str
    gateway_id: str
    condition: ConnectionCondition
    enabled: bool = True
    rule_type: Literal["connection"] = "connection"


@dataclass(frozen=True)
class BitRule:
    id: str
    name: str
    message: str
    register_id: str
    bit_position: int
    bit_value: int
    enabled: bool = True
    rule_type: Literal["bit"] = "bit"


AlertRule = Union[ValueRule, ConnectionRule, BitRule]


def _require_str(doc: dict, key: str) -> str:
    value = doc.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise RuleDocumentError(f"Missing field '{key}'")
    return str(value).strip()


def _parse_enabled(raw: object) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        return raw.strip().lower() in {"1", "true", "yes", "on"}
    return bool(raw)


def rule_from_document(doc: dict) -> AlertRule:
    """Build an immutable rule from a stored rule document.

    Documents use the admin UI field names (``_id``, ``ruleType``,
    ``registerId``, ``gatewayId``, ``bitPosition``, ``bitValue``). Any
    bookkeeping keys such as ``lastTriggeredAt`` are ignored.

    Raises:
        RuleDocumentError: when the document cannot describe a valid rule.
    """
    if not isinstance(doc, dict):
        raise RuleDocumentError("Rule document must be an object")

    rule_id = _require_str(doc, "_id")
    name = str(doc.get("name") or rule_id)
    message = str(doc.get("message") or "")
    enabled = _parse_enabled(doc.get("enabled", True))
    rule_type = str(doc.get("ruleType") or "").strip().lower()

    if rule_type == "value":
        condition = str(doc.get("condition") or "").strip().lower()
        if condition not in _VALUE_CONDITIONS:
            raise RuleDocumentError(f"Invalid value condition: {condition!r}")
        try:
            threshold = float(doc.get("threshold"))
        except (TypeError, ValueError) as exc:
            raise RuleDocumentError("Threshold must be numeric") from exc
        return ValueRule(
            id=rule_id,
            name=name,
            message=message,
            register_id=_require_str(doc, "registerId"),
            condition=condition,  # type: ignore[arg-type]
            threshold=threshold,
            enabled=enabled,
        )

    if rule_type == "connection":
        condition = str(doc.get("condition") or "").strip().lower()
        if condition not in _CONNECTION_CONDITIONS:
            raise RuleDocumentError(f"Invalid connection condition: {condition!r}")
        return ConnectionRule(
            id=rule_id,
            name=name,
            message=message,
            gateway_id=_require_str(doc, "gatewayId"),
            condition=condition,  # type: ignore[arg-type]
            enabled=enabled,
        )

    if rule_type == "bit":
        try:
            bit_position = int(doc.get("bitPosition"))
            bit_value = int(doc.get("bitValue"))
        except (TypeError, ValueError) as exc:
            raise RuleDocumentError("bitPosition and bitValue must be integers") from exc
        if not 0 <= bit_position <= _MAX_BIT_POSITION:
            raise RuleDocumentError(f"bitPosition out of range: {bit_position}")
        if bit_value not in {0, 1}:
            raise RuleDocumentError(f"bitValue must be 0 or 1, got {bit_value}")
        return BitRule(
            id=rule_id,
            name=name,
            message=message,
            register_id=_require_str(doc, "registerId"),
            bit_position=bit_position,
            bit_value=bit_value,
            enabled=enabled,
        )

    raise RuleDocumentError(f"Unknown ruleType: {rule_type!r}")


def rule_subject(rule: AlertRule) -> str:
    """Return the register or gateway id a rule watches."""
    if isinstance(rule, (ValueRule, BitRule)):
        return rule.register_id
    if isinstance(rule, ConnectionRule):
        return rule.gateway_id
    raise TypeError(f"Unhandled rule type: {type(rule).__name__}")
