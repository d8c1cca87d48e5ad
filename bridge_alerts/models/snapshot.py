"""Read-only views over engine and dispatcher state."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class DispatchStats:
    sent: int = 0
    failed: int = 0
    dropped: int = 0
    last_error: str | None = None
    last_sent_ts: float | None = None


@dataclass(frozen=True)
class EngineSnapshot:
    """Point-in-time copy of the engine's transient state."""

    trigger_state: dict[str, bool] = field(default_factory=dict)
    rule_count: int = 0
    last_reload_ts: float | None = None
    reload_failures: int = 0
    events_processed: int = 0

    @property
    def triggered_rule_ids(self) -> list[str]:
        return sorted(rule_id for rule_id, on in self.trigger_state.items() if on)
