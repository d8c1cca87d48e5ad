import asyncio
import json

import pytest

from bridge_alerts.alerting import AlertEngine, is_triggered, render_message
from bridge_alerts.errors import StoreUnavailable
from bridge_alerts.feed import SignalFeed
from bridge_alerts.models.events import ConnectionChange, ValueUpdate
from bridge_alerts.models.rules import ConnectionRule, ValueRule, rule_from_document
from bridge_alerts.rule_store import InMemoryRuleStore, JsonRuleStore
from conftest import connection_rule_doc, value_rule_doc


class CollectingDispatcher:
    def __init__(self) -> None:
        self.submitted = []

    def submit(self, notification) -> bool:
        self.submitted.append(notification)
        return True


class FlakyStore:
    def __init__(self, documents) -> None:
        self.inner = InMemoryRuleStore(documents)
        self.down = False

    def list_enabled_rules(self):
        if self.down:
            raise StoreUnavailable("connection refused")
        return self.inner.list_enabled_rules()

    def get_rule(self, rule_id):
        return self.inner.get_rule(rule_id)

    def rule_ids(self):
        return self.inner.rule_ids()

    def change_token(self):
        if self.down:
            raise StoreUnavailable("connection refused")
        return self.inner.change_token()


def value(register_id: str, v: float) -> ValueUpdate:
    return ValueUpdate(register_id=register_id, value=v, timestamp=1.0)


def conn(gateway_id: str, connected: bool) -> ConnectionChange:
    return ConnectionChange(gateway_id=gateway_id, connected=connected, timestamp=1.0)


async def make_engine(*docs):
    dispatcher = CollectingDispatcher()
    engine = AlertEngine(InMemoryRuleStore(docs), dispatcher=dispatcher, clock=lambda: 100.0)
    assert await engine.refresh_rules()
    return engine, dispatcher


@pytest.mark.parametrize("threshold", [-10.0, 0.0, 50.0, 1e6])
def test_greater_than_boundary(threshold):
    rule = rule_from_document(value_rule_doc(condition="gt", threshold=threshold))
    eps = 1e-3
    assert is_triggered(rule, value("R1", threshold)) is False
    assert is_triggered(rule, value("R1", threshold + eps)) is True
    assert is_triggered(rule, value("R1", threshold - eps)) is False


@pytest.mark.parametrize("threshold", [-10.0, 0.0, 50.0, 1e6])
def test_less_than_boundary(threshold):
    rule = rule_from_document(value_rule_doc(condition="lt", threshold=threshold))
    eps = 1e-3
    assert is_triggered(rule, value("R1", threshold)) is False
    assert is_triggered(rule, value("R1", threshold - eps)) is True
    assert is_triggered(rule, value("R1", threshold + eps)) is False


def test_rule_kind_mismatch_is_not_evaluated():
    value_rule = rule_from_document(value_rule_doc())
    conn_rule = rule_from_document(connection_rule_doc())
    assert is_triggered(value_rule, conn("R1", False)) is None
    assert is_triggered(conn_rule, value("G1", 1)) is None


def test_unknown_rule_variant_raises():
    with pytest.raises(TypeError):
        is_triggered(object(), value("R1", 1))  # type: ignore[arg-type]


def test_bit_rule_evaluation():
    rule = rule_from_document(
        {
            "_id": "b1",
            "ruleType": "bit",
            "registerId": "R1",
            "bitPosition": 2,
            "bitValue": 1,
        }
    )
    assert is_triggered(rule, value("R1", 4)) is True
    assert is_triggered(rule, value("R1", 3)) is False
    assert is_triggered(rule, value("R1", 6.9)) is True
    assert is_triggered(rule, value("R1", float("inf"))) is False


def test_render_message_placeholders():
    rule = rule_from_document(
        value_rule_doc(threshold=50, message="{ruleName}: {value} over {threshold}")
    )
    assert render_message(rule, value("R1", 60.25)) == "rule r1: 60.25 over 50"

    conn_rule = rule_from_document(connection_rule_doc(message="Gateway is {status}"))
    assert render_message(conn_rule, conn("G1", False)) == "Gateway is disconnected"

    default = rule_from_document(value_rule_doc(threshold=50))
    assert render_message(default, value("R1", 60)) == "rule r1: value 60 > 50"


@pytest.mark.asyncio
async def test_value_rule_scenario():
    engine, dispatcher = await make_engine(value_rule_doc("r1", "R1", "gt", 50))

    dispatched_after = []
    for v in (40, 60, 70, 30, 55):
        await engine.process(value("R1", v))
        dispatched_after.append(len(dispatcher.submitted))

    assert dispatched_after == [0, 1, 1, 1, 2]
    assert engine.trigger_state_for("r1") is True
    assert all(n.rule_id == "r1" for n in dispatcher.submitted)
    assert dispatcher.submitted[0].subject == "Alert: rule r1"


@pytest.mark.asyncio
async def test_connection_rule_scenario():
    engine, dispatcher = await make_engine(connection_rule_doc("c1", "G1", "disconnected"))

    dispatched_after = []
    for connected in (True, False, False, True, False):
        await engine.process(conn("G1", connected))
        dispatched_after.append(len(dispatcher.submitted))

    assert dispatched_after == [0, 1, 1, 1, 2]


@pytest.mark.asyncio
async def test_edge_triggering_fires_once():
    engine, dispatcher = await make_engine(value_rule_doc("r1", "R1", "lt", 5))
    for _ in range(10):
        await engine.process(value("R1", 1))
    assert len(dispatcher.submitted) == 1


@pytest.mark.asyncio
async def test_rearming_fires_twice():
    engine, dispatcher = await make_engine(connection_rule_doc("c1", "G1", "connected"))
    for connected in (True, False, True):
        await engine.process(conn("G1", connected))
    assert len(dispatcher.submitted) == 2


@pytest.mark.asyncio
async def test_unmatched_events_have_no_effect():
    engine, dispatcher = await make_engine(value_rule_doc("r1", "R1"))
    assert await engine.process(value("R404", 1000)) == []
    assert await engine.process(conn("R1", False)) == []
    assert dispatcher.submitted == []
    assert engine.snapshot().trigger_state == {}


@pytest.mark.asyncio
async def test_disabling_a_rule_isolates_it():
    store = InMemoryRuleStore(
        [value_rule_doc("r1", "R1", "gt", 50), value_rule_doc("r2", "R1", "gt", 10)]
    )
    dispatcher = CollectingDispatcher()
    engine = AlertEngine(store, dispatcher=dispatcher)
    await engine.refresh_rules()

    await engine.process(value("R1", 60))
    assert {n.rule_id for n in dispatcher.submitted} == {"r1", "r2"}

    store.replace(
        [value_rule_doc("r1", "R1", "gt", 50, enabled=False), value_rule_doc("r2", "R1", "gt", 10)]
    )
    await engine.refresh_rules()

    await engine.process(value("R1", 5))
    await engine.process(value("R1", 60))
    fired = [n.rule_id for n in dispatcher.submitted]
    assert fired == ["r1", "r2", "r2"]
    # r1's state is left as it was when the rule was disabled
    assert engine.trigger_state_for("r1") is True
    assert engine.trigger_state_for("r2") is True


@pytest.mark.asyncio
async def test_reenabled_rule_compares_against_stale_state():
    store = InMemoryRuleStore([value_rule_doc("r1", "R1", "gt", 50)])
    dispatcher = CollectingDispatcher()
    engine = AlertEngine(store, dispatcher=dispatcher)
    await engine.refresh_rules()
    await engine.process(value("R1", 60))

    store.replace([value_rule_doc("r1", "R1", "gt", 50, enabled=False)])
    await engine.refresh_rules()
    await engine.process(value("R1", 10))

    store.replace([value_rule_doc("r1", "R1", "gt", 50)])
    await engine.refresh_rules()
    await engine.process(value("R1", 70))
    assert len(dispatcher.submitted) == 1

    await engine.process(value("R1", 10))
    await engine.process(value("R1", 70))
    assert len(dispatcher.submitted) == 2


@pytest.mark.asyncio
async def test_store_outage_keeps_last_snapshot(caplog):
    store = FlakyStore([value_rule_doc("r1", "R1", "gt", 50)])
    dispatcher = CollectingDispatcher()
    engine = AlertEngine(store, dispatcher=dispatcher)
    assert await engine.refresh_rules()

    store.down = True
    assert await engine.refresh_rules() is False
    assert "Rule store unavailable" in caplog.text

    await engine.process(value("R1", 60))
    assert len(dispatcher.submitted) == 1
    snap = engine.snapshot()
    assert snap.rule_count == 1
    assert snap.reload_failures == 1


@pytest.mark.asyncio
async def test_corrupt_json_store_keeps_last_snapshot(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps([value_rule_doc("r1")]))
    engine = AlertEngine(JsonRuleStore(path))
    assert await engine.refresh_rules()
    path.write_text("[{")
    assert await engine.refresh_rules() is False
    assert [r.id for r in engine.rules()] == ["r1"]


@pytest.mark.asyncio
async def test_concurrent_events_fire_once():
    engine, dispatcher = await make_engine(value_rule_doc("r1", "R1", "gt", 50))
    await asyncio.gather(*(engine.process(value("R1", 60 + i)) for i in range(20)))
    assert len(dispatcher.submitted) == 1


@pytest.mark.asyncio
async def test_query_interface_returns_copies():
    engine, _ = await make_engine(
        value_rule_doc("r1", "R1", "gt", 50), connection_rule_doc("c1", "G1")
    )
    await engine.process(value("R1", 60))
    await engine.process(conn("G1", False))

    snap = engine.snapshot()
    assert snap.trigger_state == {"r1": True, "c1": True}
    assert snap.triggered_rule_ids == ["c1", "r1"]
    assert snap.events_processed == 2
    snap.trigger_state["r1"] = False
    assert engine.trigger_state_for("r1") is True

    history = engine.recent_notifications(5)
    assert [n.rule_id for n in history] == ["c1", "r1"]
    assert engine.recent_notifications(1)[0].rule_id == "c1"


@pytest.mark.asyncio
async def test_history_is_bounded():
    engine = AlertEngine(InMemoryRuleStore([value_rule_doc("r1", "R1", "gt", 0)]), history_size=3)
    await engine.refresh_rules()
    for _ in range(5):
        await engine.process(value("R1", 1))
        await engine.process(value("R1", -1))
    assert len(engine.recent_notifications(10)) == 3


@pytest.mark.asyncio
async def test_run_consumes_feed_until_closed():
    engine, dispatcher = await make_engine(value_rule_doc("r1", "R1", "gt", 50))
    feed = SignalFeed()
    sub = feed.subscribe()
    task = asyncio.create_task(engine.run(sub))

    feed.publish_register_update({"id": "R1", "value": 40})
    feed.publish_register_update({"id": "R1", "value": 60})
    feed.publish_register_update({"id": "R1"})
    feed.publish_register_update({"id": "R1", "value": 61})
    feed.close()
    await asyncio.wait_for(task, timeout=1)

    assert len(dispatcher.submitted) == 1


@pytest.mark.asyncio
async def test_request_reload_is_debounced():
    calls = []

    class CountingStore(InMemoryRuleStore):
        def list_enabled_rules(self):
            calls.append(1)
            return super().list_enabled_rules()

    engine = AlertEngine(CountingStore([value_rule_doc()]), reload_debounce_s=0.01)
    for _ in range(5):
        engine.request_reload()
    await asyncio.sleep(0.1)
    assert len(calls) == 1
    assert len(engine.rules()) == 1


def test_set_rules_drops_disabled_rules():
    engine = AlertEngine(InMemoryRuleStore())
    engine.set_rules(
        [
            ValueRule("a", "a", "", "R1", "gt", 1.0),
            ValueRule("b", "b", "", "R1", "gt", 1.0, enabled=False),
            ConnectionRule("c", "c", "", "G1", "connected"),
        ]
    )
    assert [r.id for r in engine.rules()] == ["a", "c"]


@pytest.mark.asyncio
async def test_deleted_rule_state_is_forgotten_but_disabled_kept():
    store = InMemoryRuleStore(
        [value_rule_doc("r1", "R1", "gt", 50), value_rule_doc("r2", "R1", "gt", 10)]
    )
    engine = AlertEngine(store)
    await engine.refresh_rules()
    await engine.process(value("R1", 60))

    store.replace([value_rule_doc("r1", "R1", "gt", 50, enabled=False)])
    await engine.refresh_rules()
    assert engine.trigger_state_for("r1") is True
    assert engine.trigger_state_for("r2") is None
    assert set(engine.snapshot().trigger_state) == {"r1"}


@pytest.mark.asyncio
async def test_store_outage_keeps_trigger_state():
    store = FlakyStore([value_rule_doc("r1", "R1", "gt", 50)])
    engine = AlertEngine(store)
    await engine.refresh_rules()
    await engine.process(value("R1", 60))
    store.down = True
    assert await engine.refresh_rules() is False
    assert engine.trigger_state_for("r1") is True


@pytest.mark.asyncio
async def test_store_watch_schedules_debounced_reload():
    store = InMemoryRuleStore([value_rule_doc("r1")])
    engine = AlertEngine(store, reload_debounce_s=0.01)
    await engine.refresh_rules()
    task = asyncio.create_task(engine.watch_store(0.01))
    await asyncio.sleep(0.05)
    assert len(engine.rules()) == 1

    store.replace([value_rule_doc("r1"), value_rule_doc("r2"), value_rule_doc("r3")])

    async def reloaded() -> None:
        while len(engine.rules()) != 3:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(reloaded(), timeout=2)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_store_watch_survives_outage(caplog):
    store = FlakyStore([value_rule_doc("r1")])
    store.down = True
    engine = AlertEngine(store)
    task = asyncio.create_task(engine.watch_store(0.01))
    await asyncio.sleep(0.05)
    assert not task.done()
    assert "Cannot check rule store for changes" in caplog.text
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_cancel_pending_reload():
    calls = []

    class CountingStore(InMemoryRuleStore):
        def list_enabled_rules(self):
            calls.append(1)
            return super().list_enabled_rules()

    engine = AlertEngine(CountingStore([value_rule_doc()]), reload_debounce_s=0.05)
    engine.request_reload()
    await engine.cancel_pending_reload()
    await asyncio.sleep(0.1)
    assert calls == []
    await engine.cancel_pending_reload()
