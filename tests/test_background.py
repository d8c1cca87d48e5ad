import asyncio
import json

import pytest

from bridge_alerts import background
from bridge_alerts.alerting import AlertEngine
from bridge_alerts.background import AlertRuntime
from bridge_alerts.dispatcher import Dispatcher
from bridge_alerts.feed import SignalFeed
from bridge_alerts.rule_store import JsonRuleStore
from conftest import (
    DummyApplication,
    RecordingTransport,
    connection_rule_doc,
    no_sleep,
    value_rule_doc,
)


@pytest.mark.asyncio
async def test_runtime_end_to_end(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(
        json.dumps([value_rule_doc("r1", "R1", "gt", 50), connection_rule_doc("c1", "G1")])
    )
    transport = RecordingTransport()
    dispatcher = Dispatcher([transport], sleep=no_sleep)
    runtime = AlertRuntime(
        feed=SignalFeed(),
        engine=AlertEngine(JsonRuleStore(path), dispatcher=dispatcher),
        dispatcher=dispatcher,
        reload_interval_s=0,
    )
    await runtime.start()
    assert runtime.started
    assert len(runtime.engine.rules()) == 2

    for v in (40, 60, 70, 30, 55):
        runtime.feed.publish_register_update({"id": "R1", "value": v})
    for status in ("connected", "disconnected", "disconnected"):
        runtime.feed.publish_connection_status({"gatewayId": "G1", "status": status})

    async def delivered(n: int) -> None:
        while len(transport.delivered) < n:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(delivered(3), timeout=2)
    await runtime.stop()

    assert sorted(n.rule_id for n in transport.delivered) == ["c1", "r1", "r1"]
    assert not runtime.started
    assert runtime.feed.closed
    assert not runtime.dispatcher.running


@pytest.mark.asyncio
async def test_ensure_started_and_shutdown(monkeypatch, tmp_path):
    def fake_build_runtime(settings=None, bot=None):
        dispatcher = Dispatcher([RecordingTransport()], sleep=no_sleep)
        return AlertRuntime(
            feed=SignalFeed(),
            engine=AlertEngine(JsonRuleStore(tmp_path / "none.json"), dispatcher=dispatcher),
            dispatcher=dispatcher,
            reload_interval_s=3600,
        )

    monkeypatch.setattr(background, "build_runtime", fake_build_runtime)
    app = DummyApplication()
    runtime = await background.ensure_started(app)
    assert app.bot_data[background.RUNTIME_KEY] is runtime
    assert await background.ensure_started(app) is runtime
    assert set(runtime.tasks) == {"alert_engine", "rule_reload"}

    await background.shutdown(app)
    assert runtime.tasks == {}


@pytest.mark.asyncio
async def test_rules_file_edit_is_picked_up_by_watch(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps([value_rule_doc("r1", "R1", "gt", 50)]))
    transport = RecordingTransport()
    dispatcher = Dispatcher([transport], sleep=no_sleep)
    engine = AlertEngine(JsonRuleStore(path), dispatcher=dispatcher, reload_debounce_s=0.01)
    runtime = AlertRuntime(
        feed=SignalFeed(),
        engine=engine,
        dispatcher=dispatcher,
        reload_interval_s=0,
        watch_interval_s=0.01,
    )
    await runtime.start()
    assert set(runtime.tasks) == {"alert_engine", "rule_watch"}
    await asyncio.sleep(0.05)

    path.write_text(
        json.dumps([value_rule_doc("r1", "R1", "gt", 50), value_rule_doc("r2", "R2", "lt", 0)])
    )

    async def reloaded() -> None:
        while len(engine.rules()) != 2:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(reloaded(), timeout=2)
    runtime.feed.publish_register_update({"id": "R2", "value": -1})

    async def delivered() -> None:
        while not transport.delivered:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(delivered(), timeout=2)
    assert transport.delivered[0].rule_id == "r2"

    engine.reload_debounce_s = 60
    engine.request_reload()
    pending = engine._pending_reload
    await runtime.stop()
    assert pending.cancelled()
    assert runtime.tasks == {}
