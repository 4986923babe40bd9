from __future__ import annotations

import time
from dataclasses import replace

import pytest

from fleetgate_core.audit import AuditFilter
from fleetgate_core.engine import dispatch as dispatch_module
from fleetgate_core.engine.devices import update_device
from fleetgate_core.engine.dispatch import UPDATE_EVENT, UpdateDispatcher
from fleetgate_core.notifications import device_topic


@pytest.fixture
def rollout(fleet):
    source = fleet.firmware(uuid="fw-a", version="1.0.0")
    target = fleet.firmware(uuid="fw-b", version="1.1.0")
    deployment = fleet.deployment(target)
    return source, deployment


@pytest.fixture
def dispatcher(stores):
    instance = UpdateDispatcher(stores, timeout_s=5.0, workers=2)
    yield instance
    instance.shutdown()


def _collect(stores, device):
    received = []
    stores.notifications.subscribe(
        device_topic(device.id),
        lambda topic, event, payload: received.append((topic, event, payload)),
    )
    return received


@pytest.mark.core
def test_dispatch_publishes_and_records_the_offer(stores, fleet, rollout, dispatcher):
    source, deployment = rollout
    device = fleet.device(firmware=source)
    received = _collect(stores, device)

    payload = dispatcher.dispatch(device)

    assert payload.update_available is True
    assert len(received) == 1
    topic, event, body = received[0]
    assert topic == f"device:{device.id}"
    assert event == UPDATE_EVENT
    assert body["firmware_url"].endswith("/firmware/fw-b.fw")
    offers = stores.audit.events(
        AuditFilter(actor_id=deployment.id, params={"from": "broadcast"})
    )
    assert len(offers) == 1
    assert offers[0].params["send_update_message"] is True


@pytest.mark.core
def test_dispatch_without_candidates_publishes_nothing(stores, fleet, rollout, dispatcher):
    source, _ = rollout
    device = fleet.device(firmware=source, tags=("beta",))
    received = _collect(stores, device)
    payload = dispatcher.dispatch(device)
    assert payload.update_available is False
    assert received == []


@pytest.mark.core
def test_dispatch_gives_up_after_the_timeout(stores, fleet, rollout, monkeypatch):
    source, _ = rollout
    device = fleet.device(firmware=source)

    def slow(*args, **kwargs):
        time.sleep(0.5)

    monkeypatch.setattr(dispatch_module, "send_update_message", slow)
    dispatcher = UpdateDispatcher(stores, timeout_s=0.05)
    started = time.monotonic()
    assert dispatcher.dispatch(device) is None
    assert time.monotonic() - started < 0.4
    dispatcher.shutdown()


@pytest.mark.core
def test_dispatch_failure_is_contained(stores, fleet, rollout, monkeypatch, dispatcher):
    source, _ = rollout
    device = fleet.device(firmware=source)

    def broken(*args, **kwargs):
        raise RuntimeError("broker down")

    monkeypatch.setattr(dispatch_module, "send_update_message", broken)
    assert dispatcher.dispatch(device) is None


@pytest.mark.core
def test_device_update_triggers_dispatch(stores, fleet, rollout, dispatcher):
    source, _ = rollout
    device = fleet.device(firmware=source, tags=())
    received = _collect(stores, device)

    updated = update_device(device, {"tags": ["prod"]}, stores=stores, dispatcher=dispatcher)

    assert updated.tags == ("prod",)
    assert updated.revision == device.revision + 1
    assert [event for _, event, _ in received] == [UPDATE_EVENT]


@pytest.mark.core
def test_unhealthy_device_update_skips_dispatch(stores, fleet, rollout):
    source, _ = rollout
    device = fleet.device(firmware=source)
    sick = stores.fleet.save_device(replace(device, healthy=False))

    class RecordingDispatcher:
        def __init__(self):
            self.calls = []

        def dispatch(self, target):
            self.calls.append(target)

    recorder = RecordingDispatcher()
    update_device(sick, {"description": "bench unit"}, stores=stores, dispatcher=recorder)
    assert recorder.calls == []
