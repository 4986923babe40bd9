from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from fleetgate_core.audit import AuditFilter
from fleetgate_core.engine.health import (
    REASON_RATE,
    REASON_THRESHOLD,
    device_lock,
    verify_update_eligibility,
)
from fleetgate_core.engine.ledger import record_update_sent
from fleetgate_core.errors import ConflictError


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _setup(fleet, **thresholds):
    source = fleet.firmware(uuid="fw-a", version="1.0.0")
    target = fleet.firmware(uuid="fw-b", version="1.1.0")
    deployment = fleet.deployment(target, **thresholds)
    device = fleet.device(firmware=source)
    return device, deployment


def _offer(stores, device, deployment, *times):
    for at in times:
        record_update_sent(stores.audit, device, deployment, source="poll", now=at)


def _trip_events(stores, device):
    return stores.audit.events(
        AuditFilter(resource_id=device.id, params={"healthy": False})
    )


@pytest.mark.core
def test_threshold_trips_exactly_once(stores, fleet):
    device, deployment = _setup(
        fleet,
        device_failure_threshold=3,
        device_failure_rate_amount=100,
        device_failure_rate_seconds=60,
    )
    now = _now()
    _offer(
        stores,
        device,
        deployment,
        now - timedelta(seconds=900),
        now - timedelta(seconds=600),
        now - timedelta(seconds=300),
    )

    result = verify_update_eligibility(device, deployment, stores=stores, now=now)
    assert result.healthy is False
    assert stores.fleet.get_device(device.id).healthy is False
    events = _trip_events(stores, device)
    assert len(events) == 1
    assert events[0].actor_type == "deployment"
    assert events[0].actor_id == deployment.id
    assert events[0].params["reason"] == REASON_THRESHOLD

    _offer(stores, device, deployment, now - timedelta(seconds=100))
    again = verify_update_eligibility(result, deployment, stores=stores, now=now)
    assert again.healthy is False
    # A stale healthy copy is re-read from the store before deciding.
    stale = verify_update_eligibility(device, deployment, stores=stores, now=now)
    assert stale.healthy is False
    assert len(_trip_events(stores, device)) == 1


@pytest.mark.core
def test_below_threshold_stays_healthy(stores, fleet):
    device, deployment = _setup(fleet, device_failure_threshold=3)
    now = _now()
    _offer(
        stores,
        device,
        deployment,
        now - timedelta(seconds=900),
        now - timedelta(seconds=600),
    )
    result = verify_update_eligibility(device, deployment, stores=stores, now=now)
    assert result.healthy is True
    assert _trip_events(stores, device) == []


@pytest.mark.core
def test_rate_within_window_trips(stores, fleet):
    device, deployment = _setup(
        fleet,
        device_failure_threshold=100,
        device_failure_rate_amount=2,
        device_failure_rate_seconds=60,
    )
    now = _now()
    _offer(
        stores,
        device,
        deployment,
        now - timedelta(seconds=50),
        now - timedelta(seconds=10),
    )
    result = verify_update_eligibility(device, deployment, stores=stores, now=now)
    assert result.healthy is False
    assert _trip_events(stores, device)[0].params["reason"] == REASON_RATE


@pytest.mark.core
def test_rate_outside_window_does_not_trip(stores, fleet):
    device, deployment = _setup(
        fleet,
        device_failure_threshold=100,
        device_failure_rate_amount=2,
        device_failure_rate_seconds=60,
    )
    now = _now()
    _offer(
        stores,
        device,
        deployment,
        now - timedelta(seconds=120),
        now - timedelta(seconds=10),
    )
    result = verify_update_eligibility(device, deployment, stores=stores, now=now)
    assert result.healthy is True


@pytest.mark.core
def test_rate_reason_wins_when_both_are_met(stores, fleet):
    device, deployment = _setup(
        fleet,
        device_failure_threshold=2,
        device_failure_rate_amount=2,
        device_failure_rate_seconds=60,
    )
    now = _now()
    _offer(
        stores,
        device,
        deployment,
        now - timedelta(seconds=20),
        now - timedelta(seconds=10),
    )
    verify_update_eligibility(device, deployment, stores=stores, now=now)
    assert _trip_events(stores, device)[0].params["reason"] == REASON_RATE


@pytest.mark.core
def test_unhealthy_device_is_returned_untouched(stores, fleet):
    device, deployment = _setup(fleet, device_failure_threshold=1)
    now = _now()
    _offer(stores, device, deployment, now - timedelta(seconds=500))
    tripped = verify_update_eligibility(device, deployment, stores=stores, now=now)
    assert verify_update_eligibility(tripped, deployment, stores=stores, now=now) is tripped


@pytest.mark.core
def test_failed_audit_append_restores_the_device(stores, fleet, monkeypatch):
    device, deployment = _setup(fleet, device_failure_threshold=1)
    now = _now()
    _offer(stores, device, deployment, now - timedelta(seconds=500))

    def broken_append(**kwargs):
        raise OSError("audit volume unavailable")

    monkeypatch.setattr(stores.audit, "append", broken_append)
    with pytest.raises(OSError):
        verify_update_eligibility(device, deployment, stores=stores, now=now)

    restored = stores.fleet.get_device(device.id)
    assert restored.healthy is True
    assert _trip_events(stores, device) == []


@pytest.mark.core
def test_concurrent_evaluations_trip_once(stores, fleet):
    device, deployment = _setup(fleet, device_failure_threshold=2)
    now = _now()
    _offer(
        stores,
        device,
        deployment,
        now - timedelta(seconds=900),
        now - timedelta(seconds=600),
    )
    workers = 6
    barrier = threading.Barrier(workers)
    results = []
    errors = []

    def evaluate():
        barrier.wait()
        try:
            results.append(
                verify_update_eligibility(device, deployment, stores=stores, now=now)
            )
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=evaluate) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    assert len(results) == workers
    assert all(result.healthy is False for result in results)
    assert len(_trip_events(stores, device)) == 1


@pytest.mark.core
def test_conflicting_write_is_retried_on_a_fresh_read(stores, fleet, monkeypatch):
    device, deployment = _setup(fleet, device_failure_threshold=1)
    now = _now()
    _offer(stores, device, deployment, now - timedelta(seconds=500))

    save_device = stores.fleet.save_device
    calls = []

    def conflict_once(candidate):
        calls.append(candidate.revision)
        if len(calls) == 1:
            raise ConflictError(f"Device {candidate.id} changed")
        return save_device(candidate)

    monkeypatch.setattr(stores.fleet, "save_device", conflict_once)
    result = verify_update_eligibility(device, deployment, stores=stores, now=now)

    assert result.healthy is False
    assert len(calls) == 2
    assert stores.fleet.get_device(device.id).healthy is False
    assert len(_trip_events(stores, device)) == 1


@pytest.mark.core
def test_rollback_survives_a_concurrent_write(stores, fleet, monkeypatch):
    device, deployment = _setup(fleet, device_failure_threshold=1)
    now = _now()
    _offer(stores, device, deployment, now - timedelta(seconds=500))

    def append_after_concurrent_edit(**kwargs):
        stored = stores.fleet.get_device(device.id)
        stores.fleet.save_device(replace(stored, description="bench"))
        raise OSError("audit volume unavailable")

    monkeypatch.setattr(stores.audit, "append", append_after_concurrent_edit)
    with pytest.raises(OSError):
        verify_update_eligibility(device, deployment, stores=stores, now=now)

    restored = stores.fleet.get_device(device.id)
    assert restored.healthy is True
    assert restored.description == "bench"
    assert _trip_events(stores, device) == []


@pytest.mark.core
def test_device_locks_are_shared_while_held():
    first = device_lock("device-a")
    assert device_lock("device-a") is first
    assert device_lock("device-b") is not first
