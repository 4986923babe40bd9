"""Device health circuit breaker.

A device moves from healthy to unhealthy once it exhausts a deployment's
failure budget. The decision is recomputed from the audit trail on every
evaluation; nothing here caches counts. The transition is one way.
"""

from __future__ import annotations

import threading
import weakref
from dataclasses import replace
from datetime import datetime, timezone

from fleetgate_core.engine.ledger import (
    ACTION_UPDATE,
    ACTOR_DEPLOYMENT,
    RESOURCE_DEVICE,
    failure_rate_met,
    failure_threshold_met,
)
from fleetgate_core.errors import ConflictError
from fleetgate_core.fleet.types import Deployment, Device
from fleetgate_core.logging import get_logger
from fleetgate_core.stores.registry import StoreBundle

logger = get_logger(__name__)

REASON_RATE = "device failure rate met"
REASON_THRESHOLD = "device failure threshold met"

_MAX_ATTEMPTS = 3

_LOCKS_GUARD = threading.Lock()
_DEVICE_LOCKS: weakref.WeakValueDictionary[str, threading.Lock] = (
    weakref.WeakValueDictionary()
)


def device_lock(device_id: str) -> threading.Lock:
    """Lock shared by every caller currently evaluating ``device_id``.

    Entries drop out once no caller holds the lock.
    """
    with _LOCKS_GUARD:
        lock = _DEVICE_LOCKS.get(device_id)
        if lock is None:
            lock = threading.Lock()
            _DEVICE_LOCKS[device_id] = lock
        return lock


def _trip_reason(
    device: Device,
    deployment: Deployment,
    *,
    stores: StoreBundle,
    now: datetime,
) -> str | None:
    # Rate goes first: a burst trips before the lifetime count is reached.
    if failure_rate_met(stores.audit, device, deployment, now=now):
        return REASON_RATE
    if failure_threshold_met(stores.audit, device, deployment):
        return REASON_THRESHOLD
    return None


def _restore_healthy(device: Device, flipped: Device, *, stores: StoreBundle) -> None:
    candidate = replace(device, revision=flipped.revision)
    for attempt in range(1, _MAX_ATTEMPTS + 1):
        try:
            stores.fleet.save_device(candidate)
            return
        except ConflictError:
            latest = stores.fleet.get_device(device.id)
            if latest is None or attempt >= _MAX_ATTEMPTS:
                break
            candidate = replace(latest, healthy=True)
    logger.error(
        "Device health not restored after audit failure",
        extra={"device_id": device.id},
    )


def _mark_unhealthy(
    device: Device,
    deployment: Deployment,
    reason: str,
    *,
    stores: StoreBundle,
    now: datetime,
) -> Device:
    flipped = stores.fleet.save_device(replace(device, healthy=False))
    try:
        stores.audit.append(
            actor_type=ACTOR_DEPLOYMENT,
            actor_id=deployment.id,
            resource_type=RESOURCE_DEVICE,
            resource_id=device.id,
            action=ACTION_UPDATE,
            params={"healthy": False, "reason": reason},
            created_at=now,
        )
    except Exception:
        # The flag and the event justifying it land together or not at all.
        _restore_healthy(device, flipped, stores=stores)
        raise
    logger.warning(
        "Device marked unhealthy",
        extra={
            "device_id": device.id,
            "deployment_id": deployment.id,
            "firmware_uuid": deployment.firmware.uuid,
            "reason": reason,
        },
    )
    return flipped


def verify_update_eligibility(
    device: Device,
    deployment: Deployment,
    *,
    stores: StoreBundle,
    now: datetime | None = None,
) -> Device:
    """Returns the device, flipped to unhealthy if its failure budget is spent."""
    if not device.healthy:
        return device
    current_time = now or datetime.now(timezone.utc)
    attempt = 0
    with device_lock(device.id):
        while True:
            attempt += 1
            current = stores.fleet.get_device(device.id) or device
            if not current.healthy:
                return current
            reason = _trip_reason(current, deployment, stores=stores, now=current_time)
            if reason is None:
                return current
            try:
                return _mark_unhealthy(
                    current, deployment, reason, stores=stores, now=current_time
                )
            except ConflictError:
                if attempt >= _MAX_ATTEMPTS:
                    raise
