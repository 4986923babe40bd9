from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fleetgate_core.audit.logs import AuditEvent, AuditFilter
from fleetgate_core.fleet.types import Deployment, Device
from fleetgate_core.stores.interfaces import AuditStore

ACTOR_DEPLOYMENT = "deployment"
ACTOR_DEVICE = "device"
RESOURCE_DEVICE = "device"
ACTION_UPDATE = "update"


def failures_filter(device: Device, deployment: Deployment) -> AuditFilter:
    """Update offers of the deployment's current build to this device."""
    return AuditFilter(
        actor_type=ACTOR_DEPLOYMENT,
        actor_id=deployment.id,
        resource_type=RESOURCE_DEVICE,
        resource_id=device.id,
        action=ACTION_UPDATE,
        params={
            "firmware_uuid": deployment.firmware.uuid,
            "send_update_message": True,
        },
    )


def failure_count(audit: AuditStore, device: Device, deployment: Deployment) -> int:
    # Two events written with the same timestamp count once.
    return len(audit.query(failures_filter(device, deployment)))


def failure_count_in_window(
    audit: AuditStore,
    device: Device,
    deployment: Deployment,
    window_seconds: int,
    *,
    now: datetime | None = None,
) -> int:
    current = now or datetime.now(timezone.utc)
    since = current - timedelta(seconds=window_seconds)
    return len(audit.query(failures_filter(device, deployment), since))


def failure_threshold_met(
    audit: AuditStore, device: Device, deployment: Deployment
) -> bool:
    return failure_count(audit, device, deployment) >= deployment.device_failure_threshold


def failure_rate_met(
    audit: AuditStore,
    device: Device,
    deployment: Deployment,
    *,
    now: datetime | None = None,
) -> bool:
    count = failure_count_in_window(
        audit,
        device,
        deployment,
        deployment.device_failure_rate_seconds,
        now=now,
    )
    return count >= deployment.device_failure_rate_amount


def record_update_sent(
    audit: AuditStore,
    device: Device,
    deployment: Deployment,
    *,
    source: str,
    now: datetime | None = None,
) -> AuditEvent:
    return audit.append(
        actor_type=ACTOR_DEPLOYMENT,
        actor_id=deployment.id,
        resource_type=RESOURCE_DEVICE,
        resource_id=device.id,
        action=ACTION_UPDATE,
        params={
            "firmware_uuid": deployment.firmware.uuid,
            "send_update_message": True,
            "from": source,
        },
        created_at=now,
    )
