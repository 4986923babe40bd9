from __future__ import annotations

from typing import Iterable

from fleetgate_core.fleet.matching import matches_deployment
from fleetgate_core.fleet.types import Deployment, Device


def _structurally_eligible(device: Device, deployment: Deployment) -> bool:
    meta = device.firmware_metadata
    firmware = deployment.firmware
    return (
        meta is not None
        and deployment.is_active
        and deployment.healthy
        and deployment.org_id == device.org_id
        and firmware.product == meta.product
        and firmware.architecture == meta.architecture
        and firmware.platform == meta.platform
        and firmware.uuid != meta.uuid
    )


def eligible_deployments(
    device: Device,
    candidates: Iterable[Deployment],
) -> list[Deployment]:
    if device.firmware_metadata is None:
        return []
    matches = [
        deployment
        for deployment in candidates
        if _structurally_eligible(device, deployment)
        and matches_deployment(device, deployment)
    ]
    return sorted(matches, key=lambda deployment: deployment.id)
