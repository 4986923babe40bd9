from __future__ import annotations

from typing import Iterable

from fleetgate_core.fleet.types import Deployment, Device
from fleetgate_core.fleet.versions import InvalidRequirement, satisfies


def version_match(version: str, requirement: str) -> bool:
    if requirement == "":
        return True
    try:
        return satisfies(version, requirement)
    except InvalidRequirement:
        return False


def tags_match(device_tags: Iterable[str], deployment_tags: Iterable[str]) -> bool:
    return set(deployment_tags) <= set(device_tags)


def matches_deployment(device: Device, deployment: Deployment) -> bool:
    """True when the device's version satisfies the deployment requirement
    and every deployment tag is present on the device."""
    meta = device.firmware_metadata
    if meta is None:
        return False
    conditions = deployment.conditions
    return version_match(meta.version, conditions.version) and tags_match(
        device.tags, conditions.tags
    )
