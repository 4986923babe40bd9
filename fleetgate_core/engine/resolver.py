"""Update resolution.

``resolve_update`` runs a fixed chain of steps. Each step receives the
resolution so far and returns it (possibly enriched) or ``None``; the first
``None`` ends the chain and the caller gets the not-available payload. No
reason is reported back, including when a step raises.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from functools import partial
from typing import Callable, Sequence

from fleetgate_core.engine.health import verify_update_eligibility
from fleetgate_core.fleet.matching import matches_deployment
from fleetgate_core.fleet.types import (
    NOT_AVAILABLE,
    Deployment,
    Device,
    Firmware,
    FirmwareMetadata,
    UpdatePayload,
)
from fleetgate_core.logging import get_logger
from fleetgate_core.stores.registry import StoreBundle

logger = get_logger(__name__)


@dataclass(frozen=True)
class Resolution:
    device: Device
    deployment: Deployment
    source: Firmware | None = None
    firmware_url: str | None = None
    firmware_meta: FirmwareMetadata | None = None


Step = Callable[[Resolution], "Resolution | None"]


def _deployment_healthy(state: Resolution) -> Resolution | None:
    return state if state.deployment.healthy else None


def _has_firmware_metadata(state: Resolution) -> Resolution | None:
    return state if state.device.firmware_metadata is not None else None


def _within_failure_budget(
    state: Resolution,
    *,
    stores: StoreBundle,
    now: datetime | None,
) -> Resolution | None:
    device = verify_update_eligibility(
        state.device, state.deployment, stores=stores, now=now
    )
    if not device.healthy:
        return None
    return replace(state, device=device)


def _still_matches(state: Resolution) -> Resolution | None:
    return state if matches_deployment(state.device, state.deployment) else None


def _source_firmware(state: Resolution, *, stores: StoreBundle) -> Resolution | None:
    meta = state.device.firmware_metadata
    source = stores.catalog.lookup_by_product_and_uuid(state.device.product_id, meta.uuid)
    return replace(state, source=source)


def _delivery(state: Resolution, *, stores: StoreBundle) -> Resolution | None:
    target = state.deployment.firmware
    url = stores.catalog.build_delivery_url(
        state.source,
        target,
        state.device.firmware_metadata.fwup_version,
        state.device.product_id,
    )
    if not url:
        return None
    meta = stores.catalog.public_metadata(target)
    return replace(state, firmware_url=url, firmware_meta=meta)


def resolution_steps(
    *,
    stores: StoreBundle,
    now: datetime | None = None,
) -> tuple[Step, ...]:
    return (
        _deployment_healthy,
        _has_firmware_metadata,
        partial(_within_failure_budget, stores=stores, now=now),
        _still_matches,
        partial(_source_firmware, stores=stores),
        partial(_delivery, stores=stores),
    )


def run_steps(state: Resolution, steps: Sequence[Step]) -> Resolution | None:
    current: Resolution | None = state
    for step in steps:
        current = step(current)
        if current is None:
            return None
    return current


def _first_candidate(
    deployments: Deployment | Sequence[Deployment] | None,
) -> Deployment | None:
    if deployments is None:
        return None
    if isinstance(deployments, Deployment):
        return deployments
    return deployments[0] if deployments else None


def resolve_update(
    device: Device,
    deployments: Deployment | Sequence[Deployment] | None,
    *,
    stores: StoreBundle,
    now: datetime | None = None,
) -> UpdatePayload:
    """Decides whether ``device`` gets an update from the first deployment.

    Callers rank candidates beforehand; only the head of a list is looked at.
    The health check may flip the device unhealthy and write the audit event
    that justifies it; nothing else is mutated.
    """
    deployment = _first_candidate(deployments)
    if deployment is None:
        return NOT_AVAILABLE
    try:
        resolved = run_steps(
            Resolution(device=device, deployment=deployment),
            resolution_steps(stores=stores, now=now),
        )
    except Exception as exc:
        logger.warning(
            "Update resolution failed; reporting no update",
            extra={
                "device_id": device.id,
                "deployment_id": deployment.id,
                "error_message": str(exc),
            },
        )
        return NOT_AVAILABLE
    if resolved is None:
        return NOT_AVAILABLE
    return UpdatePayload(
        update_available=True,
        firmware_url=resolved.firmware_url,
        firmware_meta=resolved.firmware_meta,
        deployment=resolved.deployment,
        deployment_id=resolved.deployment.id,
    )
