from __future__ import annotations

from dataclasses import replace

import pytest

from fleetgate_core.fleet.eligibility import eligible_deployments
from fleetgate_core.fleet.types import (
    Deployment,
    DeploymentConditions,
    Device,
    Firmware,
    FirmwareMetadata,
)


def _firmware(**overrides) -> Firmware:
    values = dict(
        id="fw-row-b",
        uuid="fw-b",
        org_id="org-1",
        product_id="product-1",
        product="widget",
        version="1.1.0",
        platform="rpi4",
        architecture="arm",
        created_at="now",
    )
    values.update(overrides)
    return Firmware(**values)


def _deployment(deployment_id: str = "dep-1", **overrides) -> Deployment:
    values = dict(
        id=deployment_id,
        name="rollout",
        org_id="org-1",
        product_id="product-1",
        firmware=_firmware(),
        conditions=DeploymentConditions(version=">= 1.0.0", tags=("prod",)),
        is_active=True,
        healthy=True,
        device_failure_threshold=3,
        device_failure_rate_amount=5,
        device_failure_rate_seconds=180,
        created_at="now",
        updated_at="now",
    )
    values.update(overrides)
    return Deployment(**values)


def _device(metadata: FirmwareMetadata | None = None) -> Device:
    return Device(
        id="device-1",
        identifier="device-1",
        org_id="org-1",
        product_id="product-1",
        tags=("prod",),
        firmware_metadata=metadata
        or FirmwareMetadata(
            uuid="fw-a",
            version="1.0.0",
            platform="rpi4",
            architecture="arm",
            product="widget",
        ),
        healthy=True,
        last_communication=None,
        created_at="now",
        updated_at="now",
    )


@pytest.mark.core
def test_eligible_deployment_is_returned():
    deployment = _deployment()
    assert eligible_deployments(_device(), [deployment]) == [deployment]


@pytest.mark.core
def test_device_without_metadata_has_no_candidates():
    device = replace(_device(), firmware_metadata=None)
    assert eligible_deployments(device, [_deployment()]) == []


@pytest.mark.core
@pytest.mark.parametrize(
    "overrides",
    [
        {"is_active": False},
        {"healthy": False},
        {"org_id": "org-2"},
        {"firmware": _firmware(product="gadget")},
        {"firmware": _firmware(architecture="x86_64")},
        {"firmware": _firmware(platform="bbb")},
        {"firmware": _firmware(uuid="fw-a")},
        {"conditions": DeploymentConditions(version=">= 2.0.0", tags=("prod",))},
        {"conditions": DeploymentConditions(version="", tags=("prod", "eu"))},
    ],
)
def test_structural_and_condition_filters(overrides):
    assert eligible_deployments(_device(), [_deployment(**overrides)]) == []


@pytest.mark.core
def test_results_are_ordered_by_id():
    later = _deployment("dep-b")
    earlier = _deployment("dep-a")
    skipped = _deployment("dep-0", is_active=False)
    result = eligible_deployments(_device(), [later, skipped, earlier])
    assert [deployment.id for deployment in result] == ["dep-a", "dep-b"]
