from __future__ import annotations

import pytest

from fleetgate_core.fleet.matching import matches_deployment, tags_match, version_match
from fleetgate_core.fleet.types import (
    Deployment,
    DeploymentConditions,
    Device,
    Firmware,
    FirmwareMetadata,
)
from fleetgate_core.fleet.versions import (
    InvalidRequirement,
    is_valid_requirement,
    parse_requirement,
    satisfies,
)


def _firmware() -> Firmware:
    return Firmware(
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


def _deployment(version: str = "", tags: tuple[str, ...] = ()) -> Deployment:
    return Deployment(
        id="dep-1",
        name="rollout",
        org_id="org-1",
        product_id="product-1",
        firmware=_firmware(),
        conditions=DeploymentConditions(version=version, tags=tags),
        is_active=True,
        healthy=True,
        device_failure_threshold=3,
        device_failure_rate_amount=5,
        device_failure_rate_seconds=180,
        created_at="now",
        updated_at="now",
    )


def _device(
    version: str | None = "1.0.0",
    tags: tuple[str, ...] = ("prod",),
) -> Device:
    metadata = None
    if version is not None:
        metadata = FirmwareMetadata(
            uuid="fw-a",
            version=version,
            platform="rpi4",
            architecture="arm",
            product="widget",
        )
    return Device(
        id="device-1",
        identifier="device-1",
        org_id="org-1",
        product_id="product-1",
        tags=tags,
        firmware_metadata=metadata,
        healthy=True,
        last_communication=None,
        created_at="now",
        updated_at="now",
    )


@pytest.mark.core
@pytest.mark.parametrize(
    ("version", "requirement", "expected"),
    [
        ("1.0.0", ">= 1.0.0", True),
        ("0.9.9", ">= 1.0.0", False),
        ("1.2.0", ">= 1.0.0 and < 2.0.0", True),
        ("2.0.0", ">= 1.0.0 and < 2.0.0", False),
        ("1.2.0", ">= 1.0.0, < 2.0.0", True),
        ("1.2.3", "1.2.3", True),
        ("1.2.4", "== 1.2.3", False),
        ("1.2.4", "!= 1.2.3", True),
        ("3.1.0", "1.2.3 or >= 3.0.0", True),
        ("1.9.0", "~> 1.4", True),
        ("2.0.0", "~> 1.4", False),
        ("1.4.9", "~> 1.4.2", True),
        ("1.5.0", "~> 1.4.2", False),
        ("0.3.9", "^0.3.1", True),
        ("0.4.0", "^0.3.1", False),
        ("1.9.0", "^1.2.0", True),
        ("1.2.9", "~1.2.3", True),
        ("1.3.0", "~1.2.3", False),
    ],
)
def test_version_requirements(version, requirement, expected):
    assert version_match(version, requirement) is expected


@pytest.mark.core
def test_empty_requirement_matches_everything():
    assert version_match("0.0.1", "")
    assert version_match("not-a-version", "")
    assert is_valid_requirement("")


@pytest.mark.core
def test_unparsable_inputs_never_match():
    assert version_match("garbage", ">= 1.0.0") is False
    assert version_match("1.0.0", ">= one") is False
    assert is_valid_requirement(">=> 1.0") is False
    with pytest.raises(InvalidRequirement):
        satisfies("1.0.0", "and")
    with pytest.raises(InvalidRequirement):
        parse_requirement("   ")


@pytest.mark.core
def test_tags_are_a_subset_check():
    assert tags_match(["prod", "eu"], ["prod"])
    assert tags_match(["prod"], [])
    assert tags_match([], [])
    assert not tags_match(["Prod"], ["prod"])
    assert not tags_match(["prod"], ["prod", "eu"])


@pytest.mark.core
def test_matches_deployment_needs_metadata_and_both_conditions():
    deployment = _deployment(version=">= 1.0.0", tags=("prod",))
    assert matches_deployment(_device(), deployment)
    assert not matches_deployment(_device(version=None), deployment)
    assert not matches_deployment(_device(version="0.9.0"), deployment)
    assert not matches_deployment(_device(tags=("beta",)), deployment)
    assert matches_deployment(_device(version="0.1.0", tags=()), _deployment())


@pytest.mark.core
@pytest.mark.parametrize(
    ("version", "requirement"),
    [
        ("2.0.0-rc.1", "~> 1.0"),
        ("1.5.0-beta", "~> 1.4.2"),
        ("0.4.0-0", "^0.3.1"),
        ("1.3.0-alpha.1", "~1.2.3"),
    ],
)
def test_range_upper_bound_excludes_next_prereleases(version, requirement):
    assert version_match(version, requirement) is False


@pytest.mark.core
@pytest.mark.parametrize("version", ["1.0", "v1.2.0", "1.2.3.4", "01.2.3", ""])
def test_non_semver_versions_never_match(version):
    assert version_match(version, ">= 1.0.0") is False


@pytest.mark.core
def test_prerelease_and_build_versions_follow_semver_precedence():
    assert version_match("1.0.0-alpha.beta", ">= 0.1.0")
    assert version_match("1.0.0-alpha.beta", "< 1.0.0")
    assert version_match("1.0.0-alpha.1", "> 1.0.0-alpha")
    assert version_match("1.4.3-rc.1", "~> 1.4.2")
    assert version_match("1.2.3+build.7", "== 1.2.3")


@pytest.mark.core
def test_shortened_operands_only_for_range_operators():
    assert is_valid_requirement("~> 1.4")
    assert is_valid_requirement("^1")
    assert is_valid_requirement(">= 1.0") is False
    assert is_valid_requirement("~> v1.4") is False
