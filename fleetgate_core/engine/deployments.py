from __future__ import annotations

from typing import Iterable

from fleetgate_core.engine.devices import normalize_tags
from fleetgate_core.errors import ValidationError
from fleetgate_core.fleet.types import Deployment, DeploymentConditions, Firmware
from fleetgate_core.fleet.versions import (
    InvalidRequirement,
    is_valid_requirement,
    parse_version,
)
from fleetgate_core.stores.registry import StoreBundle


def build_conditions(
    version: str | None,
    tags: Iterable[object] | None,
) -> DeploymentConditions:
    requirement = (version or "").strip()
    if not is_valid_requirement(requirement):
        raise ValidationError("conditions.version", "must be a valid version requirement")
    try:
        normalized_tags = normalize_tags(tags)
    except ValidationError as exc:
        raise ValidationError("conditions.tags", exc.reason) from exc
    return DeploymentConditions(version=requirement, tags=normalized_tags)


def create_firmware(
    *,
    stores: StoreBundle,
    uuid: str,
    org_id: str,
    product_id: str,
    product: str,
    version: str,
    platform: str,
    architecture: str,
    author: str | None = None,
    description: str | None = None,
    vcs_identifier: str | None = None,
    misc: str | None = None,
) -> Firmware:
    for name, value in (
        ("uuid", uuid),
        ("org_id", org_id),
        ("product_id", product_id),
        ("product", product),
        ("platform", platform),
        ("architecture", architecture),
    ):
        if not str(value or "").strip():
            raise ValidationError(name, "can't be blank")
    try:
        parse_version(version)
    except InvalidRequirement as exc:
        raise ValidationError("version", "is not a valid version") from exc
    if stores.catalog.lookup_by_product_and_uuid(product_id, uuid) is not None:
        raise ValidationError("uuid", "has already been taken")
    return stores.fleet.register_firmware(
        uuid=uuid,
        org_id=org_id,
        product_id=product_id,
        product=product,
        version=version,
        platform=platform,
        architecture=architecture,
        author=author,
        description=description,
        vcs_identifier=vcs_identifier,
        misc=misc,
    )


def create_deployment(
    *,
    stores: StoreBundle,
    name: str,
    org_id: str,
    product_id: str,
    firmware_id: str,
    version: str | None = None,
    tags: Iterable[object] | None = None,
    is_active: bool = True,
    device_failure_threshold: int = 3,
    device_failure_rate_amount: int = 5,
    device_failure_rate_seconds: int = 180,
) -> Deployment:
    if not (name or "").strip():
        raise ValidationError("name", "can't be blank")
    firmware = stores.fleet.get_firmware(firmware_id)
    if firmware is None:
        raise ValidationError("firmware_id", "does not exist")
    if firmware.product_id != product_id or firmware.org_id != org_id:
        raise ValidationError("firmware_id", "belongs to a different product")
    for field_name, value in (
        ("device_failure_threshold", device_failure_threshold),
        ("device_failure_rate_amount", device_failure_rate_amount),
        ("device_failure_rate_seconds", device_failure_rate_seconds),
    ):
        if value < 1:
            raise ValidationError(field_name, "must be greater than 0")
    return stores.fleet.register_deployment(
        name=name.strip(),
        org_id=org_id,
        product_id=product_id,
        firmware=firmware,
        conditions=build_conditions(version, tags),
        is_active=is_active,
        healthy=True,
        device_failure_threshold=device_failure_threshold,
        device_failure_rate_amount=device_failure_rate_amount,
        device_failure_rate_seconds=device_failure_rate_seconds,
    )
