from __future__ import annotations

from dataclasses import fields, replace
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from fleetgate_core.engine.dispatch import UpdateDispatcher
from fleetgate_core.engine.ledger import ACTION_UPDATE, ACTOR_DEVICE, RESOURCE_DEVICE
from fleetgate_core.errors import ValidationError
from fleetgate_core.fleet.eligibility import eligible_deployments
from fleetgate_core.fleet.types import Deployment, Device, FirmwareMetadata
from fleetgate_core.stores.registry import StoreBundle

UPDATABLE_FIELDS = frozenset(
    {
        "identifier",
        "description",
        "tags",
        "firmware_metadata",
        "last_communication",
    }
)
_REQUIRED_METADATA = ("uuid", "version", "platform", "architecture", "product")
_METADATA_FIELDS = frozenset(item.name for item in fields(FirmwareMetadata))


def normalize_tags(tags: Iterable[object] | None) -> tuple[str, ...]:
    if tags is None:
        return ()
    if isinstance(tags, (str, bytes)):
        raise ValidationError("tags", "must be a list of strings")
    cleaned: list[str] = []
    for item in tags:
        if not isinstance(item, str):
            raise ValidationError("tags", "must be a list of strings")
        text = item.strip()
        if not text:
            raise ValidationError("tags", "cannot contain empty tags")
        if "," in text:
            raise ValidationError("tags", "cannot contain commas")
        if text not in cleaned:
            cleaned.append(text)
    return tuple(cleaned)


def coerce_firmware_metadata(value: object) -> FirmwareMetadata | None:
    if value is None or isinstance(value, FirmwareMetadata):
        metadata = value
    elif isinstance(value, Mapping):
        unknown = set(value) - _METADATA_FIELDS
        if unknown:
            raise ValidationError(
                "firmware_metadata", f"unknown keys: {', '.join(sorted(unknown))}"
            )
        metadata = FirmwareMetadata(
            **{key: _optional_text(value.get(key)) or "" for key in _REQUIRED_METADATA},
            **{
                key: _optional_text(value.get(key))
                for key in _METADATA_FIELDS - set(_REQUIRED_METADATA)
            },
        )
    else:
        raise ValidationError("firmware_metadata", "must be an object")
    if metadata is not None:
        for name in _REQUIRED_METADATA:
            if not getattr(metadata, name):
                raise ValidationError(f"firmware_metadata.{name}", "can't be blank")
    return metadata


def _optional_text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def validate_device(device: Device) -> Device:
    for name in ("identifier", "org_id", "product_id"):
        if not str(getattr(device, name) or "").strip():
            raise ValidationError(name, "can't be blank")
    normalize_tags(device.tags)
    coerce_firmware_metadata(device.firmware_metadata)
    return device


# Reads


def get_device(device_id: str, *, stores: StoreBundle) -> Device | None:
    return stores.fleet.get_device(device_id)


def get_devices_by_org_id(org_id: str, *, stores: StoreBundle) -> list[Device]:
    return stores.fleet.load_devices(org_id=org_id)


def get_devices_by_org_id_and_product_id(
    org_id: str,
    product_id: str,
    *,
    stores: StoreBundle,
) -> list[Device]:
    return stores.fleet.load_devices(org_id=org_id, product_id=product_id)


def get_device_count_by_org_id(org_id: str, *, stores: StoreBundle) -> int:
    return len(stores.fleet.load_devices(org_id=org_id))


def get_device_by_identifier(
    org_id: str,
    identifier: str,
    *,
    stores: StoreBundle,
) -> Device | None:
    return next(
        (
            device
            for device in stores.fleet.load_devices(org_id=org_id)
            if device.identifier == identifier
        ),
        None,
    )


def get_eligible_deployments(device: Device, *, stores: StoreBundle) -> list[Deployment]:
    if device.firmware_metadata is None:
        return []
    candidates = stores.fleet.load_deployments(org_id=device.org_id)
    return eligible_deployments(device, candidates)


# Writes


def create_device(
    *,
    stores: StoreBundle,
    identifier: str,
    org_id: str,
    product_id: str,
    tags: Iterable[object] | None = None,
    description: str | None = None,
    firmware_metadata: FirmwareMetadata | Mapping[str, Any] | None = None,
) -> Device:
    identifier = (identifier or "").strip()
    for name, value in (
        ("identifier", identifier),
        ("org_id", org_id),
        ("product_id", product_id),
    ):
        if not str(value or "").strip():
            raise ValidationError(name, "can't be blank")
    if get_device_by_identifier(org_id, identifier, stores=stores) is not None:
        raise ValidationError("identifier", "has already been taken")
    return stores.fleet.register_device(
        identifier=identifier,
        org_id=org_id,
        product_id=product_id,
        tags=normalize_tags(tags),
        description=_optional_text(description),
        firmware_metadata=coerce_firmware_metadata(firmware_metadata),
    )


def delete_device(device: Device, *, stores: StoreBundle) -> Device | None:
    return stores.fleet.delete_device(device.id)


def update_device(
    device: Device,
    changes: Mapping[str, Any],
    *,
    stores: StoreBundle,
    dispatcher: UpdateDispatcher | None = None,
) -> Device:
    """Applies ``changes`` and writes the device.

    A healthy result is handed to ``dispatcher`` so a newly matching
    deployment gets pushed. The write does not depend on that dispatch.
    """
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        name = sorted(unknown)[0]
        raise ValidationError(name, "is not an updatable field")
    normalized = dict(changes)
    if "tags" in normalized:
        normalized["tags"] = normalize_tags(normalized["tags"])
    if "firmware_metadata" in normalized:
        normalized["firmware_metadata"] = coerce_firmware_metadata(
            normalized["firmware_metadata"]
        )
    if "identifier" in normalized:
        identifier = str(normalized["identifier"] or "").strip()
        existing = get_device_by_identifier(device.org_id, identifier, stores=stores)
        if existing is not None and existing.id != device.id:
            raise ValidationError("identifier", "has already been taken")
        normalized["identifier"] = identifier
    updated = validate_device(replace(device, **normalized))
    written = stores.fleet.save_device(updated)
    if written.healthy and dispatcher is not None:
        dispatcher.dispatch(written)
    return written


def device_connected(
    device: Device,
    *,
    stores: StoreBundle,
    dispatcher: UpdateDispatcher | None = None,
    now: datetime | None = None,
) -> Device:
    last_communication = (now or datetime.now(timezone.utc)).isoformat()
    stores.audit.append(
        actor_type=ACTOR_DEVICE,
        actor_id=device.id,
        resource_type=RESOURCE_DEVICE,
        resource_id=device.id,
        action=ACTION_UPDATE,
        params={"last_communication": last_communication},
        created_at=now,
    )
    return update_device(
        device,
        {"last_communication": last_communication},
        stores=stores,
        dispatcher=dispatcher,
    )


def update_firmware_metadata(
    device: Device,
    metadata: FirmwareMetadata | Mapping[str, Any] | None,
    *,
    stores: StoreBundle,
    dispatcher: UpdateDispatcher | None = None,
) -> Device:
    if metadata is None:
        return device
    return update_device(
        device,
        {"firmware_metadata": metadata},
        stores=stores,
        dispatcher=dispatcher,
    )
