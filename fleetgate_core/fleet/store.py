from __future__ import annotations

import json
import threading
import uuid
from dataclasses import asdict, replace
from datetime import datetime, timezone
from typing import Iterable

import fsspec

from fleetgate_core.errors import ConflictError
from fleetgate_core.fleet.types import (
    Deployment,
    DeploymentConditions,
    Device,
    Firmware,
    FirmwareMetadata,
)
from fleetgate_core.storage.paths import join_uri

# Serializes read-modify-write cycles on the registry documents in this process.
_REGISTRY_LOCK = threading.RLock()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def device_registry_uri(base_uri: str) -> str:
    return join_uri(base_uri, "control", "devices.json")


def deployment_registry_uri(base_uri: str) -> str:
    return join_uri(base_uri, "control", "deployments.json")


def firmware_registry_uri(base_uri: str) -> str:
    return join_uri(base_uri, "control", "firmware.json")


def _read_items(uri: str, key: str) -> list[dict[str, object]]:
    fs, path = fsspec.core.url_to_fs(uri)
    if not fs.exists(path):
        return []
    with fs.open(path, "rb") as handle:
        payload = json.loads(handle.read().decode("utf-8"))
    items = payload.get(key, []) if isinstance(payload, dict) else []
    return [item for item in items if isinstance(item, dict)]


def _write_items(uri: str, key: str, items: Iterable[dict[str, object]]) -> str:
    fs, path = fsspec.core.url_to_fs(uri)
    fs.makedirs("/".join(path.split("/")[:-1]), exist_ok=True)
    payload = {"updated_at": _now(), key: list(items)}
    with fs.open(path, "wb") as handle:
        handle.write(json.dumps(payload, ensure_ascii=True).encode("utf-8"))
    return uri


# Devices


def load_devices(
    base_uri: str,
    *,
    org_id: str | None = None,
    product_id: str | None = None,
    include_deleted: bool = False,
) -> list[Device]:
    results: list[Device] = []
    for item in _read_items(device_registry_uri(base_uri), "devices"):
        device = _device_from_dict(item)
        if device.deleted_at and not include_deleted:
            continue
        if org_id is not None and device.org_id != org_id:
            continue
        if product_id is not None and device.product_id != product_id:
            continue
        results.append(device)
    results.sort(key=lambda device: device.identifier)
    return results


def save_devices(base_uri: str, devices: Iterable[Device]) -> str:
    return _write_items(
        device_registry_uri(base_uri),
        "devices",
        (_device_to_dict(device) for device in devices),
    )


def get_device(base_uri: str, device_id: str) -> Device | None:
    return next(
        (device for device in load_devices(base_uri) if device.id == device_id),
        None,
    )


def register_device(
    *,
    base_uri: str,
    identifier: str,
    org_id: str,
    product_id: str,
    tags: Iterable[str] | None = None,
    description: str | None = None,
    firmware_metadata: FirmwareMetadata | None = None,
) -> Device:
    now = _now()
    device = Device(
        id=str(uuid.uuid4()),
        identifier=identifier,
        org_id=org_id,
        product_id=product_id,
        tags=tuple(tags or ()),
        firmware_metadata=firmware_metadata,
        healthy=True,
        last_communication=None,
        created_at=now,
        updated_at=now,
        description=description,
    )
    with _REGISTRY_LOCK:
        devices = load_devices(base_uri, include_deleted=True)
        devices.append(device)
        save_devices(base_uri, devices)
    return device


def save_device(base_uri: str, device: Device) -> Device:
    """Writes ``device`` if its revision matches the stored one.

    Raises ConflictError when the stored record moved on or is gone.
    """
    with _REGISTRY_LOCK:
        devices = load_devices(base_uri, include_deleted=True)
        updated: list[Device] = []
        written: Device | None = None
        for existing in devices:
            if existing.id != device.id:
                updated.append(existing)
                continue
            if existing.deleted_at or existing.revision != device.revision:
                raise ConflictError(
                    f"Device {device.id} changed (stored revision "
                    f"{existing.revision}, expected {device.revision})"
                )
            written = replace(device, revision=device.revision + 1, updated_at=_now())
            updated.append(written)
        if written is None:
            raise ConflictError(f"Device {device.id} does not exist")
        save_devices(base_uri, updated)
    return written


def delete_device(base_uri: str, device_id: str) -> Device | None:
    with _REGISTRY_LOCK:
        devices = load_devices(base_uri, include_deleted=True)
        match: Device | None = None
        updated: list[Device] = []
        for existing in devices:
            if existing.id == device_id and not existing.deleted_at:
                now = _now()
                match = replace(
                    existing,
                    deleted_at=now,
                    updated_at=now,
                    revision=existing.revision + 1,
                )
                updated.append(match)
            else:
                updated.append(existing)
        if match is None:
            return None
        save_devices(base_uri, updated)
    return match


# Firmware


def load_firmware(base_uri: str, *, product_id: str | None = None) -> list[Firmware]:
    results = [
        _firmware_from_dict(item)
        for item in _read_items(firmware_registry_uri(base_uri), "firmware")
    ]
    if product_id is not None:
        results = [firmware for firmware in results if firmware.product_id == product_id]
    return results


def get_firmware(base_uri: str, firmware_id: str) -> Firmware | None:
    return next(
        (firmware for firmware in load_firmware(base_uri) if firmware.id == firmware_id),
        None,
    )


def register_firmware(
    *,
    base_uri: str,
    uuid_: str,
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
    firmware = Firmware(
        id=str(uuid.uuid4()),
        uuid=uuid_,
        org_id=org_id,
        product_id=product_id,
        product=product,
        version=version,
        platform=platform,
        architecture=architecture,
        created_at=_now(),
        author=author,
        description=description,
        vcs_identifier=vcs_identifier,
        misc=misc,
    )
    with _REGISTRY_LOCK:
        items = _read_items(firmware_registry_uri(base_uri), "firmware")
        items.append(asdict(firmware))
        _write_items(firmware_registry_uri(base_uri), "firmware", items)
    return firmware


# Deployments


def load_deployments(
    base_uri: str,
    *,
    org_id: str | None = None,
    product_id: str | None = None,
) -> list[Deployment]:
    firmware_by_id = {firmware.id: firmware for firmware in load_firmware(base_uri)}
    results: list[Deployment] = []
    for item in _read_items(deployment_registry_uri(base_uri), "deployments"):
        firmware = firmware_by_id.get(str(item.get("firmware_id")))
        if firmware is None:
            continue
        deployment = _deployment_from_dict(item, firmware)
        if org_id is not None and deployment.org_id != org_id:
            continue
        if product_id is not None and deployment.product_id != product_id:
            continue
        results.append(deployment)
    results.sort(key=lambda deployment: deployment.id)
    return results


def get_deployment(base_uri: str, deployment_id: str) -> Deployment | None:
    return next(
        (
            deployment
            for deployment in load_deployments(base_uri)
            if deployment.id == deployment_id
        ),
        None,
    )


def register_deployment(
    *,
    base_uri: str,
    name: str,
    org_id: str,
    product_id: str,
    firmware: Firmware,
    conditions: DeploymentConditions,
    is_active: bool = True,
    healthy: bool = True,
    device_failure_threshold: int = 3,
    device_failure_rate_amount: int = 5,
    device_failure_rate_seconds: int = 180,
) -> Deployment:
    now = _now()
    deployment = Deployment(
        id=str(uuid.uuid4()),
        name=name,
        org_id=org_id,
        product_id=product_id,
        firmware=firmware,
        conditions=conditions,
        is_active=is_active,
        healthy=healthy,
        device_failure_threshold=device_failure_threshold,
        device_failure_rate_amount=device_failure_rate_amount,
        device_failure_rate_seconds=device_failure_rate_seconds,
        created_at=now,
        updated_at=now,
    )
    with _REGISTRY_LOCK:
        items = _read_items(deployment_registry_uri(base_uri), "deployments")
        items.append(_deployment_to_dict(deployment))
        _write_items(deployment_registry_uri(base_uri), "deployments", items)
    return deployment


# Serialization


def _device_to_dict(device: Device) -> dict[str, object]:
    payload = asdict(device)
    payload["tags"] = list(device.tags)
    return payload


def _device_from_dict(payload: dict[str, object]) -> Device:
    return Device(
        id=str(payload.get("id")),
        identifier=str(payload.get("identifier", "")),
        org_id=str(payload.get("org_id", "")),
        product_id=str(payload.get("product_id", "")),
        tags=_coerce_tags(payload.get("tags")),
        firmware_metadata=_metadata_from_dict(payload.get("firmware_metadata")),
        healthy=bool(payload.get("healthy", True)),
        last_communication=_coerce_optional_str(payload.get("last_communication")),
        created_at=str(payload.get("created_at", "")),
        updated_at=str(payload.get("updated_at", "")),
        description=_coerce_optional_str(payload.get("description")),
        revision=int(payload.get("revision", 0) or 0),
        deleted_at=_coerce_optional_str(payload.get("deleted_at")),
    )


def _metadata_from_dict(value: object) -> FirmwareMetadata | None:
    if not isinstance(value, dict):
        return None
    return FirmwareMetadata(
        uuid=str(value.get("uuid", "")),
        version=str(value.get("version", "")),
        platform=str(value.get("platform", "")),
        architecture=str(value.get("architecture", "")),
        product=str(value.get("product", "")),
        fwup_version=_coerce_optional_str(value.get("fwup_version")),
        author=_coerce_optional_str(value.get("author")),
        description=_coerce_optional_str(value.get("description")),
        vcs_identifier=_coerce_optional_str(value.get("vcs_identifier")),
        misc=_coerce_optional_str(value.get("misc")),
    )


def _firmware_from_dict(payload: dict[str, object]) -> Firmware:
    return Firmware(
        id=str(payload.get("id")),
        uuid=str(payload.get("uuid", "")),
        org_id=str(payload.get("org_id", "")),
        product_id=str(payload.get("product_id", "")),
        product=str(payload.get("product", "")),
        version=str(payload.get("version", "")),
        platform=str(payload.get("platform", "")),
        architecture=str(payload.get("architecture", "")),
        created_at=str(payload.get("created_at", "")),
        author=_coerce_optional_str(payload.get("author")),
        description=_coerce_optional_str(payload.get("description")),
        vcs_identifier=_coerce_optional_str(payload.get("vcs_identifier")),
        misc=_coerce_optional_str(payload.get("misc")),
    )


def _deployment_to_dict(deployment: Deployment) -> dict[str, object]:
    return {
        "id": deployment.id,
        "name": deployment.name,
        "org_id": deployment.org_id,
        "product_id": deployment.product_id,
        "firmware_id": deployment.firmware.id,
        "conditions": {
            "version": deployment.conditions.version,
            "tags": list(deployment.conditions.tags),
        },
        "is_active": deployment.is_active,
        "healthy": deployment.healthy,
        "device_failure_threshold": deployment.device_failure_threshold,
        "device_failure_rate_amount": deployment.device_failure_rate_amount,
        "device_failure_rate_seconds": deployment.device_failure_rate_seconds,
        "created_at": deployment.created_at,
        "updated_at": deployment.updated_at,
    }


def _deployment_from_dict(payload: dict[str, object], firmware: Firmware) -> Deployment:
    conditions = payload.get("conditions")
    if not isinstance(conditions, dict):
        conditions = {}
    return Deployment(
        id=str(payload.get("id")),
        name=str(payload.get("name", "")),
        org_id=str(payload.get("org_id", "")),
        product_id=str(payload.get("product_id", "")),
        firmware=firmware,
        conditions=DeploymentConditions(
            version=str(conditions.get("version") or ""),
            tags=_coerce_tags(conditions.get("tags")),
        ),
        is_active=bool(payload.get("is_active", False)),
        healthy=bool(payload.get("healthy", True)),
        device_failure_threshold=int(payload.get("device_failure_threshold", 3)),
        device_failure_rate_amount=int(payload.get("device_failure_rate_amount", 5)),
        device_failure_rate_seconds=int(payload.get("device_failure_rate_seconds", 180)),
        created_at=str(payload.get("created_at", "")),
        updated_at=str(payload.get("updated_at", "")),
    )


def _coerce_optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _coerce_tags(value: object) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple, set)):
        return ()
    deduped: list[str] = []
    for item in value:
        text = str(item).strip()
        if text and text not in deduped:
            deduped.append(text)
    return tuple(deduped)
