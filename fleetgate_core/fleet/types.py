from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FirmwareMetadata:
    uuid: str
    version: str
    platform: str
    architecture: str
    product: str
    fwup_version: str | None = None
    author: str | None = None
    description: str | None = None
    vcs_identifier: str | None = None
    misc: str | None = None


@dataclass(frozen=True)
class Firmware:
    id: str
    uuid: str
    org_id: str
    product_id: str
    product: str
    version: str
    platform: str
    architecture: str
    created_at: str
    author: str | None = None
    description: str | None = None
    vcs_identifier: str | None = None
    misc: str | None = None


@dataclass(frozen=True)
class Device:
    id: str
    identifier: str
    org_id: str
    product_id: str
    tags: tuple[str, ...]
    firmware_metadata: FirmwareMetadata | None
    healthy: bool
    last_communication: str | None
    created_at: str
    updated_at: str
    description: str | None = None
    revision: int = 0
    deleted_at: str | None = None


@dataclass(frozen=True)
class DeploymentConditions:
    version: str = ""
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class Deployment:
    id: str
    name: str
    org_id: str
    product_id: str
    firmware: Firmware
    conditions: DeploymentConditions
    is_active: bool
    healthy: bool
    device_failure_threshold: int
    device_failure_rate_amount: int
    device_failure_rate_seconds: int
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class UpdatePayload:
    update_available: bool = False
    firmware_url: str | None = None
    firmware_meta: FirmwareMetadata | None = None
    deployment: Deployment | None = None
    deployment_id: str | None = None


NOT_AVAILABLE = UpdatePayload(update_available=False)


def metadata_to_dict(meta: FirmwareMetadata | None) -> dict[str, object] | None:
    if meta is None:
        return None
    return {
        "uuid": meta.uuid,
        "version": meta.version,
        "platform": meta.platform,
        "architecture": meta.architecture,
        "product": meta.product,
        "fwup_version": meta.fwup_version,
        "author": meta.author,
        "description": meta.description,
        "vcs_identifier": meta.vcs_identifier,
        "misc": meta.misc,
    }


def payload_to_dict(payload: UpdatePayload) -> dict[str, object]:
    if not payload.update_available:
        return {"update_available": False}
    deployment = payload.deployment
    return {
        "update_available": True,
        "firmware_url": payload.firmware_url,
        "firmware_meta": metadata_to_dict(payload.firmware_meta),
        "deployment_id": payload.deployment_id,
        "deployment": {
            "id": deployment.id,
            "name": deployment.name,
            "firmware_uuid": deployment.firmware.uuid,
        }
        if deployment is not None
        else None,
    }
