from __future__ import annotations

import os
import threading
import uuid
from dataclasses import dataclass

from fastapi import HTTPException, Request, Response
from pydantic import BaseModel, Field

from fleetgate_core.config import get_config
from fleetgate_core.engine import (
    UpdateDispatcher,
    create_deployment,
    create_device,
    create_firmware,
    delete_device,
    device_connected,
    get_device,
    get_devices_by_org_id,
    get_devices_by_org_id_and_product_id,
    get_eligible_deployments,
    record_update_sent,
    resolve_update,
    update_device,
    update_firmware_metadata,
)
from fleetgate_core.fleet.types import (
    Deployment,
    Device,
    Firmware,
    FirmwareMetadata,
    payload_to_dict,
)
from fleetgate_core.logging import configure_logging, get_logger
from fleetgate_core.services.fastapi_scaffolding import create_service_app
from fleetgate_core.stores.registry import StoreBundle, get_store_bundle

SERVICE_NAME = "fleetgate-fleet"

configure_logging(
    service=SERVICE_NAME,
    env=os.getenv("ENV"),
    version=os.getenv("FLEETGATE_VERSION"),
)
logger = get_logger(__name__)

app = create_service_app(SERVICE_NAME)


@dataclass(frozen=True)
class Runtime:
    stores: StoreBundle
    dispatcher: UpdateDispatcher


_RUNTIME_LOCK = threading.Lock()
_RUNTIMES: dict[str, Runtime] = {}


def _runtime() -> Runtime:
    config = get_config()
    root = config.state_root_uri()
    with _RUNTIME_LOCK:
        runtime = _RUNTIMES.get(root)
        if runtime is None:
            stores = get_store_bundle(root, config)
            runtime = Runtime(
                stores=stores,
                dispatcher=UpdateDispatcher(
                    stores,
                    timeout_s=config.dispatch_timeout_s,
                    workers=config.dispatch_workers,
                ),
            )
            _RUNTIMES[root] = runtime
        return runtime


class FirmwareMetadataModel(BaseModel):
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


class FirmwareCreateRequest(BaseModel):
    uuid: str
    org_id: str
    product_id: str
    product: str
    version: str
    platform: str
    architecture: str
    author: str | None = None
    description: str | None = None
    vcs_identifier: str | None = None
    misc: str | None = None


class FirmwareResponse(BaseModel):
    id: str
    uuid: str
    org_id: str
    product_id: str
    product: str
    version: str
    platform: str
    architecture: str
    author: str | None = None
    description: str | None = None
    vcs_identifier: str | None = None
    misc: str | None = None
    created_at: str


class DeploymentCreateRequest(BaseModel):
    name: str
    org_id: str
    product_id: str
    firmware_id: str
    version: str | None = None
    tags: list[str] | None = None
    is_active: bool = True
    device_failure_threshold: int = Field(default=3, ge=1)
    device_failure_rate_amount: int = Field(default=5, ge=1)
    device_failure_rate_seconds: int = Field(default=180, ge=1)


class DeploymentResponse(BaseModel):
    id: str
    name: str
    org_id: str
    product_id: str
    firmware_id: str
    firmware_uuid: str
    version: str
    tags: list[str]
    is_active: bool
    healthy: bool
    device_failure_threshold: int
    device_failure_rate_amount: int
    device_failure_rate_seconds: int
    created_at: str
    updated_at: str


class DeviceCreateRequest(BaseModel):
    identifier: str
    org_id: str
    product_id: str
    tags: list[str] | None = None
    description: str | None = None
    firmware_metadata: FirmwareMetadataModel | None = None


class DevicePatchRequest(BaseModel):
    tags: list[str] | None = None
    description: str | None = None


class DeviceResponse(BaseModel):
    id: str
    identifier: str
    org_id: str
    product_id: str
    tags: list[str]
    description: str | None = None
    firmware_metadata: FirmwareMetadataModel | None = None
    healthy: bool
    last_communication: str | None = None
    revision: int
    created_at: str
    updated_at: str


def _metadata_model(meta: FirmwareMetadata | None) -> FirmwareMetadataModel | None:
    if meta is None:
        return None
    return FirmwareMetadataModel(
        uuid=meta.uuid,
        version=meta.version,
        platform=meta.platform,
        architecture=meta.architecture,
        product=meta.product,
        fwup_version=meta.fwup_version,
        author=meta.author,
        description=meta.description,
        vcs_identifier=meta.vcs_identifier,
        misc=meta.misc,
    )


def _firmware_response(firmware: Firmware) -> FirmwareResponse:
    return FirmwareResponse(
        id=firmware.id,
        uuid=firmware.uuid,
        org_id=firmware.org_id,
        product_id=firmware.product_id,
        product=firmware.product,
        version=firmware.version,
        platform=firmware.platform,
        architecture=firmware.architecture,
        author=firmware.author,
        description=firmware.description,
        vcs_identifier=firmware.vcs_identifier,
        misc=firmware.misc,
        created_at=firmware.created_at,
    )


def _deployment_response(deployment: Deployment) -> DeploymentResponse:
    return DeploymentResponse(
        id=deployment.id,
        name=deployment.name,
        org_id=deployment.org_id,
        product_id=deployment.product_id,
        firmware_id=deployment.firmware.id,
        firmware_uuid=deployment.firmware.uuid,
        version=deployment.conditions.version,
        tags=list(deployment.conditions.tags),
        is_active=deployment.is_active,
        healthy=deployment.healthy,
        device_failure_threshold=deployment.device_failure_threshold,
        device_failure_rate_amount=deployment.device_failure_rate_amount,
        device_failure_rate_seconds=deployment.device_failure_rate_seconds,
        created_at=deployment.created_at,
        updated_at=deployment.updated_at,
    )


def _device_response(device: Device) -> DeviceResponse:
    return DeviceResponse(
        id=device.id,
        identifier=device.identifier,
        org_id=device.org_id,
        product_id=device.product_id,
        tags=list(device.tags),
        description=device.description,
        firmware_metadata=_metadata_model(device.firmware_metadata),
        healthy=device.healthy,
        last_communication=device.last_communication,
        revision=device.revision,
        created_at=device.created_at,
        updated_at=device.updated_at,
    )


def _require_device(device_id: str) -> Device:
    device = get_device(device_id, stores=_runtime().stores)
    if device is None:
        raise HTTPException(status_code=404, detail="Device not found")
    return device


@app.post("/fleet/firmware", response_model=FirmwareResponse, status_code=201)
def register_firmware(payload: FirmwareCreateRequest) -> FirmwareResponse:
    firmware = create_firmware(stores=_runtime().stores, **payload.model_dump())
    logger.info(
        "Firmware registered",
        extra={"firmware_uuid": firmware.uuid, "org_id": firmware.org_id},
    )
    return _firmware_response(firmware)


@app.get("/fleet/firmware", response_model=list[FirmwareResponse])
def list_firmware(product_id: str | None = None) -> list[FirmwareResponse]:
    firmware = _runtime().stores.fleet.load_firmware(product_id=product_id)
    return [_firmware_response(item) for item in firmware]


@app.post("/fleet/deployments", response_model=DeploymentResponse, status_code=201)
def register_deployment(payload: DeploymentCreateRequest) -> DeploymentResponse:
    deployment = create_deployment(stores=_runtime().stores, **payload.model_dump())
    logger.info(
        "Deployment registered",
        extra={
            "deployment_id": deployment.id,
            "firmware_uuid": deployment.firmware.uuid,
            "org_id": deployment.org_id,
        },
    )
    return _deployment_response(deployment)


@app.get("/fleet/deployments", response_model=list[DeploymentResponse])
def list_deployments(
    org_id: str | None = None,
    product_id: str | None = None,
) -> list[DeploymentResponse]:
    deployments = _runtime().stores.fleet.load_deployments(
        org_id=org_id, product_id=product_id
    )
    return [_deployment_response(item) for item in deployments]


@app.post("/fleet/devices", response_model=DeviceResponse, status_code=201)
def register_device(request: Request, payload: DeviceCreateRequest) -> DeviceResponse:
    metadata = payload.firmware_metadata
    device = create_device(
        stores=_runtime().stores,
        identifier=payload.identifier,
        org_id=payload.org_id,
        product_id=payload.product_id,
        tags=payload.tags,
        description=payload.description,
        firmware_metadata=metadata.model_dump() if metadata is not None else None,
    )
    logger.info(
        "Device registered",
        extra={
            "request_id": str(uuid.uuid4()),
            "correlation_id": getattr(request.state, "correlation_id", None),
            "device_id": device.id,
        },
    )
    return _device_response(device)


@app.get("/fleet/devices", response_model=list[DeviceResponse])
def list_devices(
    org_id: str | None = None,
    product_id: str | None = None,
) -> list[DeviceResponse]:
    stores = _runtime().stores
    if org_id is None:
        devices = stores.fleet.load_devices(product_id=product_id)
    elif product_id is None:
        devices = get_devices_by_org_id(org_id, stores=stores)
    else:
        devices = get_devices_by_org_id_and_product_id(org_id, product_id, stores=stores)
    return [_device_response(device) for device in devices]


@app.get("/fleet/devices/{device_id}", response_model=DeviceResponse)
def read_device(device_id: str) -> DeviceResponse:
    return _device_response(_require_device(device_id))


@app.patch("/fleet/devices/{device_id}", response_model=DeviceResponse)
def patch_device(device_id: str, payload: DevicePatchRequest) -> DeviceResponse:
    device = _require_device(device_id)
    runtime = _runtime()
    updated = update_device(
        device,
        payload.model_dump(exclude_unset=True),
        stores=runtime.stores,
        dispatcher=runtime.dispatcher,
    )
    return _device_response(updated)


@app.delete("/fleet/devices/{device_id}", status_code=204)
def remove_device(device_id: str) -> Response:
    device = _require_device(device_id)
    delete_device(device, stores=_runtime().stores)
    logger.info("Device deleted", extra={"device_id": device.id})
    return Response(status_code=204)


@app.put("/fleet/devices/{device_id}/firmware", response_model=DeviceResponse)
def report_firmware(device_id: str, payload: FirmwareMetadataModel) -> DeviceResponse:
    device = _require_device(device_id)
    runtime = _runtime()
    updated = update_firmware_metadata(
        device,
        payload.model_dump(),
        stores=runtime.stores,
        dispatcher=runtime.dispatcher,
    )
    return _device_response(updated)


@app.post("/fleet/devices/{device_id}/connect", response_model=DeviceResponse)
def connect_device(device_id: str) -> DeviceResponse:
    device = _require_device(device_id)
    runtime = _runtime()
    updated = device_connected(
        device,
        stores=runtime.stores,
        dispatcher=runtime.dispatcher,
    )
    return _device_response(updated)


@app.get("/fleet/devices/{device_id}/update")
def poll_update(device_id: str) -> dict[str, object]:
    device = _require_device(device_id)
    stores = _runtime().stores
    deployments = get_eligible_deployments(device, stores=stores)
    payload = resolve_update(device, deployments, stores=stores)
    if payload.update_available:
        record_update_sent(stores.audit, device, payload.deployment, source="poll")
        logger.info(
            "Update offered",
            extra={
                "device_id": device.id,
                "deployment_id": payload.deployment_id,
                "update_available": True,
            },
        )
    return payload_to_dict(payload)
