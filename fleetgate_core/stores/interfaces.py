from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Protocol

from fleetgate_core.audit.logs import AuditEvent, AuditFilter
from fleetgate_core.fleet.types import (
    Deployment,
    DeploymentConditions,
    Device,
    Firmware,
    FirmwareMetadata,
)


class FleetStore(Protocol):
    def get_device(self, device_id: str) -> Device | None:
        ...

    def load_devices(
        self,
        *,
        org_id: str | None = None,
        product_id: str | None = None,
    ) -> list[Device]:
        ...

    def register_device(
        self,
        *,
        identifier: str,
        org_id: str,
        product_id: str,
        tags: Iterable[str] | None = None,
        description: str | None = None,
        firmware_metadata: FirmwareMetadata | None = None,
    ) -> Device:
        ...

    def save_device(self, device: Device) -> Device:
        ...

    def delete_device(self, device_id: str) -> Device | None:
        ...

    def get_deployment(self, deployment_id: str) -> Deployment | None:
        ...

    def load_deployments(
        self,
        *,
        org_id: str | None = None,
        product_id: str | None = None,
    ) -> list[Deployment]:
        ...

    def register_deployment(
        self,
        *,
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
        ...

    def get_firmware(self, firmware_id: str) -> Firmware | None:
        ...

    def load_firmware(self, *, product_id: str | None = None) -> list[Firmware]:
        ...

    def register_firmware(
        self,
        *,
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
        ...


class AuditStore(Protocol):
    def append(
        self,
        *,
        actor_type: str,
        actor_id: str,
        resource_type: str,
        resource_id: str,
        action: str,
        params: Mapping[str, object] | None = None,
        created_at: datetime | None = None,
    ) -> AuditEvent:
        ...

    def query(
        self,
        audit_filter: AuditFilter,
        since: datetime | None = None,
    ) -> list[datetime]:
        ...

    def events(
        self,
        audit_filter: AuditFilter,
        since: datetime | None = None,
    ) -> list[AuditEvent]:
        ...


class FirmwareCatalog(Protocol):
    def lookup_by_product_and_uuid(self, product_id: str, uuid: str) -> Firmware | None:
        ...

    def build_delivery_url(
        self,
        source: Firmware | None,
        target: Firmware,
        fwup_version: str | None,
        product_id: str,
    ) -> str:
        ...

    def public_metadata(self, firmware: Firmware) -> FirmwareMetadata:
        ...


class NotificationChannel(Protocol):
    def publish(self, topic: str, event: str, payload: dict[str, Any]) -> int:
        ...

    def subscribe(
        self,
        topic: str,
        callback: Callable[[str, str, dict[str, Any]], None],
    ) -> Callable[[], None]:
        ...
