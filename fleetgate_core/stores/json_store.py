from __future__ import annotations

from datetime import datetime
from typing import Iterable, Mapping

from fleetgate_core.audit import logs as audit_logs
from fleetgate_core.audit.logs import AuditEvent, AuditFilter
from fleetgate_core.fleet import store as fleet_store
from fleetgate_core.fleet.types import (
    Deployment,
    DeploymentConditions,
    Device,
    Firmware,
    FirmwareMetadata,
)
from fleetgate_core.stores.interfaces import AuditStore, FleetStore


class JsonFleetStore(FleetStore):
    def __init__(self, base_uri: str) -> None:
        self._base_uri = base_uri

    def get_device(self, device_id: str) -> Device | None:
        return fleet_store.get_device(self._base_uri, device_id)

    def load_devices(
        self,
        *,
        org_id: str | None = None,
        product_id: str | None = None,
    ) -> list[Device]:
        return fleet_store.load_devices(
            self._base_uri, org_id=org_id, product_id=product_id
        )

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
        return fleet_store.register_device(
            base_uri=self._base_uri,
            identifier=identifier,
            org_id=org_id,
            product_id=product_id,
            tags=tags,
            description=description,
            firmware_metadata=firmware_metadata,
        )

    def save_device(self, device: Device) -> Device:
        return fleet_store.save_device(self._base_uri, device)

    def delete_device(self, device_id: str) -> Device | None:
        return fleet_store.delete_device(self._base_uri, device_id)

    def get_deployment(self, deployment_id: str) -> Deployment | None:
        return fleet_store.get_deployment(self._base_uri, deployment_id)

    def load_deployments(
        self,
        *,
        org_id: str | None = None,
        product_id: str | None = None,
    ) -> list[Deployment]:
        return fleet_store.load_deployments(
            self._base_uri, org_id=org_id, product_id=product_id
        )

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
        return fleet_store.register_deployment(
            base_uri=self._base_uri,
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
        )

    def get_firmware(self, firmware_id: str) -> Firmware | None:
        return fleet_store.get_firmware(self._base_uri, firmware_id)

    def load_firmware(self, *, product_id: str | None = None) -> list[Firmware]:
        return fleet_store.load_firmware(self._base_uri, product_id=product_id)

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
        return fleet_store.register_firmware(
            base_uri=self._base_uri,
            uuid_=uuid,
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


class ParquetAuditStore(AuditStore):
    def __init__(self, base_uri: str) -> None:
        self._base_uri = base_uri

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
        return audit_logs.record_audit_event(
            base_uri=self._base_uri,
            actor_type=actor_type,
            actor_id=actor_id,
            resource_type=resource_type,
            resource_id=resource_id,
            action=action,
            params=params,
            created_at=created_at,
        )

    def query(
        self,
        audit_filter: AuditFilter,
        since: datetime | None = None,
    ) -> list[datetime]:
        return audit_logs.distinct_timestamps(self.events(audit_filter, since))

    def events(
        self,
        audit_filter: AuditFilter,
        since: datetime | None = None,
    ) -> list[AuditEvent]:
        return audit_logs.query_audit_events(self._base_uri, audit_filter, since=since)
