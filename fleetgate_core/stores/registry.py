from __future__ import annotations

import os
from dataclasses import dataclass

from fleetgate_core.config import Config
from fleetgate_core.fleet.catalog import LocalFirmwareCatalog
from fleetgate_core.notifications.pubsub import LocalPubSub
from fleetgate_core.stores.interfaces import (
    AuditStore,
    FirmwareCatalog,
    FleetStore,
    NotificationChannel,
)
from fleetgate_core.stores.json_store import JsonFleetStore, ParquetAuditStore


@dataclass(frozen=True)
class StoreBundle:
    fleet: FleetStore
    audit: AuditStore
    catalog: FirmwareCatalog
    notifications: NotificationChannel


def get_store_bundle(
    base_uri: str,
    config: Config,
    *,
    notifications: NotificationChannel | None = None,
) -> StoreBundle:
    backend = os.getenv("CONTROL_PLANE_STORE", "json").strip().lower()
    if backend != "json":
        raise ValueError(f"Unsupported control-plane store backend: {backend}")
    return StoreBundle(
        fleet=JsonFleetStore(base_uri),
        audit=ParquetAuditStore(base_uri),
        catalog=LocalFirmwareCatalog(
            base_uri,
            url_base=config.firmware_url_base,
            secret=config.firmware_url_secret,
            ttl_seconds=config.firmware_url_ttl_seconds,
            delta_min_fwup_version=config.delta_min_fwup_version,
        ),
        notifications=notifications or LocalPubSub(),
    )
