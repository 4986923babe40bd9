from fleetgate_core.stores.interfaces import (
    AuditStore,
    FirmwareCatalog,
    FleetStore,
    NotificationChannel,
)
from fleetgate_core.stores.registry import StoreBundle, get_store_bundle

__all__ = [
    "AuditStore",
    "FirmwareCatalog",
    "FleetStore",
    "NotificationChannel",
    "StoreBundle",
    "get_store_bundle",
]
