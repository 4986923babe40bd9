from fleetgate_core.engine.devices import (
    create_device,
    delete_device,
    device_connected,
    get_device,
    get_device_by_identifier,
    get_device_count_by_org_id,
    get_devices_by_org_id,
    get_devices_by_org_id_and_product_id,
    get_eligible_deployments,
    update_device,
    update_firmware_metadata,
)
from fleetgate_core.engine.deployments import create_deployment, create_firmware
from fleetgate_core.engine.dispatch import UpdateDispatcher, send_update_message
from fleetgate_core.engine.health import verify_update_eligibility
from fleetgate_core.engine.ledger import (
    failure_count,
    failure_count_in_window,
    record_update_sent,
)
from fleetgate_core.engine.resolver import resolve_update

__all__ = [
    "UpdateDispatcher",
    "create_deployment",
    "create_device",
    "create_firmware",
    "delete_device",
    "device_connected",
    "failure_count",
    "failure_count_in_window",
    "get_device",
    "get_device_by_identifier",
    "get_device_count_by_org_id",
    "get_devices_by_org_id",
    "get_devices_by_org_id_and_product_id",
    "get_eligible_deployments",
    "record_update_sent",
    "resolve_update",
    "send_update_message",
    "update_device",
    "update_firmware_metadata",
    "verify_update_eligibility",
]
