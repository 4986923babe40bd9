from fleetgate_core.fleet.catalog import LocalFirmwareCatalog, metadata_from_firmware
from fleetgate_core.fleet.eligibility import eligible_deployments
from fleetgate_core.fleet.matching import matches_deployment, tags_match, version_match
from fleetgate_core.fleet.types import (
    NOT_AVAILABLE,
    Deployment,
    DeploymentConditions,
    Device,
    Firmware,
    FirmwareMetadata,
    UpdatePayload,
    payload_to_dict,
)

__all__ = [
    "NOT_AVAILABLE",
    "Deployment",
    "DeploymentConditions",
    "Device",
    "Firmware",
    "FirmwareMetadata",
    "LocalFirmwareCatalog",
    "UpdatePayload",
    "eligible_deployments",
    "matches_deployment",
    "metadata_from_firmware",
    "payload_to_dict",
    "tags_match",
    "version_match",
]
