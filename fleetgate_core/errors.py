class FleetgateError(Exception):
    """Base error for Fleetgate."""


class RecoverableError(FleetgateError):
    """Indicates the operation can be retried safely."""


class ConflictError(RecoverableError):
    """A record changed underneath the writer; reload and retry."""


class CatalogError(RecoverableError):
    """Firmware catalog could not produce a deliverable artifact."""


class ValidationError(FleetgateError):
    """Input validation failure."""

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason
