from fleetgate_core.audit.logs import (
    AuditEvent,
    AuditFilter,
    distinct_timestamps,
    query_audit_events,
    record_audit_event,
)

__all__ = [
    "AuditEvent",
    "AuditFilter",
    "distinct_timestamps",
    "query_audit_events",
    "record_audit_event",
]
