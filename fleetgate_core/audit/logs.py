from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

import fsspec
import pyarrow as pa
import pyarrow.dataset as ds

from fleetgate_core.storage.paths import join_uri, part_filename
from fleetgate_core.storage.writer import write_parquet

AUDIT_EVENT_SCHEMA = pa.schema(
    [
        pa.field("id", pa.string(), nullable=False),
        pa.field("actor_type", pa.string(), nullable=False),
        pa.field("actor_id", pa.string(), nullable=False),
        pa.field("resource_type", pa.string(), nullable=False),
        pa.field("resource_id", pa.string(), nullable=False),
        pa.field("action", pa.string(), nullable=False),
        pa.field("params", pa.string(), nullable=False),
        pa.field("created_at", pa.timestamp("us", tz="UTC"), nullable=False),
    ]
)


@dataclass(frozen=True)
class AuditEvent:
    id: str
    actor_type: str
    actor_id: str
    resource_type: str
    resource_id: str
    action: str
    params: dict[str, Any]
    created_at: datetime


@dataclass(frozen=True)
class AuditFilter:
    actor_type: str | None = None
    actor_id: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    action: str | None = None
    params: Mapping[str, object] = field(default_factory=dict)

    def matches(self, event: AuditEvent) -> bool:
        for name in ("actor_type", "actor_id", "resource_type", "resource_id", "action"):
            expected = getattr(self, name)
            if expected is not None and getattr(event, name) != expected:
                return False
        for key, expected in self.params.items():
            if key not in event.params:
                return False
            if _param_text(event.params[key]) != _param_text(expected):
                return False
        return True


def _param_text(value: object) -> str:
    # Params are compared the way a JSON ->> extraction would render them.
    if isinstance(value, str):
        return value
    return json.dumps(value)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_second(value: datetime) -> datetime:
    # Audit timestamps have whole-second precision.
    return _as_utc(value).replace(microsecond=0)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def audit_events_dir(base_uri: str) -> str:
    return join_uri(base_uri, "audit", "events")


def record_audit_event(
    *,
    base_uri: str,
    actor_type: str,
    actor_id: str,
    resource_type: str,
    resource_id: str,
    action: str,
    params: Mapping[str, object] | None = None,
    created_at: datetime | None = None,
) -> AuditEvent:
    event = AuditEvent(
        id=str(uuid.uuid4()),
        actor_type=actor_type,
        actor_id=actor_id,
        resource_type=resource_type,
        resource_id=resource_id,
        action=action,
        params=dict(params or {}),
        created_at=_to_second(created_at or _utcnow()),
    )
    row = {
        "id": event.id,
        "actor_type": event.actor_type,
        "actor_id": event.actor_id,
        "resource_type": event.resource_type,
        "resource_id": event.resource_id,
        "action": event.action,
        "params": json.dumps(event.params, ensure_ascii=True, default=str),
        "created_at": event.created_at,
    }
    dest_uri = join_uri(audit_events_dir(base_uri), part_filename(event.id))
    write_parquet([row], AUDIT_EVENT_SCHEMA, dest_uri)
    return event


def _event_from_row(row: Mapping[str, Any]) -> AuditEvent:
    raw_params = row.get("params") or "{}"
    try:
        params = json.loads(raw_params)
    except json.JSONDecodeError:
        params = {}
    if not isinstance(params, dict):
        params = {}
    return AuditEvent(
        id=str(row["id"]),
        actor_type=str(row["actor_type"]),
        actor_id=str(row["actor_id"]),
        resource_type=str(row["resource_type"]),
        resource_id=str(row["resource_id"]),
        action=str(row["action"]),
        params=params,
        created_at=_as_utc(row["created_at"]),
    )


_COLUMN_FILTERS = ("actor_type", "actor_id", "resource_type", "resource_id", "action")


def _row_filter(
    audit_filter: AuditFilter,
    since: datetime | None,
) -> ds.Expression | None:
    terms = [
        ds.field(name) == getattr(audit_filter, name)
        for name in _COLUMN_FILTERS
        if getattr(audit_filter, name) is not None
    ]
    if since is not None:
        terms.append(ds.field("created_at") >= _as_utc(since))
    if not terms:
        return None
    expression = terms[0]
    for term in terms[1:]:
        expression = expression & term
    return expression


def _read_events(
    base_uri: str,
    audit_filter: AuditFilter,
    since: datetime | None,
) -> list[AuditEvent]:
    pattern = join_uri(audit_events_dir(base_uri), "part-*.parquet")
    fs, path = fsspec.core.url_to_fs(pattern)
    parts = sorted(fs.glob(path))
    if not parts:
        return []
    dataset = ds.dataset(
        parts,
        schema=AUDIT_EVENT_SCHEMA,
        format="parquet",
        filesystem=fs,
    )
    table = dataset.to_table(filter=_row_filter(audit_filter, since))
    events = [_event_from_row(row) for row in table.to_pylist()]
    events.sort(key=lambda event: (event.created_at, event.id))
    return events


def query_audit_events(
    base_uri: str,
    audit_filter: AuditFilter,
    *,
    since: datetime | None = None,
) -> list[AuditEvent]:
    # Column predicates are pushed into the scan; params are JSON text and
    # are matched after decoding.
    return [
        event
        for event in _read_events(base_uri, audit_filter, since)
        if audit_filter.matches(event)
    ]


def distinct_timestamps(events: Iterable[AuditEvent]) -> list[datetime]:
    return sorted({_to_second(event.created_at) for event in events})
