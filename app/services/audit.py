from __future__ import annotations

from datetime import date, datetime
from typing import Any, Iterable

from fastapi.encoders import jsonable_encoder

from app.core.logging import get_audit_logger


audit_logger = get_audit_logger()


def serialize_for_audit(value: Any) -> Any:
    return jsonable_encoder(
        value,
        custom_encoder={
            datetime: lambda v: v.isoformat(),
            date: lambda v: v.isoformat(),
        },
    )


def model_snapshot(model: Any, *, include: Iterable[str] | None = None) -> dict[str, Any]:
    if model is None:
        return {}
    wanted = set(include) if include is not None else None
    data: dict[str, Any] = {}
    for column in model.__table__.columns:
        if wanted is not None and column.name not in wanted:
            continue
        data[column.name] = getattr(model, column.name)
    return serialize_for_audit(data)


def _diff_values(old: dict[str, Any], new: dict[str, Any]) -> dict[str, dict[str, Any]]:
    changes: dict[str, dict[str, Any]] = {}
    for key in set(old) | set(new):
        if old.get(key) != new.get(key):
            changes[key] = {"from": old.get(key), "to": new.get(key)}
    return changes


def record_audit_event(
    *,
    actor_id: Any,
    action: str,
    resource_type: str,
    resource_id: Any,
    old_value: dict[str, Any] | None = None,
    new_value: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Emit one staff action on the audit stream and return the logged payload."""
    serialized_old = serialize_for_audit(old_value) if old_value is not None else None
    serialized_new = serialize_for_audit(new_value) if new_value is not None else None
    event: dict[str, Any] = {
        "actor_id": actor_id,
        "action": action,
        "resource_type": resource_type,
        "resource_id": str(resource_id),
    }
    if serialized_old is not None or serialized_new is not None:
        event["changes"] = _diff_values(serialized_old or {}, serialized_new or {})
    audit_logger.info("%s %s:%s", action, resource_type, resource_id, extra={"audit": event})
    return event
