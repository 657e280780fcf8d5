import json
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.opsdesk.models import AuditEvent, User


def _request_value(name: str) -> Any:
    if not has_request_context():
        return None
    if name == "request_id":
        return getattr(g, "request_id", None)
    return request.remote_addr


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Append-only audit event helper. Works inside and outside a request.
    """
    ev = AuditEvent(
        request_id=request_id or _request_value("request_id"),
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
        client_ip=_request_value("client_ip"),
    )
    s.add(ev)
    return ev
