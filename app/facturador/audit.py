from __future__ import annotations

import json
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.facturador.models import AdminUser, AuditEvent, LoginAudit, Waiter


def _actor_label(actor: AdminUser | Waiter | None) -> str | None:
    if isinstance(actor, AdminUser):
        return actor.username
    if isinstance(actor, Waiter):
        return f"waiter:{actor.code}"
    return None


def record_event(
    s: Session,
    *,
    actor: AdminUser | Waiter | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Append-only audit event helper.
    """
    in_request = has_request_context()
    rid = request_id or (getattr(g, "request_id", None) if in_request else None)
    ev = AuditEvent(
        request_id=rid,
        actor_user_id=actor.id if isinstance(actor, AdminUser) else None,
        actor_label=_actor_label(actor),
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
        client_ip=request.remote_addr if in_request else None,
    )
    s.add(ev)
    return ev


def record_login_attempt(
    s: Session,
    *,
    login_type: str,
    identifier: str,
    success: bool,
    notes: str | None = None,
) -> LoginAudit:
    ip_address = None
    user_agent = None
    if has_request_context():
        ip_address = request.remote_addr
        user_agent = (request.headers.get("User-Agent") or "")[:300] or None
    entry = LoginAudit(
        login_type=login_type,
        identifier=(identifier or "")[:150] or "(vacío)",
        success=success,
        ip_address=ip_address,
        user_agent=user_agent,
        notes=notes,
    )
    s.add(entry)
    return entry
