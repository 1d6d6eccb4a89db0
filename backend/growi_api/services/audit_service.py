"""Audit trail for administrative account changes."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from growi_api.models.audit import AuditEvent


class AuditService:
    """Persist and list audit trail entries."""

    @staticmethod
    def log_event(
        db: Session,
        *,
        actor_id: Optional[int],
        action: str,
        target_user_id: Optional[int] = None,
        ip_address: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        event = AuditEvent(
            actor_id=actor_id,
            action=action,
            target_user_id=target_user_id,
            ip_address=ip_address,
            metadata_json=json.dumps(metadata or {}, ensure_ascii=False),
        )
        db.add(event)
        db.commit()
        db.refresh(event)
        return event

    @staticmethod
    def list_events(
        db: Session,
        *,
        action: Optional[str] = None,
        target_user_id: Optional[int] = None,
        limit: int = 100,
    ) -> List[dict]:
        query = db.query(AuditEvent)
        if action:
            query = query.filter(AuditEvent.action == action)
        if target_user_id is not None:
            query = query.filter(AuditEvent.target_user_id == target_user_id)
        events = query.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(limit).all()
        return [
            {
                "id": event.id,
                "actor_id": event.actor_id,
                "actor_email": event.actor.email if event.actor else None,
                "action": event.action,
                "target_user_id": event.target_user_id,
                "ip_address": event.ip_address,
                "metadata": json.loads(event.metadata_json or "{}"),
                "created_at": event.created_at,
            }
            for event in events
        ]


audit_service = AuditService()
