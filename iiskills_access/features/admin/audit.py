"""
Admin audit log for manual access changes.

Every admin grant/revoke is recorded with the acting admin identity.
"""
import json
import logging
from typing import List, Optional

from sqlalchemy import insert, select

from iiskills_access.core.database import SessionScope, access_admin_audit, get_db_session

logger = logging.getLogger("iiskills.admin")


def record_admin_audit(
    actor: str,
    action: str,
    target_user_id: Optional[str] = None,
    target_app_id: Optional[str] = None,
    payload: Optional[dict] = None,
    *,
    session_scope: Optional[SessionScope] = None,
) -> None:
    """
    Record an admin action in the audit log.

    Args:
        actor: Admin identifier (e.g., "legacy:<key-hash>")
        action: Action name ("admin_grant", "admin_revoke")
        target_user_id: User affected by action
        target_app_id: App affected by action
        payload: Additional context as dict (will be JSON-serialized)
    """
    scope = session_scope or get_db_session
    with scope() as session:
        payload_json = json.dumps(payload, default=str) if payload else None
        session.execute(
            insert(access_admin_audit).values(
                actor=actor,
                action=action,
                target_user_id=target_user_id,
                target_app_id=target_app_id,
                payload_json=payload_json,
            )
        )


def list_admin_audit(
    target_user_id: Optional[str] = None,
    limit: int = 50,
    *,
    session_scope: Optional[SessionScope] = None,
) -> List[dict]:
    """Most recent audit entries first, optionally for one user."""
    limit = min(limit, 500)
    scope = session_scope or get_db_session
    with scope() as session:
        query = select(access_admin_audit)
        if target_user_id:
            query = query.where(access_admin_audit.c.target_user_id == target_user_id)
        query = query.order_by(access_admin_audit.c.id.desc()).limit(limit)
        rows = session.execute(query).fetchall()

    return [
        {
            "id": row.id,
            "actor": row.actor,
            "action": row.action,
            "target_user_id": row.target_user_id,
            "target_app_id": row.target_app_id,
            "payload": json.loads(row.payload_json) if row.payload_json else None,
            "created_at": row.created_at.isoformat() if row.created_at else None,
        }
        for row in rows
    ]
