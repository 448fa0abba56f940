"""
Admin-only access operations router.
Requires X-Admin-Key header for all endpoints.
Handles manual grant/revoke, stats and the dashboard snapshot.
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from iiskills_access.core.admin_auth import AdminActor, require_admin
from iiskills_access.features.access.services import AccessServices, get_services
from iiskills_access.features.admin.audit import list_admin_audit
from iiskills_access.features.admin.service import DashboardSnapshot
from iiskills_access.models.access_grant import AccessGrant, AccessStats

logger = logging.getLogger("iiskills.admin_access")

router = APIRouter(prefix="/admin/access", tags=["admin-access"])


class AdminAccessRequest(BaseModel):
    user_id: str = Field(..., min_length=1, description="Target user ID")
    app_id: str = Field(..., min_length=1, description="Target app ID")


class AdminRevokeResponse(BaseModel):
    success: bool
    user_id: str
    app_id: str
    # Stored revoke time; None when the user never held a grant for the app
    revoked_at: Optional[datetime] = None


class AuditEntry(BaseModel):
    id: int
    actor: str
    action: str
    target_user_id: Optional[str] = None
    target_app_id: Optional[str] = None
    payload: Optional[dict] = None
    created_at: Optional[str] = None


@router.post("/grant", response_model=AccessGrant)
def admin_grant(
    body: AdminAccessRequest,
    actor: AdminActor = Depends(require_admin),
    services: AccessServices = Depends(get_services),
):
    return services.admin.admin_grant(body.user_id, body.app_id, actor=actor.actor_id)


@router.post("/revoke", response_model=AdminRevokeResponse)
def admin_revoke(
    body: AdminAccessRequest,
    actor: AdminActor = Depends(require_admin),
    services: AccessServices = Depends(get_services),
):
    services.admin.admin_revoke(body.user_id, body.app_id, actor=actor.actor_id)
    grant = services.store.get_grant(body.user_id, body.app_id)
    return AdminRevokeResponse(
        success=True,
        user_id=body.user_id,
        app_id=body.app_id,
        revoked_at=grant.revoked_at if grant else None,
    )


@router.get("/stats", response_model=AccessStats)
def access_stats(
    app_id: Optional[str] = Query(None),
    actor: AdminActor = Depends(require_admin),
    services: AccessServices = Depends(get_services),
):
    return services.store.stats(app_id)


@router.get("/dashboard", response_model=DashboardSnapshot)
def dashboard(
    actor: AdminActor = Depends(require_admin),
    services: AccessServices = Depends(get_services),
):
    return services.admin.dashboard_snapshot()


@router.get("/audit", response_model=List[AuditEntry])
def audit_log(
    user_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    actor: AdminActor = Depends(require_admin),
    services: AccessServices = Depends(get_services),
):
    return list_admin_audit(user_id, limit, session_scope=services.store.session_scope)
