"""
Admin access operations (manual grant/revoke) and the operations dashboard.

Handles:
- Immediate admin grants (permanent, provenance ADMIN)
- Admin revokes (reason "admin")
- Read-only dashboard snapshot over catalog, bundles and store stats
- Audit logging of every admin action
"""
import logging
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from iiskills_access.features.access.store import AccessStore
from iiskills_access.features.admin.audit import record_admin_audit
from iiskills_access.features.catalog.registry import AppCatalog, BundleRegistry
from iiskills_access.features.entitlements.resolver import normalize_now
from iiskills_access.models.access_grant import AccessGrant, AccessStats, GrantedVia

logger = logging.getLogger("iiskills.admin")


class BundleSummary(BaseModel):
    bundle_id: str
    name: str
    apps: List[str]
    price_tiers: dict
    valid_until: str
    offer_active: bool


class AppCount(BaseModel):
    app_id: str
    display_name: str
    tier: str
    bundle_id: Optional[str] = None
    active_grants: int = 0


class DashboardSnapshot(BaseModel):
    stats: AccessStats
    bundles: List[BundleSummary] = Field(default_factory=list)
    per_app: List[AppCount] = Field(default_factory=list)
    computed_at: datetime


class AccessAdminService:
    def __init__(self, catalog: AppCatalog, bundles: BundleRegistry, store: AccessStore):
        self.catalog = catalog
        self.bundles = bundles
        self.store = store

    def _audit(self, actor: str, action: str, user_id: str, app_id: str, payload: dict) -> None:
        try:
            record_admin_audit(
                actor=actor,
                action=action,
                target_user_id=user_id,
                target_app_id=app_id,
                payload=payload,
                session_scope=self.store.session_scope,
            )
        except Exception:
            # The access change already committed; keep it and flag the gap
            logger.error(
                "admin.audit.write_failed",
                exc_info=True,
                extra={"user_id": user_id, "app_id": app_id, "operation": action, "error_code": "admin_audit_failed"},
            )

    def admin_grant(self, user_id: str, app_id: str, actor: str = "admin") -> AccessGrant:
        grant = self.store.grant(user_id, app_id, GrantedVia.ADMIN, payment_id=None, expires_at=None)
        logger.info("admin.access.grant", extra={"user_id": user_id, "app_id": app_id, "granted_via": "admin"})
        self._audit(actor, "admin_grant", user_id, app_id, {"granted_via": GrantedVia.ADMIN.value})
        return grant

    def admin_revoke(self, user_id: str, app_id: str, actor: str = "admin") -> None:
        self.store.revoke(user_id, app_id, "admin")
        logger.info("admin.access.revoke", extra={"user_id": user_id, "app_id": app_id, "reason": "admin"})
        self._audit(actor, "admin_revoke", user_id, app_id, {"reason": "admin"})

    def dashboard_snapshot(self, *, now: Optional[datetime] = None) -> DashboardSnapshot:
        resolved_now = normalize_now(now)
        stats = self.store.stats(now=resolved_now)

        bundles = [
            BundleSummary(
                bundle_id=bundle.id,
                name=bundle.name,
                apps=list(bundle.apps),
                price_tiers=dict(bundle.price_tiers),
                valid_until=bundle.valid_until.isoformat(),
                offer_active=self.bundles.is_offer_active(bundle, resolved_now.astimezone()),
            )
            for bundle in self.bundles.list_bundles()
        ]
        per_app = [
            AppCount(
                app_id=app.id,
                display_name=app.display_name,
                tier=app.tier.value,
                bundle_id=app.bundle_id,
                active_grants=stats.by_app.get(app.id, 0),
            )
            for app in self.catalog
        ]
        return DashboardSnapshot(stats=stats, bundles=bundles, per_app=per_app, computed_at=resolved_now)
