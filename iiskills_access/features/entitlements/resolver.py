"""
iiskills_access/features/entitlements/resolver.py

Pure entitlement rules over the catalog and bundle registry.

Handles:
- Which apps a purchase unlocks (bundle propagation)
- Classifying a single (app, grant) pair into an access decision
- "My apps" summaries for a user's grants

No storage access and no side effects; callers act on EXPIRED decisions.
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from iiskills_access.features.catalog.registry import AppCatalog, BundleRegistry
from iiskills_access.models.access_grant import (
    AccessDecision,
    AccessGrant,
    AccessReason,
    AppAccessStatus,
    BundleAccess,
    GrantedVia,
)


def normalize_now(now: Optional[datetime] = None) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if getattr(now, "tzinfo", None) is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def _is_live(grant: AccessGrant, now: datetime) -> bool:
    return grant.is_active and not grant.is_expired(now)


class EntitlementResolver:
    def __init__(self, catalog: AppCatalog, bundles: BundleRegistry):
        self.catalog = catalog
        self.bundles = bundles

    def apps_to_unlock(self, purchased_app_id: str) -> List[str]:
        """Apps granted by purchasing ``purchased_app_id``.

        Bundle members unlock together regardless of the offer window; the
        purchased app comes first, then the rest in catalog order.
        """
        bundle = self.bundles.get_bundle_for_app(purchased_app_id)
        if bundle is None:
            return [purchased_app_id]
        members = set(bundle.apps)
        siblings = [
            app_id for app_id in self.catalog.ids()
            if app_id in members and app_id != purchased_app_id
        ]
        return [purchased_app_id] + siblings

    def classify_access(
        self,
        app_id: str,
        grant: Optional[AccessGrant],
        now: Optional[datetime] = None,
    ) -> AccessDecision:
        if self.catalog.is_free(app_id):
            return AccessDecision(has_access=True, reason=AccessReason.FREE)
        if grant is None:
            return AccessDecision(has_access=False, reason=AccessReason.NO_GRANT)
        if not grant.is_active:
            return AccessDecision(has_access=False, reason=AccessReason.INACTIVE)
        if grant.is_expired(normalize_now(now)):
            return AccessDecision(has_access=False, reason=AccessReason.EXPIRED)
        return AccessDecision(
            has_access=True,
            reason=AccessReason.from_granted_via(grant.granted_via),
        )

    def build_user_access_summary(
        self,
        grants: Iterable[AccessGrant],
        now: Optional[datetime] = None,
    ) -> List[AppAccessStatus]:
        """Access status for every catalog app, one entry per app id."""
        by_app: Dict[str, AccessGrant] = {}
        for grant in grants:
            current = by_app.get(grant.app_id)
            # Prefer an active row if duplicates slip through
            if current is None or (grant.is_active and not current.is_active):
                by_app[grant.app_id] = grant

        resolved_now = normalize_now(now)
        summary = []
        for app in self.catalog:
            decision = self.classify_access(app.id, by_app.get(app.id), resolved_now)
            summary.append(
                AppAccessStatus(app_id=app.id, has_access=decision.has_access, reason=decision.reason)
            )
        return summary

    def bundle_access_summary(
        self,
        grants: Iterable[AccessGrant],
        now: Optional[datetime] = None,
    ) -> Dict[str, BundleAccess]:
        """Per bundle: which member was paid for and which were unlocked with it."""
        resolved_now = normalize_now(now)
        summary: Dict[str, BundleAccess] = {}
        for grant in grants:
            if not _is_live(grant, resolved_now):
                continue
            app = self.catalog.find_app(grant.app_id)
            if app is None or app.bundle_id is None:
                continue
            entry = summary.get(app.bundle_id)
            if entry is None:
                bundle = self.bundles.get_bundle(app.bundle_id)
                entry = BundleAccess(bundle_id=bundle.id, name=bundle.name, apps=list(bundle.apps))
                summary[app.bundle_id] = entry
            if grant.granted_via == GrantedVia.PAYMENT:
                entry.purchased_app = grant.app_id
            elif grant.granted_via == GrantedVia.BUNDLE and grant.app_id not in entry.unlocked_apps:
                entry.unlocked_apps.append(grant.app_id)
        return summary

    def bundle_unlock_message(self, app_id: str, purchased_app_id: str) -> str:
        bundle = self.bundles.get_bundle_for_app(app_id)
        if bundle is None:
            return ""
        current = self.catalog.get_app(app_id)
        purchased = self.catalog.get_app(purchased_app_id)
        return (
            f"Congratulations! You unlocked {current.display_name} by purchasing "
            f"{purchased.display_name}. Enjoy your {bundle.name}!"
        )
