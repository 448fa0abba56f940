"""
Wiring for the access components.

The registries are built once and handed to every component, so tests can
swap the catalog or the database without patching module globals.
"""

from dataclasses import dataclass
from typing import Optional

from iiskills_access.core.database import SessionScope
from iiskills_access.features.access.store import AccessStore
from iiskills_access.features.admin.service import AccessAdminService
from iiskills_access.features.catalog.loader import Registries, get_registries
from iiskills_access.features.catalog.registry import AppCatalog, BundleRegistry
from iiskills_access.features.entitlements.resolver import EntitlementResolver
from iiskills_access.features.payments.service import PaymentConfirmationService


@dataclass(frozen=True)
class AccessServices:
    catalog: AppCatalog
    bundles: BundleRegistry
    resolver: EntitlementResolver
    store: AccessStore
    admin: AccessAdminService
    payments: PaymentConfirmationService


def build_services(
    session_scope: Optional[SessionScope] = None,
    registries: Optional[Registries] = None,
    *,
    upsert_retries: Optional[int] = None,
) -> AccessServices:
    catalog, bundles = registries or get_registries()
    resolver = EntitlementResolver(catalog, bundles)
    store = AccessStore(catalog, resolver, session_scope, upsert_retries=upsert_retries)
    return AccessServices(
        catalog=catalog,
        bundles=bundles,
        resolver=resolver,
        store=store,
        admin=AccessAdminService(catalog, bundles, store),
        payments=PaymentConfirmationService(resolver, store),
    )


_services: Optional[AccessServices] = None


def get_services() -> AccessServices:
    """Process-wide services bound to the default database session."""
    global _services
    if _services is None:
        _services = build_services()
    return _services
