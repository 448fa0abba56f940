"""
Access API: page guards, "my apps" listing, catalog and payment confirmation.

Identity is supplied by the calling web app (user_id); it is trusted as-is.
Payment verification happens upstream; /v1/payments/confirm requires the
X-Service-Key credential of that trusted caller.
"""

import logging
from datetime import date
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from iiskills_access.core.logging import get_request_id
from iiskills_access.core.service_auth import require_service
from iiskills_access.features.access.services import AccessServices, get_services
from iiskills_access.features.payments.service import PurchaseConfirmation
from iiskills_access.models.access_grant import AppAccessStatus, BundleAccess, UserApp

logger = logging.getLogger("iiskills.api.access")

router = APIRouter(prefix="/v1", tags=["access"])


class AccessCheckResponse(BaseModel):
    app_id: str
    user_id: Optional[str] = None
    has_access: bool
    is_free: bool
    reason: str


class UserAppsResponse(BaseModel):
    user_id: Optional[str] = None
    apps: List[UserApp]
    summary: List[AppAccessStatus]
    bundle_access: Dict[str, BundleAccess] = Field(default_factory=dict)
    total_access: int


class CatalogApp(BaseModel):
    app_id: str
    display_name: str
    tier: str
    bundle_id: Optional[str] = None
    price_tiers: Optional[Dict[str, int]] = None


class CatalogBundle(BaseModel):
    bundle_id: str
    name: str
    description: str
    apps: List[str]
    price_tiers: Dict[str, int]
    valid_until: date
    offer_active: bool
    features: List[str]


class CatalogResponse(BaseModel):
    apps: List[CatalogApp]
    bundles: List[CatalogBundle]


class PaymentConfirmRequest(BaseModel):
    user_id: str = Field(..., min_length=1, description="Purchasing user")
    app_id: str = Field(..., min_length=1, description="App that was paid for")
    payment_id: Optional[str] = Field(None, description="External payment record id")


@router.get("/catalog", response_model=CatalogResponse)
def get_catalog(services: AccessServices = Depends(get_services)):
    apps = [
        CatalogApp(
            app_id=app.id,
            display_name=app.display_name,
            tier=app.tier.value,
            bundle_id=app.bundle_id,
            price_tiers=app.price_tiers,
        )
        for app in services.catalog
    ]
    bundles = [
        CatalogBundle(
            bundle_id=bundle.id,
            name=bundle.name,
            description=bundle.description,
            apps=list(bundle.apps),
            price_tiers=dict(bundle.price_tiers),
            valid_until=bundle.valid_until,
            offer_active=services.bundles.is_offer_active(bundle),
            features=list(bundle.features),
        )
        for bundle in services.bundles.list_bundles()
    ]
    return CatalogResponse(apps=apps, bundles=bundles)


@router.get("/access", response_model=UserAppsResponse)
def list_user_apps(
    user_id: Optional[str] = Query(None),
    services: AccessServices = Depends(get_services),
):
    """Apps the caller can open: every free app plus live paid grants."""
    apps = services.store.list_user_apps(user_id)
    grants = services.store.list_user_grants(user_id) if user_id else []
    return UserAppsResponse(
        user_id=user_id,
        apps=apps,
        summary=services.resolver.build_user_access_summary(grants),
        bundle_access=services.resolver.bundle_access_summary(grants),
        total_access=len(apps),
    )


@router.get("/access/{app_id}", response_model=AccessCheckResponse)
def check_access(
    app_id: str,
    user_id: Optional[str] = Query(None),
    services: AccessServices = Depends(get_services),
):
    """Page guard check. Never fails open: storage errors answer has_access=false."""
    decision = services.store.resolve_access(user_id, app_id)
    logger.info(
        "access.check",
        extra={
            "request_id": get_request_id(),
            "user_id": user_id,
            "app_id": app_id,
            "reason": decision.reason.value,
        },
    )
    return AccessCheckResponse(
        app_id=app_id,
        user_id=user_id,
        has_access=decision.has_access,
        is_free=services.catalog.is_free(app_id),
        reason=decision.reason.value,
    )


@router.post("/payments/confirm", response_model=PurchaseConfirmation, dependencies=[Depends(require_service)])
def confirm_payment(
    body: PaymentConfirmRequest,
    services: AccessServices = Depends(get_services),
):
    return services.payments.confirm_purchase(body.user_id, body.app_id, body.payment_id)
