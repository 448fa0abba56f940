"""
iiskills_access/features/payments/service.py

Payment confirmation caller.

Runs after the payment has been verified upstream: refuses payments on
free apps, grants the purchased app plus bundle siblings, annotates the
payment record and builds the unlock message. No business rules live here
beyond sequencing; those belong to the resolver and store.
"""

import logging
from typing import List, Optional

from pydantic import BaseModel, Field

from iiskills_access.core.errors import (
    DuplicateActiveGrantError,
    FreeAppPaymentError,
    NotFoundError,
    PartialBundleGrantError,
    StorageUnavailableError,
)
from iiskills_access.features.access.store import AccessStore
from iiskills_access.features.entitlements.resolver import EntitlementResolver
from iiskills_access.models.access_grant import BundleGrantResult, GrantedVia


logger = logging.getLogger("iiskills.payments")


class PurchaseConfirmation(BaseModel):
    user_id: str
    purchased_app: str
    payment_id: Optional[str] = None
    bundled_apps: List[str]
    unlocked_apps: List[str] = Field(default_factory=list)
    failed_apps: List[str] = Field(default_factory=list)
    partial: bool = False
    bundle_info_recorded: bool = False
    message: str = ""


def _confirmation_message(resolver: EntitlementResolver, result: BundleGrantResult) -> str:
    purchased = resolver.catalog.get_app(result.purchased_app)
    unlocked = [app_id for app_id in result.unlocked_apps if app_id not in result.failed]
    if not unlocked:
        return f"Payment confirmed. You now have access to {purchased.display_name}."
    return " ".join(
        resolver.bundle_unlock_message(app_id, result.purchased_app) for app_id in unlocked
    )


class PaymentConfirmationService:
    def __init__(self, resolver: EntitlementResolver, store: AccessStore):
        self.resolver = resolver
        self.store = store

    def confirm_purchase(self, user_id: str, app_id: str, payment_id: Optional[str]) -> PurchaseConfirmation:
        """Grant access for a verified payment.

        Raises:
            UnknownAppError: app_id not in catalog
            FreeAppPaymentError: app is free, no payment should exist
            PartialBundleGrantError: siblings granted but the purchased app was not
            StorageUnavailableError: nothing could be granted
        """
        if self.resolver.catalog.is_free(app_id):
            logger.warning("payment.free_app_rejected", extra={"user_id": user_id, "app_id": app_id, "payment_id": payment_id})
            raise FreeAppPaymentError(app_id)

        result = self.store.grant_bundle(user_id, app_id, payment_id)

        if not result.purchased_app_granted:
            raise PartialBundleGrantError(
                f"Access for purchased app {app_id} could not be granted; retry the failed apps",
                succeeded=[g.app_id for g in result.granted],
                failed=result.failed,
            )

        bundle_info_recorded = False
        if payment_id and not result.partial:
            try:
                self.store.update_payment_bundle_info(payment_id, result.bundled_apps)
                bundle_info_recorded = True
            except (NotFoundError, StorageUnavailableError) as exc:
                # Audit annotation only; access is already granted
                logger.warning(
                    "payment.bundle_info.skipped",
                    extra={"user_id": user_id, "app_id": app_id, "payment_id": payment_id, "error_code": exc.code},
                )

        confirmation = PurchaseConfirmation(
            user_id=user_id,
            purchased_app=app_id,
            payment_id=payment_id,
            bundled_apps=result.bundled_apps,
            unlocked_apps=result.unlocked_apps,
            failed_apps=result.failed,
            partial=result.partial,
            bundle_info_recorded=bundle_info_recorded,
            message=_confirmation_message(self.resolver, result),
        )
        logger.info(
            "payment.confirmed",
            extra={"user_id": user_id, "app_id": app_id, "payment_id": payment_id, "status": "partial" if result.partial else "complete"},
        )
        return confirmation

    def retry_failed_grants(self, user_id: str, purchased_app_id: str, payment_id: Optional[str], failed_apps: List[str]) -> List[str]:
        """Re-run grants for the apps a partial confirmation reported. Returns apps still failing."""
        still_failed = []
        for app_id in failed_apps:
            via = GrantedVia.PAYMENT if app_id == purchased_app_id else GrantedVia.BUNDLE
            try:
                self.store.grant(user_id, app_id, via, payment_id=payment_id)
            except (StorageUnavailableError, DuplicateActiveGrantError):
                still_failed.append(app_id)
        return still_failed
