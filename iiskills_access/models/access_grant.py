"""
iiskills_access/models/access_grant.py

Access grant model and the read models derived from it.

One AccessGrant exists per (user_id, app_id); re-granting reactivates the
same row rather than creating a new one.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class GrantedVia(str, Enum):
    """Provenance of an access grant."""
    PAYMENT = "payment"
    BUNDLE = "bundle"
    ADMIN = "admin"
    PROMOTIONAL = "promotional"
    FREE = "free"  # derived from the catalog, never persisted


class AccessReason(str, Enum):
    """Why an access decision came out the way it did."""
    FREE = "free"
    PAYMENT = "payment"
    BUNDLE = "bundle"
    ADMIN = "admin"
    PROMOTIONAL = "promotional"
    NO_GRANT = "no_grant"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    UNAVAILABLE = "unavailable"  # storage outage; treated as no access

    @classmethod
    def from_granted_via(cls, granted_via: GrantedVia) -> "AccessReason":
        return cls(granted_via.value)


class AccessGrant(BaseModel):
    """
    AccessGrant is the durable record that a user may use a paid app.

    Constraint: at most one row per (user_id, app_id).
    """
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    user_id: str
    app_id: str
    granted_via: GrantedVia
    payment_id: Optional[str] = None
    is_active: bool = True
    granted_at: datetime
    expires_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    revoke_reason: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class AccessDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    has_access: bool
    reason: AccessReason


class AppAccessStatus(BaseModel):
    """One row of a user's "my apps" view."""
    model_config = ConfigDict(frozen=True)

    app_id: str
    has_access: bool
    reason: AccessReason


class UserApp(BaseModel):
    model_config = ConfigDict(frozen=True)

    app_id: str
    granted_via: GrantedVia
    is_free: bool


class BundleAccess(BaseModel):
    """Which app of a bundle was bought and which were unlocked alongside."""
    bundle_id: str
    name: str
    apps: List[str]
    purchased_app: Optional[str] = None
    unlocked_apps: List[str] = Field(default_factory=list)


class AccessStats(BaseModel):
    total: int = 0
    by_grant_type: Dict[str, int] = Field(default_factory=dict)
    by_app: Dict[str, int] = Field(default_factory=dict)


class BundleGrantResult(BaseModel):
    """Outcome of a multi-row bundle grant; `failed` lists apps to retry."""
    purchased_app: str
    bundled_apps: List[str]
    granted: List[AccessGrant] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)

    @property
    def unlocked_apps(self) -> List[str]:
        return [app_id for app_id in self.bundled_apps if app_id != self.purchased_app]

    @property
    def partial(self) -> bool:
        return bool(self.failed)

    @property
    def purchased_app_granted(self) -> bool:
        return any(g.app_id == self.purchased_app for g in self.granted)
