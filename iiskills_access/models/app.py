"""
iiskills_access/models/app.py

Catalog models: apps (products) and the promotional bundles that group them.

Both are immutable once the catalog is loaded.
"""

from datetime import date
from enum import Enum
from typing import Dict, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator


class AppTier(str, Enum):
    """Catalog-level classification. FREE apps never require a grant."""
    FREE = "free"
    PAID = "paid"


class App(BaseModel):
    """
    App represents a product/course in the iiskills.cloud ecosystem.

    Examples:
    - learn-apt (free)
    - learn-management (paid, standalone)
    - learn-ai (paid, member of ai-developer-bundle)
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    display_name: str
    tier: AppTier
    bundle_id: Optional[str] = None
    # Amounts in paisa, keyed by tier label ("introductory", "regular")
    price_tiers: Optional[Dict[str, int]] = None

    @property
    def is_free(self) -> bool:
        return self.tier == AppTier.FREE


class Bundle(BaseModel):
    """
    Bundle groups two or more apps: purchasing any one unlocks all of them.

    `valid_until` bounds the promotional offer only (inclusive calendar
    date); it does not gate unlocks.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str
    description: str = ""
    apps: Tuple[str, ...]
    price_tiers: Dict[str, int] = Field(default_factory=dict)
    valid_until: date
    features: Tuple[str, ...] = ()

    @field_validator("apps")
    @classmethod
    def _at_least_two_distinct_apps(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        if len(set(value)) != len(value):
            raise ValueError("bundle apps must be unique")
        if len(value) < 2:
            raise ValueError("bundle must contain at least two apps")
        return value
