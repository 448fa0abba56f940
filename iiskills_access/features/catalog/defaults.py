"""
iiskills_access/features/catalog/defaults.py

Embedded catalog used when no CATALOG_PATH is configured.

Amounts are in paisa (Rs 99 + 18% GST = 11682).
"""

DEFAULT_BUNDLES = {
    "ai-developer-bundle": {
        "name": "AI + Developer Bundle",
        "description": "Learn AI and Learn Developer - Two Apps for the Price of One",
        "apps": ["learn-ai", "learn-developer"],
        "price_tiers": {
            "introductory": 11682,
            "regular": 35282,
        },
        "valid_until": "2026-03-31",
        "features": [
            "Complete Learn AI course access",
            "Complete Learn Developer course access",
            "Shared progress tracking",
            "Universal certification",
            "Mentor Mode unlock at 30% completion",
        ],
    },
}

_STANDARD_PRICE = {
    "introductory": 11682,
    "regular": 35282,
}

# Insertion order is catalog order
DEFAULT_APPS = {
    "main": {
        "display_name": "iiskills.cloud",
        "tier": "paid",
        "price_tiers": _STANDARD_PRICE,
    },
    "learn-ai": {
        "display_name": "Learn-AI",
        "tier": "paid",
        "bundle_id": "ai-developer-bundle",
    },
    "learn-apt": {
        "display_name": "Learn-Apt",
        "tier": "free",
    },
    "learn-chemistry": {
        "display_name": "Learn-Chemistry",
        "tier": "free",
    },
    "learn-developer": {
        "display_name": "Learn-Developer",
        "tier": "paid",
        "bundle_id": "ai-developer-bundle",
    },
    "learn-geography": {
        "display_name": "Learn-Geography",
        "tier": "free",
    },
    "learn-management": {
        "display_name": "Learn-Management",
        "tier": "paid",
        "price_tiers": _STANDARD_PRICE,
    },
    "learn-math": {
        "display_name": "Learn-Math",
        "tier": "free",
    },
    "learn-physics": {
        "display_name": "Learn-Physics",
        "tier": "free",
    },
    "learn-pr": {
        "display_name": "Learn-PR",
        "tier": "paid",
        "price_tiers": _STANDARD_PRICE,
    },
}
