"""
Admin authentication for access-control operations.

Admin callers authenticate with a shared X-Admin-Key header (ADMIN_KEY or
ADMIN_API_KEY). The resolved actor identity is recorded in the admin audit
log; the key itself is never stored, only a short hash.
"""
import hashlib
import hmac
import os
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request

from iiskills_access.core.config import settings


@dataclass
class AdminActor:
    """Represents an authenticated admin actor."""
    actor_id: str  # "legacy:<hash>"
    actor_display: Optional[str] = None
    auth_mechanism: str = "x_admin_key"


def get_admin_api_key() -> Optional[str]:
    """Prefer ADMIN_API_KEY env var; fall back to settings.ADMIN_KEY."""
    env_key = os.getenv("ADMIN_API_KEY")
    if env_key:
        return env_key
    return settings.ADMIN_KEY


def verify_admin_key(request: Request) -> Optional[AdminActor]:
    """Return an AdminActor if the X-Admin-Key header matches, else None."""
    expected_key = get_admin_api_key()
    if not expected_key:
        return None

    header_key = request.headers.get("X-Admin-Key", "").strip()
    if not header_key or not hmac.compare_digest(header_key, expected_key):
        return None

    key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
    return AdminActor(
        actor_id=f"legacy:{key_hash}",
        actor_display="Admin Key",
    )


def require_admin(request: Request) -> AdminActor:
    """
    FastAPI dependency: Require admin authentication.

    Usage:
        @router.post("/admin/access/grant")
        def grant(actor: AdminActor = Depends(require_admin)):
            ...
    """
    actor = verify_admin_key(request)
    if actor:
        return actor

    if not get_admin_api_key():
        raise HTTPException(
            status_code=503,
            detail={
                "error": "Admin authentication not configured",
                "code": "admin_auth_unconfigured",
                "hint": "Set ADMIN_KEY",
            },
        )

    raise HTTPException(
        status_code=401,
        detail={
            "error": "Unauthorized: invalid or missing admin credentials",
            "code": "admin_unauthorized",
            "hint": "Use the X-Admin-Key header.",
        },
    )
