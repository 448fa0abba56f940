"""
Service authentication for trusted backend callers.

The payment webhook handler confirms purchases after verifying the payment
upstream. It authenticates with a shared X-Service-Key header (SERVICE_KEY).
"""
import hmac
from typing import Optional

from fastapi import HTTPException, Request

from iiskills_access.core.config import settings

SERVICE_KEY_HEADER = "X-Service-Key"


def get_service_key() -> Optional[str]:
    return settings.SERVICE_KEY


def require_service(request: Request) -> None:
    """FastAPI dependency guarding routes that write paid access."""
    expected_key = get_service_key()
    if not expected_key:
        raise HTTPException(
            status_code=503,
            detail={
                "error": "Service authentication not configured",
                "code": "service_auth_unconfigured",
                "hint": "Set SERVICE_KEY",
            },
        )

    header_key = request.headers.get(SERVICE_KEY_HEADER, "").strip()
    if not header_key or not hmac.compare_digest(header_key, expected_key):
        raise HTTPException(
            status_code=401,
            detail={
                "error": "Unauthorized: invalid or missing service credentials",
                "code": "service_unauthorized",
                "hint": f"Use the {SERVICE_KEY_HEADER} header.",
            },
        )
