"""
Liveness and readiness probes.

/readyz reports which access tables are missing and how many apps and
bundles the loaded catalog holds; no credentials or row data are exposed.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import inspect, text

from iiskills_access.core.database import SessionScope
from iiskills_access.features.access.services import AccessServices, get_services

logger = logging.getLogger("iiskills.health")

root_router = APIRouter(tags=["health"])

# payments is owned upstream and only annotated, so it is not required here
REQUIRED_TABLES = (
    "user_app_access",
    "access_admin_audit",
)


def missing_tables(session_scope: SessionScope) -> List[str]:
    """Probe the store's own database, then return required tables that do not exist."""
    with session_scope() as session:
        session.execute(text("SELECT 1"))
        inspector = inspect(session.connection())
        return [table for table in REQUIRED_TABLES if not inspector.has_table(table)]


@root_router.get("/healthz")
def healthz():
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz(services: AccessServices = Depends(get_services)):
    try:
        missing = missing_tables(services.store.session_scope)
    except Exception as exc:
        logger.error("readyz.database_unreachable", extra={"error_code": type(exc).__name__})
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})

    if missing:
        detail = f"missing tables: {', '.join(missing)}"
        logger.warning("readyz.missing_tables", extra={"status": detail})
        return JSONResponse(status_code=503, content={"status": "error", "detail": detail})

    return {
        "status": "ok",
        "catalog": {
            "apps": len(services.catalog),
            "bundles": len(services.bundles.list_bundles()),
        },
    }
