"""Sweep job that revokes access grants past their expires_at."""
import logging

from iiskills_access.core.config import settings
from iiskills_access.core.logging import configure_logging
from iiskills_access.features.access.services import get_services

logger = logging.getLogger("iiskills.workers.expire_access")


def expire_access_grants() -> dict:
    expired = get_services().store.expire_due_grants()
    logger.info("[expire] access grants swept", extra={"operation": "expire_due_grants", "status": f"{expired} expired"})
    return {"expired": expired}


if __name__ == "__main__":
    configure_logging(settings.ENV, settings.LOG_LEVEL)
    result = expire_access_grants()
    print(result)
