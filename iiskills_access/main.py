import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

# Load env from the package directory
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

from iiskills_access.core.config import settings, validate_config
from iiskills_access.core.logging import configure_logging
from iiskills_access.core.middleware.request_id import RequestIdMiddleware
from iiskills_access.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from iiskills_access.api import access, admin_access, health

configure_logging(settings.ENV, settings.LOG_LEVEL)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("iiskills")
    logger.info("Starting iiskills access service...")
    try:
        yield
    finally:
        logging.getLogger("iiskills").info("Stopping iiskills access service...")


app = FastAPI(title="iiskills.cloud - Access Control", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.root_router)
app.include_router(access.router)
app.include_router(admin_access.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("iiskills_access.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
