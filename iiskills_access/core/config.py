import logging
import os
from typing import List, Optional

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Catalog (embedded defaults unless a JSON file is provided)
    CATALOG_PATH: Optional[str] = None

    # Access store
    ACCESS_UPSERT_RETRIES: int = 3

    # Admin access (X-Admin-Key header)
    ADMIN_KEY: Optional[str] = None

    # Payment confirmation callers (X-Service-Key header)
    SERVICE_KEY: Optional[str] = None

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"  # comma-separated

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()

REQUIRED_KEYS = ("DATABASE_URL", "ADMIN_KEY", "SERVICE_KEY")
_SUPPORTED_DB_SCHEMES = ("postgresql", "sqlite")


def _config_problems(cfg) -> List[str]:
    problems = []
    missing = [key for key in REQUIRED_KEYS if not getattr(cfg, key, None)]
    if missing:
        problems.append(f"Missing required configuration: {', '.join(missing)}")

    database_url = getattr(cfg, "DATABASE_URL", None)
    if database_url and not database_url.startswith(_SUPPORTED_DB_SCHEMES):
        # Report the scheme only; the URL carries credentials
        scheme = database_url.split(":", 1)[0]
        problems.append(f"Unsupported DATABASE_URL scheme: {scheme}")

    catalog_path = getattr(cfg, "CATALOG_PATH", None)
    if catalog_path and not os.path.isfile(catalog_path):
        problems.append(f"CATALOG_PATH does not exist: {catalog_path}")

    if getattr(cfg, "ACCESS_UPSERT_RETRIES", 1) < 1:
        problems.append("ACCESS_UPSERT_RETRIES must be at least 1")
    return problems


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Check configuration at startup.

    Strict mode raises RuntimeError listing every problem; otherwise each
    problem is logged as a warning. Secret values are never logged.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("iiskills")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    problems = _config_problems(cfg)
    if problems and strict_mode:
        raise RuntimeError("; ".join(problems))
    for problem in problems:
        log.warning(problem)
    return True
