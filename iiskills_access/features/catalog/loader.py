"""
iiskills_access/features/catalog/loader.py

Builds the registries from config mappings, a JSON file, or the embedded
defaults. Loaded once per process.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from iiskills_access.core.config import settings
from iiskills_access.core.errors import CatalogConfigError
from iiskills_access.features.catalog.defaults import DEFAULT_APPS, DEFAULT_BUNDLES
from iiskills_access.features.catalog.registry import AppCatalog, BundleRegistry
from iiskills_access.models.app import App, Bundle

logger = logging.getLogger("iiskills.catalog")

Registries = Tuple[AppCatalog, BundleRegistry]

_registries: Optional[Registries] = None


def build_registries(
    apps_config: Mapping[str, Mapping[str, Any]],
    bundles_config: Mapping[str, Mapping[str, Any]],
) -> Registries:
    """Validate config mappings (keyed by id) and build both registries.

    Raises:
        CatalogConfigError: on malformed entries or broken bundle membership
    """
    try:
        apps = [App(id=app_id, **config) for app_id, config in apps_config.items()]
        bundles = [Bundle(id=bundle_id, **config) for bundle_id, config in bundles_config.items()]
    except (PydanticValidationError, TypeError) as exc:
        raise CatalogConfigError(f"Invalid catalog definition: {exc}") from exc

    catalog = AppCatalog(apps)
    registry = BundleRegistry(bundles, catalog)
    return catalog, registry


def load_catalog_file(path: str) -> Registries:
    """Load a JSON file shaped like {"apps": {...}, "bundles": {...}}."""
    try:
        data: Dict[str, Any] = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise CatalogConfigError(f"Unable to read catalog file {path}: {exc}") from exc
    return build_registries(data.get("apps", {}), data.get("bundles", {}))


def get_registries() -> Registries:
    """Process-wide registries (CATALOG_PATH if set, else embedded defaults)."""
    global _registries
    if _registries is None:
        if settings.CATALOG_PATH:
            _registries = load_catalog_file(settings.CATALOG_PATH)
            source = settings.CATALOG_PATH
        else:
            _registries = build_registries(DEFAULT_APPS, DEFAULT_BUNDLES)
            source = "embedded"
        catalog, bundles = _registries
        logger.info(
            "catalog.loaded",
            extra={"event_type": "catalog.loaded", "status": f"{len(catalog)} apps, {len(bundles.list_bundles())} bundles from {source}"},
        )
    return _registries


def reset_registries() -> None:
    """Drop the cached registries (tests and config reloads)."""
    global _registries
    _registries = None
