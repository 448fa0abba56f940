"""
Tests for the app catalog, bundle registry and catalog loader.
"""
import json
import pytest
from datetime import date, datetime, timezone

from iiskills_access.core.errors import CatalogConfigError, UnknownAppError, UnknownBundleError
from iiskills_access.features.catalog import loader
from iiskills_access.features.catalog.defaults import DEFAULT_APPS, DEFAULT_BUNDLES
from iiskills_access.features.catalog.loader import build_registries, load_catalog_file
from iiskills_access.features.catalog.registry import BundleRegistry
from iiskills_access.models.app import AppTier


FREE_APPS = ["learn-apt", "learn-chemistry", "learn-geography", "learn-math", "learn-physics"]
PAID_APPS = ["main", "learn-ai", "learn-developer", "learn-management", "learn-pr"]


class TestAppCatalog:
    def test_default_catalog_order_and_size(self, catalog):
        assert catalog.ids() == list(DEFAULT_APPS)
        assert len(catalog) == 10

    def test_get_app(self, catalog):
        app = catalog.get_app("learn-ai")
        assert app.display_name == "Learn-AI"
        assert app.tier == AppTier.PAID
        assert app.bundle_id == "ai-developer-bundle"

    def test_get_unknown_app_raises(self, catalog):
        with pytest.raises(UnknownAppError) as exc:
            catalog.get_app("learn-astrology")
        assert exc.value.app_id == "learn-astrology"
        assert exc.value.code == "unknown_app"
        assert exc.value.status_code == 404

    def test_find_app_returns_none_for_unknown(self, catalog):
        assert catalog.find_app("learn-astrology") is None
        assert "learn-astrology" not in catalog
        assert "learn-math" in catalog

    def test_free_and_paid_filters(self, catalog):
        assert [a.id for a in catalog.list_free_apps()] == FREE_APPS
        assert sorted(a.id for a in catalog.list_paid_apps()) == sorted(PAID_APPS)

    @pytest.mark.parametrize("app_id", FREE_APPS)
    def test_is_free_for_free_apps(self, catalog, app_id):
        assert catalog.is_free(app_id) is True
        assert catalog.requires_payment(app_id) is False

    @pytest.mark.parametrize("app_id", PAID_APPS)
    def test_is_free_for_paid_apps(self, catalog, app_id):
        assert catalog.is_free(app_id) is False
        assert catalog.requires_payment(app_id) is True

    def test_is_free_unknown_app_fails_closed(self, catalog):
        """Unknown ids raise instead of defaulting to either tier."""
        with pytest.raises(UnknownAppError):
            catalog.is_free("nope")


class TestBundleRegistry:
    def test_get_bundle(self, bundles):
        bundle = bundles.get_bundle("ai-developer-bundle")
        assert bundle.apps == ("learn-ai", "learn-developer")
        assert bundle.valid_until == date(2026, 3, 31)
        assert bundle.price_tiers["introductory"] == 11682

    def test_get_unknown_bundle_raises(self, bundles):
        with pytest.raises(UnknownBundleError):
            bundles.get_bundle("mystery-bundle")

    def test_get_bundle_for_app(self, bundles):
        assert bundles.get_bundle_for_app("learn-developer").id == "ai-developer-bundle"
        assert bundles.get_bundle_for_app("learn-management") is None
        assert bundles.get_bundle_for_app("learn-math") is None

    def test_get_bundle_for_unknown_app_raises(self, bundles):
        with pytest.raises(UnknownAppError):
            bundles.get_bundle_for_app("nope")

    def test_offer_active_is_inclusive_of_last_day(self, bundles):
        bundle = bundles.get_bundle("ai-developer-bundle")
        assert BundleRegistry.is_offer_active(bundle, date(2026, 3, 30)) is True
        assert BundleRegistry.is_offer_active(bundle, date(2026, 3, 31)) is True
        assert BundleRegistry.is_offer_active(bundle, date(2026, 4, 1)) is False

    def test_offer_active_uses_calendar_date_of_datetime(self, bundles):
        """Late evening on the last day is still inside the window."""
        bundle = bundles.get_bundle("ai-developer-bundle")
        late = datetime(2026, 3, 31, 23, 59, 59, tzinfo=timezone.utc)
        assert BundleRegistry.is_offer_active(bundle, late) is True
        assert BundleRegistry.is_offer_active(bundle, datetime(2026, 4, 1, 0, 0, 1)) is False


class TestCatalogValidation:
    def test_duplicate_app_ids_rejected(self):
        from iiskills_access.features.catalog.registry import AppCatalog
        from iiskills_access.models.app import App

        apps = [
            App(id="learn-x", display_name="X", tier="paid"),
            App(id="learn-x", display_name="X again", tier="free"),
        ]
        with pytest.raises(CatalogConfigError):
            AppCatalog(apps)

    def test_bundle_member_must_point_back(self):
        apps = {
            "a": {"display_name": "A", "tier": "paid", "bundle_id": "ab"},
            "b": {"display_name": "B", "tier": "paid"},
        }
        bundles = {"ab": {"name": "AB", "apps": ["a", "b"], "valid_until": "2026-03-31"}}
        with pytest.raises(CatalogConfigError, match="bundle_id=None"):
            build_registries(apps, bundles)

    def test_app_claiming_bundle_must_be_listed(self):
        apps = {
            "a": {"display_name": "A", "tier": "paid", "bundle_id": "ab"},
            "b": {"display_name": "B", "tier": "paid", "bundle_id": "ab"},
            "c": {"display_name": "C", "tier": "paid", "bundle_id": "ab"},
        }
        bundles = {"ab": {"name": "AB", "apps": ["a", "b"], "valid_until": "2026-03-31"}}
        with pytest.raises(CatalogConfigError, match="not one of its apps"):
            build_registries(apps, bundles)

    def test_bundle_cannot_contain_free_app(self):
        apps = {
            "paid-a": {"display_name": "A", "tier": "paid", "bundle_id": "b"},
            "free-b": {"display_name": "B", "tier": "free", "bundle_id": "b"},
        }
        bundles = {"b": {"name": "B", "apps": ["paid-a", "free-b"], "valid_until": "2026-03-31"}}
        with pytest.raises(CatalogConfigError, match="free app free-b"):
            build_registries(apps, bundles)

    def test_bundle_referencing_unknown_app(self):
        apps = {"a": {"display_name": "A", "tier": "paid", "bundle_id": "ab"}}
        bundles = {"ab": {"name": "AB", "apps": ["a", "ghost"], "valid_until": "2026-03-31"}}
        with pytest.raises(CatalogConfigError, match="unknown app ghost"):
            build_registries(apps, bundles)

    def test_app_referencing_unknown_bundle(self):
        apps = {"a": {"display_name": "A", "tier": "paid", "bundle_id": "missing"}}
        with pytest.raises(CatalogConfigError, match="unknown bundle"):
            build_registries(apps, {})

    def test_bundle_needs_two_distinct_apps(self):
        apps = {"a": {"display_name": "A", "tier": "paid", "bundle_id": "solo"}}
        bundles = {"solo": {"name": "Solo", "apps": ["a"], "valid_until": "2026-03-31"}}
        with pytest.raises(CatalogConfigError):
            build_registries(apps, bundles)

    def test_unknown_tier_rejected(self):
        with pytest.raises(CatalogConfigError):
            build_registries({"a": {"display_name": "A", "tier": "premium"}}, {})


class TestCatalogLoader:
    def test_load_catalog_file(self, tmp_path):
        path = tmp_path / "catalog.json"
        path.write_text(json.dumps({"apps": DEFAULT_APPS, "bundles": DEFAULT_BUNDLES}))

        catalog, bundles = load_catalog_file(str(path))

        assert catalog.ids() == list(DEFAULT_APPS)
        assert bundles.get_bundle_for_app("learn-ai").name == "AI + Developer Bundle"

    def test_load_missing_file_raises_config_error(self, tmp_path):
        with pytest.raises(CatalogConfigError):
            load_catalog_file(str(tmp_path / "missing.json"))

    def test_load_malformed_json_raises_config_error(self, tmp_path):
        path = tmp_path / "catalog.json"
        path.write_text("{not json")
        with pytest.raises(CatalogConfigError):
            load_catalog_file(str(path))

    def test_get_registries_uses_catalog_path(self, tmp_path, monkeypatch):
        apps = {
            "solo-app": {"display_name": "Solo", "tier": "paid"},
            "free-app": {"display_name": "Free", "tier": "free"},
        }
        path = tmp_path / "catalog.json"
        path.write_text(json.dumps({"apps": apps}))
        monkeypatch.setattr(loader.settings, "CATALOG_PATH", str(path))
        loader.reset_registries()
        try:
            catalog, bundles = loader.get_registries()
            assert catalog.ids() == ["solo-app", "free-app"]
            assert bundles.list_bundles() == []
            # Cached after the first load
            assert loader.get_registries()[0] is catalog
        finally:
            loader.reset_registries()

    def test_get_registries_defaults_to_embedded(self, monkeypatch):
        monkeypatch.setattr(loader.settings, "CATALOG_PATH", None)
        loader.reset_registries()
        try:
            catalog, _ = loader.get_registries()
            assert catalog.ids() == list(DEFAULT_APPS)
        finally:
            loader.reset_registries()
