"""
iiskills_access/features/catalog/registry.py

App catalog and bundle registry.

Both registries are built once at startup and never mutated. They are
passed to the resolver and store explicitly instead of being imported as
module globals.
"""

from datetime import date, datetime
from typing import Dict, Iterable, Iterator, List, Optional, Union

from iiskills_access.core.errors import CatalogConfigError, UnknownAppError, UnknownBundleError
from iiskills_access.models.app import App, AppTier, Bundle


class AppCatalog:
    """Lookup over every app in the ecosystem, in catalog order."""

    def __init__(self, apps: Iterable[App]):
        self._apps: Dict[str, App] = {}
        for app in apps:
            if app.id in self._apps:
                raise CatalogConfigError(f"Duplicate app id in catalog: {app.id}")
            self._apps[app.id] = app

    def __iter__(self) -> Iterator[App]:
        return iter(self._apps.values())

    def __contains__(self, app_id: object) -> bool:
        return app_id in self._apps

    def __len__(self) -> int:
        return len(self._apps)

    def ids(self) -> List[str]:
        return list(self._apps)

    def find_app(self, app_id: str) -> Optional[App]:
        return self._apps.get(app_id)

    def get_app(self, app_id: str) -> App:
        app = self._apps.get(app_id)
        if app is None:
            raise UnknownAppError(app_id)
        return app

    def list_free_apps(self) -> List[App]:
        return [app for app in self._apps.values() if app.tier == AppTier.FREE]

    def list_paid_apps(self) -> List[App]:
        return [app for app in self._apps.values() if app.tier == AppTier.PAID]

    def is_free(self, app_id: str) -> bool:
        """True iff the app is FREE. Unknown apps raise rather than default."""
        return self.get_app(app_id).tier == AppTier.FREE

    def requires_payment(self, app_id: str) -> bool:
        return not self.is_free(app_id)


class BundleRegistry:
    """Promotional bundles, validated against the app catalog."""

    def __init__(self, bundles: Iterable[Bundle], catalog: AppCatalog):
        self._catalog = catalog
        self._bundles: Dict[str, Bundle] = {}
        for bundle in bundles:
            if bundle.id in self._bundles:
                raise CatalogConfigError(f"Duplicate bundle id: {bundle.id}")
            self._bundles[bundle.id] = bundle
        self._validate()

    def _validate(self) -> None:
        for bundle in self._bundles.values():
            for app_id in bundle.apps:
                app = self._catalog.find_app(app_id)
                if app is None:
                    raise CatalogConfigError(
                        f"Bundle {bundle.id} references unknown app {app_id}"
                    )
                if app.bundle_id != bundle.id:
                    raise CatalogConfigError(
                        f"App {app_id} is listed in bundle {bundle.id} but has bundle_id={app.bundle_id}"
                    )
                # Bundle unlocks are stored grants; free apps never are
                if app.tier == AppTier.FREE:
                    raise CatalogConfigError(
                        f"Bundle {bundle.id} contains free app {app_id}; bundles may only hold paid apps"
                    )
        for app in self._catalog:
            if app.bundle_id is None:
                continue
            bundle = self._bundles.get(app.bundle_id)
            if bundle is None:
                raise CatalogConfigError(
                    f"App {app.id} references unknown bundle {app.bundle_id}"
                )
            if app.id not in bundle.apps:
                raise CatalogConfigError(
                    f"App {app.id} claims bundle {bundle.id} but is not one of its apps"
                )

    def __iter__(self) -> Iterator[Bundle]:
        return iter(self._bundles.values())

    def list_bundles(self) -> List[Bundle]:
        return list(self._bundles.values())

    def get_bundle(self, bundle_id: str) -> Bundle:
        bundle = self._bundles.get(bundle_id)
        if bundle is None:
            raise UnknownBundleError(bundle_id)
        return bundle

    def get_bundle_for_app(self, app_id: str) -> Optional[Bundle]:
        app = self._catalog.get_app(app_id)
        if app.bundle_id is None:
            return None
        return self.get_bundle(app.bundle_id)

    @staticmethod
    def is_offer_active(bundle: Bundle, as_of: Optional[Union[date, datetime]] = None) -> bool:
        """Whether the promotional window is open on ``as_of`` (inclusive).

        Compares calendar dates, never instants: a datetime contributes its
        own local date.
        """
        if as_of is None:
            as_of_date = date.today()
        elif isinstance(as_of, datetime):
            as_of_date = as_of.date()
        else:
            as_of_date = as_of
        return as_of_date <= bundle.valid_until
