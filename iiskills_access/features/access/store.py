"""
iiskills_access/features/access/store.py

Access store: the only component that reads or writes user_app_access.

Handles:
- Atomic per-(user, app) upsert grants, including bundle propagation
- Access checks with lazy expiry (implicit revoke on first expired check)
- Idempotent revokes
- "My apps" listing and aggregate stats

Storage outages raise StorageUnavailableError, except in check_access which
resolves them to "no access" so paid content never leaks.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence

from sqlalchemy import insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from iiskills_access.core.config import settings
from iiskills_access.core.database import SessionScope, get_db_session, payments, user_app_access
from iiskills_access.core.errors import (
    AppError,
    DuplicateActiveGrantError,
    NotFoundError,
    StorageUnavailableError,
    ValidationError,
)
from iiskills_access.features.catalog.registry import AppCatalog
from iiskills_access.features.entitlements.resolver import EntitlementResolver, normalize_now
from iiskills_access.models.access_grant import (
    AccessDecision,
    AccessGrant,
    AccessReason,
    AccessStats,
    BundleGrantResult,
    GrantedVia,
    UserApp,
)

logger = logging.getLogger("iiskills.access")

# Columns rewritten when an existing (user_id, app_id) row is upserted
_UPSERT_COLUMNS = (
    "granted_via",
    "payment_id",
    "is_active",
    "access_granted_at",
    "expires_at",
    "revoked_at",
    "revoke_reason",
    "updated_at",
)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_granted_via(value: Any) -> GrantedVia:
    try:
        return GrantedVia(value)
    except ValueError:
        raise ValidationError(
            f"Unrecognized granted_via value: {value!r}",
            code="invalid_granted_via",
        )


def _failure_code(exc: Exception) -> str:
    if isinstance(exc, AppError):
        return exc.code
    return type(exc).__name__


def _row_to_grant(row) -> AccessGrant:
    return AccessGrant(
        id=row.id,
        user_id=row.user_id,
        app_id=row.app_id,
        granted_via=_parse_granted_via(row.granted_via),
        payment_id=row.payment_id,
        is_active=bool(row.is_active),
        granted_at=_as_utc(row.access_granted_at),
        expires_at=_as_utc(row.expires_at),
        revoked_at=_as_utc(row.revoked_at),
        revoke_reason=row.revoke_reason,
    )


class AccessStore:
    def __init__(
        self,
        catalog: AppCatalog,
        resolver: EntitlementResolver,
        session_scope: Optional[SessionScope] = None,
        *,
        upsert_retries: Optional[int] = None,
    ):
        self.catalog = catalog
        self.resolver = resolver
        self._session_scope = session_scope or get_db_session
        retries = upsert_retries if upsert_retries is not None else settings.ACCESS_UPSERT_RETRIES
        self._upsert_retries = max(1, retries)

    @property
    def session_scope(self) -> SessionScope:
        return self._session_scope

    @contextmanager
    def _storage(self, operation: str, user_id: Optional[str] = None, app_id: Optional[str] = None) -> Iterator[Session]:
        """Open a session and translate connectivity failures."""
        try:
            with self._session_scope() as session:
                yield session
        except (OperationalError, InterfaceError) as exc:
            logger.error(
                "access.storage_unavailable",
                extra={"operation": operation, "user_id": user_id, "app_id": app_id, "error_code": "storage_unavailable"},
            )
            raise StorageUnavailableError(
                f"Access storage unavailable during {operation}"
            ) from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _upsert(self, session: Session, values: Dict[str, Any]) -> None:
        dialect = session.get_bind().dialect.name
        if dialect in ("postgresql", "sqlite"):
            dialect_insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
            stmt = dialect_insert(user_app_access).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[user_app_access.c.user_id, user_app_access.c.app_id],
                set_={column: stmt.excluded[column] for column in _UPSERT_COLUMNS},
            )
            session.execute(stmt)
            return

        # Generic fallback: a concurrent insert surfaces as IntegrityError and is retried
        result = session.execute(
            update(user_app_access)
            .where(user_app_access.c.user_id == values["user_id"])
            .where(user_app_access.c.app_id == values["app_id"])
            .values(**{column: values[column] for column in _UPSERT_COLUMNS})
        )
        if result.rowcount == 0:
            session.execute(insert(user_app_access).values(**values))

    def grant(
        self,
        user_id: str,
        app_id: str,
        granted_via: GrantedVia,
        payment_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        *,
        now: Optional[datetime] = None,
    ) -> AccessGrant:
        """Upsert the single row for (user_id, app_id) and return it.

        A previously revoked or expired row is reactivated in place. Does not
        cascade to bundle siblings; see grant_bundle.

        Raises:
            UnknownAppError: app_id not in catalog
            ValidationError: missing user, FREE provenance, or FREE-tier app
            StorageUnavailableError: backing store unreachable
            DuplicateActiveGrantError: uniqueness conflicts persisted across retries
        """
        if not user_id:
            raise ValidationError("user_id is required to grant access")
        app = self.catalog.get_app(app_id)
        via = _parse_granted_via(granted_via)
        if via == GrantedVia.FREE or app.is_free:
            raise ValidationError(
                f"{app_id} is free; free access is derived from the catalog and never stored",
                code="free_access_not_persisted",
            )

        granted_at = normalize_now(now).astimezone(timezone.utc)
        values = {
            "user_id": user_id,
            "app_id": app_id,
            "granted_via": via.value,
            "payment_id": payment_id,
            "is_active": True,
            "access_granted_at": granted_at,
            "expires_at": _as_utc(expires_at),
            "revoked_at": None,
            "revoke_reason": None,
            "updated_at": granted_at,
        }

        for attempt in range(1, self._upsert_retries + 1):
            try:
                with self._storage("grant", user_id, app_id) as session:
                    self._upsert(session, values)
                    row = session.execute(
                        select(user_app_access)
                        .where(user_app_access.c.user_id == user_id)
                        .where(user_app_access.c.app_id == app_id)
                    ).first()
                break
            except IntegrityError:
                logger.warning(
                    "access.grant.conflict_retry",
                    extra={"user_id": user_id, "app_id": app_id, "operation": "grant", "status": f"attempt {attempt}"},
                )
        else:
            raise DuplicateActiveGrantError(
                f"Could not upsert access for user {user_id} on {app_id} after {self._upsert_retries} attempts"
            )

        grant = _row_to_grant(row)
        logger.info(
            "access.granted",
            extra={"user_id": user_id, "app_id": app_id, "granted_via": via.value, "payment_id": payment_id},
        )
        return grant

    def grant_bundle(
        self,
        user_id: str,
        purchased_app_id: str,
        payment_id: Optional[str],
        *,
        now: Optional[datetime] = None,
    ) -> BundleGrantResult:
        """Grant the purchased app (PAYMENT) and its bundle siblings (BUNDLE).

        Writes are independent upserts. Failures are collected in
        ``failed`` so the caller can retry that subset; if nothing could be
        written the last error is raised.
        """
        apps = self.resolver.apps_to_unlock(purchased_app_id)
        result = BundleGrantResult(purchased_app=purchased_app_id, bundled_apps=apps)
        last_error: Optional[AppError] = None

        for app_id in apps:
            via = GrantedVia.PAYMENT if app_id == purchased_app_id else GrantedVia.BUNDLE
            try:
                result.granted.append(
                    self.grant(user_id, app_id, via, payment_id=payment_id, now=now)
                )
            except (StorageUnavailableError, DuplicateActiveGrantError) as exc:
                last_error = exc
                result.failed.append(app_id)

        if not result.granted and last_error is not None:
            raise last_error

        if result.failed:
            logger.error(
                "access.bundle.partial",
                extra={
                    "user_id": user_id,
                    "app_id": purchased_app_id,
                    "payment_id": payment_id,
                    "status": f"granted={[g.app_id for g in result.granted]} failed={result.failed}",
                },
            )
        else:
            logger.info(
                "access.bundle.granted",
                extra={"user_id": user_id, "app_id": purchased_app_id, "payment_id": payment_id, "status": ",".join(apps)},
            )
        return result

    def revoke(self, user_id: str, app_id: str, reason: str, *, now: Optional[datetime] = None) -> None:
        """Deactivate the row. Missing or already-inactive rows are a no-op."""
        self.catalog.get_app(app_id)
        revoked_at = normalize_now(now).astimezone(timezone.utc)
        with self._storage("revoke", user_id, app_id) as session:
            result = session.execute(
                update(user_app_access)
                .where(user_app_access.c.user_id == user_id)
                .where(user_app_access.c.app_id == app_id)
                .where(user_app_access.c.is_active == True)  # noqa: E712
                .values(
                    is_active=False,
                    revoked_at=revoked_at,
                    revoke_reason=reason,
                    updated_at=revoked_at,
                )
            )
            changed = result.rowcount
        if changed:
            logger.info("access.revoked", extra={"user_id": user_id, "app_id": app_id, "reason": reason})
        else:
            logger.debug("access.revoke.noop", extra={"user_id": user_id, "app_id": app_id, "reason": reason})

    def expire_due_grants(self, *, now: Optional[datetime] = None) -> int:
        """Bulk-revoke active grants whose expires_at has passed.

        Optional operator sweep; check_access expires lazily on its own.
        """
        cutoff = normalize_now(now).astimezone(timezone.utc)
        with self._storage("expire_due_grants") as session:
            result = session.execute(
                update(user_app_access)
                .where(user_app_access.c.is_active == True)  # noqa: E712
                .where(user_app_access.c.expires_at.isnot(None))
                .where(user_app_access.c.expires_at <= cutoff)
                .values(
                    is_active=False,
                    revoked_at=cutoff,
                    revoke_reason="expired",
                    updated_at=cutoff,
                )
            )
            expired = result.rowcount or 0
        logger.info("access.expired.sweep", extra={"operation": "expire_due_grants", "status": f"{expired} expired"})
        return expired

    def update_payment_bundle_info(self, payment_id: str, bundled_apps: Sequence[str]) -> None:
        """Annotate an existing payments row with the apps it unlocked."""
        with self._storage("update_payment_bundle_info") as session:
            result = session.execute(
                update(payments)
                .where(payments.c.id == payment_id)
                .values(
                    bundle_apps=list(bundled_apps),
                    updated_at=datetime.now(timezone.utc),
                )
            )
            found = result.rowcount
        if not found:
            raise NotFoundError(f"Payment not found: {payment_id}", code="payment_not_found")
        logger.info("payment.bundle_info.updated", extra={"payment_id": payment_id, "status": ",".join(bundled_apps)})

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_grant(self, user_id: str, app_id: str) -> Optional[AccessGrant]:
        with self._storage("get_grant", user_id, app_id) as session:
            row = session.execute(
                select(user_app_access)
                .where(user_app_access.c.user_id == user_id)
                .where(user_app_access.c.app_id == app_id)
            ).first()
        return _row_to_grant(row) if row else None

    def list_user_grants(self, user_id: str) -> List[AccessGrant]:
        """Every row for the user, active or not."""
        with self._storage("list_user_grants", user_id) as session:
            rows = session.execute(
                select(user_app_access)
                .where(user_app_access.c.user_id == user_id)
                .order_by(user_app_access.c.id)
            ).all()
        return [_row_to_grant(row) for row in rows]

    def resolve_access(self, user_id: Optional[str], app_id: str, *, now: Optional[datetime] = None) -> AccessDecision:
        """Access decision with its reason; check_access is the boolean form.

        FREE apps and anonymous callers are answered without a read. An
        EXPIRED grant is revoked before returning. Any failure reading or
        parsing the stored row resolves to UNAVAILABLE (no access).
        """
        if self.catalog.is_free(app_id):
            return AccessDecision(has_access=True, reason=AccessReason.FREE)
        if not user_id:
            return AccessDecision(has_access=False, reason=AccessReason.NO_GRANT)

        resolved_now = normalize_now(now)
        try:
            grant = self.get_grant(user_id, app_id)
        except (StorageUnavailableError, SQLAlchemyError, ValidationError) as exc:
            logger.error(
                "access.check.storage_unavailable",
                extra={"user_id": user_id, "app_id": app_id, "operation": "check_access", "error_code": _failure_code(exc)},
            )
            return AccessDecision(has_access=False, reason=AccessReason.UNAVAILABLE)

        decision = self.resolver.classify_access(app_id, grant, resolved_now)
        if decision.reason == AccessReason.EXPIRED:
            logger.info("access.expired", extra={"user_id": user_id, "app_id": app_id})
            try:
                self.revoke(user_id, app_id, "expired", now=resolved_now)
            except (StorageUnavailableError, SQLAlchemyError) as exc:
                # Still no access; the next check retries the revoke
                logger.error(
                    "access.check.storage_unavailable",
                    extra={"user_id": user_id, "app_id": app_id, "operation": "expire", "error_code": _failure_code(exc)},
                )
        return decision

    def check_access(self, user_id: Optional[str], app_id: str, *, now: Optional[datetime] = None) -> bool:
        return self.resolve_access(user_id, app_id, now=now).has_access

    def list_user_apps(self, user_id: Optional[str], *, now: Optional[datetime] = None) -> List[UserApp]:
        """FREE catalog apps plus the user's active, non-expired grants."""
        apps = [
            UserApp(app_id=app.id, granted_via=GrantedVia.FREE, is_free=True)
            for app in self.catalog.list_free_apps()
        ]
        if not user_id:
            return apps

        resolved_now = normalize_now(now)
        live: Dict[str, AccessGrant] = {}
        for grant in self.list_user_grants(user_id):
            if not grant.is_active or grant.is_expired(resolved_now):
                continue
            app = self.catalog.find_app(grant.app_id)
            if app is None:
                logger.warning(
                    "access.grant.unknown_app",
                    extra={"user_id": user_id, "app_id": grant.app_id, "operation": "list_user_apps"},
                )
                continue
            if app.is_free:
                continue
            live[grant.app_id] = grant

        for app_id in self.catalog.ids():
            grant = live.get(app_id)
            if grant is not None:
                apps.append(UserApp(app_id=app_id, granted_via=grant.granted_via, is_free=False))
        return apps

    def stats(self, app_id: Optional[str] = None, *, now: Optional[datetime] = None) -> AccessStats:
        """Counts of active, non-expired grants by provenance and by app."""
        if app_id is not None:
            self.catalog.get_app(app_id)

        query = select(
            user_app_access.c.app_id,
            user_app_access.c.granted_via,
            user_app_access.c.expires_at,
        ).where(user_app_access.c.is_active == True)  # noqa: E712
        if app_id is not None:
            query = query.where(user_app_access.c.app_id == app_id)

        with self._storage("stats", app_id=app_id) as session:
            rows = session.execute(query).all()

        resolved_now = normalize_now(now)
        stats = AccessStats()
        for row in rows:
            expires_at = _as_utc(row.expires_at)
            if expires_at is not None and expires_at <= resolved_now:
                continue
            via = _parse_granted_via(row.granted_via).value
            stats.total += 1
            stats.by_grant_type[via] = stats.by_grant_type.get(via, 0) + 1
            stats.by_app[row.app_id] = stats.by_app.get(row.app_id, 0) + 1
        return stats
