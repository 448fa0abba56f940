"""Tests for the expired-grant sweep job."""

from datetime import datetime, timedelta, timezone

from iiskills_access.models.access_grant import GrantedVia
from iiskills_access.workers import expire_access


def test_sweep_revokes_expired_grants(services, monkeypatch):
    past = datetime.now(timezone.utc) - timedelta(days=2)
    services.store.grant("u1", "learn-pr", GrantedVia.PROMOTIONAL, expires_at=past + timedelta(days=1), now=past)
    services.store.grant("u2", "learn-pr", GrantedVia.PAYMENT)
    monkeypatch.setattr(expire_access, "get_services", lambda: services)

    result = expire_access.expire_access_grants()

    assert result == {"expired": 1}
    assert services.store.get_grant("u1", "learn-pr").revoke_reason == "expired"
    assert services.store.get_grant("u2", "learn-pr").is_active is True


def test_sweep_with_nothing_due(services, monkeypatch):
    monkeypatch.setattr(expire_access, "get_services", lambda: services)
    assert expire_access.expire_access_grants() == {"expired": 0}
