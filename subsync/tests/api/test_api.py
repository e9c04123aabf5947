from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from subsync.core.config import Settings
from subsync.core.errors import ConfigurationError
from subsync.db.session import get_db
from subsync.main import create_app
from subsync.models.renewal_lock import RenewalLock
from subsync.tests.helpers import seed


@pytest.fixture
def client(session_factory):
    settings = Settings(database_url="sqlite://", sync_enabled=False)
    app = create_app(settings, session_factory=session_factory)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c


def test_health_reports_store_and_poller(client):
    r = client.get("/api/v1/health", headers={"X-Request-Id": "rid-123"})
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "database": "ok", "poller": "disabled", "request_id": "rid-123"}
    assert r.headers["X-Request-Id"] == "rid-123"


def test_health_degraded_when_store_unreachable(session_factory):
    app = create_app(Settings(database_url="sqlite://", sync_enabled=False), session_factory=session_factory)
    broken = sessionmaker(bind=create_engine("sqlite:////nonexistent-dir/subsync.db"))

    def broken_get_db():
        db = broken()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = broken_get_db
    with TestClient(app) as c:
        r = c.get("/api/v1/health")

    assert r.status_code == 503
    assert r.json()["status"] == "degraded"
    assert r.json()["database"] == "unavailable"


def test_health_degraded_when_enabled_poller_not_running(session_factory):
    settings = Settings(database_url="sqlite://", sync_enabled=True, contract_address="CCONTRACT")
    app = create_app(settings, session_factory=session_factory)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    # no lifespan: the poller exists but was never started
    r = TestClient(app).get("/api/v1/health")

    assert r.status_code == 503
    assert r.json()["poller"] == "stopped"


def test_sync_status_when_disabled(client):
    r = client.get("/api/v1/sync/status")
    assert r.status_code == 200
    assert r.json() == {"enabled": False, "poller": None, "lock_sweep": None}


def test_lock_state(client, session_factory):
    now = datetime.now(timezone.utc)
    seed(
        session_factory,
        RenewalLock(
            subscription_id="sub-1",
            cycle_id=20260315,
            lock_holder="w1",
            locked_at=now,
            expires_at=now + timedelta(minutes=1),
            status="active",
        ),
    )

    assert client.get("/api/v1/locks/sub-1").json() == {"subscription_id": "sub-1", "locked": True}
    assert client.get("/api/v1/locks/sub-2").json() == {"subscription_id": "sub-2", "locked": False}


def test_sync_enabled_without_contract_fails_fast(session_factory):
    settings = Settings(database_url="sqlite://", sync_enabled=True, contract_address="")
    with pytest.raises(ConfigurationError):
        create_app(settings, session_factory=session_factory)


def test_sync_status_reports_poller_before_start(session_factory):
    settings = Settings(database_url="sqlite://", sync_enabled=True, contract_address="CCONTRACT")
    app = create_app(settings, session_factory=session_factory)

    # no lifespan: loops are constructed but not started
    with_client = TestClient(app)
    body = with_client.get("/api/v1/sync/status").json()

    assert body["enabled"] is True
    assert body["poller"]["running"] is False
    assert body["poller"]["next_delay_s"] == pytest.approx(5.0)
    assert body["lock_sweep"] == {"running": False, "interval_s": 300.0, "last_swept": None}
