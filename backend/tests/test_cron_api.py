from datetime import datetime

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.api import deps
from app.api.cron import router as cron_router
from app.api.sessions import router as sessions_router
from app.config import Settings, get_settings
from app.models.session import TrainingSession

SECRET = "Zq8vK3xP7mW2nR5tY9bL4cF6hJ1gD0sAeUiOpQwErTy"
AUTH = {"Authorization": f"Bearer {SECRET}"}


def _build_test_client(session_factory, delivery, catalogs, cron_secret=SECRET):
    app = FastAPI()
    app.include_router(cron_router, prefix="/api")
    app.include_router(sessions_router, prefix="/api")

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[deps.get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: Settings(cron_secret=cron_secret)
    app.dependency_overrides[deps.get_delivery] = lambda: delivery
    app.dependency_overrides[deps.get_catalogs] = lambda: catalogs
    app.dependency_overrides[deps.get_now] = lambda: datetime(2026, 3, 10, 16, 46)
    return TestClient(app)


@pytest.fixture
def client(session_factory, delivery, catalogs):
    return _build_test_client(session_factory, delivery, catalogs)


def test_missing_bearer_is_rejected(client, delivery):
    response = client.get("/api/cron/notifications")

    assert response.status_code == 401
    assert delivery.sent == []


def test_wrong_bearer_is_rejected(client):
    response = client.get("/api/cron/notifications", headers={"Authorization": "Bearer nope"})

    assert response.status_code == 401


def test_unset_secret_refuses_to_run(session_factory, delivery, catalogs):
    client = _build_test_client(session_factory, delivery, catalogs, cron_secret=None)

    response = client.get("/api/cron/notifications", headers=AUTH)

    assert response.status_code == 500


def test_unknown_rule_is_a_bad_request(client):
    response = client.get("/api/cron/notifications", params={"rule": "daily_horoscope"}, headers=AUTH)

    assert response.status_code == 400


def test_run_returns_summary(client, db, make_user, make_session, delivery):
    host = make_user(name="Host", email="host@example.com")
    make_session(host)

    response = client.get("/api/cron/notifications", headers=AUTH)

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["timestamp"] == "2026-03-10T16:46:00"
    assert data["local_time"] == "2026-03-10T11:46:00"
    assert data["rules"]["session_reminder_2h"]["sent"] == 1
    assert "morning_motivation" not in data["rules"]
    assert len(delivery.sent) == 1


def test_rule_filter_runs_only_requested_rules(client, make_user, make_session):
    host = make_user(name="Host", email="host@example.com")
    make_session(host)

    response = client.get(
        "/api/cron/notifications",
        params=[("rule", "re_engagement"), ("rule", "inactive_nudge")],
        headers=AUTH,
    )

    assert response.status_code == 200
    assert set(response.json()["rules"]) == {"re_engagement", "inactive_nudge"}


def test_unreachable_store_is_service_unavailable(delivery, catalogs, tmp_path):
    broken = create_engine(f"sqlite:///{tmp_path}/missing/dir/tribe.db")
    client = _build_test_client(sessionmaker(bind=broken), delivery, catalogs)

    response = client.get("/api/cron/notifications", headers=AUTH)

    assert response.status_code == 503


def test_notify_nearby_endpoint(client, db, make_user, make_session, delivery):
    park = {"latitude": 4.6584, "longitude": -74.0937}
    host = make_user(name="Host", email="host@example.com", **park)
    runner = make_user(email="runner@example.com", **park)
    session = make_session(host, **park)

    response = client.post(f"/api/sessions/{session.id}/notify-nearby", headers=AUTH)

    assert response.status_code == 200
    data = response.json()
    assert data["notified"] == 1
    assert data["total"] == 1
    assert [item["user_id"] for item in delivery.sent] == [runner.id]


def test_notify_nearby_unknown_session(client):
    response = client.post("/api/sessions/missing/notify-nearby", headers=AUTH)

    assert response.status_code == 404


def test_notify_nearby_requires_secret(client, db, make_user, make_session):
    host = make_user(name="Host", email="host@example.com")
    session = make_session(host)

    response = client.post(f"/api/sessions/{session.id}/notify-nearby")

    assert response.status_code == 401
    assert db.query(TrainingSession).count() == 1
