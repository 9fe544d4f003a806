from datetime import datetime, timedelta, timezone

import httpx
import pytest
from fastapi.testclient import TestClient

from hookscheduler.core.auth import create_access_token
from hookscheduler.core.config import Settings, get_settings
from hookscheduler.database.connection import Base, engine
from hookscheduler.main import app
from hookscheduler.services.scheduler_service import scheduler_service
from hookscheduler.services.webhook_dispatcher import WebhookDispatcher

ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}


def setup_function() -> None:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


def teardown_function() -> None:
    scheduler_service.shutdown()
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


def _payload(**overrides) -> dict:
    payload = {
        "name": "daily digest",
        "webhook_url": "https://hooks.example.com/digest",
        "http_method": "post",
        "json_body": '{"digest": true}',
        "auth_type": "bearer",
        "auth_token": "s3cret",
        "frequency": "days",
        "interval": 1,
        "schedule_at": (datetime.now(timezone.utc) + timedelta(hours=2)).isoformat(),
    }
    payload.update(overrides)
    return payload


def test_create_and_get_schedule(client) -> None:
    response = client.post("/schedules", json=_payload(), headers=ALICE)
    assert response.status_code == 201
    created = response.json()
    assert created["owner_id"] == "alice"
    assert created["http_method"] == "POST"
    assert created["status"] == "Pending"
    assert created["next_execution"] is not None
    assert "auth_token" not in created

    fetched = client.get(f"/schedules/{created['id']}", headers=ALICE)
    assert fetched.status_code == 200
    assert fetched.json()["name"] == "daily digest"


def test_schedules_are_scoped_to_owner(client) -> None:
    created = client.post("/schedules", json=_payload(), headers=ALICE).json()

    assert client.get("/schedules", headers=BOB).json() == []
    assert client.get(f"/schedules/{created['id']}", headers=BOB).status_code == 404
    assert client.delete(f"/schedules/{created['id']}", headers=BOB).status_code == 404
    assert len(client.get("/schedules", headers=ALICE).json()) == 1


def test_invalid_definitions_are_rejected(client) -> None:
    assert client.post("/schedules", json=_payload(interval=0), headers=ALICE).status_code == 422
    assert client.post("/schedules", json=_payload(days_of_week=[9]), headers=ALICE).status_code == 422
    assert client.post("/schedules", json=_payload(timezone="Mars/Base"), headers=ALICE).status_code == 422
    assert client.post("/schedules", json=_payload(timeout_seconds=0), headers=ALICE).status_code == 422


def test_update_resets_execution_state(client) -> None:
    created = client.post("/schedules", json=_payload(), headers=ALICE).json()

    response = client.put(
        f"/schedules/{created['id']}",
        json=_payload(name="weekly digest", frequency="weeks"),
        headers=ALICE,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["name"] == "weekly digest"
    assert body["frequency"] == "weeks"
    assert body["execution_count"] == 0
    assert body["last_executed"] is None


def test_toggle_pauses_and_resumes(client) -> None:
    created = client.post("/schedules", json=_payload(), headers=ALICE).json()

    paused = client.post(f"/schedules/{created['id']}/toggle", headers=ALICE)
    assert paused.status_code == 200
    assert paused.json()["is_active"] is False
    assert scheduler_service.is_armed(created["id"]) is False

    resumed = client.post(f"/schedules/{created['id']}/toggle", headers=ALICE)
    assert resumed.json()["is_active"] is True


def test_manual_trigger_writes_log(client, monkeypatch) -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text="thanks")

    monkeypatch.setattr(
        scheduler_service,
        "dispatcher",
        WebhookDispatcher(transport=httpx.MockTransport(handler)),
    )
    created = client.post("/schedules", json=_payload(), headers=ALICE).json()

    response = client.post(f"/schedules/{created['id']}/trigger", headers=ALICE)

    assert response.status_code == 200
    body = response.json()
    assert body["outcome"]["success"] is True
    assert body["schedule"]["execution_count"] == 1
    assert body["schedule"]["status"] == "Executed"
    assert seen[0].headers["Authorization"] == "Bearer s3cret"

    logs = client.get("/logs", headers=ALICE).json()
    assert len(logs) == 1
    assert logs[0]["triggered_by"] == "Manual"
    assert logs[0]["response_data"] == "thanks"
    assert client.get(f"/logs/{logs[0]['id']}", headers=ALICE).status_code == 200
    assert client.get(f"/logs/{logs[0]['id']}", headers=BOB).status_code == 404
    assert client.get("/logs", params={"schedule_id": created["id"]}, headers=ALICE).json()[0]["id"] == logs[0]["id"]

    cleanup = client.delete("/logs/cleanup", headers=ALICE).json()
    assert cleanup["deleted"] == 0

    purge = client.delete("/logs", headers=ALICE).json()
    assert purge["deleted"] == 1
    assert client.get("/logs", headers=ALICE).json() == []


def test_trigger_missing_schedule_is_404(client) -> None:
    assert client.post("/schedules/999/trigger", headers=ALICE).status_code == 404


def test_delete_and_delete_all(client) -> None:
    first = client.post("/schedules", json=_payload(), headers=ALICE).json()
    client.post("/schedules", json=_payload(name="second"), headers=ALICE)
    client.post("/schedules", json=_payload(name="bob's"), headers=BOB)

    assert client.delete(f"/schedules/{first['id']}", headers=ALICE).status_code == 200
    assert client.get(f"/schedules/{first['id']}", headers=ALICE).status_code == 404
    assert scheduler_service.is_armed(first["id"]) is False

    cleared = client.delete("/schedules", headers=ALICE).json()
    assert cleared["deleted"] == 1
    assert client.get("/schedules", headers=ALICE).json() == []
    assert len(client.get("/schedules", headers=BOB).json()) == 1


def test_preview_next_execution(client) -> None:
    response = client.post(
        "/schedules/preview",
        json={
            "frequency": "minutes",
            "interval": 15,
            "schedule_at": "2030-01-01T00:00:00Z",
        },
    )

    assert response.status_code == 200
    assert response.json()["next_execution"].startswith("2030-01-01T00:00:00")


def test_health_reports_database_and_counts(client) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["database"] == "ok"
    assert "active_timers" in body
    assert "subscribers" in body


def test_bearer_token_identifies_owner_when_auth_enabled(client) -> None:
    auth_settings = Settings(auth_enabled=True, jwt_secret_key="test-secret")
    app.dependency_overrides[get_settings] = lambda: auth_settings
    token = create_access_token("carol", auth_settings)

    assert client.get("/schedules").status_code == 401
    assert client.get("/schedules", headers={"Authorization": "Bearer not-a-token"}).status_code == 401

    created = client.post(
        "/schedules",
        json=_payload(),
        headers={"Authorization": f"Bearer {token}"},
    )
    assert created.status_code == 201
    assert created.json()["owner_id"] == "carol"
