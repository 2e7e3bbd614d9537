"""
Integration Tests for the Dialer API
Drives a lead from entry to agent transfer through the HTTP surface
"""
import asyncio
import pytest
from fastapi.testclient import TestClient

from leaddialer.main import create_app


PREFIX = "/api/v1"


@pytest.fixture
def app(settings, database, gateway, publisher):
    return create_app(
        settings=settings,
        database=database,
        gateway=gateway,
        publisher=publisher,
        start_dispatcher=False,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


def _create_agent(client, name="Dana", phone="+15550200001"):
    response = client.post(f"{PREFIX}/admin/agents", json={"name": name, "phone": phone, "available": True})
    assert response.status_code == 201
    return response.json()


def _create_lead(client, phone="+15550100001", priority="medium"):
    response = client.post(f"{PREFIX}/leads/", json={"phone": phone, "priority": priority})
    assert response.status_code == 201
    return response.json()


class TestAutomaticDialing:
    """Lead entry, dispatch, answer, completion"""

    def test_lead_transferred_to_agent(self, app, client, gateway):
        agent = _create_agent(client)
        lead = _create_lead(client)

        assert client.post(f"{PREFIX}/admin/dialer/resume").status_code == 200
        attempt = asyncio.run(app.state.dispatcher.tick())
        assert attempt is not None
        call_uuid = attempt.provider_call_id
        assert gateway.placed_calls[0].to_number == lead["phone"]

        status = client.get(f"{PREFIX}/admin/dialer/status").json()
        assert status["active_count"] == 1

        answer = client.get(f"{PREFIX}/webhooks/vonage/answer", params={"uuid": call_uuid})
        assert answer.status_code == 200
        assert answer.json()["action"] == "connect"
        assert answer.json()["number"] == agent["phone"]

        event = client.post(
            f"{PREFIX}/webhooks/vonage/event",
            json={"uuid": call_uuid, "status": "completed", "duration": "42"},
        )
        assert event.status_code == 200
        assert event.json()["status"] == "completed"

        transferred = client.get(f"{PREFIX}/leads/{lead['id']}").json()
        assert transferred["status"] == "transferred"
        assert transferred["assigned_agent_id"] == agent["id"]

        duplicate = client.post(
            f"{PREFIX}/webhooks/vonage/event",
            json={"uuid": call_uuid, "status": "completed", "duration": "42"},
        )
        assert duplicate.status_code == 200
        assert duplicate.json()["message"].startswith("Event ignored")

        stats = client.get(f"{PREFIX}/calls/stats/summary").json()
        assert stats["total_calls"] == 1
        assert stats["completed_calls"] == 1
        assert stats["total_duration"] == 42

        assert client.get(f"{PREFIX}/admin/dialer/status").json()["active_count"] == 0
        assert client.get(f"{PREFIX}/admin/agents/{agent['id']}").json()["successful_calls"] == 1

    def test_unknown_call_id_is_not_found(self, client):
        response = client.post(
            f"{PREFIX}/webhooks/vonage/event",
            json={"uuid": "not-a-call", "status": "completed"},
        )

        assert response.status_code == 404

    def test_event_without_status_acknowledged(self, client):
        response = client.post(f"{PREFIX}/webhooks/vonage/event", json={"uuid": "abc"})

        assert response.status_code == 200
        assert "missing data" in response.json()["message"]

    def test_non_numeric_price_still_acknowledged(self, app, client):
        _create_agent(client)
        _create_lead(client)
        client.post(f"{PREFIX}/admin/dialer/resume")
        attempt = asyncio.run(app.state.dispatcher.tick())

        response = client.post(
            f"{PREFIX}/webhooks/vonage/event",
            json={"uuid": attempt.provider_call_id, "status": "completed", "price": "n/a"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "completed"

    def test_busy_callback_schedules_retry(self, app, client):
        _create_agent(client)
        lead = _create_lead(client)
        client.post(f"{PREFIX}/admin/dialer/resume")
        attempt = asyncio.run(app.state.dispatcher.tick())

        response = client.post(
            f"{PREFIX}/webhooks/status",
            json={"provider_call_id": attempt.provider_call_id, "status": "busy"},
        )

        assert response.json() == {"applied": True, "status": "busy", "lead_status": "pending"}
        after = client.get(f"{PREFIX}/leads/{lead['id']}").json()
        assert after["attempt_count"] == 1
        assert after["next_eligible_at"] is not None

        attempts = client.get(f"{PREFIX}/leads/{lead['id']}/attempts").json()
        assert [a["status"] for a in attempts] == ["busy"]

    def test_paused_dialer_places_nothing(self, app, client):
        _create_agent(client)
        _create_lead(client)
        client.post(f"{PREFIX}/admin/dialer/pause")

        assert asyncio.run(app.state.dispatcher.tick()) is None


class TestOperatorConsole:
    """Claims, manual calls and console updates"""

    def test_claim_call_and_record_outcome(self, client):
        agent = _create_agent(client)
        other = _create_agent(client, name="Sam", phone="+15550200002")
        lead = _create_lead(client)
        headers = {"X-Agent-ID": agent["id"]}

        claimed = client.post(f"{PREFIX}/operator/leads/{lead['id']}/claim", headers=headers)
        assert claimed.status_code == 200
        assert claimed.json()["status"] == "claimed"

        stolen = client.post(
            f"{PREFIX}/operator/leads/{lead['id']}/claim",
            headers={"X-Agent-ID": other["id"]},
        )
        assert stolen.status_code == 409

        started = client.post(f"{PREFIX}/operator/calls/start", json={"lead_id": lead["id"]}, headers=headers)
        assert started.status_code == 201
        attempt_id = started.json()["id"]

        forbidden = client.put(
            f"{PREFIX}/operator/calls/{attempt_id}/update",
            json={"status": "busy"},
            headers={"X-Agent-ID": other["id"]},
        )
        assert forbidden.status_code == 403

        extra = client.put(
            f"{PREFIX}/operator/calls/{attempt_id}/update",
            json={"status": "busy", "lead_id": "elsewhere"},
            headers=headers,
        )
        assert extra.status_code == 422

        updated = client.put(
            f"{PREFIX}/operator/calls/{attempt_id}/update",
            json={"status": "busy", "notes": "line engaged"},
            headers=headers,
        )
        assert updated.status_code == 200
        assert updated.json()["lead_status"] == "pending"

    def test_agent_header_required(self, client):
        lead = _create_lead(client)

        response = client.post(f"{PREFIX}/operator/leads/{lead['id']}/claim")

        assert response.status_code == 401

    def test_availability_toggle(self, client):
        agent = _create_agent(client)
        headers = {"X-Agent-ID": agent["id"]}

        response = client.put(f"{PREFIX}/operator/availability", json={"available": False}, headers=headers)

        assert response.status_code == 200
        assert response.json()["available"] is False
        assert client.get(f"{PREFIX}/admin/agents/available").json() == []


class TestAdminSurface:
    """Dialer status and recovery endpoints"""

    def test_health_reports_dispatcher(self, client):
        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["dispatcher"]["concurrency_limit"] == 5

    def test_reset_stuck_with_nothing_stuck(self, client):
        response = client.post(f"{PREFIX}/admin/dialer/reset-stuck")

        assert response.status_code == 200
        assert response.json()["reset_count"] == 0
