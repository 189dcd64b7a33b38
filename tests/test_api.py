"""Tests for the HTTP trigger surface."""

from datetime import datetime, timezone
from uuid import uuid4

import httpx
import pytest

from coffee_roulette.core import get_session, get_session_factory
from coffee_roulette.main import app
from coffee_roulette.models import MatchingRound, NotificationType, RoundStatus
from coffee_roulette.services.notification_queue import NotificationQueue

API = "/api/v1"


@pytest.fixture
async def client(session_factory):
    async def override_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_session] = override_session

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


# =============================================================================
# TEST: MATCHING ROUTES
# =============================================================================


class TestMatchingRoutes:

    async def test_run_round(self, client, create_users):
        await create_users(4)

        response = await client.post(f"{API}/matching/rounds", json={"triggered_by": "admin@example.com"})

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "completed"
        assert body["total_pairings"] == 2
        assert len(body["pairings"]) == 2
        assert body["sit_out"] is None
        assert body["notifications_queued"] == 4

    async def test_insufficient_participants_is_unprocessable(self, client, create_users):
        await create_users(1)

        response = await client.post(f"{API}/matching/rounds", json={})

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["error"] == "insufficient_participants"
        assert detail["eligible_count"] == 1
        assert detail["round_id"] is not None

    async def test_schedule_then_execute(self, client, create_users):
        await create_users(4)

        scheduled = await client.post(f"{API}/matching/rounds", json={"schedule_only": True})
        assert scheduled.status_code == 201
        assert scheduled.json()["status"] == "scheduled"
        round_id = scheduled.json()["id"]

        executed = await client.post(f"{API}/matching/rounds/{round_id}/execute")
        assert executed.status_code == 200
        assert executed.json()["total_pairings"] == 2

        fetched = await client.get(f"{API}/matching/rounds/{round_id}")
        assert fetched.status_code == 200
        assert fetched.json()["status"] == "completed"
        assert len(fetched.json()["pairings"]) == 2

        again = await client.post(f"{API}/matching/rounds/{round_id}/execute")
        assert again.status_code == 409

    async def test_unknown_round_is_not_found(self, client):
        response = await client.get(f"{API}/matching/rounds/{uuid4()}")

        assert response.status_code == 404

    async def test_preview_and_cleanup(self, client, create_users):
        await create_users(3)

        preview = await client.post(f"{API}/matching/preview", json={})

        assert preview.status_code == 200
        assert preview.json()["is_preview"] is True
        assert preview.json()["total_pairings"] == 1
        assert preview.json()["sit_out"] is not None

        cleanup = await client.delete(f"{API}/matching/preview")
        assert cleanup.json() == {"removed": 0}

    async def test_abandon_stuck_round(self, client, session_factory, create_users):
        await create_users(4)
        async with session_factory() as session:
            stuck = MatchingRound(
                name="Stuck round",
                scheduled_date=datetime.now(timezone.utc).date(),
                status=RoundStatus.IN_PROGRESS,
                started_at=datetime.now(timezone.utc),
            )
            session.add(stuck)
            await session.commit()

        blocked = await client.post(f"{API}/matching/rounds", json={})
        assert blocked.status_code == 409
        assert blocked.json()["detail"]["error"] == "round_in_progress"

        response = await client.post(
            f"{API}/matching/rounds/{stuck.id}/abandon", json={"reason": "worker killed"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "failed"
        assert response.json()["error_message"] == "worker killed"
        retried = await client.post(f"{API}/matching/rounds", json={})
        assert retried.status_code == 201

    async def test_abandon_completed_round_conflicts(self, client, create_users):
        await create_users(2)
        created = await client.post(f"{API}/matching/rounds", json={})

        response = await client.post(f"{API}/matching/rounds/{created.json()['round_id']}/abandon", json={})

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "invalid_transition"


# =============================================================================
# TEST: SCHEDULE ROUTES
# =============================================================================


class TestScheduleRoutes:

    async def test_defaults_and_presets(self, client):
        response = await client.get(f"{API}/matching/schedule")

        assert response.status_code == 200
        body = response.json()
        assert body["schedule_type"] == "monthly"
        assert body["enabled"] is True
        assert body["next_run_at"] is not None
        assert {p["type"] for p in body["presets"]} == {"weekly", "biweekly", "monthly"}

    async def test_switch_to_weekly_and_disable(self, client):
        response = await client.put(
            f"{API}/matching/schedule",
            json={"schedule_type": "weekly", "timezone": "UTC", "enabled": False},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["cron_expression"] == "0 9 * * 1"
        assert body["timezone"] == "UTC"
        assert body["enabled"] is False

        fetched = await client.get(f"{API}/matching/schedule")
        assert fetched.json()["schedule_type"] == "weekly"

    async def test_invalid_custom_expression(self, client):
        response = await client.put(
            f"{API}/matching/schedule",
            json={"schedule_type": "custom", "cron_expression": "every tuesday"},
        )

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "invalid_schedule"


# =============================================================================
# TEST: NOTIFICATION ROUTES
# =============================================================================


class TestNotificationRoutes:

    async def test_stats(self, client, create_users):
        await create_users(2)
        await client.post(f"{API}/matching/rounds", json={})

        response = await client.get(f"{API}/notifications/stats")

        assert response.status_code == 200
        assert response.json() == {"pending": 2, "processing": 0, "sent": 0, "failed": 0, "total": 2}

    async def test_retry_unknown_task(self, client):
        response = await client.post(f"{API}/notifications/{uuid4()}/retry")

        assert response.status_code == 404

    async def test_retry_pending_task_conflicts(self, client, session_factory, create_users):
        (user,) = await create_users(1)
        async with session_factory() as session:
            task = await NotificationQueue(session).enqueue(user.id, NotificationType.WELCOME)
            await session.commit()

        response = await client.post(f"{API}/notifications/{task.id}/retry")

        assert response.status_code == 409

    async def test_failed_list_is_empty_by_default(self, client):
        response = await client.get(f"{API}/notifications/failed")

        assert response.status_code == 200
        assert response.json() == []
