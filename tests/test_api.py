"""
API tests through the ASGI app with the session bound to the test database.
"""

from datetime import timedelta

import httpx
import pytest

from slot_negotiation.core import create_access_token, get_session
from slot_negotiation.integrations.video import VideoConferenceRegistry, get_video_registry
from slot_negotiation.main import app
from slot_negotiation.models import utc_now


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

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_video_registry] = VideoConferenceRegistry

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


def auth(user_id) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


def proposal_body(world) -> dict:
    base = (utc_now() + timedelta(days=5)).replace(minute=0, second=0, microsecond=0)
    return {
        "space_id": str(world.space_id),
        "title": "Requirements workshop",
        "duration_minutes": 60,
        "slots": [
            {
                "start_at": (base + timedelta(days=i)).isoformat(),
                "end_at": (base + timedelta(days=i, hours=1)).isoformat(),
            }
            for i in range(3)
        ],
        "respondents": [
            {"user_id": str(world.internal_id), "side": "internal"},
            {"user_id": str(world.client_id), "side": "client"},
        ],
    }


# =============================================================================
# TEST: PLUMBING
# =============================================================================


class TestPlumbing:
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_missing_token(self, client):
        response = await client.get("/api/v1/portal/scheduling/proposals")

        assert response.status_code == 401

    async def test_invalid_token(self, client):
        response = await client.get(
            "/api/v1/portal/scheduling/proposals",
            headers={"Authorization": "Bearer not-a-jwt"},
        )

        assert response.status_code == 401


# =============================================================================
# TEST: AVAILABLE SLOTS
# =============================================================================


class TestAvailableSlots:
    async def test_generates_candidates(self, client, world):
        response = await client.post(
            "/api/v1/scheduling/available-slots",
            headers=auth(world.creator_id),
            json={
                "busy_periods": [
                    {"start": "2026-03-02T09:00:00+00:00", "end": "2026-03-02T18:00:00+00:00"},
                    {"start": "garbage", "end": "garbage"},
                ],
                "start_date": "2026-03-02",
                "end_date": "2026-03-03",
                "duration_minutes": 60,
                "step_minutes": 60,
                "timezone": "UTC",
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 9
        assert {s["date_key"] for s in data["slots"]} == {"2026-03-03"}
        assert data["slots"][0]["day_of_week"] == 2

    async def test_unknown_timezone(self, client, world):
        response = await client.post(
            "/api/v1/scheduling/available-slots",
            headers=auth(world.creator_id),
            json={
                "start_date": "2026-03-02",
                "end_date": "2026-03-02",
                "duration_minutes": 30,
                "timezone": "Mars/Olympus_Mons",
            },
        )

        assert response.status_code == 400

    @pytest.mark.parametrize("field", ["step_minutes", "max_results"])
    async def test_explicit_zero_yields_no_candidates(self, client, world, field):
        body = {
            "start_date": "2026-03-02",
            "end_date": "2026-03-03",
            "duration_minutes": 60,
            "timezone": "UTC",
        }

        baseline = await client.post(
            "/api/v1/scheduling/available-slots",
            headers=auth(world.creator_id),
            json=body,
        )
        zeroed = await client.post(
            "/api/v1/scheduling/available-slots",
            headers=auth(world.creator_id),
            json={**body, field: 0},
        )

        assert baseline.json()["count"] > 0
        assert zeroed.status_code == 200
        assert zeroed.json() == {"slots": [], "count": 0}

    @pytest.mark.parametrize("start_date, end_date", [
        ("2026-02-30", "2026-03-03"),
        ("next monday", "2026-03-03"),
        ("2026-03-06", "2026-03-02"),
    ])
    async def test_bad_date_range_yields_no_candidates(
        self, client, world, start_date, end_date
    ):
        response = await client.post(
            "/api/v1/scheduling/available-slots",
            headers=auth(world.creator_id),
            json={
                "start_date": start_date,
                "end_date": end_date,
                "duration_minutes": 30,
                "timezone": "UTC",
            },
        )

        assert response.status_code == 200
        assert response.json() == {"slots": [], "count": 0}


# =============================================================================
# TEST: NEGOTIATION FLOW
# =============================================================================


class TestNegotiationFlow:
    async def test_propose_answer_confirm(self, client, world):
        created = await client.post(
            "/api/v1/scheduling/proposals",
            headers=auth(world.creator_id),
            json=proposal_body(world),
        )
        assert created.status_code == 201
        proposal = created.json()
        assert proposal["status"] == "open"
        assert proposal["is_expired"] is False
        proposal_id = proposal["id"]
        slot1, slot2 = proposal["slots"][0]["id"], proposal["slots"][1]["id"]

        internal = await client.post(
            "/api/v1/scheduling/responses",
            headers=auth(world.internal_id),
            json={
                "proposal_id": proposal_id,
                "responses": [{"slot_id": slot2, "response": "available"}],
            },
        )
        assert internal.json() == {"ok": True, "updated_count": 1}

        portal = await client.post(
            "/api/v1/portal/scheduling/responses",
            headers=auth(world.client_id),
            json={
                "proposal_id": proposal_id,
                "responses": [
                    {"slot_id": slot1, "response": "available"},
                    {"slot_id": slot2, "response": "unavailable_but_proceed"},
                ],
            },
        )
        assert portal.json() == {"ok": True, "updated_count": 2}

        refused = await client.post(
            f"/api/v1/scheduling/proposals/{proposal_id}/confirm",
            headers=auth(world.creator_id),
            json={"slot_id": slot1},
        )
        assert refused.status_code == 400
        assert refused.json() == {
            "ok": False,
            "error": "not_all_agreed",
            "required": 2,
            "eligible": 1,
        }

        confirmed = await client.post(
            f"/api/v1/scheduling/proposals/{proposal_id}/confirm",
            headers=auth(world.creator_id),
            json={"slot_id": slot2},
        )
        assert confirmed.status_code == 200
        assert confirmed.json()["ok"] is True
        assert confirmed.json()["meeting_url"] is None

        again = await client.post(
            f"/api/v1/scheduling/proposals/{proposal_id}/confirm",
            headers=auth(world.creator_id),
            json={"slot_id": slot2},
        )
        assert again.status_code == 409
        assert again.json()["error"] == "proposal_not_open"
        assert again.json()["current_status"] == "confirmed"

        detail = await client.get(
            f"/api/v1/scheduling/proposals/{proposal_id}",
            headers=auth(world.admin_id),
        )
        assert detail.status_code == 200
        data = detail.json()
        assert data["status"] == "confirmed"
        assert data["confirmed_slot_id"] == slot2
        names = {r["display_name"] for r in data["slots"][1]["responses"]}
        assert names == {"Ivan Internal", "Chloe Client"}

        cancel = await client.patch(
            f"/api/v1/scheduling/proposals/{proposal_id}",
            headers=auth(world.creator_id),
            json={"status": "cancelled"},
        )
        assert cancel.status_code == 409
        assert cancel.json()["detail"]["error"] == "proposal_not_open"

    async def test_cancel_and_list(self, client, world):
        created = await client.post(
            "/api/v1/scheduling/proposals",
            headers=auth(world.creator_id),
            json=proposal_body(world),
        )
        proposal_id = created.json()["id"]

        cancel = await client.patch(
            f"/api/v1/scheduling/proposals/{proposal_id}",
            headers=auth(world.admin_id),
            json={"status": "cancelled"},
        )
        assert cancel.json() == {"ok": True}

        listed = await client.get(
            "/api/v1/scheduling/proposals",
            params={"space_id": str(world.space_id), "status": "cancelled"},
            headers=auth(world.creator_id),
        )
        items = listed.json()["items"]
        assert [i["id"] for i in items] == [proposal_id]
        assert items[0]["respondent_count"] == 2
        assert items[0]["slot_count"] == 3

    async def test_only_cancellation_is_patchable(self, client, world):
        created = await client.post(
            "/api/v1/scheduling/proposals",
            headers=auth(world.creator_id),
            json=proposal_body(world),
        )

        response = await client.patch(
            f"/api/v1/scheduling/proposals/{created.json()['id']}",
            headers=auth(world.creator_id),
            json={"status": "confirmed"},
        )

        assert response.status_code == 422

    async def test_portal_list(self, client, world):
        await client.post(
            "/api/v1/scheduling/proposals",
            headers=auth(world.creator_id),
            json=proposal_body(world),
        )

        response = await client.get(
            "/api/v1/portal/scheduling/proposals",
            headers=auth(world.client_id),
        )

        assert response.status_code == 200
        item = response.json()["items"][0]
        assert item["total_slots"] == 3
        assert item["has_responded"] is False


# =============================================================================
# TEST: ERROR MAPPING
# =============================================================================


class TestErrorMapping:
    async def test_forbidden(self, client, world):
        created = await client.post(
            "/api/v1/scheduling/proposals",
            headers=auth(world.creator_id),
            json=proposal_body(world),
        )

        response = await client.get(
            f"/api/v1/scheduling/proposals/{created.json()['id']}",
            headers=auth(world.outsider_id),
        )

        assert response.status_code == 403
        assert response.json()["detail"]["error"] == "not_a_member"

    async def test_client_cannot_use_portal_without_membership(self, client, world):
        response = await client.get(
            "/api/v1/portal/scheduling/proposals",
            headers=auth(world.internal_id),
        )

        assert response.status_code == 403
        assert response.json()["detail"]["error"] == "not_client_member"

    async def test_invalid_batch(self, client, world):
        created = await client.post(
            "/api/v1/scheduling/proposals",
            headers=auth(world.creator_id),
            json=proposal_body(world),
        )

        response = await client.post(
            "/api/v1/scheduling/responses",
            headers=auth(world.internal_id),
            json={"proposal_id": created.json()["id"], "responses": []},
        )

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "invalid_batch_size"

    async def test_not_found(self, client, world):
        response = await client.get(
            "/api/v1/scheduling/proposals/00000000-0000-0000-0000-000000000000",
            headers=auth(world.creator_id),
        )

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "proposal_not_found"
