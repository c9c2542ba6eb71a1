"""
Visitor feedback: public submission, rate limiting and owner review.
"""

import pytest
from httpx import AsyncClient

from storefront.feedback import FEEDBACK_WINDOW_SECONDS
from storefront.rate_limiter import RateLimiter
from storefront.store_settings import update_slug

from conftest import auth_headers

COMPLAINT = {"visitor_name": "Sam", "type": "complaint", "description": "Cold fries"}


@pytest.fixture
async def store(async_session, owner):
    await update_slug(async_session, owner.id, "cafe1")
    return owner


@pytest.mark.asyncio
async def test_submit_feedback(client: AsyncClient, store):
    response = await client.post("/s/cafe1/feedback", json=COMPLAINT)
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "pending"
    assert body["type"] == "complaint"


@pytest.mark.asyncio
async def test_submit_feedback_validation(client: AsyncClient, store):
    response = await client.post(
        "/s/cafe1/feedback", json={"visitor_name": "  ", "type": "complaint", "description": "x"}
    )
    assert response.status_code == 422

    response = await client.post(
        "/s/cafe1/feedback", json={"visitor_name": "Sam", "type": "praise", "description": "x"}
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_submit_feedback_unknown_store(client: AsyncClient, store):
    response = await client.post("/s/ghost/feedback", json=COMPLAINT)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_feedback_rate_limited_per_ip(client: AsyncClient, store):
    for _ in range(5):
        response = await client.post("/s/cafe1/feedback", json=COMPLAINT)
        assert response.status_code == 201

    response = await client.post("/s/cafe1/feedback", json=COMPLAINT)
    assert response.status_code == 429
    assert int(response.headers["Retry-After"]) >= 1

    # A different client IP still gets through
    response = await client.post(
        "/s/cafe1/feedback", json=COMPLAINT, headers={"X-Forwarded-For": "203.0.113.9"}
    )
    assert response.status_code == 201


def test_rate_limiter_window_slides():
    limiter = RateLimiter()
    for i in range(3):
        assert limiter.hit("1.2.3.4", "/x", 3, 60, now=1000.0 + i) == (True, 0)

    allowed, retry_after = limiter.hit("1.2.3.4", "/x", 3, 60, now=1010.0)
    assert allowed is False
    assert retry_after == 50

    assert limiter.hit("1.2.3.4", "/x", 3, 60, now=1061.0)[0] is True


def test_feedback_window_is_ten_minutes():
    assert FEEDBACK_WINDOW_SECONDS == 600


@pytest.mark.asyncio
async def test_listing_marks_pending_as_reviewed(client: AsyncClient, store):
    await client.post("/s/cafe1/feedback", json=COMPLAINT)
    headers = auth_headers(store.id)

    first = await client.get("/feedback", headers=headers)
    assert first.status_code == 200
    assert [f["status"] for f in first.json()] == ["pending"]

    second = await client.get("/feedback", headers=headers)
    assert [f["status"] for f in second.json()] == ["reviewed"]


@pytest.mark.asyncio
async def test_owner_sets_status_and_others_cannot(client: AsyncClient, store, other_owner):
    response = await client.post("/s/cafe1/feedback", json=COMPLAINT)
    feedback_id = response.json()["id"]

    response = await client.patch(
        f"/feedback/{feedback_id}", json={"status": "resolved"}, headers=auth_headers(other_owner.id)
    )
    assert response.status_code == 404
    assert (await client.get("/feedback", headers=auth_headers(other_owner.id))).json() == []

    response = await client.patch(
        f"/feedback/{feedback_id}", json={"status": "resolved"}, headers=auth_headers(store.id)
    )
    assert response.status_code == 200
    assert response.json()["status"] == "resolved"
