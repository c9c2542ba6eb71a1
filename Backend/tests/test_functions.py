"""
Remote functions under /functions/v1: envelope, admin gate and user management.
"""

from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from storefront.catalog import CategoryIn, ProductIn, create_category, create_product
from storefront.feedback import FeedbackIn, submit_feedback
from storefront.functions import approve_user, ban_user, unban_user
from storefront.core.responses import FunctionError
from storefront.models import (
    AccountStatus,
    AuditLog,
    Category,
    Feedback,
    Notification,
    PageView,
    Product,
    StoreSettings,
    User,
)
from storefront.stats import increment_page_view
from storefront.store_settings import update_name, update_slug

from conftest import admin_headers, auth_headers, create_user


async def _manage(client: AsyncClient, payload: dict):
    return await client.post("/functions/v1/manage-user", json=payload, headers=admin_headers())


# ────────────────────────────────────────────────────────────────
# Unit Tests - account status transitions
# ────────────────────────────────────────────────────────────────

def test_ban_then_unban_restores_active():
    user = User(email="u@example.com", password_hash="x", account_status="active")
    assert user.display_status == "active"

    ban_user(user)
    assert user.account_status == "banned"
    assert user.display_status == "banned"
    assert user.banned_until is not None

    unban_user(user)
    assert user.account_status == "active"
    assert user.display_status == "active"
    assert user.banned_until is None


def test_unban_from_pending_lands_on_active():
    user = User(email="u@example.com", password_hash="x", account_status="pending")
    ban_user(user)
    unban_user(user)
    assert user.account_status == "active"


def test_approve_only_from_pending():
    user = User(email="u@example.com", password_hash="x", account_status="pending")
    approve_user(user)
    assert user.account_status == "active"

    with pytest.raises(FunctionError) as exc:
        approve_user(user)
    assert exc.value.status_code == 409


# ────────────────────────────────────────────────────────────────
# Envelope and access
# ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_admin_functions_require_admin_token(client: AsyncClient, owner):
    response = await client.post("/functions/v1/list-users")
    assert response.status_code == 401

    response = await client.post("/functions/v1/list-users", headers=auth_headers(owner.id))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_error_envelope(client: AsyncClient):
    response = await _manage(client, {"action": "ban"})
    assert response.status_code == 400
    body = response.json()
    assert body["status"] == "error"
    assert body["error"]["code"] == "MISSING_FIELD"
    assert body["error"]["message"] == "userId is required"

    response = await _manage(client, {"action": "explode", "userId": "x"})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    response = await _manage(client, {"userId": "x"})
    assert response.json()["error"]["code"] == "MISSING_FIELD"

    response = await _manage(client, {"action": "ban", "userId": "nobody"})
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "USER_NOT_FOUND"


# ────────────────────────────────────────────────────────────────
# manage-user
# ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_ban_toggle_roundtrip(client: AsyncClient, owner):
    response = await _manage(client, {"action": "ban", "userId": owner.id})
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["data"]["account_status"] == "banned"
    assert body["data"]["status"] == "banned"

    # Banned owners are locked out right away
    assert (await client.get("/store/settings", headers=auth_headers(owner.id))).status_code == 403

    response = await _manage(client, {"action": "unban", "userId": owner.id})
    assert response.json()["data"]["account_status"] == "active"
    assert response.json()["data"]["status"] == "active"
    assert (await client.get("/store/settings", headers=auth_headers(owner.id))).status_code == 200


@pytest.mark.asyncio
async def test_approve_pending(client: AsyncClient, async_session):
    pending = await create_user(async_session, "new@example.com", account_status="pending")

    response = await _manage(client, {"action": "approve", "userId": pending.id})
    assert response.status_code == 200
    assert response.json()["data"]["account_status"] == "active"

    response = await _manage(client, {"action": "approve", "userId": pending.id})
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "STATE_CONFLICT"


@pytest.mark.asyncio
async def test_set_role(client: AsyncClient, owner):
    response = await _manage(client, {"action": "role", "userId": owner.id, "role": "admin"})
    assert response.json()["data"]["role"] == "admin"

    response = await _manage(client, {"action": "role", "userId": owner.id})
    assert response.status_code == 400

    response = await _manage(client, {"action": "role", "userId": owner.id, "role": "superuser"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_delete_user_cascades(client: AsyncClient, session_factory, owner, other_owner):
    async with session_factory() as session:
        await update_slug(session, owner.id, "cafe1")
        category = await create_category(session, owner.id, CategoryIn(name="Food"))
        await create_product(
            session, owner.id, ProductIn(name="Burger", price=Decimal("5"), category_id=category.id)
        )
        await submit_feedback(
            session, owner.id, FeedbackIn(visitor_name="Sam", type="suggestion", description="More sauce")
        )
        await increment_page_view(session, owner.id)
        await create_product(session, other_owner.id, ProductIn(name="Tea", price=Decimal("2")))

    response = await _manage(client, {"action": "delete", "userId": owner.id})
    assert response.status_code == 200
    assert response.json()["data"] == {"userId": owner.id, "deleted": True}

    async with session_factory() as session:
        assert await session.get(User, owner.id) is None
        assert await session.get(StoreSettings, owner.id) is None
        for model, column in (
            (Category, Category.user_id),
            (Product, Product.user_id),
            (Feedback, Feedback.store_owner_id),
            (PageView, PageView.user_id),
        ):
            count = (await session.execute(select(func.count()).select_from(model).where(column == owner.id))).scalar_one()
            assert count == 0, model.__name__

        remaining = (await session.execute(select(Product.name))).scalars().all()
        assert remaining == ["Tea"]

        audit = (await session.execute(select(AuditLog).where(AuditLog.action == "user.deleted"))).scalars().all()
        assert len(audit) == 1
        assert audit[0].target_id == owner.id


@pytest.mark.asyncio
async def test_message_one_and_all(client: AsyncClient, async_session, owner, other_owner):
    response = await _manage(client, {"action": "message", "userId": owner.id, "message": "Hi owner"})
    assert response.json()["data"] == {"sent": 1}

    response = await _manage(client, {"action": "message", "messageAll": "Maintenance tonight"})
    assert response.json()["data"] == {"sent": 2}

    response = await _manage(client, {"action": "message", "messageAll": "   "})
    assert response.status_code == 400

    rows = (await async_session.execute(select(Notification))).scalars().all()
    by_user = {}
    for row in rows:
        by_user.setdefault(row.user_id, []).append(row.message)
    assert sorted(by_user[owner.id]) == ["Hi owner", "Maintenance tonight"]
    assert by_user[other_owner.id] == ["Maintenance tonight"]

    response = await client.get("/notifications", params={"unread_only": True}, headers=auth_headers(owner.id))
    assert len(response.json()) == 2
    response = await client.post("/notifications/read-all", headers=auth_headers(owner.id))
    assert response.status_code == 204
    response = await client.get("/notifications", params={"unread_only": True}, headers=auth_headers(owner.id))
    assert response.json() == []


# ────────────────────────────────────────────────────────────────
# list-users, admin-role, stats
# ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_list_users(client: AsyncClient, async_session, owner, other_owner):
    await update_name(async_session, owner.id, "Cafe One")
    await update_slug(async_session, owner.id, "cafe1")
    await create_product(async_session, owner.id, ProductIn(name="A", price=Decimal("1")))
    await create_product(async_session, owner.id, ProductIn(name="B", price=Decimal("1")))
    await increment_page_view(async_session, owner.id)
    await increment_page_view(async_session, owner.id)
    await increment_page_view(async_session, owner.id)

    response = await client.post("/functions/v1/list-users", headers=admin_headers())
    assert response.status_code == 200
    users = {u["email"]: u for u in response.json()["data"]}

    assert users["owner@example.com"]["store_name"] == "Cafe One"
    assert users["owner@example.com"]["slug"] == "cafe1"
    assert users["owner@example.com"]["productsCount"] == 2
    assert users["owner@example.com"]["visitsCount"] == 3
    assert users["other@example.com"]["productsCount"] == 0
    assert users["other@example.com"]["visitsCount"] == 0
    assert users["other@example.com"]["store_name"] is None


@pytest.mark.asyncio
async def test_admin_role_by_email(client: AsyncClient, owner):
    owner_headers = auth_headers(owner.id)
    assert (await client.post("/functions/v1/list-users", headers=owner_headers)).status_code == 403

    response = await client.post(
        "/functions/v1/admin-role", json={"email": "OWNER@example.com"}, headers=admin_headers()
    )
    assert response.status_code == 200
    assert response.json()["data"] == {"userId": owner.id, "role": "admin"}

    # The promoted account can now use admin functions with its own token
    response = await client.post("/functions/v1/list-users", headers=owner_headers)
    assert response.status_code == 200
    assert owner.id in [u["id"] for u in response.json()["data"]]

    response = await _manage(client, {"action": "role", "userId": owner.id, "role": "user"})
    assert response.status_code == 200
    assert (await client.post("/functions/v1/list-users", headers=owner_headers)).status_code == 403

    response = await client.post(
        "/functions/v1/admin-role", json={"email": "ghost@example.com"}, headers=admin_headers()
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_page_views_and_system_stats(client: AsyncClient, async_session, owner, other_owner):
    await update_slug(async_session, owner.id, "cafe1")

    for expected in (1, 2):
        response = await client.post("/functions/v1/increment-page-view", json={"userId": owner.id})
        assert response.status_code == 200
        assert response.json()["data"] == {"userId": owner.id, "view_count": expected}

    response = await client.post("/functions/v1/increment-page-view", json={"userId": "ghost"})
    assert response.status_code == 404

    response = await client.post("/functions/v1/update-system-stats", headers=admin_headers())
    stats = response.json()["data"]
    assert stats["total_users"] == 2
    assert stats["total_active_stores"] == 1
    assert stats["total_page_views"] == 2
    assert stats["last_updated"] is not None

    response = await client.post("/functions/v1/get-system-stats", headers=admin_headers())
    assert response.json()["data"]["total_page_views"] == 2
