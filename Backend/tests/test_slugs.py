"""
Slug normalization, validation and uniqueness.

Run with: pytest Backend/tests/test_slugs.py -v
"""

import re

import pytest
from fastapi import HTTPException
from httpx import AsyncClient

from storefront.models import StoreSettings
from storefront.slugs import (
    SLUG_MAX_LENGTH,
    SlugError,
    ensure_slug_available,
    is_slug_available,
    normalize_slug,
    validate_slug,
)
from storefront.store_settings import check_slug, update_slug

from conftest import auth_headers, create_user


# ────────────────────────────────────────────────────────────────
# Unit Tests - normalize / validate
# ────────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "raw",
    [
        "My Cafe",
        "  Bella's   Bar  ",
        "UPPER-case",
        "tabs\tand\nnewlines",
        "café déjà vu",
        "!!!",
        "",
        "a--b",
        "123 Main St.",
    ],
)
def test_normalize_is_lowercase_clean_and_idempotent(raw):
    once = normalize_slug(raw)
    assert once == once.lower()
    assert re.fullmatch(r"[a-z0-9-]*", once)
    assert normalize_slug(once) == once


def test_normalize_examples():
    assert normalize_slug("My Cafe") == "my-cafe"
    assert normalize_slug("Bella's  Bar") == "bellas-bar"
    assert normalize_slug("my-cafe") == "my-cafe"
    assert normalize_slug(None) == ""


def test_validate_rejects_empty():
    with pytest.raises(SlugError):
        validate_slug("")


def test_validate_rejects_bad_characters():
    with pytest.raises(SlugError):
        validate_slug("my_cafe")
    with pytest.raises(SlugError):
        validate_slug("My-Cafe")


def test_validate_rejects_too_long():
    with pytest.raises(SlugError):
        validate_slug("a" * (SLUG_MAX_LENGTH + 1))


def test_validate_accepts_good_slug():
    assert validate_slug("cafe-1") == "cafe-1"


# ────────────────────────────────────────────────────────────────
# Uniqueness
# ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_cafe1_taken_by_a_rejected_for_b(async_session):
    user_a = await create_user(async_session, "a@example.com")
    user_b = await create_user(async_session, "b@example.com")
    async_session.add(StoreSettings(user_id=user_a.id, slug="cafe1"))
    await async_session.commit()

    assert await is_slug_available(async_session, "cafe1", user_a.id) is True
    assert await is_slug_available(async_session, "cafe1", user_b.id) is False

    with pytest.raises(HTTPException) as exc:
        await ensure_slug_available(async_session, "cafe1", user_b.id)
    assert exc.value.status_code == 409


@pytest.mark.asyncio
async def test_update_slug_same_owner_is_noop(async_session):
    user_a = await create_user(async_session, "a@example.com")
    await update_slug(async_session, user_a.id, "cafe1")

    row = await update_slug(async_session, user_a.id, "cafe1")

    assert row.slug == "cafe1"
    assert row.user_id == user_a.id


@pytest.mark.asyncio
async def test_update_slug_normalizes_before_saving(async_session):
    user = await create_user(async_session, "a@example.com")
    row = await update_slug(async_session, user.id, "  My Cafe ")
    assert row.slug == "my-cafe"


@pytest.mark.asyncio
async def test_update_slug_rejects_empty_after_normalizing(async_session):
    user = await create_user(async_session, "a@example.com")
    with pytest.raises(HTTPException) as exc:
        await update_slug(async_session, user.id, "!!!")
    assert exc.value.status_code == 422


@pytest.mark.asyncio
async def test_check_slug_reports_availability(async_session):
    user_a = await create_user(async_session, "a@example.com")
    user_b = await create_user(async_session, "b@example.com")
    await update_slug(async_session, user_a.id, "cafe1")

    taken = await check_slug(async_session, user_b.id, "Cafe1")
    free = await check_slug(async_session, user_b.id, "cafe2")
    bad = await check_slug(async_session, user_b.id, "***")

    assert taken.slug == "cafe1" and taken.available is False
    assert free.available is True
    assert bad.available is False and bad.error


@pytest.mark.asyncio
async def test_slug_route_conflict(client: AsyncClient, async_session):
    user_a = await create_user(async_session, "a@example.com")
    user_b = await create_user(async_session, "b@example.com")

    response = await client.put(
        "/store/settings/slug", json={"slug": "cafe1"}, headers=auth_headers(user_a.id)
    )
    assert response.status_code == 200
    assert response.json()["slug"] == "cafe1"
    assert response.json()["public_url"] == "https://cafe1.qrmenuc.com"

    response = await client.put(
        "/store/settings/slug", json={"slug": "CAFE1"}, headers=auth_headers(user_b.id)
    )
    assert response.status_code == 409

    response = await client.put(
        "/store/settings/slug", json={"slug": "cafe1"}, headers=auth_headers(user_a.id)
    )
    assert response.status_code == 200
