"""
Catalog: filtering, cache busting, ordering and owner CRUD.
"""

from decimal import Decimal

import pytest
from httpx import AsyncClient

from storefront.catalog import (
    CategoryIn,
    ProductIn,
    create_category,
    create_product,
    filter_products,
    list_products,
    with_cache_buster,
)

from conftest import auth_headers


# ────────────────────────────────────────────────────────────────
# Unit Tests - filter_products
# ────────────────────────────────────────────────────────────────

PRODUCTS = [
    {"name": "Burger", "category": "Food"},
    {"name": "Cola", "category": "Drinks"},
]


def _names(items):
    return [p["name"] for p in items]


def test_filter_by_query():
    assert _names(filter_products(PRODUCTS, "bur")) == ["Burger"]


def test_filter_by_category_with_empty_query():
    assert _names(filter_products(PRODUCTS, "", "Drinks")) == ["Cola"]


def test_filter_query_and_category_compose():
    assert filter_products(PRODUCTS, "bur", "Drinks") == []
    assert _names(filter_products(PRODUCTS, "COLA", "Drinks")) == ["Cola"]


def test_filter_blank_keeps_order():
    assert _names(filter_products(PRODUCTS, "   ", None)) == ["Burger", "Cola"]


def test_filter_category_is_exact():
    assert filter_products(PRODUCTS, "", "drinks") == []


def test_filter_accepts_objects():
    class Item:
        def __init__(self, name, category):
            self.name = name
            self.category = category

    items = [Item("Burger", "Food"), Item("Cola", "Drinks")]
    assert [p.name for p in filter_products(items, "o", "Drinks")] == ["Cola"]


# ────────────────────────────────────────────────────────────────
# Unit Tests - with_cache_buster
# ────────────────────────────────────────────────────────────────

def test_cache_buster_appends():
    assert with_cache_buster("https://cdn.test/a.jpg", 123) == "https://cdn.test/a.jpg?t=123"


def test_cache_buster_replaces_existing_query():
    assert with_cache_buster("https://cdn.test/a.jpg?t=1&w=2", 5) == "https://cdn.test/a.jpg?t=5"


def test_cache_buster_leaves_empty_alone():
    assert with_cache_buster(None, 5) is None
    assert with_cache_buster("", 5) == ""


def test_cache_buster_defaults_to_now():
    url = with_cache_buster("https://cdn.test/a.jpg")
    assert url.startswith("https://cdn.test/a.jpg?t=")
    assert url.split("?t=")[1].isdigit()


# ────────────────────────────────────────────────────────────────
# Service Tests
# ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_products_ordered_by_display_order_nulls_last(async_session, owner):
    await create_product(async_session, owner.id, ProductIn(name="Unordered", price=Decimal("1.00")))
    await create_product(async_session, owner.id, ProductIn(name="Second", price=Decimal("2.00"), display_order=2))
    await create_product(async_session, owner.id, ProductIn(name="First", price=Decimal("3.00"), display_order=1))

    products = await list_products(async_session, owner.id, timestamp=42)

    assert [p.name for p in products] == ["First", "Second", "Unordered"]


@pytest.mark.asyncio
async def test_list_products_cache_busts_images(async_session, owner):
    await create_product(
        async_session,
        owner.id,
        ProductIn(name="Tea", price=Decimal("2.50"), image_url="https://cdn.test/tea.jpg?t=1"),
    )
    products = await list_products(async_session, owner.id, timestamp=99)
    assert products[0].image_url == "https://cdn.test/tea.jpg?t=99"
    assert products[0].price == 2.5


@pytest.mark.asyncio
async def test_product_takes_category_name(async_session, owner):
    category = await create_category(async_session, owner.id, CategoryIn(name="Drinks"))
    product = await create_product(
        async_session, owner.id, ProductIn(name="Cola", price=Decimal("1.50"), category_id=category.id)
    )
    assert product.category == "Drinks"


# ────────────────────────────────────────────────────────────────
# Route Tests
# ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_category_and_product_crud(client: AsyncClient, owner):
    headers = auth_headers(owner.id)

    response = await client.post("/catalog/categories", json={"name": " Food "}, headers=headers)
    assert response.status_code == 201
    food = response.json()
    assert food["name"] == "Food"

    response = await client.post("/catalog/categories", json={"name": "food"}, headers=headers)
    assert response.status_code == 409

    response = await client.post(
        "/catalog/products",
        json={"name": "Burger", "price": "8.50", "category_id": food["id"], "is_popular": True},
        headers=headers,
    )
    assert response.status_code == 201
    burger = response.json()
    assert burger["category"] == "Food"
    assert burger["price"] == 8.5

    response = await client.post(
        "/catalog/products", json={"name": "Cola", "price": 2}, headers=headers
    )
    assert response.status_code == 201

    response = await client.get("/catalog/products", params={"q": "bur"}, headers=headers)
    assert [p["name"] for p in response.json()] == ["Burger"]

    # Renaming a category carries over to its products
    response = await client.put(
        f"/catalog/categories/{food['id']}", json={"name": "Mains"}, headers=headers
    )
    assert response.status_code == 200
    response = await client.get("/catalog/products", params={"category": "Mains"}, headers=headers)
    assert [p["name"] for p in response.json()] == ["Burger"]

    response = await client.put(
        f"/catalog/products/{burger['id']}", json={"price": "9.00"}, headers=headers
    )
    assert response.status_code == 200
    assert response.json()["price"] == 9.0
    assert response.json()["name"] == "Burger"

    response = await client.put(
        f"/catalog/products/{burger['id']}", json={"name": "   "}, headers=headers
    )
    assert response.status_code == 422
    response = await client.put(
        f"/catalog/products/{burger['id']}", json={"name": "  Cheeseburger "}, headers=headers
    )
    assert response.json()["name"] == "Cheeseburger"
    response = await client.put(
        f"/catalog/products/{burger['id']}", json={"name": "Burger"}, headers=headers
    )
    assert response.status_code == 200

    # Deleting the category keeps the product, uncategorized
    response = await client.delete(f"/catalog/categories/{food['id']}", headers=headers)
    assert response.status_code == 204
    response = await client.get("/catalog/products", headers=headers)
    by_name = {p["name"]: p for p in response.json()}
    assert by_name["Burger"]["category"] is None
    assert by_name["Burger"]["category_id"] is None

    response = await client.delete(f"/catalog/products/{burger['id']}", headers=headers)
    assert response.status_code == 204
    response = await client.get("/catalog/products", headers=headers)
    assert [p["name"] for p in response.json()] == ["Cola"]


@pytest.mark.asyncio
async def test_negative_price_rejected(client: AsyncClient, owner):
    response = await client.post(
        "/catalog/products", json={"name": "Refund", "price": "-1"}, headers=auth_headers(owner.id)
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_reorder_products(client: AsyncClient, owner):
    headers = auth_headers(owner.id)
    ids = []
    for name in ("A", "B", "C"):
        response = await client.post("/catalog/products", json={"name": name, "price": 1}, headers=headers)
        ids.append(response.json()["id"])

    response = await client.put(
        "/catalog/products/order", json={"product_ids": [ids[2], ids[0], ids[1]]}, headers=headers
    )
    assert response.status_code == 204

    response = await client.get("/catalog/products", headers=headers)
    assert [p["name"] for p in response.json()] == ["C", "A", "B"]

    response = await client.put(
        "/catalog/products/order", json={"product_ids": [ids[0], "missing"]}, headers=headers
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_owner_cannot_touch_other_owners_catalog(client: AsyncClient, owner, other_owner):
    response = await client.post(
        "/catalog/categories", json={"name": "Secret"}, headers=auth_headers(owner.id)
    )
    category_id = response.json()["id"]
    response = await client.post(
        "/catalog/products", json={"name": "Hidden", "price": 1}, headers=auth_headers(owner.id)
    )
    product_id = response.json()["id"]

    other = auth_headers(other_owner.id)
    assert (await client.get("/catalog/categories", headers=other)).json() == []
    assert (await client.get("/catalog/products", headers=other)).json() == []
    assert (await client.put(f"/catalog/categories/{category_id}", json={"name": "X"}, headers=other)).status_code == 404
    assert (await client.delete(f"/catalog/products/{product_id}", headers=other)).status_code == 404
    response = await client.post(
        "/catalog/products",
        json={"name": "Sneaky", "price": 1, "category_id": category_id},
        headers=other,
    )
    assert response.status_code == 404
