"""
Pytest configuration and fixtures for async database testing.

Every test gets its own SQLite file database (foreign keys on), a session
factory shared by the app and the test, and a fake S3 bucket.
"""
import os

# Must be set before storefront is imported
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-with-enough-length-for-hs256"
os.environ["ADMIN_EMAIL"] = "admin@example.com"
os.environ["ADMIN_PIN"] = "246810"
os.environ["PLATFORM_DOMAIN"] = "qrmenuc.com"
os.environ["REQUIRE_APPROVAL"] = "true"
os.environ["FEEDBACK_RATE_LIMIT"] = "5"
os.environ["RESEND_API_KEY"] = ""

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from storefront.auth import hash_password
from storefront.core.db import Base, get_session
from storefront.main import app
from storefront.models import AccountStatus, User, UserRole
from storefront.rate_limiter import clear_rate_limits
from storefront.storage import ObjectStorage, get_storage
from storefront.tokens import TOKEN_SCOPE_ADMIN, create_access_token

ADMIN_EMAIL = "admin@example.com"
ADMIN_PIN = "246810"
CDN_BASE = "https://cdn.test/store_assets"


class FakeS3Client:
    """Records put_object / delete_objects calls like a boto3 S3 client would receive them."""

    def __init__(self):
        self.objects = {}
        self.deleted = []

    def put_object(self, Bucket, Key, Body, ContentType, CacheControl=None):
        self.objects[Key] = {"body": Body, "content_type": ContentType, "bucket": Bucket}
        return {"ETag": '"fake"'}

    def delete_objects(self, Bucket, Delete):
        keys = [obj["Key"] for obj in Delete["Objects"]]
        for key in keys:
            self.objects.pop(key, None)
        self.deleted.extend(keys)
        return {"Deleted": [{"Key": k} for k in keys]}


@pytest.fixture(scope="function")
async def async_engine(tmp_path):
    """
    Create a fresh SQLite database file for the test.

    Foreign keys are switched on per connection so ON DELETE CASCADE works.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(async_engine):
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(scope="function")
async def async_session(session_factory):
    """Session for seeding and inspecting data directly."""
    async with session_factory() as session:
        yield session


@pytest.fixture(scope="function")
def fake_s3():
    return FakeS3Client()


@pytest.fixture(scope="function")
def storage(fake_s3):
    return ObjectStorage(fake_s3, bucket="store_assets", public_base_url=CDN_BASE)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    clear_rate_limits()
    yield
    clear_rate_limits()


@pytest.fixture(scope="function")
async def client(session_factory, storage):
    """
    Create FastAPI AsyncClient with database and storage overrides.

    Each request gets its own session from the test's factory, the same
    way production requests do.
    """
    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_storage] = lambda: storage

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# ────────────────────────────────────────────────────────────────
# Data helpers
# ────────────────────────────────────────────────────────────────

async def create_user(
    session: AsyncSession,
    email: str,
    password: str = "secret123",
    account_status: str = AccountStatus.ACTIVE.value,
    role: str = UserRole.USER.value,
    phone: str = None,
) -> User:
    user = User(
        email=email,
        password_hash=hash_password(password),
        account_status=account_status,
        role=role,
        phone=phone,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


def admin_headers() -> dict:
    token = create_access_token(ADMIN_EMAIL, scope=TOKEN_SCOPE_ADMIN)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def owner(async_session):
    return await create_user(async_session, "owner@example.com")


@pytest.fixture
async def other_owner(async_session):
    return await create_user(async_session, "other@example.com")
