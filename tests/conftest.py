"""
Pytest configuration and fixtures.

Tests run against an in-memory SQLite database; SMTP and the blob store are
replaced with mocks so no network is touched.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("BASE_URL", "https://portal.example.org")
os.environ.setdefault("TRACKING_ALLOWED_HOSTS", '["portal.example.org", "linke-frankfurt.de"]')
os.environ.setdefault("ADMIN_NOTIFICATION_EMAIL", "admin@example.org")

from collections.abc import AsyncIterator
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from kvportal.auth.models import User, UserRole
from kvportal.auth.security import create_access_token, hash_password
from kvportal.core.database import Base, get_db
from kvportal.email.mailer import EmailResult, Mailer
from kvportal.groups.models import Group, GroupStatus, ResponsiblePerson
from kvportal.main import app
from kvportal.newsletter.settings_service import clear_settings_cache
from kvportal.storage.client import BlobClient
from kvportal.storage.upload import upload_cache

PASSWORD = "geheim123"
GROUP_DESCRIPTION = "Wir treffen uns regelmäßig, um über Stadtteilpolitik zu sprechen und Aktionen zu planen."


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "integration: marks tests that go through the HTTP API"
    )


@pytest_asyncio.fixture
async def session_maker() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def enable_foreign_keys(dbapi_connection, _):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_maker: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """Session for arranging data and calling services directly."""
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_maker: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncClient]:
    async def override_get_db() -> AsyncIterator[AsyncSession]:
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_caches() -> None:
    clear_settings_cache()
    upload_cache.clear()


@pytest.fixture(autouse=True)
def smtp() -> AsyncMock:
    """Every send succeeds unless a test changes ``smtp.return_value``/``side_effect``."""
    mock = AsyncMock(return_value=EmailResult(True, "test"))
    with patch.object(Mailer, "send", mock):
        yield mock


@pytest.fixture(autouse=True)
def smtp_verify() -> AsyncMock:
    """SMTP connection checks before newsletter batches succeed by default."""
    mock = AsyncMock(return_value=None)
    with patch.object(Mailer, "verify_connection", mock):
        yield mock


@pytest.fixture(autouse=True)
def blob() -> dict[str, AsyncMock]:
    async def put(pathname: str, content: bytes, content_type: str) -> str:
        return f"https://blob.example.org/{pathname}"

    put_mock = AsyncMock(side_effect=put)
    delete_mock = AsyncMock(return_value=None)
    with patch.object(BlobClient, "put", put_mock), patch.object(BlobClient, "delete", delete_mock):
        yield {"put": put_mock, "delete": delete_mock}


# =============================================================================
# Users and groups
# =============================================================================


async def make_user(
    db: AsyncSession, username: str, role: UserRole = UserRole.MITGLIED, **fields
) -> User:
    user = User(
        username=username,
        email=fields.pop("email", f"{username}@example.org"),
        password_hash=hash_password(PASSWORD),
        role=role,
        **fields,
    )
    db.add(user)
    await db.commit()
    return user


async def make_group(
    db: AsyncSession,
    name: str = "AG Stadtteil",
    status: GroupStatus = GroupStatus.ACTIVE,
    slug: str | None = None,
) -> Group:
    group = Group(
        name=name,
        slug=slug or name.lower().replace(" ", "-"),
        description=GROUP_DESCRIPTION,
        status=status,
        responsible_persons=[
            ResponsiblePerson(first_name="Rosa", last_name="Lux", email="rosa@example.org")
        ],
    )
    db.add(group)
    await db.commit()
    return group


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}


@pytest_asyncio.fixture
async def admin(db: AsyncSession) -> User:
    return await make_user(db, "admin", UserRole.ADMIN, first_name="Ada", last_name="Admin")


@pytest_asyncio.fixture
async def member(db: AsyncSession) -> User:
    return await make_user(db, "mitglied", first_name="Max", last_name="Mitglied")


@pytest.fixture
def admin_headers(admin: User) -> dict[str, str]:
    return auth_headers(admin)


@pytest.fixture
def member_headers(member: User) -> dict[str, str]:
    return auth_headers(member)
