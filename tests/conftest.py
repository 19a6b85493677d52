"""
Test configuration and fixtures.

Provides:
- A fresh SQLite database per test with the permission catalog synced
- A ``make`` factory for users, organizations, members and documents
- HTTPX AsyncClient whose caller is chosen with the ``X-User-Id`` header
"""
import datetime as dt
from typing import Annotated, AsyncGenerator

import pytest
from fastapi import Depends, HTTPException, Request, status
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core import config
from app.core.database.base import Base
from app.core.database.engine import get_db, import_models
from app.features.activity import logger as activity_logger
from app.features.documents import service as documents
from app.features.duty.scheduling import today
from app.features.organizations import service as organizations
from app.features.permissions import service as permissions
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.main import app


# =============================================================================
# Database Fixtures (one SQLite file per test)
# =============================================================================

@pytest.fixture(scope="function")
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    import_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine, tmp_path, monkeypatch):
    """Session factory bound to the test database; activity logging and storage follow it."""
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    monkeypatch.setattr(activity_logger, "AsyncSessionLocal", factory)
    monkeypatch.setattr(config, "LOCAL_STORAGE_PATH", str(tmp_path / "storage"))
    return factory


@pytest.fixture(scope="function")
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        await permissions.sync_permission_catalog(session)
        await session.commit()
        yield session


# =============================================================================
# Data Factory
# =============================================================================

class Factory:
    """Creates committed rows through the same services the API uses."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._count = 0

    async def user(self, name: str = "User") -> User:
        self._count += 1
        user = User(
            appwrite_id=f"appwrite-{self._count}",
            email=f"user{self._count}@example.com",
            name=f"{name} {self._count}",
        )
        self.db.add(user)
        await self.db.commit()
        return user

    async def organization(self, admin: User, name: str = "Test Organization"):
        organization = await organizations.create_organization(self.db, admin.id, name=name)
        await self.db.commit()
        return organization

    async def member(self, organization, user: User, role: str = "member", *grants: str) -> User:
        await organizations.add_member(self.db, organization.id, user.id, role, organization.created_by_id)
        for name in grants:
            await permissions.grant_permission(self.db, organization.id, user.id, name, organization.created_by_id)
        await self.db.commit()
        return user

    async def document(self, organization, creator: User, title: str = "Policy"):
        document, version = await documents.create_document(
            self.db, organization.id, title, "policy.pdf", b"%PDF-1.4 test", "application/pdf", creator.id
        )
        await self.db.commit()
        return document, version


@pytest.fixture(scope="function")
def make(db) -> Factory:
    return Factory(db)


@pytest.fixture(scope="function")
def future_date() -> dt.date:
    """A schedule date comfortably in the future."""
    return today() + dt.timedelta(days=7)


# =============================================================================
# HTTP Client
# =============================================================================

@pytest.fixture(scope="function")
async def client(session_factory, db) -> AsyncGenerator[AsyncClient, None]:
    """
    AsyncClient against the app. Requests authenticate as the user whose id
    is sent in ``X-User-Id``.
    """
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def override_get_current_user(
        request: Request,
        session: Annotated[AsyncSession, Depends(get_db)],
    ) -> User:
        user_id = request.headers.get("X-User-Id")
        user = await session.get(User, user_id) if user_id else None
        if user is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
        return user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
