"""
Shared fixtures.

Every test gets a fresh in-memory SQLite database (aiosqlite, one shared
connection through StaticPool) and a fresh in-memory statistics cache.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ.pop("REDIS_URL", None)

from decimal import Decimal

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from marfanet import models  # noqa: F401
from marfanet.database import Base, build_engine, get_db
from marfanet.schemas.representative import CollaboratorCreate, RepresentativeCreate
from marfanet.services.cache_service import reset_cache
from marfanet.services.directory_service import DirectoryService


@pytest.fixture(autouse=True)
def fresh_cache():
    return reset_cache()


@pytest.fixture
async def engine():
    test_engine = build_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def file_session_factory(tmp_path):
    """Sessions on a file-backed database, for tests that need separate connections."""
    file_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with file_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(
        file_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    await file_engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    from marfanet.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client
    app.dependency_overrides.clear()


# ==================== Factories ====================

@pytest.fixture
def make_collaborator(db):
    async def factory(code="behnam_001", percentage=Decimal("10")):
        return await DirectoryService(db).create_collaborator(
            CollaboratorCreate(
                collaborator_name=f"Collaborator {code}",
                unique_collaborator_id=code,
                commission_percentage=percentage,
            )
        )
    return factory


@pytest.fixture
def make_representative(db):
    async def factory(admin_username="rep_001", **fields):
        fields.setdefault("full_name", f"Representative {admin_username}")
        return await DirectoryService(db).create_representative(
            RepresentativeCreate(admin_username=admin_username, **fields)
        )
    return factory
