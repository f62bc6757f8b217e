from __future__ import annotations

# ruff: noqa: E402
import os
from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest
import pytest_asyncio
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

os.environ.setdefault("REVISION_DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("REVISION_JWT_SECRET", "test-secret-change-me!")
os.environ.setdefault("REVISION_SKIP_MIGRATIONS", "1")
os.environ.setdefault("REVISION_CELERY_TASK_ALWAYS_EAGER", "1")
os.environ.setdefault("REVISION_GEMINI_API_KEY", "test-gemini-key")

from revision_api.api.dependencies import get_note_revision_service
from revision_api.app import create_app
from revision_api.config.settings import Settings, get_settings
from revision_api.core.security import create_access_token
from revision_api.db import Base
from revision_api.db.session import get_session_factory
from revision_api.services.revision.service import RevisionService
from tests.utils import LEARNER_ID, StubNoteGenerator

get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _reset_settings_cache() -> Iterator[None]:
    yield
    get_settings.cache_clear()


@pytest.fixture()
def database_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'revision.sqlite'}"


@pytest.fixture()
def settings(database_url: str) -> Settings:
    return Settings(
        database_url=database_url,
        jwt_secret=os.environ["REVISION_JWT_SECRET"],
        environment="test",
        log_level="INFO",
        gemini_api_key="test-gemini-key",
    )


@pytest_asyncio.fixture()
async def engine(database_url: str) -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine(database_url, connect_args={"check_same_thread": False})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture()
def note_generator() -> StubNoteGenerator:
    return StubNoteGenerator()


@pytest.fixture()
def app(settings: Settings, session_maker, note_generator: StubNoteGenerator):
    application = create_app(settings)

    async def _note_service_override() -> AsyncIterator[RevisionService]:
        yield RevisionService(session_maker, settings=settings, generator=note_generator)

    application.dependency_overrides[get_settings] = lambda: settings
    application.dependency_overrides[get_session_factory] = lambda: session_maker
    application.dependency_overrides[get_note_revision_service] = _note_service_override
    return application


@pytest_asyncio.fixture()
async def client(app) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with (
        LifespanManager(app),
        AsyncClient(transport=transport, base_url="http://test") as async_client,
    ):
        yield async_client


@pytest.fixture()
def auth_headers(settings: Settings) -> dict[str, str]:
    token = create_access_token(subject=LEARNER_ID, settings=settings)
    return {"Authorization": f"Bearer {token}"}
