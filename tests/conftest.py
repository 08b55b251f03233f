"""Shared test fixtures for the Hydrus booru."""

from __future__ import annotations

import asyncio
import hashlib
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from booru.config import Settings
from booru.database import create_engine, ensure_tables
from booru.hydrus.client import HydrusApiError
from booru.hydrus.types import HydrusFileMetadata, MetadataBatch, MetadataResponse, SearchResult
from booru.main import create_app

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable, Sequence
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

TEST_API_KEY = "test-hydrus-key"
TAG_SERVICE_KEY = "6c6f63616c2074616773"
FILE_SERVICE_KEY = "6c6f63616c2066696c6573"


def file_hash(seed: int | str) -> str:
    """A deterministic 64-character hex hash for test files."""
    return hashlib.sha256(str(seed).encode()).hexdigest()


def make_file(
    file_id: int,
    *,
    tags: Sequence[str] = (),
    urls: Sequence[str] = (),
    notes: dict[str, str] | None = None,
    time_imported: float | None = 1_700_000_000.0,
    **fields: Any,
) -> HydrusFileMetadata:
    """Build file metadata the way /get_files/file_metadata returns it."""
    payload: dict[str, Any] = {
        "file_id": file_id,
        "hash": file_hash(file_id),
        "size": 1024 * file_id,
        "mime": "image/png",
        "ext": ".png",
        "width": 800,
        "height": 600,
        "known_urls": list(urls),
        "tags": {
            TAG_SERVICE_KEY: {"display_tags": {"0": list(tags)}},
        },
        "file_services": {
            "current": {FILE_SERVICE_KEY: {"time_imported": time_imported}},
        },
        "notes": notes or {},
    }
    payload.update(fields)
    return HydrusFileMetadata.model_validate(payload)


class FakeHydrusClient:
    """In-memory stand-in for HydrusClient.

    ``files`` is the remote catalog in listing order. ``fail_batches`` holds
    1-based metadata call numbers that raise; ``before_metadata`` runs before
    every metadata call with that call number. ``broken`` maps file ids to raw
    records that are listed but fail validation.
    """

    def __init__(self, files: Sequence[HydrusFileMetadata] = ()) -> None:
        self.files: list[HydrusFileMetadata] = list(files)
        self.broken: dict[int, dict[str, Any]] = {}
        self.search_error: Exception | None = None
        self.fail_batches: set[int] = set()
        self.before_metadata: Callable[[int], Awaitable[None]] | None = None
        self.search_calls: list[list[str]] = []
        self.metadata_calls: list[list[int]] = []
        self.closed = False

    async def search_files(self, tags: Sequence[str]) -> SearchResult:
        self.search_calls.append(list(tags))
        if self.search_error is not None:
            raise self.search_error
        return SearchResult(
            file_ids=[f.file_id for f in self.files] + list(self.broken),
            hashes=[f.hash for f in self.files],
        )

    async def get_file_metadata(self, file_ids: Sequence[int]) -> MetadataBatch:
        self.metadata_calls.append(list(file_ids))
        call_number = len(self.metadata_calls)
        if self.before_metadata is not None:
            await self.before_metadata(call_number)
        if call_number in self.fail_batches:
            raise HydrusApiError("Hydrus API error: 503 Service Unavailable", 503)
        by_id: dict[int, Any] = {f.file_id: f for f in self.files}
        by_id.update(self.broken)
        entries = [by_id[file_id] for file_id in file_ids if file_id in by_id]
        return MetadataResponse(metadata=entries).parse_files()

    async def aclose(self) -> None:
        self.closed = True


@asynccontextmanager
async def create_test_client(
    settings: Settings, hydrus: FakeHydrusClient | None = None
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with an initialized app.

    Performs the lifespan's database setup by hand because ASGITransport
    does not trigger it.
    """
    app = create_app(settings)
    engine, session_factory = create_engine(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory
    await ensure_tables(engine)
    if hydrus is not None:
        app.state.hydrus_client_factory = lambda _settings: hydrus

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    task = app.state.sync_task
    if task is not None and not task.done():
        await task
    await engine.dispose()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with temporary paths."""
    db_path = tmp_path / "test.db"
    return Settings(
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        hydrus_api_key=TEST_API_KEY,
        hydrus_files_path=tmp_path / "hydrus" / "client_files",
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with all tables."""
    engine, _ = create_engine(test_settings)
    await ensure_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_hydrus() -> FakeHydrusClient:
    return FakeHydrusClient()


async def wait_for_sync(client: AsyncClient, attempts: int = 500) -> dict[str, Any]:
    """Poll the status endpoint until the background sync reaches a final state.

    ``cancelled`` is transient: a cancelled run still finishes as ``completed``.
    """
    for _ in range(attempts):
        resp = await client.get("/api/admin/sync")
        state: dict[str, Any] = resp.json()
        if state["status"] not in {"running", "cancelled"}:
            return state
        await asyncio.sleep(0.01)
    msg = "Background sync did not finish"
    raise AssertionError(msg)
