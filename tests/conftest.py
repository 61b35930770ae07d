from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from generation_service.client import ProviderClient
from generation_service.database import (
    create_engine,
    create_schema,
    create_session_factory,
)
from generation_service.orchestrator import GenerationOrchestrator
from generation_service.storage import InMemoryStorage

from .fakes import BASE_URL, FakeProvider


@pytest_asyncio.fixture
async def session_factory(
    tmp_path: Path,
) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    db_path = tmp_path / "test.db"
    engine = create_engine(f"sqlite+aiosqlite:///{db_path}")
    await create_schema(engine)

    try:
        yield create_session_factory(engine)
    finally:
        await engine.dispose()


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest_asyncio.fixture
async def http_client(fake_provider: FakeProvider) -> AsyncIterator[httpx.AsyncClient]:
    client = httpx.AsyncClient(
        base_url=BASE_URL, transport=httpx.MockTransport(fake_provider.handler)
    )
    try:
        yield client
    finally:
        await client.aclose()


@pytest.fixture
def provider_client(http_client: httpx.AsyncClient) -> ProviderClient:
    return ProviderClient(
        base_url=BASE_URL, default_api_key="test-key", http_client=http_client
    )


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def recorded_sleeps() -> list[float]:
    return []


@pytest.fixture
def orchestrator(
    session_factory: async_sessionmaker[AsyncSession],
    provider_client: ProviderClient,
    storage: InMemoryStorage,
    recorded_sleeps: list[float],
) -> GenerationOrchestrator:
    async def _sleep(seconds: float) -> None:
        recorded_sleeps.append(seconds)

    return GenerationOrchestrator(
        session_factory=session_factory,
        provider_client=provider_client,
        storage=storage,
        sleep=_sleep,
    )
