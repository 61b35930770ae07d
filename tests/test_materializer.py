from __future__ import annotations

import asyncio

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from generation_service import repository
from generation_service.client import ProviderClient
from generation_service.enums import OutputFormat, SessionStatus, TaskState
from generation_service.exceptions import StorageError
from generation_service.materializer import FAILURE_PLACEHOLDER, ResultMaterializer
from generation_service.storage import InMemoryStorage

from .factories import generation_request_factory, seed_session
from .fakes import CDN_HOST, FakeProvider

SOURCE_URL = f"https://{CDN_HOST}/result.png"


class FailingStorage(InMemoryStorage):
    def __init__(self) -> None:
        super().__init__()
        self.failures = 1

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        if self.failures:
            self.failures -= 1
            raise StorageError("bucket unavailable")
        return await super().put(key, data, content_type)


class GatedStorage(InMemoryStorage):
    def __init__(self) -> None:
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        self.entered.set()
        await self.release.wait()
        return await super().put(key, data, content_type)


def _materializer(
    session_factory: async_sessionmaker[AsyncSession],
    storage: InMemoryStorage,
    provider_client: ProviderClient,
) -> ResultMaterializer:
    return ResultMaterializer(
        session_factory=session_factory,
        storage=storage,
        provider_client=provider_client,
    )


@pytest.mark.asyncio
async def test_materialize_copies_result_once(
    session_factory: async_sessionmaker[AsyncSession],
    storage: InMemoryStorage,
    provider_client: ProviderClient,
    fake_provider: FakeProvider,
) -> None:
    session_id, (task_id,) = await seed_session(
        session_factory,
        user_id=11,
        request=generation_request_factory(output_format=OutputFormat.JPG),
    )
    materializer = _materializer(session_factory, storage, provider_client)

    first = await materializer.materialize(task_id, SOURCE_URL)
    second = await materializer.materialize(task_id, SOURCE_URL)

    key = f"images/11/{session_id}/{task_id}.jpg"
    assert first.status == "materialized"
    assert first.result_url == f"https://storage.local/{key}"
    assert second.status == "reused"
    assert second.result_url == first.result_url
    assert storage.writes == 1
    assert fake_provider.downloads == 1
    assert storage.objects[key] == (b"image:/result.png", "image/jpeg")

    async with session_factory() as session:
        task = await repository.get_task_by_id(session, task_id)
        assert task is not None
        assert task.state is TaskState.SUCCEEDED
        assert task.storage_key == key
        assert task.source_url == SOURCE_URL
        assert task.materialization_token is None
        record = await repository.get_session(session, session_id)
        assert record is not None
        assert record.status is SessionStatus.COMPLETED
        assert record.completed_count == 1


@pytest.mark.asyncio
async def test_storage_failure_leaves_task_retryable(
    session_factory: async_sessionmaker[AsyncSession],
    provider_client: ProviderClient,
) -> None:
    _, (task_id,) = await seed_session(session_factory)
    storage = FailingStorage()
    materializer = _materializer(session_factory, storage, provider_client)

    pending = await materializer.materialize(task_id, SOURCE_URL)

    assert pending.status == "pending"
    assert pending.result_url is None
    assert pending.error == "bucket unavailable"
    async with session_factory() as session:
        task = await repository.get_task_by_id(session, task_id)
        assert task is not None
        assert task.state is TaskState.QUEUED
        assert task.result_url is None
        assert task.materialization_token is None

    retried = await materializer.materialize(task_id, SOURCE_URL)

    assert retried.status == "materialized"
    assert storage.writes == 1


@pytest.mark.asyncio
async def test_expired_source_is_reported_pending(
    session_factory: async_sessionmaker[AsyncSession],
    storage: InMemoryStorage,
    provider_client: ProviderClient,
    fake_provider: FakeProvider,
) -> None:
    _, (task_id,) = await seed_session(session_factory)
    fake_provider.broken_downloads.add(SOURCE_URL)
    materializer = _materializer(session_factory, storage, provider_client)

    result = await materializer.materialize(task_id, SOURCE_URL)

    assert result.status == "pending"
    assert storage.writes == 0


@pytest.mark.asyncio
async def test_concurrent_materialization_writes_once(
    session_factory: async_sessionmaker[AsyncSession],
    provider_client: ProviderClient,
) -> None:
    _, (task_id,) = await seed_session(session_factory)
    storage = GatedStorage()
    materializer = _materializer(session_factory, storage, provider_client)

    winner = asyncio.create_task(materializer.materialize(task_id, SOURCE_URL))
    await asyncio.wait_for(storage.entered.wait(), timeout=5)

    loser = await materializer.materialize(task_id, SOURCE_URL)
    storage.release.set()
    won = await winner

    assert loser.status == "pending"
    assert loser.result_url is None
    assert won.status == "materialized"
    assert storage.writes == 1

    again = await materializer.materialize(task_id, SOURCE_URL)
    assert again.result_url == won.result_url


@pytest.mark.asyncio
async def test_record_failure_keeps_first_reason(
    session_factory: async_sessionmaker[AsyncSession],
    storage: InMemoryStorage,
    provider_client: ProviderClient,
) -> None:
    session_id, (task_id,) = await seed_session(session_factory)
    materializer = _materializer(session_factory, storage, provider_client)

    first = await materializer.record_failure(task_id, "content policy")
    second = await materializer.record_failure(task_id, "something else")

    assert (first.reason, first.newly_recorded) == ("content policy", True)
    assert (second.reason, second.newly_recorded) == ("content policy", False)

    async with session_factory() as session:
        record = await repository.get_session(session, session_id)
        assert record is not None
        assert record.failed_count == 1
        assert record.status is SessionStatus.FAILED


@pytest.mark.asyncio
async def test_record_failure_without_message_uses_placeholder(
    session_factory: async_sessionmaker[AsyncSession],
    storage: InMemoryStorage,
    provider_client: ProviderClient,
) -> None:
    _, (task_id,) = await seed_session(session_factory)
    materializer = _materializer(session_factory, storage, provider_client)

    record = await materializer.record_failure(task_id, "   ")

    assert record.reason == FAILURE_PLACEHOLDER


@pytest.mark.asyncio
async def test_failed_task_is_never_materialized(
    session_factory: async_sessionmaker[AsyncSession],
    storage: InMemoryStorage,
    provider_client: ProviderClient,
) -> None:
    _, (task_id,) = await seed_session(session_factory)
    materializer = _materializer(session_factory, storage, provider_client)
    await materializer.record_failure(task_id, "boom")

    result = await materializer.materialize(task_id, SOURCE_URL)

    assert result.status == "pending"
    assert storage.writes == 0
