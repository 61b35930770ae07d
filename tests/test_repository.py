from __future__ import annotations

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from generation_service import repository
from generation_service.database import session_scope
from generation_service.enums import SessionStatus, TaskState
from generation_service.models import GenerationTask

from .factories import generation_request_factory, seed_session


@pytest.mark.asyncio
async def test_create_session_starts_generating(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    session_id, task_ids = await seed_session(session_factory, task_count=2)

    async with session_factory() as session:
        record = await repository.get_session(session, session_id)
        assert record is not None
        assert record.status is SessionStatus.GENERATING
        assert record.image_count == 2
        assert [task.id for task in record.tasks] == task_ids
        assert all(task.state is TaskState.QUEUED for task in record.tasks)


@pytest.mark.asyncio
async def test_sessions_are_scoped_to_their_owner(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    mine, _ = await seed_session(session_factory, user_id=1)
    await seed_session(session_factory, user_id=2)

    async with session_factory() as session:
        listed = await repository.list_sessions_for_user(session, 1)
        assert [record.id for record in listed] == [mine]
        assert await repository.get_session(session, mine, user_id=2) is None


@pytest.mark.asyncio
async def test_finalize_without_tasks_fails_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as session:
        record = await repository.create_session(
            session,
            user_id=3,
            topic="Custom",
            base_prompt="nothing works",
            request=generation_request_factory(),
            image_count=2,
        )
        await repository.finalize_session_creation(session, record.id, created_count=0)
        await session.commit()

        reloaded = await repository.get_session(session, record.id)
        assert reloaded is not None
        assert reloaded.status is SessionStatus.FAILED


@pytest.mark.asyncio
async def test_processing_transition_is_forward_only(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    _, (task_id,) = await seed_session(session_factory)

    async with session_factory() as session:
        assert await repository.mark_task_processing(session, task_id) is True
        assert await repository.mark_task_processing(session, task_id) is False
        assert await repository.mark_task_failed(session, task_id, reason="boom")
        assert await repository.mark_task_processing(session, task_id) is False
        await session.commit()

        task = await repository.get_task_by_id(session, task_id)
        assert task is not None
        assert task.state is TaskState.FAILED
        assert task.failure_reason == "boom"
        assert task.completed_at is not None


@pytest.mark.asyncio
async def test_failure_is_recorded_once(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    _, (task_id,) = await seed_session(session_factory)

    async with session_factory() as session:
        assert await repository.mark_task_failed(session, task_id, reason="first")
        assert not await repository.mark_task_failed(session, task_id, reason="second")
        await session.commit()

        task = await repository.get_task_by_id(session, task_id)
        assert task is not None
        assert task.failure_reason == "first"


@pytest.mark.asyncio
async def test_claim_is_exclusive_until_released(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    _, (task_id,) = await seed_session(session_factory)
    source = "https://cdn.provider.test/a.png"

    async with session_factory() as session:
        assert await repository.claim_materialization(
            session, task_id, token="a", source_url=source, lease_seconds=120
        )
        assert not await repository.claim_materialization(
            session, task_id, token="b", source_url=source, lease_seconds=120
        )
        await repository.release_materialization(session, task_id, token="a")
        assert await repository.claim_materialization(
            session, task_id, token="b", source_url=source, lease_seconds=120
        )
        await session.commit()


@pytest.mark.asyncio
async def test_expired_claim_can_be_taken_over(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    _, (task_id,) = await seed_session(session_factory)
    source = "https://cdn.provider.test/a.png"

    async with session_factory() as session:
        assert await repository.claim_materialization(
            session, task_id, token="stale", source_url=source, lease_seconds=120
        )
        assert await repository.claim_materialization(
            session, task_id, token="fresh", source_url=source, lease_seconds=-1
        )
        # The superseded holder can no longer finalize.
        assert not await repository.mark_task_succeeded(
            session,
            task_id,
            token="stale",
            result_url="https://storage.local/x.png",
            storage_key="x.png",
        )
        assert await repository.mark_task_succeeded(
            session,
            task_id,
            token="fresh",
            result_url="https://storage.local/y.png",
            storage_key="y.png",
        )
        await session.commit()

        task = await repository.get_task_by_id(session, task_id)
        assert task is not None
        assert task.state is TaskState.SUCCEEDED
        assert task.result_url == "https://storage.local/y.png"
        assert task.materialization_token is None


@pytest.mark.asyncio
async def test_succeeded_task_cannot_fail_or_be_claimed(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    _, (task_id,) = await seed_session(session_factory)

    async with session_factory() as session:
        await session.execute(
            update(GenerationTask)
            .where(GenerationTask.id == task_id)
            .values(state=TaskState.SUCCEEDED, result_url="https://storage.local/z")
        )
        assert not await repository.mark_task_failed(session, task_id, reason="late")
        assert not await repository.claim_materialization(
            session, task_id, token="t", source_url="https://x", lease_seconds=120
        )
        await session.commit()


@pytest.mark.asyncio
async def test_session_settles_once_every_task_is_terminal(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    session_id, _ = await seed_session(session_factory, task_count=2)

    async with session_factory() as session:
        status = await repository.record_session_progress(
            session, session_id, succeeded=True
        )
        assert status is SessionStatus.GENERATING

        status = await repository.record_session_progress(
            session, session_id, succeeded=False
        )
        assert status is SessionStatus.COMPLETED
        await session.commit()

        record = await repository.get_session(session, session_id)
        assert record is not None
        assert (record.completed_count, record.failed_count) == (1, 1)
        assert record.status is SessionStatus.COMPLETED


@pytest.mark.asyncio
async def test_session_fails_when_every_task_failed(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    session_id, _ = await seed_session(session_factory, task_count=2)

    async with session_factory() as session:
        for _ in range(2):
            status = await repository.record_session_progress(
                session, session_id, succeeded=False
            )
        await session.commit()

    assert status is SessionStatus.FAILED


@pytest.mark.asyncio
async def test_session_scope_commits_on_success(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    _, (task_id,) = await seed_session(session_factory)

    async with session_scope(session_factory) as session:
        assert await repository.mark_task_processing(session, task_id)

    async with session_factory() as session:
        task = await repository.get_task_by_id(session, task_id)
        assert task is not None
        assert task.state is TaskState.PROCESSING


@pytest.mark.asyncio
async def test_session_scope_rolls_back_on_error(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    _, (task_id,) = await seed_session(session_factory)

    with pytest.raises(RuntimeError, match="abort"):
        async with session_scope(session_factory) as session:
            await repository.mark_task_processing(session, task_id)
            raise RuntimeError("abort")

    async with session_factory() as session:
        task = await repository.get_task_by_id(session, task_id)
        assert task is not None
        assert task.state is TaskState.QUEUED


def test_session_status_covers_only_reachable_states() -> None:
    assert [status.value for status in SessionStatus] == [
        "pending",
        "generating",
        "completed",
        "failed",
    ]
