from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .enums import SessionStatus, TaskState
from .models import GenerationSession, GenerationTask
from .schemas import GenerationRequest

__all__ = [
    "create_session",
    "get_session",
    "list_sessions_for_user",
    "list_session_tasks",
    "finalize_session_creation",
    "record_session_progress",
    "create_task",
    "get_task_by_id",
    "get_task_by_external_id",
    "mark_task_processing",
    "claim_materialization",
    "release_materialization",
    "mark_task_succeeded",
    "mark_task_failed",
]

_OPEN_STATES = tuple(state for state in TaskState if not state.is_terminal)


def _utcnow() -> datetime:
    return datetime.now(UTC)


async def create_session(
    session: AsyncSession,
    *,
    user_id: int,
    topic: str,
    base_prompt: str,
    request: GenerationRequest,
    image_count: int,
) -> GenerationSession:
    """Open a generation session for one provider."""

    record = GenerationSession(
        user_id=user_id,
        topic=topic,
        base_prompt=base_prompt,
        provider=request.provider,
        image_count=image_count,
        status=SessionStatus.GENERATING,
    )
    session.add(record)
    await session.flush()
    await session.refresh(record)
    return record


async def get_session(
    session: AsyncSession, session_id: int, *, user_id: int | None = None
) -> GenerationSession | None:
    stmt = (
        select(GenerationSession)
        .where(GenerationSession.id == session_id)
        .options(selectinload(GenerationSession.tasks))
        .execution_options(populate_existing=True)
    )
    if user_id is not None:
        stmt = stmt.where(GenerationSession.user_id == user_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_sessions_for_user(
    session: AsyncSession, user_id: int, *, offset: int = 0, limit: int = 50
) -> list[GenerationSession]:
    stmt = (
        select(GenerationSession)
        .where(GenerationSession.user_id == user_id)
        .order_by(GenerationSession.created_at.desc(), GenerationSession.id.desc())
        .offset(offset)
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_session_tasks(
    session: AsyncSession, session_id: int
) -> list[GenerationTask]:
    stmt = (
        select(GenerationTask)
        .where(GenerationTask.session_id == session_id)
        .order_by(GenerationTask.id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def _count_session_tasks(session: AsyncSession, session_id: int) -> int:
    stmt = (
        select(func.count())
        .select_from(GenerationTask)
        .where(GenerationTask.session_id == session_id)
    )
    result = await session.execute(stmt)
    return int(result.scalar() or 0)


async def finalize_session_creation(
    session: AsyncSession, session_id: int, *, created_count: int
) -> None:
    """Fail a session outright when none of its tasks could be created."""

    if created_count > 0:
        return
    await session.execute(
        update(GenerationSession)
        .where(GenerationSession.id == session_id)
        .values(status=SessionStatus.FAILED)
        .execution_options(synchronize_session=False)
    )


async def record_session_progress(
    session: AsyncSession, session_id: int, *, succeeded: bool
) -> SessionStatus:
    """Count one terminal task against its session and settle the status."""

    counter = (
        GenerationSession.completed_count
        if succeeded
        else GenerationSession.failed_count
    )
    await session.execute(
        update(GenerationSession)
        .where(GenerationSession.id == session_id)
        .values({counter: counter + 1})
        .execution_options(synchronize_session=False)
    )

    stmt = select(
        GenerationSession.completed_count,
        GenerationSession.failed_count,
        GenerationSession.status,
    ).where(GenerationSession.id == session_id)
    row = (await session.execute(stmt)).one()
    created = await _count_session_tasks(session, session_id)

    status = SessionStatus(row.status)
    if created and row.completed_count + row.failed_count >= created:
        status = (
            SessionStatus.COMPLETED if row.completed_count > 0 else SessionStatus.FAILED
        )
        await session.execute(
            update(GenerationSession)
            .where(GenerationSession.id == session_id)
            .values(status=status)
            .execution_options(synchronize_session=False)
        )
    return status


async def create_task(
    session: AsyncSession,
    *,
    session_id: int,
    user_id: int,
    external_task_id: str,
    prompt: str,
    base_prompt: str,
    topic: str | None,
    request: GenerationRequest,
) -> GenerationTask:
    """Persist a freshly submitted provider job in the queued state."""

    task = GenerationTask(
        session_id=session_id,
        user_id=user_id,
        external_task_id=external_task_id,
        prompt=prompt,
        base_prompt=base_prompt,
        topic=topic,
        provider=request.provider,
        aspect_ratio=request.aspect_ratio,
        resolution=request.resolution,
        output_format=request.output_format,
        state=TaskState.QUEUED,
        provider_payload={},
    )
    session.add(task)
    await session.flush()
    await session.refresh(task)
    return task


async def get_task_by_id(session: AsyncSession, task_id: int) -> GenerationTask | None:
    stmt = (
        select(GenerationTask)
        .where(GenerationTask.id == task_id)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_task_by_external_id(
    session: AsyncSession, external_task_id: str
) -> GenerationTask | None:
    stmt = (
        select(GenerationTask)
        .where(GenerationTask.external_task_id == external_task_id)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def mark_task_processing(
    session: AsyncSession,
    task_id: int,
    *,
    provider_payload: dict[str, Any] | None = None,
) -> bool:
    """Advance a queued task to processing; never moves a task backwards."""

    values: dict[str, Any] = {"state": TaskState.PROCESSING}
    if provider_payload is not None:
        values["provider_payload"] = dict(provider_payload)
    result = await session.execute(
        update(GenerationTask)
        .where(GenerationTask.id == task_id, GenerationTask.state == TaskState.QUEUED)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)


async def claim_materialization(
    session: AsyncSession,
    task_id: int,
    *,
    token: str,
    source_url: str,
    lease_seconds: int,
) -> bool:
    """Atomically reserve a task for materialization.

    Exactly one concurrent caller wins; a claim older than the lease can be
    taken over so a crashed worker does not wedge the task.
    """

    now = _utcnow()
    expired_before = now - timedelta(seconds=lease_seconds)
    result = await session.execute(
        update(GenerationTask)
        .where(
            GenerationTask.id == task_id,
            GenerationTask.result_url.is_(None),
            GenerationTask.state.in_(_OPEN_STATES),
            or_(
                GenerationTask.materialization_token.is_(None),
                GenerationTask.materialization_started_at < expired_before,
            ),
        )
        .values(
            materialization_token=token,
            materialization_started_at=now,
            source_url=source_url,
        )
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)


async def release_materialization(
    session: AsyncSession, task_id: int, *, token: str
) -> None:
    await session.execute(
        update(GenerationTask)
        .where(
            GenerationTask.id == task_id,
            GenerationTask.materialization_token == token,
        )
        .values(materialization_token=None, materialization_started_at=None)
        .execution_options(synchronize_session=False)
    )


async def mark_task_succeeded(
    session: AsyncSession,
    task_id: int,
    *,
    token: str,
    result_url: str,
    storage_key: str,
    provider_payload: dict[str, Any] | None = None,
) -> bool:
    """Record the durable result; only the holder of the claim may finalize."""

    values: dict[str, Any] = {
        "state": TaskState.SUCCEEDED,
        "result_url": result_url,
        "storage_key": storage_key,
        "completed_at": _utcnow(),
        "failure_reason": None,
        "materialization_token": None,
        "materialization_started_at": None,
    }
    if provider_payload is not None:
        values["provider_payload"] = dict(provider_payload)
    result = await session.execute(
        update(GenerationTask)
        .where(
            GenerationTask.id == task_id,
            GenerationTask.materialization_token == token,
            GenerationTask.result_url.is_(None),
            GenerationTask.state.in_(_OPEN_STATES),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)


async def mark_task_failed(
    session: AsyncSession,
    task_id: int,
    *,
    reason: str,
    provider_payload: dict[str, Any] | None = None,
) -> bool:
    """Record a terminal provider failure once; later calls are no-ops."""

    values: dict[str, Any] = {
        "state": TaskState.FAILED,
        "failure_reason": reason[:500],
        "completed_at": _utcnow(),
    }
    if provider_payload is not None:
        values["provider_payload"] = dict(provider_payload)
    result = await session.execute(
        update(GenerationTask)
        .where(
            GenerationTask.id == task_id,
            GenerationTask.state.in_(_OPEN_STATES),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)
