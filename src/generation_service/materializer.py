from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import repository
from .database import session_scope
from .client import ProviderClient
from .enums import TaskState
from .exceptions import ResultFetchError, StorageError
from .logging import get_logger
from .models import GenerationTask
from .storage import StorageClient

FAILURE_PLACEHOLDER = "Generation failed"

MaterializationStatus = Literal["materialized", "reused", "pending"]


@dataclass(slots=True)
class MaterializationResult:
    status: MaterializationStatus
    result_url: str | None = None
    error: str | None = None


@dataclass(slots=True)
class FailureRecord:
    reason: str
    newly_recorded: bool


def build_storage_key(prefix: str, task: GenerationTask) -> str:
    extension = task.output_format.value
    return f"{prefix}/{task.user_id}/{task.session_id}/{task.id}.{extension}"


class ResultMaterializer:
    """Copies ephemeral provider results into durable storage exactly once."""

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        storage: StorageClient,
        provider_client: ProviderClient,
        result_prefix: str = "images",
        lease_seconds: int = 120,
    ) -> None:
        self._session_factory = session_factory
        self._storage = storage
        self._provider_client = provider_client
        self._result_prefix = result_prefix.strip("/")
        self._lease_seconds = lease_seconds
        self._log = get_logger(__name__)

    async def materialize(
        self,
        task_id: int,
        source_url: str,
        *,
        provider_payload: dict[str, Any] | None = None,
    ) -> MaterializationResult:
        log = self._log.bind(task_id=task_id)
        token = uuid4().hex

        async with self._session_factory() as session:
            task = await repository.get_task_by_id(session, task_id)
            if task is None:
                return MaterializationResult(status="pending", error="task-not-found")
            if task.result_url:
                return MaterializationResult(
                    status="reused", result_url=task.result_url
                )

            storage_key = build_storage_key(self._result_prefix, task)
            content_type = task.output_format.content_type
            session_id = task.session_id

            claimed = await repository.claim_materialization(
                session,
                task_id,
                token=token,
                source_url=source_url,
                lease_seconds=self._lease_seconds,
            )
            await session.commit()
            if not claimed:
                return await self._current(session, task_id)

            try:
                fetched = await self._provider_client.download(source_url)
                durable_url = await self._storage.put(
                    storage_key, fetched.content, content_type
                )
            except (ResultFetchError, StorageError) as exc:
                log.warning("materialization_failed", error=str(exc))
                await repository.release_materialization(session, task_id, token=token)
                await session.commit()
                return MaterializationResult(status="pending", error=str(exc))

            finalized = await repository.mark_task_succeeded(
                session,
                task_id,
                token=token,
                result_url=durable_url,
                storage_key=storage_key,
                provider_payload=provider_payload,
            )
            if not finalized:
                await session.commit()
                log.info("materialization_superseded")
                return await self._current(session, task_id)

            await repository.record_session_progress(
                session, session_id, succeeded=True
            )
            await session.commit()

        log.info("task_materialized", storage_key=storage_key)
        return MaterializationResult(status="materialized", result_url=durable_url)

    async def _current(
        self, session: AsyncSession, task_id: int
    ) -> MaterializationResult:
        task = await repository.get_task_by_id(session, task_id)
        if task is not None and task.result_url:
            return MaterializationResult(status="reused", result_url=task.result_url)
        return MaterializationResult(status="pending")

    async def record_failure(
        self,
        task_id: int,
        reason: str | None,
        *,
        provider_payload: dict[str, Any] | None = None,
    ) -> FailureRecord:
        """Persist a terminal provider failure; repeated calls keep the first reason."""

        message = (reason or "").strip() or FAILURE_PLACEHOLDER
        async with session_scope(self._session_factory) as session:
            updated = await repository.mark_task_failed(
                session, task_id, reason=message, provider_payload=provider_payload
            )
            task = await repository.get_task_by_id(session, task_id)
            stored_reason = message
            if task is not None and task.state is TaskState.FAILED:
                stored_reason = task.failure_reason or FAILURE_PLACEHOLDER
            if updated and task is not None:
                await repository.record_session_progress(
                    session, task.session_id, succeeded=False
                )

        if updated:
            self._log.info("task_failed", task_id=task_id, reason=stored_reason)
        return FailureRecord(reason=stored_reason, newly_recorded=updated)
