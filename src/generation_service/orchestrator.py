from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import repository
from .client import ProviderClient
from .config import GenerationSettings
from .database import session_scope
from .enums import Provider, TaskState
from .exceptions import TransientStatusError
from .logging import get_logger
from .materializer import ResultMaterializer
from .polling import (
    DEFAULT_MAX_ATTEMPTS,
    PollingCoordinator,
    ProgressCallback,
    SleepFunc,
)
from .schemas import (
    DEFAULT_TOPIC,
    FanOutRequest,
    FanOutResult,
    GenerationRequest,
    PollOutcome,
    SubmissionResult,
    SubmitRequest,
    SubmittedTask,
    TaskStatusResult,
)
from .storage import StorageClient

TASK_NOT_FOUND = "task-not-found"
NO_RESULT_URLS = "no result urls"


def variation_prompt(prompt: str, index: int) -> str:
    """Decorate the *index*-th (0-based) prompt of a multi-image request."""
    return f"{prompt} (variation {index + 1})"


@dataclass(slots=True)
class _TaskSnapshot:
    id: int
    user_id: int
    provider: Provider
    state: TaskState
    result_url: str | None
    failure_reason: str | None


class GenerationOrchestrator:
    """Entry point for submitting, fanning out and tracking generation tasks."""

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        provider_client: ProviderClient,
        storage: StorageClient,
        result_prefix: str = "images",
        lease_seconds: int = 120,
        poll_max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep: SleepFunc | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._provider_client = provider_client
        self._materializer = ResultMaterializer(
            session_factory=session_factory,
            storage=storage,
            provider_client=provider_client,
            result_prefix=result_prefix,
            lease_seconds=lease_seconds,
        )
        poller_kwargs = {"sleep": sleep} if sleep is not None else {}
        self._poller = PollingCoordinator(
            provider_client, max_attempts=poll_max_attempts, **poller_kwargs
        )
        self._log = get_logger(__name__)

    @classmethod
    def from_settings(
        cls,
        settings: GenerationSettings,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        provider_client: ProviderClient,
        storage: StorageClient,
    ) -> GenerationOrchestrator:
        return cls(
            session_factory=session_factory,
            provider_client=provider_client,
            storage=storage,
            result_prefix=settings.result_prefix,
            lease_seconds=settings.materialization_lease_seconds,
            poll_max_attempts=settings.poll_max_attempts,
        )

    @property
    def provider_client(self) -> ProviderClient:
        return self._provider_client

    async def submit(
        self, user_id: int, request: SubmitRequest, *, api_key: str | None = None
    ) -> SubmissionResult:
        """Create ``request.count`` tasks against a single provider."""

        base = GenerationRequest(
            prompt=request.prompt,
            provider=request.provider,
            aspect_ratio=request.aspect_ratio,
            resolution=request.resolution,
            output_format=request.output_format,
        )
        return await self._submit_for_provider(
            user_id, base, topic=request.topic, count=request.count, api_key=api_key
        )

    async def fan_out(
        self, user_id: int, request: FanOutRequest, *, api_key: str | None = None
    ) -> FanOutResult:
        """Dispatch one prompt to several providers concurrently.

        Only created tasks are returned; creations that failed are counted in
        ``failed_count``.
        """

        pipelines = [
            self._submit_for_provider(
                user_id,
                request.request_for(provider),
                topic=request.topic,
                count=request.count_per_provider,
                api_key=api_key,
            )
            for provider in request.providers
        ]
        outcomes = await asyncio.gather(*pipelines, return_exceptions=True)

        tasks: list[SubmittedTask] = []
        session_ids: list[int] = []
        failed = 0
        for provider, outcome in zip(request.providers, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                self._log.error(
                    "fan_out_provider_failed",
                    provider=provider.value,
                    error=str(outcome),
                    exc_info=outcome,
                )
                failed += request.count_per_provider
                continue
            session_ids.append(outcome.session_id)
            tasks.extend(outcome.tasks)
            failed += outcome.failed_count

        requested = len(request.providers) * request.count_per_provider
        self._log.info(
            "fan_out_completed",
            user_id=user_id,
            providers=[provider.value for provider in request.providers],
            created=len(tasks),
            failed=failed,
        )
        return FanOutResult(
            tasks=tasks,
            session_ids=session_ids,
            providers=list(request.providers),
            requested_count=requested,
            total_count=len(tasks),
            failed_count=failed,
        )

    async def _submit_for_provider(
        self,
        user_id: int,
        request: GenerationRequest,
        *,
        topic: str | None,
        count: int,
        api_key: str | None,
    ) -> SubmissionResult:
        log = self._log.bind(user_id=user_id, provider=request.provider.value)
        created: list[SubmittedTask] = []
        failed = 0

        async with self._session_factory() as session:
            record = await repository.create_session(
                session,
                user_id=user_id,
                topic=topic or DEFAULT_TOPIC,
                base_prompt=request.prompt,
                request=request,
                image_count=count,
            )
            session_id = record.id
            await session.commit()

            try:
                for index in range(count):
                    unit = request
                    if count > 1:
                        prompt = variation_prompt(request.prompt, index)
                        unit = request.model_copy(update={"prompt": prompt})
                    submitted = await self._create_unit(
                        session,
                        unit,
                        base=request,
                        session_id=session_id,
                        user_id=user_id,
                        topic=topic,
                        api_key=api_key,
                    )
                    if submitted is None:
                        failed += 1
                    else:
                        created.append(submitted)
            except Exception:
                await session.rollback()
                log.exception("provider_pipeline_aborted", created=len(created))
                failed = count - len(created)

            await repository.finalize_session_creation(
                session, session_id, created_count=len(created)
            )
            await session.commit()

        log.info(
            "provider_submission_completed",
            session_id=session_id,
            created=len(created),
            failed=failed,
        )
        return SubmissionResult(
            session_id=session_id,
            provider=request.provider,
            tasks=created,
            requested_count=count,
            failed_count=failed,
        )

    async def _create_unit(
        self,
        session: AsyncSession,
        unit: GenerationRequest,
        *,
        base: GenerationRequest,
        session_id: int,
        user_id: int,
        topic: str | None,
        api_key: str | None,
    ) -> SubmittedTask | None:
        outcome = await self._provider_client.submit(unit, api_key=api_key)
        if outcome.task_id is None:
            return None

        try:
            task = await repository.create_task(
                session,
                session_id=session_id,
                user_id=user_id,
                external_task_id=outcome.task_id,
                prompt=unit.prompt,
                base_prompt=base.prompt,
                topic=topic,
                request=base,
            )
            await session.commit()
        except SQLAlchemyError:
            await session.rollback()
            self._log.exception(
                "task_record_create_failed",
                provider=base.provider.value,
                external_task_id=outcome.task_id,
            )
            return None

        return SubmittedTask(
            id=task.id,
            external_task_id=task.external_task_id,
            provider=base.provider,
            session_id=session_id,
        )

    async def check_status(
        self,
        external_task_ids: Sequence[str],
        provider_hint: Provider | None = None,
        *,
        user_id: int | None = None,
        api_key: str | None = None,
    ) -> list[TaskStatusResult]:
        """Check a batch of tasks, materializing finished results inline.

        Results follow the order of *external_task_ids*.
        """

        checks = [
            self._check_one(
                external_task_id, provider_hint, user_id=user_id, api_key=api_key
            )
            for external_task_id in external_task_ids
        ]
        return list(await asyncio.gather(*checks))

    async def _load_snapshot(self, external_task_id: str) -> _TaskSnapshot | None:
        async with self._session_factory() as session:
            task = await repository.get_task_by_external_id(session, external_task_id)
            if task is None:
                return None
            return _TaskSnapshot(
                id=task.id,
                user_id=task.user_id,
                provider=task.provider,
                state=task.state,
                result_url=task.result_url,
                failure_reason=task.failure_reason,
            )

    async def _check_one(
        self,
        external_task_id: str,
        provider_hint: Provider | None,
        *,
        user_id: int | None,
        api_key: str | None,
    ) -> TaskStatusResult:
        snapshot = await self._load_snapshot(external_task_id)
        foreign = snapshot is not None and user_id not in (None, snapshot.user_id)
        if foreign:
            snapshot = None
            provider_hint = None

        if snapshot is not None:
            if snapshot.state is TaskState.SUCCEEDED and snapshot.result_url:
                return TaskStatusResult(
                    external_task_id=external_task_id,
                    state=TaskState.SUCCEEDED,
                    result_url=snapshot.result_url,
                )
            if snapshot.state is TaskState.FAILED:
                return TaskStatusResult(
                    external_task_id=external_task_id,
                    state=TaskState.FAILED,
                    error=snapshot.failure_reason,
                )

        provider = snapshot.provider if snapshot is not None else provider_hint
        if provider is None:
            return TaskStatusResult(
                external_task_id=external_task_id, error=TASK_NOT_FOUND
            )

        log = self._log.bind(
            external_task_id=external_task_id, provider=provider.value
        )
        try:
            status = await self._provider_client.fetch_status(
                external_task_id, provider, api_key=api_key
            )
        except TransientStatusError as exc:
            log.warning("status_check_failed", error=str(exc))
            return TaskStatusResult(
                external_task_id=external_task_id,
                state=snapshot.state if snapshot is not None else None,
                error=str(exc),
            )

        if snapshot is None:
            return TaskStatusResult(
                external_task_id=external_task_id,
                state=status.state,
                result_url=status.result_urls[0] if status.result_urls else None,
                error=(
                    status.failure_message
                    if status.state is TaskState.FAILED
                    else None
                ),
            )

        payload = dict(status.payload)

        if status.state is TaskState.FAILED:
            failure = await self._materializer.record_failure(
                snapshot.id, status.failure_message, provider_payload=payload
            )
            return TaskStatusResult(
                external_task_id=external_task_id,
                state=TaskState.FAILED,
                error=failure.reason,
            )

        if status.state is TaskState.SUCCEEDED:
            if not status.result_urls:
                log.warning("succeeded_without_results")
                return TaskStatusResult(
                    external_task_id=external_task_id,
                    state=TaskState.SUCCEEDED,
                    error=NO_RESULT_URLS,
                )
            result = await self._materializer.materialize(
                snapshot.id, status.result_urls[0], provider_payload=payload
            )
            if result.result_url is None:
                return TaskStatusResult(
                    external_task_id=external_task_id, state=TaskState.PROCESSING
                )
            return TaskStatusResult(
                external_task_id=external_task_id,
                state=TaskState.SUCCEEDED,
                result_url=result.result_url,
            )

        if status.state is TaskState.PROCESSING:
            async with session_scope(self._session_factory) as session:
                await repository.mark_task_processing(
                    session, snapshot.id, provider_payload=payload
                )
            return TaskStatusResult(
                external_task_id=external_task_id, state=TaskState.PROCESSING
            )

        # Provider still reports queued; the persisted state never regresses.
        return TaskStatusResult(
            external_task_id=external_task_id, state=snapshot.state
        )

    async def poll_until_complete(
        self,
        external_task_id: str,
        provider: Provider,
        on_progress: ProgressCallback | None = None,
        *,
        api_key: str | None = None,
    ) -> PollOutcome:
        """Block until the provider settles the task or the attempt budget ends."""

        return await self._poller.poll(
            external_task_id, provider, on_progress, api_key=api_key
        )
