from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from .client import ProviderClient, ProviderStatus
from .enums import Provider, TaskState
from .exceptions import CredentialsRejectedError, TransientStatusError
from .logging import get_logger
from .materializer import FAILURE_PLACEHOLDER
from .schemas import PollOutcome

DEFAULT_MAX_ATTEMPTS = 60
TIMEOUT_MESSAGE = "Task timed out"

# (last attempt number, seconds to wait after it); attempts past the table use
# the final cap.
BACKOFF_SCHEDULE: tuple[tuple[int, float], ...] = (
    (2, 2.0),
    (5, 3.0),
    (10, 5.0),
    (15, 8.0),
)
BACKOFF_CAP_SECONDS = 10.0

ProgressCallback = Callable[[TaskState, int], None]
SleepFunc = Callable[[float], Awaitable[None]]


def backoff_delay(attempt: int) -> float:
    """Seconds to wait after *attempt* (1-based) before polling again."""

    for last_attempt, delay in BACKOFF_SCHEDULE:
        if attempt <= last_attempt:
            return delay
    return BACKOFF_CAP_SECONDS


class PollingCoordinator:
    """Blocks until a provider job reaches a terminal state or the budget ends."""

    def __init__(
        self,
        provider_client: ProviderClient,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self._provider_client = provider_client
        self._max_attempts = max_attempts
        self._sleep = sleep
        self._log = get_logger(__name__)

    async def poll(
        self,
        external_task_id: str,
        provider: Provider,
        on_progress: ProgressCallback | None = None,
        *,
        api_key: str | None = None,
    ) -> PollOutcome:
        log = self._log.bind(
            external_task_id=external_task_id, provider=provider.value
        )
        last_state = TaskState.QUEUED

        for attempt in range(1, self._max_attempts + 1):
            status: ProviderStatus | None = None
            try:
                status = await self._provider_client.fetch_status(
                    external_task_id, provider, api_key=api_key
                )
            except CredentialsRejectedError as exc:
                log.warning(
                    "poll_credentials_rejected", attempt=attempt, error=str(exc)
                )
                self._notify(on_progress, last_state, attempt)
                return PollOutcome(
                    success=False,
                    error=str(exc),
                    attempts=attempt,
                    state=last_state,
                )
            except TransientStatusError as exc:
                log.warning("poll_attempt_failed", attempt=attempt, error=str(exc))
            else:
                last_state = status.state

            self._notify(on_progress, last_state, attempt)

            if status is not None and status.state is TaskState.SUCCEEDED:
                return PollOutcome(
                    success=True,
                    urls=list(status.result_urls),
                    attempts=attempt,
                    state=TaskState.SUCCEEDED,
                )
            if status is not None and status.state is TaskState.FAILED:
                return PollOutcome(
                    success=False,
                    error=status.failure_message or FAILURE_PLACEHOLDER,
                    attempts=attempt,
                    state=TaskState.FAILED,
                )
            if attempt < self._max_attempts:
                await self._sleep(backoff_delay(attempt))

        log.warning("poll_timed_out", attempts=self._max_attempts)
        return PollOutcome(
            success=False,
            error=TIMEOUT_MESSAGE,
            attempts=self._max_attempts,
            timed_out=True,
            state=last_state,
        )

    def _notify(
        self, on_progress: ProgressCallback | None, state: TaskState, attempt: int
    ) -> None:
        if on_progress is None:
            return
        try:
            on_progress(state, attempt)
        except Exception:
            self._log.exception("poll_progress_callback_failed", attempt=attempt)
