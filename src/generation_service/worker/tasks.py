from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, ParamSpec, Protocol, TypeVar, cast

from celery.result import AsyncResult

from .. import bootstrap
from ..enums import Provider, TaskState
from ..logging import get_logger
from .celery_app import TASK_NAMESPACE, celery_app

logger = get_logger(__name__)

P = ParamSpec("P")
R_co = TypeVar("R_co", covariant=True)


class RegisteredTask(Protocol[P, R_co]):
    name: str

    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> R_co: ...

    def delay(self, *args: P.args, **kwargs: P.kwargs) -> AsyncResult[R_co]: ...


def typed_task(
    *, name: str
) -> Callable[[Callable[P, R_co]], RegisteredTask[P, R_co]]:
    raw_decorator = celery_app.task(name=name)
    return cast(Callable[[Callable[P, R_co]], RegisteredTask[P, R_co]], raw_decorator)


async def _poll_and_materialize(
    external_task_id: str, provider: Provider
) -> dict[str, Any]:
    orchestrator = bootstrap.get_runtime().orchestrator
    outcome = await orchestrator.poll_until_complete(external_task_id, provider)
    summary: dict[str, Any] = {
        "external_task_id": external_task_id,
        "provider": provider.value,
        "attempts": outcome.attempts,
        "timed_out": outcome.timed_out,
        "state": outcome.state.value if outcome.state else None,
        "result_url": None,
        "error": outcome.error,
    }
    if outcome.timed_out:
        return summary

    # Persists the terminal state and copies the result into durable storage.
    (status,) = await orchestrator.check_status([external_task_id], provider)
    summary["state"] = status.state.value if status.state else None
    summary["result_url"] = status.result_url
    summary["error"] = status.error
    return summary


@typed_task(name=f"{TASK_NAMESPACE}.poll_generation_task")
def poll_generation_task(external_task_id: str, provider: str) -> dict[str, Any]:
    """Wait for a provider job to settle and record its outcome."""

    result = asyncio.run(_poll_and_materialize(external_task_id, Provider(provider)))
    if result["timed_out"]:
        logger.warning("generation-poll-timed-out", details=result)
    elif result["state"] == TaskState.SUCCEEDED.value:
        logger.info("generation-task-completed", details=result)
    elif result["state"] == TaskState.FAILED.value:
        logger.warning("generation-task-failed", details=result)
    else:
        logger.warning("generation-task-unsettled", details=result)
    return result
