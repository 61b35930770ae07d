from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

from celery import Celery, signals
from celery.utils.dispatch.signal import Signal

from ..bootstrap import initialise, shutdown
from ..config import get_settings
from ..logging import configure_logging

TASK_NAMESPACE = "generation"

T = TypeVar("T", bound=Callable[..., Any])


def _connect_signal(signal: Signal, **connect_kwargs: Any) -> Callable[[T], T]:
    def decorator(func: T) -> T:
        signal.connect(func, **connect_kwargs)
        return func

    return decorator


_settings = get_settings()
configure_logging(_settings.log_level)

celery_app = Celery(
    "generation_worker",
    broker=_settings.celery_broker_url,
    backend=_settings.celery_result_backend,
    include=["generation_service.worker.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    broker_connection_retry_on_startup=True,
    task_default_queue="generation.tasks",
    worker_hijack_root_logger=False,
)

celery_app.conf.task_routes = {
    f"{TASK_NAMESPACE}.poll_generation_task": {"queue": "generation.tasks"},
}


@_connect_signal(signals.worker_init)
def _on_worker_init(**_: object) -> None:
    asyncio.run(initialise())


@_connect_signal(signals.worker_shutdown)
def _on_worker_shutdown(**_: object) -> None:
    asyncio.run(shutdown())
