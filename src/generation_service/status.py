"""Mapping of provider status vocabularies onto :class:`TaskState`."""

from __future__ import annotations

from collections.abc import Mapping

from .enums import Provider, TaskState
from .logging import get_logger

_log = get_logger(__name__)

JOBS_API_VOCABULARY: Mapping[str, TaskState] = {
    "waiting": TaskState.QUEUED,
    "queuing": TaskState.QUEUED,
    "generating": TaskState.PROCESSING,
    "success": TaskState.SUCCEEDED,
    "fail": TaskState.FAILED,
}

GPT4O_VOCABULARY: Mapping[str, TaskState] = {
    "pending": TaskState.QUEUED,
    "processing": TaskState.PROCESSING,
    "completed": TaskState.SUCCEEDED,
    "SUCCESS": TaskState.SUCCEEDED,
    "failed": TaskState.FAILED,
    "FAILED": TaskState.FAILED,
}

_VOCABULARIES: Mapping[Provider, Mapping[str, TaskState]] = {
    Provider.NANO_BANANA: JOBS_API_VOCABULARY,
    Provider.NANO_BANANA_PRO: JOBS_API_VOCABULARY,
    Provider.GROK_IMAGINE: JOBS_API_VOCABULARY,
    Provider.OPENAI_4O: GPT4O_VOCABULARY,
}

STATUS_TABLE: Mapping[tuple[Provider, str], TaskState] = {
    (provider, raw): state
    for provider, vocabulary in _VOCABULARIES.items()
    for raw, state in vocabulary.items()
}

UNRECOGNISED_STATUS_DEFAULT = TaskState.QUEUED


def normalize_status(provider: Provider, raw_status: str | None) -> TaskState:
    """Return the canonical state for a provider's raw status value.

    Values absent from the table fall back to ``queued`` so polling keeps
    going; every fallback is logged so an unknown vocabulary change is visible.
    """

    if raw_status is not None:
        state = STATUS_TABLE.get((provider, raw_status))
        if state is not None:
            return state
    _log.warning(
        "unrecognised_provider_status",
        provider=provider.value,
        raw_status=raw_status,
        fallback=UNRECOGNISED_STATUS_DEFAULT.value,
    )
    return UNRECOGNISED_STATUS_DEFAULT
