from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from ..enums import Provider
from ..schemas import GenerationRequest

BodyBuilder = Callable[[GenerationRequest, str | None], dict[str, Any]]
ResultExtractor = Callable[[Mapping[str, Any]], list[str]]


@dataclass(frozen=True, slots=True)
class ProviderInfo:
    name: str
    description: str
    pricing: str


@dataclass(frozen=True, slots=True)
class ProviderAdapter:
    """Everything needed to talk to one provider's task API."""

    provider: Provider
    submit_path: str
    build_body: BodyBuilder
    status_path: str
    status_field: str
    failure_fields: tuple[str, ...]
    extract_results: ResultExtractor
    info: ProviderInfo
    task_id_path: tuple[str, ...] = ("data", "taskId")

    def read_task_id(self, payload: Any) -> str | None:
        node: Any = payload
        for key in self.task_id_path:
            if not isinstance(node, Mapping):
                return None
            node = node.get(key)
        if isinstance(node, int | float) and not isinstance(node, bool):
            node = str(node)
        if not isinstance(node, str) or not node.strip():
            return None
        return node.strip()

    def read_status(self, data: Mapping[str, Any]) -> str | None:
        value = data.get(self.status_field)
        return value if isinstance(value, str) else None

    def read_failure(self, data: Mapping[str, Any]) -> str | None:
        for field in self.failure_fields:
            value = data.get(field)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None
