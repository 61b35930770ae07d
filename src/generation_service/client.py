from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from .config import GenerationSettings
from .enums import Provider, TaskState
from .exceptions import (
    CreationFailedError,
    CredentialsRejectedError,
    MissingCredentialsError,
    ResultFetchError,
    TransientStatusError,
)
from .logging import get_logger
from .providers import get_adapter
from .schemas import GenerationRequest
from .status import normalize_status

_log = get_logger(__name__)

_OK = 200
_AUTH_REJECTED = frozenset({401, 403})


@dataclass(slots=True)
class SubmissionOutcome:
    """Either the provider's task id or the reason the submission failed."""

    task_id: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.task_id is not None


@dataclass(slots=True)
class ProviderStatus:
    provider: Provider
    external_task_id: str
    raw_status: str | None
    state: TaskState
    result_urls: list[str] = field(default_factory=list)
    failure_message: str | None = None
    payload: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class FetchedResult:
    content: bytes
    content_type: str | None


def _body_message(body: Any) -> str | None:
    if not isinstance(body, Mapping):
        return None
    for key in ("msg", "message"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
    return None


class ProviderClient:
    """Issues provider submissions and status checks over HTTP.

    The default credential is injected at construction; every call can
    override it with its own key.
    """

    def __init__(
        self,
        *,
        base_url: str,
        default_api_key: str | None = None,
        timeout: float = 30.0,
        callback_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._default_api_key = default_api_key
        self._callback_url = callback_url
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url, timeout=timeout
        )

    @classmethod
    def from_settings(
        cls,
        settings: GenerationSettings,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> ProviderClient:
        return cls(
            base_url=settings.provider_base_url,
            default_api_key=settings.default_api_key(),
            timeout=settings.provider_timeout_seconds,
            callback_url=settings.provider_callback_url,
            http_client=http_client,
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _resolve_api_key(self, api_key: str | None) -> str:
        if api_key and api_key.strip():
            return api_key.strip()
        if self._default_api_key:
            return self._default_api_key
        raise MissingCredentialsError("no provider API key configured")

    @staticmethod
    def _headers(api_key: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    async def submit(
        self, request: GenerationRequest, *, api_key: str | None = None
    ) -> SubmissionOutcome:
        """Create a provider task; failures are returned, never raised."""

        log = _log.bind(provider=request.provider.value)
        try:
            task_id = await self._create_task(request, api_key)
        except CreationFailedError as exc:
            log.warning("provider_submission_failed", error=str(exc))
            return SubmissionOutcome(error=str(exc))
        log.info("provider_task_created", external_task_id=task_id)
        return SubmissionOutcome(task_id=task_id)

    async def _create_task(
        self, request: GenerationRequest, api_key: str | None
    ) -> str:
        adapter = get_adapter(request.provider)
        try:
            key = self._resolve_api_key(api_key)
        except MissingCredentialsError as exc:
            raise CreationFailedError(str(exc)) from exc

        body = adapter.build_body(request, self._callback_url)
        try:
            response = await self._client.post(
                adapter.submit_path, json=body, headers=self._headers(key)
            )
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise CreationFailedError(str(exc) or exc.__class__.__name__) from exc

        if response.status_code != _OK:
            raise CreationFailedError(
                _body_message(payload) or f"HTTP {response.status_code}"
            )
        code = payload.get("code") if isinstance(payload, Mapping) else None
        task_id = adapter.read_task_id(payload)
        if code != _OK or task_id is None:
            raise CreationFailedError(
                _body_message(payload) or "provider returned no task id"
            )
        return task_id

    async def fetch_status(
        self,
        external_task_id: str,
        provider: Provider,
        *,
        api_key: str | None = None,
    ) -> ProviderStatus:
        """Query a task and normalise the answer.

        Raises :class:`TransientStatusError` when the provider cannot be
        reached or answers with something unusable, and its subclass
        :class:`CredentialsRejectedError` when no key is available or the
        provider refuses the one sent.
        """

        adapter = get_adapter(provider)
        try:
            key = self._resolve_api_key(api_key)
        except MissingCredentialsError as exc:
            raise CredentialsRejectedError(str(exc)) from exc

        try:
            response = await self._client.get(
                adapter.status_path,
                params={"taskId": external_task_id},
                headers=self._headers(key),
            )
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise TransientStatusError(
                str(exc) or exc.__class__.__name__
            ) from exc

        body_code = body.get("code") if isinstance(body, Mapping) else None
        if response.status_code in _AUTH_REJECTED or body_code in _AUTH_REJECTED:
            raise CredentialsRejectedError(
                _body_message(body) or f"HTTP {response.status_code}"
            )
        if response.status_code != _OK:
            raise TransientStatusError(
                _body_message(body) or f"HTTP {response.status_code}"
            )
        if not isinstance(body, Mapping) or body.get("code") != _OK:
            raise TransientStatusError(
                _body_message(body) or "Failed to get task status"
            )
        data = body.get("data")
        if not isinstance(data, Mapping):
            raise TransientStatusError("No data in response")

        raw_status = adapter.read_status(data)
        state = normalize_status(provider, raw_status)
        urls = adapter.extract_results(data) if state is TaskState.SUCCEEDED else []
        return ProviderStatus(
            provider=provider,
            external_task_id=external_task_id,
            raw_status=raw_status,
            state=state,
            result_urls=urls,
            failure_message=adapter.read_failure(data),
            payload=dict(data),
        )

    async def download(self, url: str) -> FetchedResult:
        """Fetch provider-hosted result bytes."""

        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ResultFetchError(str(exc) or exc.__class__.__name__) from exc
        if not response.content:
            raise ResultFetchError(f"empty result body from {url}")
        return FetchedResult(
            content=response.content,
            content_type=response.headers.get("content-type"),
        )

    async def validate_api_key(self, api_key: str) -> tuple[bool, str | None]:
        """Probe the status endpoint; only an auth rejection marks a key invalid."""

        adapter = get_adapter(Provider.NANO_BANANA)
        try:
            response = await self._client.get(
                adapter.status_path,
                params={"taskId": "test"},
                headers=self._headers(api_key),
            )
        except httpx.HTTPError as exc:
            _log.warning("api_key_validation_failed", error=str(exc))
            return False, "Failed to validate API key"
        if response.status_code in {401, 403}:
            return False, "Invalid API key"
        return True, None
