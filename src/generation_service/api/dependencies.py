from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..bootstrap import RuntimeState
from ..orchestrator import GenerationOrchestrator


def get_runtime_state(request: Request) -> RuntimeState:
    return request.app.state.runtime


def get_orchestrator(
    runtime: RuntimeState = Depends(get_runtime_state),
) -> GenerationOrchestrator:
    return runtime.orchestrator


async def get_db_session(
    runtime: RuntimeState = Depends(get_runtime_state),
) -> AsyncIterator[AsyncSession]:
    async with runtime.session_factory() as session:
        yield session


async def get_current_user_id(
    current_user_id: int = Header(
        ...,
        alias="X-User-Id",
        convert_underscores=False,
        description="Authenticated user identifier",
    ),
) -> int:
    return current_user_id


async def get_provider_api_key(
    api_key: str | None = Header(
        None,
        alias="X-Provider-Api-Key",
        convert_underscores=False,
        description="Optional per-request provider credential",
    ),
) -> str | None:
    if api_key is None or not api_key.strip():
        return None
    return api_key.strip()
