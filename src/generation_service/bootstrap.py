from __future__ import annotations

import asyncio
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from .client import ProviderClient
from .config import GenerationSettings, RuntimeOverrides, get_settings
from .database import create_engine, create_schema, create_session_factory
from .logging import configure_logging, get_logger
from .orchestrator import GenerationOrchestrator
from .storage import InMemoryStorage, MinioStorage, StorageClient


@dataclass(slots=True)
class RuntimeState:
    settings: GenerationSettings
    session_factory: async_sessionmaker[AsyncSession]
    engine: AsyncEngine | None
    storage: StorageClient
    provider_client: ProviderClient
    orchestrator: GenerationOrchestrator


_state: RuntimeState | None = None
_state_lock = asyncio.Lock()
_log = get_logger(__name__)


def _build_storage(settings: GenerationSettings) -> StorageClient:
    if settings.s3_endpoint:
        return MinioStorage.from_settings(settings)
    _log.warning("storage_not_configured", fallback="in-memory")
    return InMemoryStorage()


async def initialise(overrides: RuntimeOverrides | None = None) -> RuntimeState:
    global _state
    async with _state_lock:
        if _state is not None:
            return _state

        overrides = overrides or RuntimeOverrides()
        settings = overrides.settings or get_settings()
        configure_logging(overrides.log_level or settings.log_level)

        managed_engine: AsyncEngine | None = None
        if overrides.session_factory is not None:
            session_factory = overrides.session_factory
        else:
            managed_engine = create_engine(settings.database_url)
            await create_schema(managed_engine)
            session_factory = create_session_factory(managed_engine)

        storage = overrides.storage or _build_storage(settings)
        provider_client = ProviderClient.from_settings(
            settings, http_client=overrides.http_client
        )
        orchestrator = GenerationOrchestrator.from_settings(
            settings,
            session_factory=session_factory,
            provider_client=provider_client,
            storage=storage,
        )

        _state = RuntimeState(
            settings=settings,
            session_factory=session_factory,
            engine=managed_engine,
            storage=storage,
            provider_client=provider_client,
            orchestrator=orchestrator,
        )
        _log.info("generation-runtime-initialised")
        return _state


async def shutdown() -> None:
    global _state
    async with _state_lock:
        if _state is None:
            return
        state = _state
        _state = None

        await state.provider_client.close()
        if state.engine is not None:
            await state.engine.dispose()
        _log.info("generation-runtime-shutdown")


def get_runtime() -> RuntimeState:
    state = _state
    if state is None:
        raise RuntimeError("Generation runtime has not been initialised")
    return state
