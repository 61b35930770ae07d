from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from .. import bootstrap
from ..bootstrap import RuntimeState
from .routes import router


def create_app(runtime: RuntimeState | None = None) -> FastAPI:
    """Build the HTTP surface.

    With an explicit *runtime* the caller owns its lifecycle; otherwise the
    process-wide runtime is initialised on startup and disposed on shutdown.
    """

    logger = structlog.get_logger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if runtime is not None:
            app.state.runtime = runtime
            yield
            return

        app.state.runtime = await bootstrap.initialise()
        logger.info("application_startup")
        try:
            yield
        finally:
            await bootstrap.shutdown()
            logger.info("application_shutdown")

    app = FastAPI(title="Card generation service", lifespan=lifespan)
    if runtime is not None:
        app.state.runtime = runtime
    app.include_router(router)
    return app
