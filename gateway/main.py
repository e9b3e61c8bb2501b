"""FastAPI application exposing the LLM gateway."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .api import api_router
from .config import get_settings
from .context import GatewayContext

logger = logging.getLogger(__name__)


def create_app(gateway: Optional[GatewayContext] = None) -> FastAPI:
    """Create the application.

    Args:
        gateway: Pre-built context (for testing); built from settings when
            omitted. Either way the app starts and shuts it down.
    """
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        context = gateway or GatewayContext.from_settings(settings)
        await context.start()
        app.state.gateway = context
        try:
            yield
        finally:
            await context.shutdown()

    app = FastAPI(title="LLM Gateway", lifespan=lifespan)
    app.include_router(api_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
