from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .mcp.routes import router as mcp_router
from .mcp.tools import ToolRegistry
from .pocketbase_client import PocketBaseClient
from .settings import AppSettings, resolve_base_url

logger = logging.getLogger(__name__)

LOG_NAMES_TO_SYNC = (
    "",
    "pocketbase_mcp",
    "pocketbase_mcp.app",
    "pocketbase_mcp.app.mcp",
    "uvicorn",
    "uvicorn.access",
    "uvicorn.error",
)


def configure_logging(level: str) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    # basicConfig logs to stderr; stdout belongs to the stdio transport
    logging.basicConfig(level=numeric_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    for name in LOG_NAMES_TO_SYNC:
        logging.getLogger(name).setLevel(numeric_level)


def create_app() -> FastAPI:
    settings = AppSettings()
    configure_logging(settings.server.log_level)
    resolve_base_url(settings.pocketbase)
    pocketbase_client = PocketBaseClient(settings.pocketbase)
    tool_registry = ToolRegistry(pocketbase_client, hooks_dir=settings.pocketbase.hooks_dir)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.settings = settings
        app.state.pocketbase_client = pocketbase_client
        app.state.tool_registry = tool_registry
        yield
        await pocketbase_client.close()

    app = FastAPI(
        title="PocketBase MCP Server",
        version="2.1.0",
        description="Model Context Protocol server exposing PocketBase administration and data tools.",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=r"http://(localhost|127\.0\.0\.1)(:\d+)?$",
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/healthz", tags=["health"])
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(mcp_router)
    return app


def main() -> None:  # pragma: no cover
    import uvicorn

    settings = AppSettings()
    uvicorn.run(
        "pocketbase_mcp.app.main:create_app",
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.server.log_level,
        reload=False,
        factory=True,
    )


if __name__ == "__main__":  # pragma: no cover
    main()
