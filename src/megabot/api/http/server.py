"""FastAPI server for the megabot HTTP API."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI

from megabot import __version__
from megabot.api.service import MegabotService
from megabot.config.settings import Settings

from .dependencies import get_service, set_service
from .middleware import setup_cors, setup_error_handlers
from .routes import agents, chat, conversations, events, tasks
from .schemas import HealthResponse


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle (startup/shutdown)."""
    # Startup
    service = MegabotService(app.state.settings)
    await service.initialize(start_scheduler=app.state.scheduler)
    set_service(service)

    yield

    # Shutdown
    await service.shutdown()
    set_service(None)


def create_app(settings: Settings, scheduler: bool = True) -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title="megabot API",
        description="HTTP API for the megabot personal-assistant runtime",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.scheduler = scheduler

    setup_cors(app)
    setup_error_handlers(app)

    app.include_router(chat.router)
    app.include_router(conversations.router)
    app.include_router(agents.router)
    app.include_router(tasks.router)
    app.include_router(events.router)

    @app.get("/api/health", response_model=HealthResponse)
    async def health(service: MegabotService = Depends(get_service)) -> HealthResponse:
        return HealthResponse(
            status="ok",
            version=__version__,
            llm_plugins=[p.id for p in service.app.plugins.llm_plugins()],
            tools=len(service.app.tool_registry.list()),
        )

    return app


async def run_server(
    host: str = "127.0.0.1",
    port: int = 8080,
    settings: Settings | None = None,
    scheduler: bool = True,
) -> None:
    """Run the FastAPI server with uvicorn."""
    import uvicorn

    if settings is None:
        settings = Settings.load()

    app = create_app(settings, scheduler=scheduler)

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info",
        access_log=True,
    )
    server = uvicorn.Server(config)
    await server.serve()


if __name__ == "__main__":
    asyncio.run(run_server())
