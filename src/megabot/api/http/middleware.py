"""Middleware and exception mapping for the HTTP API."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from megabot.errors import (
    AgentNotFoundError,
    MegabotError,
    ModelNotFoundError,
    RoutingError,
    ScheduleError,
    TaskNotFoundError,
)

logger = logging.getLogger(__name__)


def setup_cors(app: FastAPI) -> None:
    """Configure CORS middleware for local development."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173",  # Vite dev server
            "http://127.0.0.1:5173",
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def _status_for(exc: MegabotError) -> int:
    if isinstance(exc, ModelNotFoundError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, RoutingError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(exc, (AgentNotFoundError, TaskNotFoundError)):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ScheduleError):
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def setup_error_handlers(app: FastAPI) -> None:
    """Map domain errors to HTTP responses."""

    @app.exception_handler(MegabotError)
    async def megabot_error(request: Request, exc: MegabotError) -> JSONResponse:
        code = _status_for(exc)
        if code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=code,
            content={"error": type(exc).__name__, "detail": str(exc)},
        )

    @app.exception_handler(ValueError)
    async def value_error(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Validation Error", "detail": str(exc)},
        )
