"""Translate domain errors into HTTP responses."""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.services.errors import (
    ChatTurnCancelled,
    HabitValidationError,
    InterpreterError,
    InterpreterUnavailableError,
    NotFoundError,
)

logger = logging.getLogger(__name__)

# Non-standard, as used by nginx for "client closed request".
CLIENT_CLOSED_REQUEST = 499


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(HabitValidationError)
    async def validation_error_handler(request: Request, exc: HabitValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": exc.message, "field": exc.field})

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": exc.message})

    @app.exception_handler(InterpreterUnavailableError)
    async def interpreter_unavailable_handler(request: Request, exc: InterpreterUnavailableError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": exc.message})

    @app.exception_handler(InterpreterError)
    async def interpreter_error_handler(request: Request, exc: InterpreterError) -> JSONResponse:
        logger.warning("Interpreter failure on %s: %s", request.url.path, exc.message)
        return JSONResponse(status_code=502, content={"detail": exc.message})

    @app.exception_handler(ChatTurnCancelled)
    async def cancelled_handler(request: Request, exc: ChatTurnCancelled) -> JSONResponse:
        logger.info("Chat turn cancelled before commit")
        return JSONResponse(status_code=CLIENT_CLOSED_REQUEST, content={"detail": exc.message})
