"""
rsspanel.api.errors — Generic JSON error handler
=================================================

Every error response has the same shape::

    {"code": 404, "message": "Unknown feed"}

Downstream Discord failures keep their upstream status; anything else
unhandled is logged and becomes a 500.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from rsspanel.services.discord_api import DiscordResponseError

logger = logging.getLogger(__name__)


def error_response(status_code: int, message, headers: dict | None = None, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({"code": status_code, "message": message, **extra}),
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(exc.status_code, exc.detail, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(400, "Validation failed", errors=exc.errors())


async def discord_exception_handler(request: Request, exc: DiscordResponseError) -> JSONResponse:
    message = exc.body.get("message") if isinstance(exc.body, dict) else None
    return error_response(exc.status, message or str(exc))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return error_response(500, "Internal Server Error")


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(DiscordResponseError, discord_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
