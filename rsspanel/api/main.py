"""
rsspanel.api.main — FastAPI application factory
================================================

The shard manager builds the app once every shard has finished
initializing and hands it the engine and cache mirror it already owns.
For local development the factory can also build its own::

    uvicorn --factory rsspanel.api.main:create_app --reload --port 8081
"""

from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.httpsredirect import HTTPSRedirectMiddleware
from fastapi.responses import FileResponse
from sqlalchemy import Engine
from starlette.datastructures import Headers
from starlette.staticfiles import StaticFiles
from starlette.types import ASGIApp, Message, Receive, Scope, Send

load_dotenv()

from rsspanel.api.auth import router as auth_router  # noqa: E402
from rsspanel.api.errors import error_response, install_error_handlers  # noqa: E402
from rsspanel.api.routes.feeds import router as feeds_router  # noqa: E402
from rsspanel.api.routes.guilds import router as guilds_router  # noqa: E402
from rsspanel.api.routes.public import router as public_router  # noqa: E402
from rsspanel.api.routes.users import router as users_router  # noqa: E402
from rsspanel.cache.client import connect_redis  # noqa: E402
from rsspanel.cache.mirror import CacheMirror  # noqa: E402
from rsspanel.config import PanelConfig, load_config  # noqa: E402
from rsspanel.database.engine import create_db_engine  # noqa: E402

logger = logging.getLogger(__name__)
access_logger = logging.getLogger("rsspanel.access")

MAX_BODY_BYTES = 2 * 1024 * 1024
CLIENT_BUILD_DIR = Path(os.getenv("CLIENT_BUILD_DIR", "client/build"))


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "-"


class BodySizeLimitMiddleware:
    """Reject request bodies over *max_bytes* with 413.

    A declared ``Content-Length`` is checked up front; chunked bodies are
    counted as they are received and abort once they cross the limit.
    """

    def __init__(self, app: ASGIApp, max_bytes: int) -> None:
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        length = Headers(scope=scope).get("content-length")
        if length and length.isdigit() and int(length) > self.max_bytes:
            await error_response(413, "Request body too large")(scope, receive, send)
            return

        received = 0

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_bytes:
                    raise HTTPException(413, "Request body too large")
            return message

        await self.app(scope, limited_receive, send)


def create_app(
    config: PanelConfig | None = None,
    engine: Engine | None = None,
    mirror: CacheMirror | None = None,
) -> FastAPI:
    """Build the dashboard API.

    Anything not passed in is created from ``config.yaml`` /
    ``RSSPANEL_CONFIG`` and the environment.
    """
    if config is None:
        config = load_config(os.getenv("RSSPANEL_CONFIG", "config.yaml"))
    if engine is None:
        engine = create_db_engine(config.database.uri)
    if mirror is None:
        mirror = CacheMirror(connect_redis(config.redis.uri), config.redis.prefix)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Dashboard API started — engine ready (%s)", engine.url.database)
        yield
        logger.info("Dashboard API shutting down")

    app = FastAPI(title="RSS Panel API", version="1.0.0", lifespan=lifespan)
    app.state.config = config
    app.state.engine = engine
    app.state.mirror = mirror

    install_error_handlers(app)

    # Middleware (last added runs first)
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    if config.http.frontend_origin:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[config.http.frontend_origin.rstrip("/")],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    if config.https.enabled:
        app.add_middleware(HTTPSRedirectMiddleware)
    app.add_middleware(BodySizeLimitMiddleware, max_bytes=MAX_BODY_BYTES)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        parts = [_client_ip(request)]
        identity = getattr(request.state, "identity", None)
        if identity:
            parts.append(f"(U: {identity.get('id')}, {identity.get('username')})")
        parts += [
            request.method,
            request.url.path,
            str(response.status_code),
            response.headers.get("content-length", "-"),
            "-",
            f"{elapsed_ms:.3f}",
            "ms",
        ]
        access_logger.info(" ".join(parts))
        return response

    # Routers
    app.include_router(auth_router)
    app.include_router(public_router, prefix="/api")
    app.include_router(users_router, prefix="/api")
    app.include_router(guilds_router, prefix="/api")
    app.include_router(feeds_router, prefix="/api")

    @app.get("/api/health")
    def health():
        return {"status": "ok"}

    # Prebuilt front end, with index.html for client-side routes
    if CLIENT_BUILD_DIR.exists():
        build_dir = CLIENT_BUILD_DIR.resolve()
        index_file = build_dir / "index.html"
        app.mount(
            "/static",
            StaticFiles(directory=str(build_dir / "static"), check_dir=False),
            name="static",
        )

        @app.get("/{path:path}", include_in_schema=False)
        def spa(path: str):
            if path.startswith("api/"):
                raise HTTPException(404, "Not Found")
            candidate = (build_dir / path).resolve()
            if path and candidate.is_file() and build_dir in candidate.parents:
                return FileResponse(candidate)
            return FileResponse(index_file)

    return app
