"""Tunnel FastAPI application factory.

The create_app() factory is the single entry point for building the tunnel
ASGI application. It wires middleware (request-ID, metrics, request logging,
CORS), the proxy and admin routers, and the shared blocklist store and
upstream HTTP client.

Usage:
    # Production
    settings = TunnelSettings.from_env()
    app = create_app(settings)

    # Testing (full DI control)
    store = BlocklistStore(tmp_path / "blocklist.json")
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    app = create_app(settings, store=store, http_client=client)
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from .blocklist.store import BlocklistStore
from .errors import AuthError, TunnelError
from .observability.logging import get_logger
from .observability.metrics import metrics_text
from .observability.middleware import (
    MetricsMiddleware,
    RequestIdMiddleware,
    RequestLoggingMiddleware,
)
from .routes.admin import create_admin_router
from .routing.proxy import create_proxy_router
from .settings import TunnelSettings

logger = get_logger(__name__)


async def _tunnel_error_handler(request: Request, exc: TunnelError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_content(),
        headers=headers,
    )


def create_app(
    settings: TunnelSettings | None = None,
    *,
    store: BlocklistStore | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """Create a configured tunnel FastAPI application.

    Args:
        settings: Application settings. Defaults to ``TunnelSettings.from_env()``.
        store: Blocklist store override. When None, the store is loaded
            from ``settings.blocklist_path``.
        http_client: Upstream client override. When None, the app creates
            one and closes it on shutdown.

    Raises:
        ValueError: If settings validation fails.
        BlocklistLoadError: If the blocklist file exists but is unreadable.
    """
    if settings is None:
        settings = TunnelSettings.from_env()

    errors = settings.validate()
    if errors:
        raise ValueError(
            "Tunnel settings validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    if store is None:
        store = BlocklistStore.open(settings.blocklist_path)

    owns_client = http_client is None
    if http_client is None:
        http_client = httpx.AsyncClient()

    started_at = time.monotonic()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "tunnel_started",
            environment=settings.environment,
            posthog_host=settings.posthog_host,
            posthog_assets_host=settings.posthog_assets_host,
            tls=settings.use_tls,
            blocked_identifiers=len(store.data.entries),
            global_blocked_domains=len(store.data.global_blocked_domains),
        )
        try:
            yield
        finally:
            if owns_client:
                await http_client.aclose()
            logger.info("tunnel_shutdown")

    app = FastAPI(
        title="PostHog Tunnel",
        description="Blocklist-enforcing forwarding gateway for PostHog ingestion",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.store = store
    app.state.http_client = http_client

    app.add_exception_handler(TunnelError, _tunnel_error_handler)

    # ── Middleware stack (applied in reverse order) ──────────────
    # Order of execution: RequestID -> Metrics -> Logging -> CORS -> route handler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # ── Routes ──────────────────────────────────────────────────

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        return "PostHog Tunnel is running"

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "uptime": round(time.monotonic() - started_at, 3),
        }

    @app.get("/metrics")
    async def metrics():
        body, content_type = metrics_text()
        return Response(content=body, media_type=content_type)

    app.include_router(create_proxy_router())
    app.include_router(create_admin_router())

    return app


# For uvicorn, use --factory flag:
#   uvicorn posthog_tunnel.main:create_app --factory
# This avoids executing create_app() at import time.
