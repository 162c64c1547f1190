"""Blocklist-enforced proxy routes: ``/ingest/*`` and ``/static/*``.

Request flow:

1. Try to read the project identifier from the URL (query/path). If found,
   the body is never read and is streamed upstream as-is (fast path).
2. Otherwise, for POST, buffer the body once and look for the identifier in
   JSON fields (slow path). The buffered bytes are what gets forwarded.
3. Resolve the requesting site's hostname from Referer/Origin.
4. Ask the decision engine against the store's current index. A denial
   raises ``BlockedError`` (403) and nothing is sent upstream.
5. Forward and stream the upstream response back unmodified.
"""

from __future__ import annotations

import time

import httpx
from fastapi import APIRouter, Request
from starlette.background import BackgroundTask
from starlette.responses import StreamingResponse

from ..errors import BlockedError, UpstreamError
from ..observability.logging import get_logger
from ..observability.metrics import (
    PROXY_DECISIONS_TOTAL,
    UPSTREAM_DURATION_SECONDS,
    UPSTREAM_ERRORS_TOTAL,
)
from .decision import Deny, decide
from .domain_check import get_request_host
from .extraction import (
    BODY_METHOD,
    extract_from_body,
    extract_from_url,
    first_query_values,
    identifier_from_body,
)
from .forwarder import RequestBody, filter_response_headers, forward_request

logger = get_logger(__name__)

INGEST_PREFIX = "/ingest"

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def raw_request_path(request: Request) -> str:
    """The path exactly as the client sent it, percent-encoding intact.

    ``request.url.path`` is decoded, so forwarding it would turn ``%3F`` into
    a query separator and ``%2F`` into a path separator.
    """
    raw = request.scope.get("raw_path")
    if not raw:
        return request.url.path
    return raw.split(b"?", 1)[0].decode("latin-1")


async def handle_proxy(
    request: Request,
    *,
    route: str,
    target_host: str,
    upstream_path: str,
) -> StreamingResponse:
    """Run extraction, the block decision, and forwarding for one request."""
    store = request.app.state.store
    client: httpx.AsyncClient = request.app.state.http_client
    method = request.method.upper()

    # ── 1/2. Identifier: URL first, body only if needed ─────────
    identifier = extract_from_url(first_query_values(request.url.query), request.url.path)
    body: RequestBody = None
    buffered = False

    if identifier is not None:
        if method == BODY_METHOD:
            body = request.stream()
    elif method == BODY_METHOD:
        raw = await request.body()
        outcome = extract_from_body(method, request.headers.get("content-type"), raw)
        identifier = identifier_from_body(outcome)
        body = raw
        buffered = True

    hostname = get_request_host(request.headers)
    logger.debug(
        "proxy_request",
        route=route,
        method=method,
        identifier=identifier,
        host=hostname,
        buffered=buffered,
    )

    # ── 3/4. Decision against the current index ─────────────────
    decision = decide(store.index, identifier, hostname)
    if isinstance(decision, Deny):
        PROXY_DECISIONS_TOTAL.labels(route=route, decision="deny").inc()
        logger.info("proxy_blocked", route=route, reason=decision.reason)
        raise BlockedError(decision.reason)
    PROXY_DECISIONS_TOTAL.labels(route=route, decision="allow").inc()

    # ── 5. Forward ──────────────────────────────────────────────
    start = time.perf_counter()
    try:
        upstream = await forward_request(
            client,
            target_host=target_host,
            method=method,
            path=upstream_path,
            query_string=request.url.query,
            headers=request.headers,
            body=body,
        )
    except Exception as e:
        UPSTREAM_ERRORS_TOTAL.labels(route=route).inc()
        logger.error(
            "proxy_error",
            route=route,
            target_host=target_host,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise UpstreamError(e) from e

    duration = time.perf_counter() - start
    UPSTREAM_DURATION_SECONDS.labels(route=route).observe(duration)
    logger.debug(
        "proxy_forwarded",
        route=route,
        status=upstream.status_code,
        duration_ms=round(duration * 1000, 2),
    )

    return StreamingResponse(
        upstream.aiter_raw(),
        status_code=upstream.status_code,
        headers=filter_response_headers(upstream.headers),
        background=BackgroundTask(upstream.aclose),
    )


def create_proxy_router() -> APIRouter:
    """Create the ingestion and static-assets proxy router."""
    router = APIRouter(tags=["proxy"])

    @router.api_route("/ingest/{path:path}", methods=PROXY_METHODS)
    async def proxy_ingest(path: str, request: Request) -> StreamingResponse:
        settings = request.app.state.settings
        upstream_path = raw_request_path(request)[len(INGEST_PREFIX):] or "/"
        return await handle_proxy(
            request,
            route="ingest",
            target_host=settings.posthog_host,
            upstream_path=upstream_path,
        )

    @router.get("/static/{path:path}")
    async def proxy_static(path: str, request: Request) -> StreamingResponse:
        settings = request.app.state.settings
        return await handle_proxy(
            request,
            route="static",
            target_host=settings.posthog_assets_host,
            upstream_path=raw_request_path(request),
        )

    return router
