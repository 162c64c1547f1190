"""Outbound forwarding to the PostHog ingestion and assets hosts.

The forwarder:

1. Builds ``https://{target_host}{path}?{query}``. The host always comes
   from settings, never from the caller, so the tunnel cannot be used as an
   open proxy.
2. Relays only an allow-list of request headers. Everything else (cookies,
   Authorization with the admin key, X-Forwarded-*) stays on this side.
3. Sends the body for POST only. The body is either the untouched request
   stream or the bytes already buffered for identifier extraction.
4. Opens the upstream response in streaming mode so it can be relayed to
   the caller without buffering.

No retries or timeout overrides: transport failures propagate to the caller.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, Mapping

import httpx

from .extraction import BODY_METHOD

# Request headers relayed upstream. Lowercase; matching is case-insensitive.
FORWARD_REQUEST_HEADERS: tuple[str, ...] = (
    "content-type",
    "user-agent",
    "accept",
    "accept-encoding",
)

# Headers that should NOT be relayed back (hop-by-hop, RFC 7230 section 6.1).
HOP_BY_HOP_HEADERS: frozenset[str] = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
})

RequestBody = bytes | AsyncIterable[bytes] | None


def build_target_url(target_host: str, path: str, query_string: str = "") -> str:
    qs = f"?{query_string}" if query_string else ""
    return f"https://{target_host}{path}{qs}"


def select_forward_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Pick the allow-listed headers out of the inbound request."""
    lowered = {key.lower(): value for key, value in headers.items()}
    forwarded: dict[str, str] = {}
    for name in FORWARD_REQUEST_HEADERS:
        value = lowered.get(name)
        if value:
            forwarded[name] = value
    return forwarded


def filter_response_headers(headers: httpx.Headers) -> dict[str, str]:
    """Drop hop-by-hop headers from the upstream response."""
    return {
        key: value
        for key, value in headers.items()
        if key.lower() not in HOP_BY_HOP_HEADERS
    }


async def forward_request(
    client: httpx.AsyncClient,
    *,
    target_host: str,
    method: str,
    path: str,
    query_string: str,
    headers: Mapping[str, str],
    body: RequestBody = None,
) -> httpx.Response:
    """Send the request upstream and return the still-open streaming response.

    The caller owns the response and must ``aclose()`` it once relayed.
    """
    request = client.build_request(
        method,
        build_target_url(target_host, path, query_string),
        headers=select_forward_headers(headers),
        content=body if method.upper() == BODY_METHOD else None,
    )
    return await client.send(request, stream=True, follow_redirects=False)
