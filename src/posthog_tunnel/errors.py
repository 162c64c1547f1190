"""Tunnel error hierarchy.

Every error that can end a request carries its own HTTP status so the app
factory can render all of them through a single exception handler. The
classes stay dependency-free so the blocklist store can raise them without
importing FastAPI.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(eq=False)
class TunnelError(Exception):
    """Base error rendered as ``{"error": message}`` at the request boundary."""

    message: str
    status_code: int = 500

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def to_content(self) -> dict[str, Any]:
        return {"error": self.message}


class ValidationError(TunnelError):
    """400: a required field is missing from an admin request body."""

    def __init__(self, field_name: str) -> None:
        super().__init__(f"Missing {field_name}", 400)
        self.field_name = field_name


class AuthError(TunnelError):
    """401: absent or incorrect admin bearer token."""

    def __init__(self) -> None:
        super().__init__("Unauthorized", 401)


class BlockedError(TunnelError):
    """403: the block decision engine denied the request."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason, 403)
        self.reason = reason


class NotFoundError(TunnelError):
    """404: identifier, global domain, or per-identifier domain is absent."""

    def __init__(self, kind: str, key: str) -> None:
        super().__init__(f"{kind} {key} not found", 404)
        self.kind = kind
        self.key = key


class InternalError(TunnelError):
    """500 with the underlying cause in ``message``."""

    def __init__(self, cause: BaseException | str) -> None:
        super().__init__(str(cause) or type(cause).__name__, 500)

    def to_content(self) -> dict[str, Any]:
        return {"error": "Internal server error", "message": self.message}


class UpstreamError(InternalError):
    """Forwarding to the upstream host raised."""


class PersistenceError(InternalError):
    """Writing the blocklist document to storage failed."""


class BlocklistLoadError(Exception):
    """The blocklist file exists but could not be parsed."""
