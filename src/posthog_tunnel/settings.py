"""Tunnel configuration settings.

TunnelSettings is the single configuration object accepted by create_app().
It is a plain dataclass (not env-coupled) so tests can inject config without
touching os.environ; ``from_env`` is the production entry point.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

ENVIRONMENTS: tuple[str, ...] = ("development", "production", "test")

DEFAULT_POSTHOG_HOST = "eu.i.posthog.com"
DEFAULT_POSTHOG_ASSETS_HOST = "eu-assets.i.posthog.com"
DEFAULT_CORS_ORIGINS: tuple[str, ...] = ("*",)


@dataclass(frozen=True, slots=True)
class TunnelSettings:
    """Configuration for the tunnel FastAPI application."""

    # ── Environment ────────────────────────────────────────────────
    environment: str = "development"
    """One of: development, production, test."""

    # ── Admin ──────────────────────────────────────────────────────
    admin_api_key: str = ""
    """Bearer token for /admin routes. Never log this."""

    # ── Upstreams ──────────────────────────────────────────────────
    posthog_host: str = DEFAULT_POSTHOG_HOST
    """Ingestion host that /ingest/* is forwarded to."""

    posthog_assets_host: str = DEFAULT_POSTHOG_ASSETS_HOST
    """Static-assets host that /static/* is forwarded to."""

    # ── Storage ────────────────────────────────────────────────────
    blocklist_path: Path = Path("blocklist.json")

    # ── Server ─────────────────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 3010
    ssl_cert_path: str | None = None
    ssl_key_path: str | None = None

    # ── CORS ───────────────────────────────────────────────────────
    cors_origins: tuple[str, ...] = DEFAULT_CORS_ORIGINS
    """The browser SDK posts from arbitrary customer sites."""

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def use_tls(self) -> bool:
        return bool(self.ssl_cert_path and self.ssl_key_path)

    def validate(self) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        if not self.admin_api_key:
            errors.append("admin_api_key is required (ADMIN_API_KEY)")
        if self.environment not in ENVIRONMENTS:
            errors.append(
                f"environment must be one of {', '.join(ENVIRONMENTS)}, "
                f"got {self.environment!r}"
            )
        if bool(self.ssl_cert_path) != bool(self.ssl_key_path):
            errors.append("ssl_cert_path and ssl_key_path must be set together")
        for label, path in (("ssl_cert_path", self.ssl_cert_path), ("ssl_key_path", self.ssl_key_path)):
            if path and not Path(path).exists():
                errors.append(f"{label} not found: {path}")
        if not 0 < self.port < 65536:
            errors.append(f"port out of range: {self.port}")
        return errors

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> TunnelSettings:
        """Build settings from environment variables.

        Empty values are treated as unset.
        """
        if env is None:
            env = os.environ

        def get(name: str, default: str | None = None) -> str | None:
            value = env.get(name, "").strip()
            return value or default

        cors_raw = get("CORS_ORIGINS")
        cors = tuple(o.strip() for o in cors_raw.split(",") if o.strip()) if cors_raw else DEFAULT_CORS_ORIGINS

        port_raw = get("PORT", "3010")
        try:
            port = int(port_raw)
        except ValueError:
            raise ValueError(f"PORT must be an integer, got {port_raw!r}") from None

        return cls(
            environment=get("ENV", "development"),
            admin_api_key=get("ADMIN_API_KEY", ""),
            posthog_host=get("POSTHOG_HOST", DEFAULT_POSTHOG_HOST),
            posthog_assets_host=get("POSTHOG_ASSETS_HOST", DEFAULT_POSTHOG_ASSETS_HOST),
            blocklist_path=Path(get("BLOCKLIST_PATH", "blocklist.json")),
            host=get("HOST", "0.0.0.0"),
            port=port,
            ssl_cert_path=get("SSL_CERT_PATH"),
            ssl_key_path=get("SSL_KEY_PATH"),
            cors_origins=cors,
        )
