"""Structured logging for the tunnel.

Every line is a structlog event: JSON in production, console output for
local runs. Each event carries ``service``, the request ID of the request
being handled (when there is one), and never the admin key.

Usage::

    from posthog_tunnel.observability.logging import configure_logging, get_logger

    configure_logging()  # once, before the app is built
    logger = get_logger(__name__)
    logger.info("proxy_blocked", route="ingest", reason="identifier blocked: phc_x")
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping
from contextvars import ContextVar

import structlog

SERVICE_NAME = "posthog-tunnel"

# Event keys whose values are replaced before rendering.
REDACTED_KEYS: frozenset[str] = frozenset({"authorization", "admin_api_key"})
REDACTED = "[redacted]"

# Set by RequestIdMiddleware for the lifetime of one request.
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

_configured = False


def _add_service(logger, method_name: str, event_dict: dict) -> dict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def _add_request_id(logger, method_name: str, event_dict: dict) -> dict:
    rid = request_id_ctx.get()
    if rid is not None:
        event_dict.setdefault("request_id", rid)
    return event_dict


def _redact_secrets(logger, method_name: str, event_dict: dict) -> dict:
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = REDACTED
    return event_dict


def _resolve_options(
    level: str | None,
    json_output: bool | None,
    env: Mapping[str, str],
) -> tuple[int, bool]:
    name = (level or env.get("LOG_LEVEL") or "INFO").upper()
    if json_output is None:
        json_output = (env.get("LOG_FORMAT") or "json").lower() == "json"
    return getattr(logging, name, logging.INFO), json_output


def configure_logging(
    *,
    level: str | None = None,
    json_output: bool | None = None,
    env: Mapping[str, str] | None = None,
) -> None:
    """Route structlog and stdlib logging through one stdout handler.

    Args:
        level: Log level name. Falls back to ``LOG_LEVEL``, then INFO.
        json_output: JSON lines when True, console output when False.
            Falls back to ``LOG_FORMAT`` (``json`` or ``console``).
        env: Environment mapping, ``os.environ`` by default.

    Only the first call has an effect.
    """
    global _configured
    if _configured:
        return
    _configured = True

    log_level, json_output = _resolve_options(
        level, json_output, os.environ if env is None else env,
    )

    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        _add_service,
        _add_request_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _redact_secrets,
    ]

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    # foreign_pre_chain gives uvicorn's stdlib records the same shape.
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)

    # request_completed already covers what uvicorn.access would print.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
