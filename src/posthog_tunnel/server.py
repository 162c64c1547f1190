"""Run the tunnel server (``posthog-tunnel``)."""
from __future__ import annotations

import argparse
import sys

import uvicorn

from .errors import BlocklistLoadError
from .main import create_app
from .observability.logging import configure_logging, get_logger
from .settings import TunnelSettings

logger = get_logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="posthog-tunnel")
    parser.add_argument("--host", default=None, help="Bind address (default: HOST or 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (default: PORT or 3010)")
    parser.add_argument("--log-level", default=None)
    parser.add_argument(
        "--json-logs",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="JSON log lines (default: LOG_FORMAT == json)",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(level=args.log_level, json_output=args.json_logs)

    try:
        settings = TunnelSettings.from_env()
        app = create_app(settings)
    except (ValueError, BlocklistLoadError) as e:
        logger.error("tunnel_startup_failed", error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1

    uvicorn.run(
        app,
        host=args.host or settings.host,
        port=args.port or settings.port,
        ssl_certfile=settings.ssl_cert_path,
        ssl_keyfile=settings.ssl_key_path,
        log_config=None,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
