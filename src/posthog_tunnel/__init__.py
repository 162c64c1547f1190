"""PostHog tunnel: a blocklist-enforcing forwarding gateway for PostHog ingestion."""

from .main import create_app
from .settings import TunnelSettings

__all__ = ["TunnelSettings", "create_app"]
