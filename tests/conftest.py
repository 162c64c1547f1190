"""Pytest configuration for posthog_tunnel tests."""
import json
import sys
from pathlib import Path

# Add src/ to path for src-layout imports without an editable install
_SRC = Path(__file__).parent.parent / 'src'
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

import httpx
import pytest

from posthog_tunnel.blocklist.store import BlocklistStore
from posthog_tunnel.main import create_app
from posthog_tunnel.settings import TunnelSettings

ADMIN_KEY = 'test-admin-key'
ADMIN_HEADERS = {'Authorization': f'Bearer {ADMIN_KEY}'}


class StubUpstream:
    """Records every forwarded request and answers with a canned response."""

    def __init__(self, status_code=200, json_body=None, headers=None):
        self.status_code = status_code
        self.json_body = {'ok': True} if json_body is None else json_body
        self.headers = headers or {}
        self.calls: list[httpx.Request] = []
        self.error: Exception | None = None
        self.raw_body: bytes | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if self.error is not None:
            raise self.error
        # An unread stream, as a real transport returns, so aiter_raw() works.
        return httpx.Response(
            self.status_code,
            headers={'content-type': 'application/json', **self.headers},
            stream=httpx.ByteStream(self._body()),
        )

    def _body(self) -> bytes:
        if self.raw_body is not None:
            return self.raw_body
        return json.dumps(self.json_body).encode()

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def blocklist_path(tmp_path):
    return tmp_path / 'blocklist.json'


@pytest.fixture
def settings(blocklist_path):
    return TunnelSettings(
        environment='test',
        admin_api_key=ADMIN_KEY,
        posthog_host='ingest.test',
        posthog_assets_host='assets.test',
        blocklist_path=blocklist_path,
    )


@pytest.fixture
def store(blocklist_path):
    return BlocklistStore(blocklist_path)


@pytest.fixture
def upstream():
    return StubUpstream()


@pytest.fixture
def app(settings, store, upstream):
    return create_app(settings, store=store, http_client=upstream.client())


@pytest.fixture
def admin_headers():
    return dict(ADMIN_HEADERS)


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    return TestClient(app)
