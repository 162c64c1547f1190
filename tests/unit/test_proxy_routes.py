"""Tests for the /ingest and /static proxy routes.

The upstream is a MockTransport stub so every forwarded request can be
inspected, and a blocked request can be shown to never leave the tunnel.
"""

import gzip
import json

import httpx
import pytest

from posthog_tunnel.routing import proxy as proxy_module


def _block_identifier(client, admin_headers, identifier, label='blocked'):
    resp = client.post(
        '/admin/identifiers',
        json={'identifier': identifier, 'label': label},
        headers=admin_headers,
    )
    assert resp.status_code == 201


def _block_domain(client, admin_headers, domain, identifier=None):
    if identifier is None:
        resp = client.post('/admin/domains', json={'domain': domain}, headers=admin_headers)
    else:
        resp = client.post(
            f'/admin/identifiers/{identifier}/blocked-domains',
            json={'domain': domain},
            headers=admin_headers,
        )
    assert resp.status_code in (200, 201)


# =====================================================================
# Target URL construction
# =====================================================================


class TestTargets:

    def test_ingest_prefix_stripped(self, client, upstream):
        resp = client.get('/ingest/decide/?v=3&ip=1')
        assert resp.status_code == 200
        assert str(upstream.calls[0].url) == 'https://ingest.test/decide/?v=3&ip=1'

    def test_ingest_root_becomes_slash(self, client, upstream):
        client.get('/ingest/')
        assert str(upstream.calls[0].url) == 'https://ingest.test/'

    def test_static_keeps_full_path(self, client, upstream):
        resp = client.get('/static/array.js')
        assert resp.status_code == 200
        assert str(upstream.calls[0].url) == 'https://assets.test/static/array.js'

    def test_encoded_path_forwarded_verbatim(self, client, upstream):
        resp = client.get('/ingest/e%3Fv%3D1/?ip=1')
        assert resp.status_code == 200
        assert str(upstream.calls[0].url) == 'https://ingest.test/e%3Fv%3D1/?ip=1'

    def test_encoded_slash_kept_on_static(self, client, upstream):
        client.get('/static/a%2Fb.js')
        assert str(upstream.calls[0].url) == 'https://assets.test/static/a%2Fb.js'

    def test_static_rejects_post(self, client, upstream):
        resp = client.post('/static/array.js', content=b'x')
        assert resp.status_code == 405
        assert upstream.calls == []

    @pytest.mark.parametrize('method', ['PUT', 'PATCH', 'DELETE'])
    def test_ingest_accepts_other_methods(self, client, upstream, method):
        resp = client.request(method, '/ingest/e/')
        assert resp.status_code == 200
        assert upstream.calls[0].method == method


# =====================================================================
# Relaying
# =====================================================================


class TestRelay:

    def test_upstream_status_and_body_relayed(self, client, upstream):
        upstream.status_code = 202
        upstream.json_body = {'status': 1}
        upstream.headers = {'X-Upstream': 'yes'}

        resp = client.get('/ingest/e/')
        assert resp.status_code == 202
        assert resp.json() == {'status': 1}
        assert resp.headers['x-upstream'] == 'yes'

    def test_encoded_body_relayed_untouched(self, client, upstream):
        upstream.raw_body = gzip.compress(b'{"ok": true}')
        upstream.headers = {'Content-Encoding': 'gzip'}

        resp = client.get('/ingest/e/')
        assert resp.status_code == 200
        assert resp.headers['content-encoding'] == 'gzip'
        assert resp.json() == {'ok': True}

    def test_only_allow_listed_headers_forwarded(self, client, upstream, admin_headers):
        client.get(
            '/ingest/e/?token=abc',
            headers={
                'User-Agent': 'posthog-js/1.0',
                'Referer': 'https://shop.example/cart',
                'Cookie': 'sid=1',
                'Authorization': admin_headers['Authorization'],
            },
        )
        sent = upstream.calls[0].headers
        assert sent['user-agent'] == 'posthog-js/1.0'
        assert 'referer' not in sent
        assert 'cookie' not in sent
        assert 'authorization' not in sent

    def test_upstream_failure_is_500(self, client, upstream):
        upstream.error = httpx.ConnectError('connection refused')
        resp = client.get('/ingest/e/?token=abc')
        assert resp.status_code == 500
        assert resp.json() == {
            'error': 'Internal server error',
            'message': 'connection refused',
        }


# =====================================================================
# Fast path vs slow path
# =====================================================================


class TestBodyHandling:

    def test_fast_path_never_inspects_body(self, client, upstream, monkeypatch):
        def fail(*args, **kwargs):
            raise AssertionError('body must not be inspected')

        monkeypatch.setattr(proxy_module, 'extract_from_body', fail)

        payload = b'{"token": "other", "event": "$pageview"}'
        resp = client.post(
            '/ingest/e/?token=abc',
            content=payload,
            headers={'Content-Type': 'application/json'},
        )
        assert resp.status_code == 200
        assert upstream.calls[0].content == payload

    def test_slow_path_forwards_exact_bytes(self, client, upstream):
        payload = b'{ "api_key" : "phc_ok",  "batch": [] }'
        resp = client.post(
            '/ingest/batch/',
            content=payload,
            headers={'Content-Type': 'application/json'},
        )
        assert resp.status_code == 200
        assert upstream.calls[0].content == payload
        assert upstream.calls[0].headers['content-type'] == 'application/json'

    def test_non_json_body_forwarded(self, client, upstream):
        payload = b'data=eyJ0b2tlbiI6ICJhYmMifQ%3D%3D'
        resp = client.post(
            '/ingest/e/',
            content=payload,
            headers={'Content-Type': 'application/x-www-form-urlencoded'},
        )
        assert resp.status_code == 200
        assert upstream.calls[0].content == payload

    def test_malformed_json_is_allowed(self, client, upstream, admin_headers):
        _block_identifier(client, admin_headers, 'abc')
        resp = client.post(
            '/ingest/e/',
            content=b'{"token": "abc"',
            headers={'Content-Type': 'application/json'},
        )
        assert resp.status_code == 200
        assert len(upstream.calls) == 1


# =====================================================================
# Blocking
# =====================================================================


class TestBlocking:

    def test_blocked_query_token(self, client, upstream, admin_headers):
        _block_identifier(client, admin_headers, 'abc')
        resp = client.get('/ingest/e/?token=abc')
        assert resp.status_code == 403
        assert resp.json() == {'error': 'identifier blocked: abc'}
        assert upstream.calls == []

    @pytest.mark.parametrize('query', ['token=abc&token=xyz', '_=abc&_=xyz'])
    def test_repeated_key_uses_first_value(self, client, upstream, admin_headers, query):
        _block_identifier(client, admin_headers, 'abc')
        resp = client.get(f'/ingest/e/?{query}')
        assert resp.status_code == 403
        assert resp.json() == {'error': 'identifier blocked: abc'}
        assert upstream.calls == []

    def test_repeated_key_later_blocked_value_ignored(self, client, upstream, admin_headers):
        _block_identifier(client, admin_headers, 'abc')
        resp = client.get('/ingest/e/?token=xyz&token=abc')
        assert resp.status_code == 200

    def test_blocked_path_identifier(self, client, upstream, admin_headers):
        _block_identifier(client, admin_headers, 'phc_cfg')
        resp = client.get('/ingest/array/phc_cfg/config.js')
        assert resp.status_code == 403
        assert upstream.calls == []

    def test_blocked_body_token(self, client, upstream, admin_headers):
        _block_identifier(client, admin_headers, 'abc')
        resp = client.post(
            '/ingest/e/',
            content=json.dumps({'token': 'abc', 'event': 'x'}),
            headers={'Content-Type': 'application/json'},
        )
        assert resp.status_code == 403
        assert resp.json() == {'error': 'identifier blocked: abc'}
        assert upstream.calls == []

    def test_blocked_global_domain_from_origin(self, client, upstream, admin_headers):
        _block_domain(client, admin_headers, 'spam.com')
        resp = client.get('/static/array.js', headers={'Origin': 'https://a.spam.com'})
        assert resp.status_code == 403
        assert resp.json() == {'error': 'domain blocked globally: a.spam.com'}
        assert upstream.calls == []

    def test_referer_preferred_over_origin(self, client, upstream, admin_headers):
        _block_domain(client, admin_headers, 'spam.com')
        resp = client.get(
            '/ingest/e/',
            headers={'Referer': 'https://fine.example/page', 'Origin': 'https://spam.com'},
        )
        assert resp.status_code == 200

    def test_per_identifier_domain(self, client, upstream, admin_headers):
        _block_identifier(client, admin_headers, 'abc')
        _block_domain(client, admin_headers, 'bad.org', identifier='abc')
        resp = client.get('/ingest/e/?token=abc', headers={'Referer': 'https://www.bad.org/'})
        assert resp.status_code == 403
        assert resp.json() == {'error': 'domain blocked for identifier abc: www.bad.org'}

    def test_unlisted_identifier_forwarded(self, client, upstream, admin_headers):
        _block_identifier(client, admin_headers, 'abc')
        resp = client.get('/ingest/e/?token=xyz')
        assert resp.status_code == 200
        assert resp.json() == {'ok': True}

    def test_unblock_takes_effect_immediately(self, client, upstream, admin_headers):
        _block_identifier(client, admin_headers, 'abc')
        assert client.get('/ingest/e/?token=abc').status_code == 403

        resp = client.delete('/admin/identifiers/abc', headers=admin_headers)
        assert resp.status_code == 200
        assert client.get('/ingest/e/?token=abc').status_code == 200
