"""Tests for TunnelSettings defaults, env parsing, and validation."""

from pathlib import Path

import pytest

from posthog_tunnel.settings import (
    DEFAULT_POSTHOG_ASSETS_HOST,
    DEFAULT_POSTHOG_HOST,
    TunnelSettings,
)


class TestFromEnv:

    def test_defaults(self):
        settings = TunnelSettings.from_env({})
        assert settings.environment == 'development'
        assert settings.admin_api_key == ''
        assert settings.posthog_host == DEFAULT_POSTHOG_HOST == 'eu.i.posthog.com'
        assert settings.posthog_assets_host == DEFAULT_POSTHOG_ASSETS_HOST
        assert settings.blocklist_path == Path('blocklist.json')
        assert settings.host == '0.0.0.0'
        assert settings.port == 3010
        assert settings.cors_origins == ('*',)
        assert settings.use_tls is False

    def test_overrides(self):
        settings = TunnelSettings.from_env({
            'ENV': 'production',
            'ADMIN_API_KEY': 'secret',
            'POSTHOG_HOST': 'us.i.posthog.com',
            'POSTHOG_ASSETS_HOST': 'us-assets.i.posthog.com',
            'BLOCKLIST_PATH': '/data/blocklist.json',
            'HOST': '127.0.0.1',
            'PORT': '8443',
            'CORS_ORIGINS': 'https://a.example, https://b.example',
        })
        assert settings.environment == 'production'
        assert settings.admin_api_key == 'secret'
        assert settings.posthog_host == 'us.i.posthog.com'
        assert settings.posthog_assets_host == 'us-assets.i.posthog.com'
        assert settings.blocklist_path == Path('/data/blocklist.json')
        assert settings.host == '127.0.0.1'
        assert settings.port == 8443
        assert settings.cors_origins == ('https://a.example', 'https://b.example')

    def test_empty_values_are_unset(self):
        settings = TunnelSettings.from_env({'POSTHOG_HOST': '', 'PORT': '  ', 'SSL_CERT_PATH': ''})
        assert settings.posthog_host == DEFAULT_POSTHOG_HOST
        assert settings.port == 3010
        assert settings.ssl_cert_path is None

    def test_bad_port(self):
        with pytest.raises(ValueError, match='PORT must be an integer'):
            TunnelSettings.from_env({'PORT': 'http'})


class TestValidate:

    def test_valid(self):
        assert TunnelSettings(admin_api_key='k').validate() == []

    def test_missing_admin_key(self):
        errors = TunnelSettings().validate()
        assert any('admin_api_key' in e for e in errors)

    def test_unknown_environment(self):
        errors = TunnelSettings(admin_api_key='k', environment='staging').validate()
        assert any('environment' in e for e in errors)

    def test_tls_paths_must_be_paired(self, tmp_path):
        cert = tmp_path / 'cert.pem'
        cert.write_text('cert')
        errors = TunnelSettings(admin_api_key='k', ssl_cert_path=str(cert)).validate()
        assert any('set together' in e for e in errors)

    def test_tls_paths_must_exist(self, tmp_path):
        errors = TunnelSettings(
            admin_api_key='k',
            ssl_cert_path=str(tmp_path / 'cert.pem'),
            ssl_key_path=str(tmp_path / 'key.pem'),
        ).validate()
        assert len([e for e in errors if 'not found' in e]) == 2

    def test_tls_enabled(self, tmp_path):
        cert = tmp_path / 'cert.pem'
        key = tmp_path / 'key.pem'
        cert.write_text('cert')
        key.write_text('key')
        settings = TunnelSettings(admin_api_key='k', ssl_cert_path=str(cert), ssl_key_path=str(key))
        assert settings.validate() == []
        assert settings.use_tls is True

    def test_port_range(self):
        errors = TunnelSettings(admin_api_key='k', port=70000).validate()
        assert any('port' in e for e in errors)

    def test_settings_are_frozen(self):
        settings = TunnelSettings(admin_api_key='k')
        with pytest.raises(AttributeError):
            settings.port = 1
