"""Tests for settings validation and container wiring."""

import pytest

from snapsecure_api.container import build_container, build_firewall_state
from snapsecure_api.errors import ConfigurationError
from snapsecure_api.firewall.state import InMemoryFirewallState, RedisFirewallState

from conftest import make_settings


def test_missing_keys_refuse_startup(tmp_path, session_factory):
    settings = make_settings(tmp_path, encryption_key=None, master_encryption_key=None)
    with pytest.raises(ConfigurationError) as exc_info:
        build_container(settings, session_factory)
    assert "ENCRYPTION_KEY" in str(exc_info.value)
    assert "MASTER_ENCRYPTION_KEY" in str(exc_info.value)


def test_unknown_firewall_backend(tmp_path):
    with pytest.raises(ConfigurationError):
        make_settings(tmp_path, firewall_backend="memcached").validate_settings()


def test_production_requires_distinct_keys(tmp_path):
    settings = make_settings(
        tmp_path,
        environment="production",
        encryption_key="same",
        master_encryption_key="same",
    )
    with pytest.raises(ConfigurationError):
        settings.validate_settings()


def test_production_requires_database_credentials(tmp_path):
    settings = make_settings(tmp_path, environment="production", database_url=None, postgres_password=None)
    with pytest.raises(ConfigurationError):
        settings.validate_settings()


def test_development_accepts_test_keys(settings):
    settings.validate_settings()
    assert not settings.is_production


def test_database_url_computed(tmp_path):
    settings = make_settings(tmp_path, database_url=None, postgres_password="pw")
    assert settings.database_url_computed == "postgresql://snapsecure:pw@localhost:5432/snapsecure"


def test_firewall_backend_selection(tmp_path):
    assert isinstance(build_firewall_state(make_settings(tmp_path)), InMemoryFirewallState)

    client = object()
    state = build_firewall_state(make_settings(tmp_path, firewall_backend="redis"), redis_client=client)
    assert isinstance(state, RedisFirewallState)
    assert state.client is client
    assert state.failed_ttl == 3600
