"""Unit tests for core/config.py -- Settings validation.

Settings is instantiated directly (not through get_settings) so each test
sees only the environment it sets up with monkeypatch.
"""

import pytest
from pydantic import ValidationError

from api.main import app
from core.config import Settings, get_settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("AMS_ENABLED", "AMS_CLIENT_ID", "AMS_CLIENT_SECRET", "AMS_PAGE_SIZE", "ALLOWED_HOSTS"):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.ams_enabled is False
    assert settings.ams_page_size == 100
    assert settings.allowed_hosts == ["*"]
    assert settings.database_url.startswith("sqlite:///")


def test_ams_enabled_requires_credentials(monkeypatch):
    monkeypatch.setenv("AMS_ENABLED", "true")
    with pytest.raises(ValidationError, match="AMS_CLIENT_ID"):
        Settings(_env_file=None)


def test_ams_enabled_with_credentials(monkeypatch):
    monkeypatch.setenv("AMS_ENABLED", "true")
    monkeypatch.setenv("AMS_CLIENT_ID", "client")
    monkeypatch.setenv("AMS_CLIENT_SECRET", "secret")
    settings = Settings(_env_file=None)
    assert settings.ams_enabled is True


@pytest.mark.parametrize("size", ["0", "501"])
def test_page_size_bounds(monkeypatch, size):
    monkeypatch.setenv("AMS_PAGE_SIZE", size)
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_allowed_hosts_from_json(monkeypatch):
    monkeypatch.setenv("ALLOWED_HOSTS", '["vulns.example.com"]')
    assert Settings(_env_file=None).allowed_hosts == ["vulns.example.com"]


def test_get_settings_is_cached():
    assert get_settings() is get_settings()


def test_debug_flag_reaches_app():
    assert app.debug is get_settings().debug
