"""Tests for app.config — environment variable loading and validation."""

from datetime import date

import pytest

from app.config import load_config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Ensure service env vars are cleared between tests."""
    for var in [
        "METAAPI_TOKEN",
        "METAAPI_ACCOUNT_ID",
        "METAAPI_REGION",
        "HISTORY_START",
        "REFRESH_INTERVAL_SECONDS",
        "WEBHOOK_URL",
        "LOG_LEVEL",
        "HTTP_PORT",
    ]:
        monkeypatch.delenv(var, raising=False)


def _set_required(monkeypatch):
    """Set the minimum required environment variables."""
    monkeypatch.setenv("METAAPI_TOKEN", "test-token-abc123")


class TestLoadConfig:
    def test_loads_required_vars(self, monkeypatch, tmp_path):
        _set_required(monkeypatch)
        cfg = load_config(env_path=str(tmp_path / "nonexistent.env"))
        assert cfg.metaapi_token == "test-token-abc123"

    def test_defaults(self, monkeypatch, tmp_path):
        _set_required(monkeypatch)
        cfg = load_config(env_path=str(tmp_path / "nonexistent.env"))
        assert cfg.metaapi_account_id is None
        assert cfg.metaapi_region == "new-york"
        assert cfg.history_start == date(2020, 1, 1)
        assert cfg.refresh_interval_seconds == 60
        assert cfg.webhook_url is None
        assert cfg.log_level == "INFO"
        assert cfg.http_port == 8080

    def test_overrides(self, monkeypatch, tmp_path):
        _set_required(monkeypatch)
        monkeypatch.setenv("METAAPI_ACCOUNT_ID", "acc-1")
        monkeypatch.setenv("HISTORY_START", "2023-05-01")
        monkeypatch.setenv("REFRESH_INTERVAL_SECONDS", "30")
        monkeypatch.setenv("WEBHOOK_URL", "https://hooks.example.com/challenge")
        cfg = load_config(env_path=str(tmp_path / "nonexistent.env"))
        assert cfg.metaapi_account_id == "acc-1"
        assert cfg.history_start == date(2023, 5, 1)
        assert cfg.refresh_interval_seconds == 30
        assert cfg.webhook_url == "https://hooks.example.com/challenge"

    def test_config_missing_var(self, monkeypatch, tmp_path):
        # Use a non-existent env_path so load_dotenv doesn't re-populate
        # from a real .env file
        with pytest.raises(ValueError, match="METAAPI_TOKEN"):
            load_config(env_path=str(tmp_path / "nonexistent.env"))

    def test_region_urls(self, monkeypatch, tmp_path):
        _set_required(monkeypatch)
        monkeypatch.setenv("METAAPI_REGION", "london")
        cfg = load_config(env_path=str(tmp_path / "nonexistent.env"))
        assert cfg.client_api_url == "https://mt-client-api-v1.london.agiliumtrade.ai"
        assert cfg.provisioning_api_url.startswith("https://mt-provisioning-api-v1")
