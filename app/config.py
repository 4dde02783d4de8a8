"""Ascendant metrics service — application configuration.

Loads .env variables into a typed config object.
Validates required variables on startup.
"""

import os
from dataclasses import dataclass
from datetime import date

from dotenv import load_dotenv


_REQUIRED_VARS = [
    "METAAPI_TOKEN",
]

_PROVISIONING_API_URL = "https://mt-provisioning-api-v1.agiliumtrade.agiliumtrade.ai"


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    metaapi_token: str
    metaapi_account_id: str | None  # default account for the CLI report
    metaapi_region: str  # e.g. "new-york", "london"
    history_start: date
    refresh_interval_seconds: int
    webhook_url: str | None
    log_level: str
    http_port: int

    @property
    def client_api_url(self) -> str:
        """Return the MetaApi account-data (client) API base URL for the region."""
        return f"https://mt-client-api-v1.{self.metaapi_region}.agiliumtrade.ai"

    @property
    def provisioning_api_url(self) -> str:
        """Return the MetaApi provisioning API base URL."""
        return _PROVISIONING_API_URL


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the missing variable when a
    required variable is absent.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [v for v in _REQUIRED_VARS if not os.environ.get(v)]
    if missing:
        raise ValueError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )

    return Config(
        metaapi_token=os.environ["METAAPI_TOKEN"],
        metaapi_account_id=os.environ.get("METAAPI_ACCOUNT_ID") or None,
        metaapi_region=os.environ.get("METAAPI_REGION", "new-york"),
        history_start=date.fromisoformat(
            os.environ.get("HISTORY_START", "2020-01-01")
        ),
        refresh_interval_seconds=int(
            os.environ.get("REFRESH_INTERVAL_SECONDS", "60")
        ),
        webhook_url=os.environ.get("WEBHOOK_URL") or None,
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        http_port=int(os.environ.get("HTTP_PORT", "8080")),
    )
