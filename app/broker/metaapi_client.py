"""MetaApi cloud REST API async client.

Handles all communication with the MetaTrader account-data provider:
account provisioning, account information, history orders and deals.
One client instance is bound to one MetaTrader account.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

import httpx

from app.analytics.models import finite_or_none, parse_time
from app.broker.models import AccountInformation, AccountState, Deal, HistoryOrder
from app.config import Config

logger = logging.getLogger("ascendant.broker")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}

_DEPLOY_POLL_SECONDS = 5.0


class MetaApiClient:
    """Async client wrapping the MetaApi REST API for a single account.

    Args:
        config: Application ``Config`` (token and region).
        account_id: MetaApi account id this handle talks to.
    """

    def __init__(self, config: Config, account_id: str) -> None:
        self._config = config
        self._account_id = account_id
        self._client_url = config.client_api_url
        self._provisioning_url = config.provisioning_api_url
        self._headers = {
            "auth-token": config.metaapi_token,
            "Content-Type": "application/json",
        }

    @property
    def account_id(self) -> str:
        return self._account_id

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        **kwargs,
    ) -> httpx.Response:
        """Execute an HTTP request with exponential-backoff retry.

        Retries on transient server errors (502, 503, 504) and rate-limits
        (429).  Non-retryable errors are raised immediately.
        """
        last_exc: Optional[Exception] = None

        for attempt in range(_MAX_RETRIES):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await getattr(client, method)(
                        url,
                        headers=self._headers,
                        timeout=30.0,
                        **kwargs,
                    )

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    delay = _RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        "MetaApi %s %s returned %d, retry %d/%d in %.1fs",
                        method.upper(), url, resp.status_code,
                        attempt + 1, _MAX_RETRIES, delay,
                    )
                    await asyncio.sleep(delay)
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    continue

                resp.raise_for_status()
                return resp

            except httpx.TransportError as exc:
                delay = _RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "MetaApi %s %s transport error (%s), retry %d/%d in %.1fs",
                    method.upper(), url, exc,
                    attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = exc
                await asyncio.sleep(delay)

        # All retries exhausted
        raise last_exc  # type: ignore[misc]

    def _account_url(self) -> str:
        return f"{self._client_url}/users/current/accounts/{self._account_id}"

    # ── Provisioning ─────────────────────────────────────────────────────

    async def get_account(self) -> Optional[AccountState]:
        """Return the provisioning record, or ``None`` if the account is unknown."""
        url = f"{self._provisioning_url}/users/current/accounts/{self._account_id}"
        try:
            resp = await self._request_with_retry("get", url)
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 404:
                return None
            raise
        return _parse_account_state(resp.json())

    async def create_account(
        self,
        login: str,
        password: str,
        server: str,
        platform: str = "mt5",
        region: str = "london",
        reliability: str = "high",
    ) -> AccountState:
        """Register a MetaTrader account with MetaApi.

        Returns:
            ``AccountState`` of the new account.  Its ``account_id`` is
            assigned by MetaApi and differs from this handle's id.
        """
        url = f"{self._provisioning_url}/users/current/accounts"
        body = {
            "name": f"Account {login}",
            "type": "cloud-g2",
            "login": login,
            "password": password,
            "server": server,
            "platform": platform,
            "magic": 0,
            "region": region,
            "baseCurrency": "USD",
            "reliability": reliability,
        }

        resp = await self._request_with_retry("post", url, json=body)

        data = resp.json()
        return AccountState(
            account_id=str(data["id"]),
            state=data.get("state", "UNDEPLOYED"),
            connection_status=data.get("connectionStatus", "DISCONNECTED"),
            login=login,
            server=server,
            reliability=reliability,
        )

    async def deploy(self) -> None:
        """Start the cloud terminal for this account."""
        url = (
            f"{self._provisioning_url}/users/current/accounts"
            f"/{self._account_id}/deploy"
        )
        await self._request_with_retry("post", url)

    async def wait_deployed(self, timeout: float = 300.0) -> AccountState:
        """Poll until the account is deployed and connected to its broker.

        Raises:
            TimeoutError: if the account is not connected within *timeout*
                seconds.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            state = await self.get_account()
            if (
                state is not None
                and state.state == "DEPLOYED"
                and state.connection_status == "CONNECTED"
            ):
                return state
            if loop.time() >= deadline:
                raise TimeoutError(
                    f"Account {self._account_id} not connected after {timeout:.0f}s"
                )
            await asyncio.sleep(_DEPLOY_POLL_SECONDS)

    # ── Account data ─────────────────────────────────────────────────────

    async def get_account_information(self) -> AccountInformation:
        """Query balance, equity and margin figures."""
        url = f"{self._account_url()}/account-information"

        resp = await self._request_with_retry("get", url)

        info = resp.json()
        return AccountInformation(
            balance=finite_or_none(info.get("balance")) or 0.0,
            equity=finite_or_none(info.get("equity")) or 0.0,
            currency=info.get("currency", "USD"),
            leverage=finite_or_none(info.get("leverage")),
            margin=finite_or_none(info.get("margin")),
            free_margin=finite_or_none(info.get("freeMargin")),
            platform=info.get("platform", ""),
            broker=info.get("broker", ""),
        )

    async def get_history_orders(
        self,
        start: datetime,
        end: datetime,
    ) -> list[HistoryOrder]:
        """Return completed orders between *start* and *end*."""
        url = (
            f"{self._account_url()}/history-orders/time"
            f"/{_format_time(start)}/{_format_time(end)}"
        )

        resp = await self._request_with_retry("get", url)

        orders: list[HistoryOrder] = []
        for o in _records(resp.json(), "historyOrders"):
            position_id = o.get("positionId")
            orders.append(
                HistoryOrder(
                    order_id=str(o.get("id", "")),
                    type=str(o.get("type", "")),
                    symbol=o.get("symbol", ""),
                    volume=finite_or_none(o.get("volume")),
                    position_id=str(position_id) if position_id else None,
                    state=o.get("state", ""),
                    open_price=finite_or_none(o.get("openPrice")),
                    close_price=finite_or_none(o.get("closePrice")),
                    profit=finite_or_none(o.get("profit")),
                    open_time=parse_time(o.get("time")),
                    close_time=parse_time(o.get("doneTime")),
                )
            )
        return orders

    async def get_deals_by_position(self, position_id: str) -> list[Deal]:
        """Return every deal belonging to a position."""
        url = f"{self._account_url()}/history-deals/position/{position_id}"

        resp = await self._request_with_retry("get", url)

        return [_parse_deal(d) for d in _records(resp.json(), "deals")]

    async def get_deals_by_time_range(
        self,
        start: datetime,
        end: datetime,
    ) -> list[Deal]:
        """Return every ledger deal between *start* and *end*."""
        url = (
            f"{self._account_url()}/history-deals/time"
            f"/{_format_time(start)}/{_format_time(end)}"
        )

        resp = await self._request_with_retry("get", url)

        return [_parse_deal(d) for d in _records(resp.json(), "deals")]


# ── Parsing helpers ──────────────────────────────────────────────────────


def _format_time(value: datetime) -> str:
    """MetaApi path timestamp: UTC, millisecond precision, ``Z`` suffix."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def _records(data, key: str) -> list[dict]:
    """History endpoints answer with a bare list or a wrapped one."""
    if isinstance(data, dict):
        data = data.get(key, [])
    if not isinstance(data, list):
        return []
    return [r for r in data if isinstance(r, dict)]


def _parse_deal(d: dict) -> Deal:
    position_id = d.get("positionId")
    return Deal(
        deal_id=str(d.get("id", "")),
        time=parse_time(d.get("time")),
        profit=finite_or_none(d.get("profit")),
        price=finite_or_none(d.get("price")),
        volume=finite_or_none(d.get("volume")),
        symbol=d.get("symbol", ""),
        position_id=str(position_id) if position_id else None,
        type=d.get("type"),
        entry_type=d.get("entryType"),
    )


def _parse_account_state(data: dict) -> AccountState:
    return AccountState(
        account_id=str(data.get("_id") or data.get("id", "")),
        state=data.get("state", ""),
        connection_status=data.get("connectionStatus", ""),
        login=str(data.get("login", "")),
        server=data.get("server", ""),
        reliability=data.get("reliability", ""),
    )
