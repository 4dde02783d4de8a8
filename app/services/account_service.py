"""AccountService — owns the MetaApi handles of every connected account.

Each connected MetaTrader account gets its own ``MetaApiClient``; nothing is
shared between accounts.  All read operations degrade to ``None`` / ``[]``
when the provider fails, so the dashboard can render an empty state.
"""

import asyncio
import logging
from datetime import datetime, time, timezone
from typing import Callable, Optional

from app.analytics.equity_curve import reconstruct_equity_curve
from app.analytics.metrics import compute_metrics
from app.analytics.models import AccountSnapshot, EquityPoint, PerformanceMetrics, Trade
from app.analytics.objectives import DailyTracker, ObjectiveEvent, evaluate_objectives
from app.broker.metaapi_client import MetaApiClient
from app.broker.models import Deal, HistoryOrder
from app.models.settings import DashboardSettings, SettingsUpdate, apply_update
from app.notify.webhook import WebhookNotifier

logger = logging.getLogger("ascendant.service")

_DEPLOYED_STATES = {"DEPLOYING", "DEPLOYED"}

ClientFactory = Callable[[str], MetaApiClient]


class AccountService:
    """Connection registry and data access for trading accounts.

    Args:
        client_factory: Builds a ``MetaApiClient`` for an account id.
        notifier: Delivers objective events.  ``None`` disables delivery.
        default_settings: Settings given to newly connected accounts.
        connect_timeout: Seconds to wait for a deployed account to connect.
    """

    def __init__(
        self,
        client_factory: ClientFactory,
        notifier: Optional[WebhookNotifier] = None,
        default_settings: Optional[DashboardSettings] = None,
        connect_timeout: float = 300.0,
    ) -> None:
        self._client_factory = client_factory
        self._notifier = notifier
        self._default_settings = default_settings or DashboardSettings()
        self._connect_timeout = connect_timeout
        self._clients: dict[str, MetaApiClient] = {}
        self._settings: dict[str, DashboardSettings] = {}
        self._trackers: dict[str, DailyTracker] = {}

    # ── Connection lifecycle ─────────────────────────────────────────────

    @property
    def account_ids(self) -> list[str]:
        """Ids of registered accounts."""
        return list(self._clients.keys())

    def register(self, account_id: str, client: Optional[MetaApiClient] = None) -> None:
        """Register an already-provisioned account without deploying it."""
        self._clients[account_id] = client or self._client_factory(account_id)
        self._settings.setdefault(account_id, self._default_settings)

    async def connect_account(
        self,
        account_id: str,
        login: str,
        password: str,
        server: str,
    ) -> bool:
        """Provision, deploy and connect an account, then register it.

        Creates the MetaApi account when it does not exist yet.  Returns
        ``False`` (after logging) on any failure.
        """
        client = self._client_factory(account_id)
        try:
            logger.info("Connecting account %s", account_id)
            state = await client.get_account()

            if state is None:
                logger.info("Account %s not found, creating it", account_id)
                state = await client.create_account(login, password, server)
                client = self._client_factory(state.account_id)

            if state.state not in _DEPLOYED_STATES:
                logger.info("Deploying account %s", state.account_id)
                await client.deploy()

            await client.wait_deployed(timeout=self._connect_timeout)

            info = await client.get_account_information()
            logger.debug("Account %s information: %s", account_id, info)
        except Exception as exc:
            logger.warning("Error connecting account %s: %s", account_id, exc)
            return False

        self.register(account_id, client)
        self._trackers[account_id] = DailyTracker(info.balance)
        logger.info("Account %s connected", account_id)
        return True

    async def is_connected(self, account_id: str) -> bool:
        """``True`` if the account is registered and answers a data query."""
        client = self._clients.get(account_id)
        if client is None:
            return False
        try:
            await client.get_account_information()
        except Exception:
            logger.debug("Connection check failed for %s", account_id)
            return False
        return True

    def disconnect(self, account_id: str) -> None:
        """Forget an account's handle, settings and daily tracking."""
        self._clients.pop(account_id, None)
        self._settings.pop(account_id, None)
        self._trackers.pop(account_id, None)

    # ── Settings ─────────────────────────────────────────────────────────

    def get_settings(self, account_id: str) -> DashboardSettings:
        return self._settings.get(account_id, self._default_settings)

    def update_settings(
        self,
        account_id: str,
        update: SettingsUpdate,
    ) -> tuple[DashboardSettings, list[str]]:
        """Validate and apply a settings update for one account."""
        settings, errors = apply_update(self.get_settings(account_id), update)
        if not errors:
            self._settings[account_id] = settings
            logger.info("Settings updated for %s: %s", account_id, settings)
        return settings, errors

    # ── Data ─────────────────────────────────────────────────────────────

    async def get_closed_trades(self, account_id: str) -> list[Trade]:
        """Assemble closed trades from history orders and their deals.

        Returns ``[]`` when the account is unknown or the provider fails.
        """
        client = self._clients.get(account_id)
        if client is None:
            logger.warning("get_closed_trades: account %s not connected", account_id)
            return []

        start, end = self._history_window(account_id)
        try:
            orders = await client.get_history_orders(start, end)
            logger.debug("Account %s: %d history orders", account_id, len(orders))

            trades: list[Trade] = []
            # One request per position, sequential to stay inside rate limits
            for order in _opening_orders(orders):
                deals = await client.get_deals_by_position(order.position_id)
                trade = _trade_from_order(order, deals)
                if trade is not None:
                    trades.append(trade)
        except Exception as exc:
            logger.warning("get_closed_trades failed for %s: %s", account_id, exc)
            return []

        logger.debug("Account %s: %d closed trades", account_id, len(trades))
        return trades

    async def get_account_metrics(self, account_id: str) -> Optional[PerformanceMetrics]:
        """Compute performance metrics, or ``None`` if they are unavailable."""
        client = self._clients.get(account_id)
        if client is None:
            logger.warning("get_account_metrics: account %s not connected", account_id)
            return None

        try:
            info, trades = await asyncio.gather(
                client.get_account_information(),
                self.get_closed_trades(account_id),
            )
        except Exception as exc:
            logger.warning("get_account_metrics failed for %s: %s", account_id, exc)
            return None

        snapshot = AccountSnapshot(
            balance=info.balance, equity=info.equity, currency=info.currency,
        )
        return compute_metrics(trades, snapshot)

    async def get_equity_history(self, account_id: str) -> list[EquityPoint]:
        """Rebuild the daily equity curve.  ``[]`` when unavailable."""
        client = self._clients.get(account_id)
        if client is None:
            logger.warning("get_equity_history: account %s not connected", account_id)
            return []

        start, end = self._history_window(account_id)
        try:
            deals, info = await asyncio.gather(
                client.get_deals_by_time_range(start, end),
                client.get_account_information(),
            )
        except Exception as exc:
            logger.warning("get_equity_history failed for %s: %s", account_id, exc)
            return []

        points = reconstruct_equity_curve(deals, info.equity, today=end.date())
        logger.debug("Account %s: %d equity points", account_id, len(points))
        return points

    async def check_objectives(self, account_id: str) -> list[ObjectiveEvent]:
        """Evaluate challenge objectives and deliver any events by webhook.

        Returns ``[]`` when the account has no objectives configured, is
        unknown, or the provider fails.
        """
        client = self._clients.get(account_id)
        settings = self.get_settings(account_id)
        if client is None or settings.objectives is None:
            return []

        try:
            info = await client.get_account_information()
        except Exception as exc:
            logger.warning("check_objectives failed for %s: %s", account_id, exc)
            return []

        tracker = self._trackers.get(account_id)
        if tracker is None:
            tracker = self._trackers[account_id] = DailyTracker(info.balance)
        else:
            tracker.update(info.balance)

        snapshot = AccountSnapshot(balance=info.balance, equity=info.equity)
        events = evaluate_objectives(account_id, snapshot, tracker, settings.objectives)

        if events and settings.notify_webhooks and self._notifier is not None:
            for event in events:
                await self._notifier.send(event)
        return events

    # ── Helpers ──────────────────────────────────────────────────────────

    def _history_window(self, account_id: str) -> tuple[datetime, datetime]:
        start_day = self.get_settings(account_id).history_start
        start = datetime.combine(start_day, time.min, tzinfo=timezone.utc)
        return start, datetime.now(timezone.utc)


def _trade_from_order(order: HistoryOrder, deals: list[Deal]) -> Optional[Trade]:
    """Build a ``Trade`` from an order and its position's deals.

    The earliest deal opens the position and the latest closes it.  A
    position with fewer than two timed deals is still open and yields
    ``None``.  Deal values take precedence over order values.
    """
    timed = sorted((d for d in deals if d.time is not None), key=lambda d: d.time)
    if len(timed) < 2:
        return None
    open_deal, close_deal = timed[0], timed[-1]

    profit = close_deal.profit if close_deal.profit is not None else order.profit
    return Trade(
        ticket=order.order_id,
        direction=order.direction,
        volume=order.volume or 0.0,
        symbol=order.symbol,
        open_price=_first_number(open_deal.price, order.open_price),
        close_price=_first_number(close_deal.price, order.close_price),
        profit=profit if profit is not None else 0.0,
        open_time=open_deal.time,
        close_time=close_deal.time,
    )


def _first_number(*values: Optional[float]) -> float:
    for v in values:
        if v:
            return v
    return 0.0


def _opening_orders(orders: list[HistoryOrder]) -> list[HistoryOrder]:
    """Pick the earliest order of each position, in first-seen order.

    A closed position carries both its opening and its closing order under
    the same ``position_id``; only the opening one describes the trade.
    """
    by_position: dict[str, HistoryOrder] = {}
    for order in orders:
        if not order.position_id:
            continue
        current = by_position.get(order.position_id)
        if current is None or _is_earlier(order, current):
            by_position[order.position_id] = order
    return list(by_position.values())


def _is_earlier(order: HistoryOrder, other: HistoryOrder) -> bool:
    if order.open_time is None or other.open_time is None:
        return False
    return order.open_time < other.open_time
