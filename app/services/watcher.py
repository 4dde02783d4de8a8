"""AccountWatcher — periodic metrics refresh with explicit subscriptions.

A subscription runs as its own ``asyncio`` task and hands each fresh
``AccountUpdate`` to a callback.  ``subscribe`` returns a ``Subscription``
handle; cancelling it stops the task and drops any result still in flight.
A subscriber that subscribes again replaces its previous subscription;
other subscribers on the same account are unaffected.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Union

from app.analytics.equity_curve import max_drawdown
from app.analytics.models import EquityPoint, PerformanceMetrics
from app.analytics.objectives import ObjectiveEvent
from app.services.account_service import AccountService

logger = logging.getLogger("ascendant.watcher")


@dataclass(frozen=True)
class AccountUpdate:
    """One refresh of an account's dashboard data."""

    account_id: str
    metrics: Optional[PerformanceMetrics]
    equity_curve: list[EquityPoint]
    events: list[ObjectiveEvent] = field(default_factory=list)
    refreshed_at: str = ""

    @property
    def max_drawdown(self) -> float:
        return max_drawdown(self.equity_curve)

    def to_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "metrics": self.metrics.to_dict() if self.metrics is not None else None,
            "points": [p.to_dict() for p in self.equity_curve],
            "max_drawdown": round(self.max_drawdown, 2),
            "events": [e.to_payload() for e in self.events],
            "refreshed_at": self.refreshed_at,
        }


UpdateCallback = Callable[[AccountUpdate], Union[None, Awaitable[None]]]


class Subscription:
    """Cancellation handle for one subscriber's refresh loop."""

    def __init__(self, account_id: str, subscriber: str) -> None:
        self.account_id = account_id
        self.subscriber = subscriber
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False
        self._on_cancel: Optional[Callable[["Subscription"], None]] = None

    @property
    def active(self) -> bool:
        return not self._cancelled and self._task is not None and not self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Stop refreshing.  Results still in flight are discarded."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        if self._on_cancel is not None:
            self._on_cancel(self)


class AccountWatcher:
    """Refreshes subscribed accounts on a fixed interval.

    Each subscriber holds at most one subscription; subscribing it again
    (an account switch) replaces the previous one.  Different subscribers
    watching the same account run independently.

    Args:
        service: ``AccountService`` used for every refresh.
        interval_seconds: Delay between refreshes.  Falls back to the
            account's ``refresh_interval_seconds`` setting when ``None``.
    """

    def __init__(
        self,
        service: AccountService,
        interval_seconds: Optional[float] = None,
    ) -> None:
        self._service = service
        self._interval = interval_seconds
        self._subscriptions: dict[str, Subscription] = {}

    # ── Public API ───────────────────────────────────────────────────────

    def subscribe(
        self,
        account_id: str,
        callback: UpdateCallback,
        subscriber: Optional[str] = None,
    ) -> Subscription:
        """Start refreshing *account_id*; must be called inside a running loop.

        *subscriber* identifies the caller and defaults to *account_id*.
        """
        subscriber = subscriber or account_id
        previous = self._subscriptions.get(subscriber)
        if previous is not None:
            previous.cancel()
            logger.info("Replaced subscription of %s", subscriber)

        sub = Subscription(account_id, subscriber)
        sub._on_cancel = self._forget
        sub._task = asyncio.create_task(self._run(sub, callback))
        self._subscriptions[subscriber] = sub
        logger.info("Subscribed %s to %s", subscriber, account_id)
        return sub

    def unsubscribe(self, subscriber: str) -> None:
        sub = self._subscriptions.get(subscriber)
        if sub is not None:
            sub.cancel()
            logger.info("Unsubscribed %s from %s", subscriber, sub.account_id)

    def cancel_all(self) -> None:
        """Cancel every subscription."""
        for subscriber in list(self._subscriptions):
            self.unsubscribe(subscriber)

    @property
    def account_ids(self) -> list[str]:
        """Accounts with at least one active subscription."""
        return sorted({s.account_id for s in self._subscriptions.values() if s.active})

    @property
    def subscribers(self) -> list[str]:
        return list(self._subscriptions)

    async def refresh(self, account_id: str) -> AccountUpdate:
        """Fetch metrics, equity curve and objective events once."""
        metrics, curve, events = await asyncio.gather(
            self._service.get_account_metrics(account_id),
            self._service.get_equity_history(account_id),
            self._service.check_objectives(account_id),
        )
        return AccountUpdate(
            account_id=account_id,
            metrics=metrics,
            equity_curve=curve,
            events=events,
            refreshed_at=datetime.now(timezone.utc).isoformat(),
        )

    # ── Loop ─────────────────────────────────────────────────────────────

    async def _run(self, sub: Subscription, callback: UpdateCallback) -> None:
        while not sub.cancelled:
            try:
                update = await self.refresh(sub.account_id)
            except Exception as exc:
                logger.error("Refresh for %s failed: %s", sub.account_id, exc)
                await asyncio.sleep(self._interval_for(sub.account_id))
                continue
            if sub.cancelled:
                # Stale: the account was switched while this refresh ran
                break
            try:
                result = callback(update)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                logger.error(
                    "Update callback for %s raised: %s", sub.account_id, exc,
                )
            await asyncio.sleep(self._interval_for(sub.account_id))

    def _interval_for(self, account_id: str) -> float:
        if self._interval is not None:
            return self._interval
        return float(self._service.get_settings(account_id).refresh_interval_seconds)

    def _forget(self, sub: Subscription) -> None:
        if self._subscriptions.get(sub.subscriber) is sub:
            del self._subscriptions[sub.subscriber]
