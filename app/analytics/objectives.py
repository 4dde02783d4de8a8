"""Trading objectives for funded-account challenges — pure math, no I/O.

A ``DailyTracker`` keeps the balance at the start of the current UTC day.
``evaluate_objectives`` compares a live snapshot against the challenge
limits and reports every objective that has been hit.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Optional

from app.analytics.models import AccountSnapshot

MAX_LOSS_BREACHED = "maxLossBreached"
DAILY_LOSS_BREACHED = "dailyLossBreached"
PROFIT_TARGET_REACHED = "profitTargetReached"


@dataclass(frozen=True)
class TradingObjectives:
    """Challenge limits, in account currency.

    ``min_trading_days`` is informational: it is stored and shown on the
    dashboard but never raises an event.
    """

    min_trading_days: int
    max_daily_loss: float
    max_loss: float
    profit_target: float


@dataclass(frozen=True)
class ObjectiveEvent:
    """An objective that was breached or reached."""

    event_type: str
    account_id: str
    data: dict = field(default_factory=dict)

    def to_payload(self) -> dict:
        return {
            "eventType": self.event_type,
            "accountId": self.account_id,
            "data": dict(self.data),
        }


class DailyTracker:
    """Tracks the start-of-day and lowest balance for one account.

    Args:
        start_balance: Balance when tracking begins.
        day: UTC date tracking begins on.  Defaults to today.
    """

    def __init__(self, start_balance: float, day: Optional[date] = None) -> None:
        self._day: date = day or _utc_today()
        self._start_balance: float = start_balance
        self._low_balance: float = start_balance

    # ── Mutation ─────────────────────────────────────────────────────────

    def update(self, balance: float, day: Optional[date] = None) -> None:
        """Record the latest balance.

        On a new UTC day the start balance resets to *balance*.
        """
        day = day or _utc_today()
        if day != self._day:
            self._day = day
            self._start_balance = balance
            self._low_balance = balance
            return
        if balance < self._low_balance:
            self._low_balance = balance

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def day(self) -> date:
        return self._day

    @property
    def start_balance(self) -> float:
        """Balance at the start of the tracked day."""
        return self._start_balance

    @property
    def low_balance(self) -> float:
        """Lowest balance seen on the tracked day."""
        return self._low_balance


def evaluate_objectives(
    account_id: str,
    snapshot: AccountSnapshot,
    tracker: DailyTracker,
    objectives: TradingObjectives,
) -> list[ObjectiveEvent]:
    """Check a snapshot against the challenge objectives.

    Returns:
        One ``ObjectiveEvent`` per objective hit, in the order max loss,
        daily loss, profit target.  Empty when nothing was hit.
    """
    events: list[ObjectiveEvent] = []

    drawdown = snapshot.balance - snapshot.equity
    if drawdown >= objectives.max_loss:
        events.append(
            ObjectiveEvent(MAX_LOSS_BREACHED, account_id, {"drawdown": drawdown})
        )

    daily_loss = tracker.start_balance - snapshot.balance
    if daily_loss >= objectives.max_daily_loss:
        events.append(
            ObjectiveEvent(DAILY_LOSS_BREACHED, account_id, {
                "dailyLoss": daily_loss,
                "lowBalance": min(tracker.low_balance, snapshot.balance),
            })
        )

    profit = snapshot.balance - tracker.start_balance
    if profit >= objectives.profit_target:
        events.append(
            ObjectiveEvent(PROFIT_TARGET_REACHED, account_id, {"profit": profit})
        )

    return events


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()
