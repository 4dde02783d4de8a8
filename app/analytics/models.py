"""Analytics data models — closed trades, account snapshots, and derived metrics."""

import math
from dataclasses import dataclass
from datetime import date, datetime


def finite_or_none(value) -> float | None:
    """Coerce *value* to a finite float, or ``None`` if that is not possible.

    Booleans are rejected even though they are ``int`` subclasses.  Numeric
    strings (as sent by some feeds) are accepted.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def parse_time(value) -> datetime | None:
    """Parse a feed timestamp into a ``datetime``, or ``None`` if unusable.

    Accepts ``datetime`` objects and ISO-8601 strings such as
    ``"2024-03-01T10:15:00.123Z"``.  A trailing ``Z`` becomes UTC and
    fractional seconds are padded or cut to microseconds.
    """
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        return None

    s = value.strip().replace("Z", "+00:00")
    s = s.replace(" ", "T", 1)

    # fromisoformat on 3.10 wants exactly 3 or 6 fraction digits
    if "." in s:
        head, _, tail = s.partition(".")
        digits = len(tail) - len(tail.lstrip("0123456789"))
        if digits:
            fraction = tail[:min(digits, 6)].ljust(6, "0")
            s = f"{head}.{fraction}{tail[digits:]}"

    try:
        return datetime.fromisoformat(s)
    except ValueError:
        return None


@dataclass(frozen=True)
class Trade:
    """A closed position.  Settled history: never mutated."""

    ticket: str
    direction: str  # "buy" or "sell"
    volume: float
    symbol: str
    open_price: float
    close_price: float
    profit: float
    open_time: datetime
    close_time: datetime

    @property
    def duration_hours(self) -> int:
        """Whole hours between open and close, never negative."""
        seconds = (self.close_time - self.open_time).total_seconds()
        return max(0, math.floor(seconds / 3600))

    def to_dict(self) -> dict:
        return {
            "ticket": self.ticket,
            "type": self.direction,
            "volume": self.volume,
            "symbol": self.symbol,
            "openPrice": self.open_price,
            "closePrice": self.close_price,
            "profit": self.profit,
            "duration": self.duration_hours,
            "openTime": self.open_time.isoformat(),
            "closeTime": self.close_time.isoformat(),
        }


@dataclass(frozen=True)
class AccountSnapshot:
    """Point-in-time balance and equity of a trading account."""

    balance: float
    equity: float
    currency: str = "USD"


@dataclass(frozen=True)
class PerformanceMetrics:
    """Summary statistics over the valid closed trades of an account."""

    balance: float
    equity: float
    trade_count: int
    total_lots: float
    win_rate: float  # percentage, 0-100
    avg_win: float
    avg_loss: float  # magnitude
    avg_risk_reward_ratio: float
    expectancy: float
    profit_factor: float

    def to_dict(self) -> dict:
        """Dashboard representation (camelCase keys)."""
        return {
            "balance": self.balance,
            "equity": self.equity,
            "tradeCount": self.trade_count,
            "totalLots": self.total_lots,
            "winRate": self.win_rate,
            "avgWin": self.avg_win,
            "avgLoss": self.avg_loss,
            "avgRiskRewardRatio": self.avg_risk_reward_ratio,
            "expectancy": self.expectancy,
            "profitFactor": self.profit_factor,
        }


@dataclass(frozen=True)
class EquityPoint:
    """Equity level at the start of a calendar day."""

    timestamp: date
    equity: float

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp.isoformat(), "equity": self.equity}
