"""Equity curve reconstruction — pure functions, no I/O.

The provider exposes the current equity and the deal ledger but no
historical equity series.  The curve is rebuilt by walking the ledger
backwards from today's equity, removing each deal's profit to recover the
equity level before it.  One point is kept per calendar day.
"""

from datetime import date, datetime, timezone
from typing import Any, Iterable, Mapping, Optional

from app.analytics.models import EquityPoint, finite_or_none, parse_time
from app.broker.models import TRADING_DEAL_TYPES


def reconstruct_equity_curve(
    deals: Iterable[Any],
    current_equity: float,
    today: Optional[date] = None,
    trading_only: bool = True,
) -> list[EquityPoint]:
    """Rebuild a daily equity series from historical deals.

    Args:
        deals: ``Deal`` objects or mappings with ``"time"``, ``"profit"``
            and optionally ``"type"``.  Any order.
        current_equity: Equity right now; always the value for *today*.
        today: Anchor date.  Defaults to the current UTC date.
        trading_only: Skip deals whose type marks them as a balance
            operation (deposit, withdrawal, credit, fee ...).  Untyped deals
            are always unwound.

    Returns:
        ``EquityPoint`` list in ascending date order.  Each historical date
        carries the equity before the oldest deal of that day.  Malformed
        deals are skipped.
    """
    if today is None:
        today = datetime.now(timezone.utc).date()
    current = finite_or_none(current_equity) or 0.0

    usable: list[tuple[datetime, date, float]] = []
    for deal in deals:
        parsed = _parse_deal(deal, trading_only)
        if parsed is not None:
            usable.append(parsed)

    # Newest first; UTC instant ordering so mixed offsets compare correctly
    usable.sort(key=lambda d: d[0], reverse=True)

    points: dict[date, float] = {today: current}
    running = current
    for _, day, profit in usable:
        running -= profit
        if day >= today:
            # Today's point is pinned to the live equity
            continue
        points[day] = running

    return [EquityPoint(timestamp=d, equity=points[d]) for d in sorted(points)]


def max_drawdown(points: Iterable[EquityPoint]) -> float:
    """Largest peak-to-trough equity decline along the curve.

    Returns the decline as a positive number, ``0.0`` for a curve that
    never falls below a previous peak.
    """
    peak: Optional[float] = None
    max_dd = 0.0
    for point in points:
        if peak is None or point.equity > peak:
            peak = point.equity
        dd = peak - point.equity
        if dd > max_dd:
            max_dd = dd
    return max_dd


# ── Helpers ──────────────────────────────────────────────────────────────


def _parse_deal(
    deal: Any, trading_only: bool
) -> Optional[tuple[datetime, date, float]]:
    if isinstance(deal, Mapping):
        raw_time, raw_profit, deal_type = (
            deal.get("time"), deal.get("profit"), deal.get("type"),
        )
    else:
        raw_time = getattr(deal, "time", None)
        raw_profit = getattr(deal, "profit", None)
        deal_type = getattr(deal, "type", None)

    if trading_only and deal_type is not None and deal_type not in TRADING_DEAL_TYPES:
        return None

    profit = finite_or_none(raw_profit)
    if profit is None or profit == 0:
        return None

    when = _as_datetime(raw_time)
    if when is None:
        return None
    return when, when.date(), profit


def _as_datetime(value: Any) -> Optional[datetime]:
    """Normalise a deal time to a UTC-aware ``datetime``.

    Naive values are taken to be UTC already.
    """
    if isinstance(value, date) and not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    when = parse_time(value)
    if when is None:
        return None
    if when.tzinfo is None:
        return when.replace(tzinfo=timezone.utc)
    return when.astimezone(timezone.utc)
