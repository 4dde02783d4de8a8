"""Performance metrics — pure functions over a closed-trade history.

A trade takes part in the aggregation only when its profit is a finite,
non-zero number.  Break-even and malformed trades are left out of every
count, sum, rate and ratio.
"""

from typing import Any, Iterable, Mapping, Optional

from app.analytics.models import AccountSnapshot, PerformanceMetrics, finite_or_none


def compute_metrics(
    trades: Iterable[Any],
    snapshot: Optional[AccountSnapshot],
) -> PerformanceMetrics:
    """Compute summary metrics from closed trades and an account snapshot.

    Args:
        trades: ``Trade`` objects, or mappings with ``"profit"`` and
            ``"volume"`` keys as delivered by the account-data feed.
            Order and length are unconstrained.
        snapshot: Current account state.  ``None`` yields zero balance and
            equity.

    Returns:
        ``PerformanceMetrics``.  Every ratio whose denominator would be zero
        is reported as ``0.0``; this function never raises for bad data.
    """
    balance, equity = _snapshot_values(snapshot)

    wins: list[float] = []
    losses: list[float] = []
    total_lots = 0.0

    for trade in trades:
        profit = finite_or_none(_field(trade, "profit"))
        if profit is None or profit == 0:
            continue
        if profit > 0:
            wins.append(profit)
        else:
            losses.append(profit)
        total_lots += finite_or_none(_field(trade, "volume")) or 0.0

    trade_count = len(wins) + len(losses)
    if trade_count == 0:
        return PerformanceMetrics(
            balance=balance,
            equity=equity,
            trade_count=0,
            total_lots=0.0,
            win_rate=0.0,
            avg_win=0.0,
            avg_loss=0.0,
            avg_risk_reward_ratio=0.0,
            expectancy=0.0,
            profit_factor=0.0,
        )

    gross_win = sum(wins)
    gross_loss = abs(sum(losses))

    avg_win = gross_win / len(wins) if wins else 0.0
    avg_loss = gross_loss / len(losses) if losses else 0.0

    win_fraction = len(wins) / trade_count
    loss_fraction = len(losses) / trade_count

    return PerformanceMetrics(
        balance=balance,
        equity=equity,
        trade_count=trade_count,
        total_lots=total_lots,
        win_rate=100.0 * win_fraction,
        avg_win=avg_win,
        avg_loss=avg_loss,
        avg_risk_reward_ratio=avg_win / avg_loss if avg_loss > 0 else 0.0,
        expectancy=avg_win * win_fraction - avg_loss * loss_fraction,
        profit_factor=gross_win / gross_loss if gross_loss > 0 else 0.0,
    )


# ── Helpers ──────────────────────────────────────────────────────────────


def _field(record: Any, name: str) -> Any:
    """Read *name* from a dataclass-like object or a mapping."""
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def _snapshot_values(snapshot: Optional[AccountSnapshot]) -> tuple[float, float]:
    if snapshot is None:
        return 0.0, 0.0
    balance = finite_or_none(_field(snapshot, "balance")) or 0.0
    equity = finite_or_none(_field(snapshot, "equity")) or 0.0
    return balance, equity
