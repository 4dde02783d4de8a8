"""CLI dashboard — prints account metrics to the console."""

from typing import Optional

from app.analytics.equity_curve import max_drawdown
from app.analytics.models import EquityPoint, PerformanceMetrics


def print_metrics(
    account_id: str,
    metrics: Optional[PerformanceMetrics],
    equity_curve: list[EquityPoint],
) -> str:
    """Format and print an account's performance summary.

    Args:
        account_id: Account shown in the header.
        metrics: Computed metrics, or ``None`` when unavailable.
        equity_curve: Daily equity points, oldest first.

    Returns:
        The formatted string (also printed to stdout).
    """
    header = f"──────────────── Account {account_id} ────────────────"
    if metrics is None:
        lines = [header, "  Metrics unavailable", "─" * len(header)]
    else:
        lines = [
            header,
            f"  Balance:         ${metrics.balance:,.2f}",
            f"  Equity:          ${metrics.equity:,.2f}",
            f"  Trades:          {metrics.trade_count}",
            f"  Lots:            {metrics.total_lots:.2f}",
            f"  Win Rate:        {metrics.win_rate:.1f}%",
            f"  Avg Win:         ${metrics.avg_win:,.2f}",
            f"  Avg Loss:        ${metrics.avg_loss:,.2f}",
            f"  Avg R:R:         {metrics.avg_risk_reward_ratio:.2f}",
            f"  Expectancy:      ${metrics.expectancy:,.2f}",
            f"  Profit Factor:   {metrics.profit_factor:.2f}",
        ]
        if equity_curve:
            first, last = equity_curve[0], equity_curve[-1]
            lines += [
                f"  Equity Curve:    {len(equity_curve)} days "
                f"({first.timestamp} → {last.timestamp})",
                f"  Max Drawdown:    ${max_drawdown(equity_curve):,.2f}",
            ]
        lines.append("─" * len(header))

    output = "\n".join(lines)
    print(output)
    return output
