"""Tests for app.services.watcher — subscriptions with cancellation handles."""

import asyncio
from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.analytics.models import EquityPoint, PerformanceMetrics
from app.models.settings import DashboardSettings
from app.services.watcher import AccountUpdate, AccountWatcher

_METRICS = PerformanceMetrics(
    balance=1000.0, equity=1010.0, trade_count=2, total_lots=0.2, win_rate=50.0,
    avg_win=20.0, avg_loss=10.0, avg_risk_reward_ratio=2.0, expectancy=5.0,
    profit_factor=2.0,
)


def _make_service(metrics=_METRICS, curve=None):
    service = MagicMock()
    service.get_account_metrics = AsyncMock(return_value=metrics)
    service.get_equity_history = AsyncMock(
        return_value=curve if curve is not None else [EquityPoint(date(2025, 1, 1), 1000.0)]
    )
    service.check_objectives = AsyncMock(return_value=[])
    service.get_settings.return_value = DashboardSettings(refresh_interval_seconds=10)
    return service


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_combines_service_calls(self):
        curve = [EquityPoint(date(2025, 1, 1), 1000.0), EquityPoint(date(2025, 1, 2), 900.0)]
        watcher = AccountWatcher(_make_service(curve=curve), interval_seconds=0)
        update = await watcher.refresh("acc-1")
        assert isinstance(update, AccountUpdate)
        assert update.metrics == _METRICS
        assert update.max_drawdown == pytest.approx(100.0)
        d = update.to_dict()
        assert d["metrics"]["tradeCount"] == 2
        assert d["points"][1] == {"timestamp": "2025-01-02", "equity": 900.0}

    @pytest.mark.asyncio
    async def test_unavailable_metrics_serialise_as_none(self):
        watcher = AccountWatcher(_make_service(metrics=None), interval_seconds=0)
        update = await watcher.refresh("acc-1")
        assert update.to_dict()["metrics"] is None


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_callback_receives_updates_until_cancelled(self):
        watcher = AccountWatcher(_make_service(), interval_seconds=0)
        received: list[AccountUpdate] = []
        got_two = asyncio.Event()

        def _callback(update):
            received.append(update)
            if len(received) >= 2:
                got_two.set()

        sub = watcher.subscribe("acc-1", _callback)
        await asyncio.wait_for(got_two.wait(), timeout=2)
        assert sub.active
        assert watcher.account_ids == ["acc-1"]

        sub.cancel()
        await asyncio.sleep(0)
        count = len(received)
        await asyncio.sleep(0.01)
        assert not sub.active
        assert len(received) == count

    @pytest.mark.asyncio
    async def test_async_callback_awaited(self):
        watcher = AccountWatcher(_make_service(), interval_seconds=0)
        done = asyncio.Event()

        async def _callback(update):
            done.set()

        sub = watcher.subscribe("acc-1", _callback)
        await asyncio.wait_for(done.wait(), timeout=2)
        sub.cancel()

    @pytest.mark.asyncio
    async def test_resubscribe_replaces_previous(self):
        watcher = AccountWatcher(_make_service(), interval_seconds=0)
        first = watcher.subscribe("acc-1", lambda u: None)
        second = watcher.subscribe("acc-1", lambda u: None)
        assert first.cancelled
        assert not second.cancelled
        watcher.cancel_all()
        await asyncio.sleep(0)
        assert second.cancelled
        assert watcher.account_ids == []

    @pytest.mark.asyncio
    async def test_subscribers_on_same_account_are_independent(self):
        watcher = AccountWatcher(_make_service(), interval_seconds=0)
        b_joined = asyncio.Event()
        a_after_b = asyncio.Event()

        def _on_a(update):
            if b_joined.is_set():
                a_after_b.set()

        first = watcher.subscribe("acc", _on_a, subscriber="tab-a")
        second = watcher.subscribe("acc", lambda u: None, subscriber="tab-b")
        b_joined.set()
        await asyncio.wait_for(a_after_b.wait(), timeout=2)

        assert first.active and second.active
        assert watcher.subscribers == ["tab-a", "tab-b"]
        watcher.cancel_all()

    @pytest.mark.asyncio
    async def test_same_subscriber_switching_accounts_replaces(self):
        watcher = AccountWatcher(_make_service(), interval_seconds=0)
        first = watcher.subscribe("acc-1", lambda u: None, subscriber="tab")
        second = watcher.subscribe("acc-2", lambda u: None, subscriber="tab")
        assert first.cancelled
        assert watcher.subscribers == ["tab"]
        await asyncio.sleep(0)
        assert watcher.account_ids == ["acc-2"]
        second.cancel()

    @pytest.mark.asyncio
    async def test_direct_cancel_forgets_subscription(self):
        watcher = AccountWatcher(_make_service(), interval_seconds=0)
        sub = watcher.subscribe("acc-1", lambda u: None, subscriber="tab")
        sub.cancel()
        assert watcher.subscribers == []
        # A later handle for the same subscriber is not dropped by a stale cancel
        fresh = watcher.subscribe("acc-1", lambda u: None, subscriber="tab")
        sub.cancel()
        assert watcher.subscribers == ["tab"]
        fresh.cancel()

    @pytest.mark.asyncio
    async def test_in_flight_result_discarded_on_cancel(self):
        service = _make_service()
        release = asyncio.Event()
        started = asyncio.Event()

        async def _slow_metrics(account_id):
            started.set()
            await release.wait()
            return _METRICS

        service.get_account_metrics = AsyncMock(side_effect=_slow_metrics)
        watcher = AccountWatcher(service, interval_seconds=0)
        callback = MagicMock()

        sub = watcher.subscribe("acc-1", callback)
        await asyncio.wait_for(started.wait(), timeout=2)
        sub.cancel()
        release.set()
        await asyncio.sleep(0.01)

        callback.assert_not_called()

    @pytest.mark.asyncio
    async def test_callback_error_does_not_stop_loop(self):
        watcher = AccountWatcher(_make_service(), interval_seconds=0)
        calls = []
        recovered = asyncio.Event()

        def _callback(update):
            calls.append(update)
            if len(calls) == 1:
                raise RuntimeError("render failed")
            recovered.set()

        sub = watcher.subscribe("acc-1", _callback)
        await asyncio.wait_for(recovered.wait(), timeout=2)
        sub.cancel()
        assert len(calls) >= 2

    def test_interval_falls_back_to_settings(self):
        watcher = AccountWatcher(_make_service())
        assert watcher._interval_for("acc-1") == 10.0
