"""Tests for challenge objectives, daily tracking and webhook delivery."""

from datetime import date

import httpx
import pytest

from app.analytics.models import AccountSnapshot
from app.analytics.objectives import (
    DAILY_LOSS_BREACHED,
    MAX_LOSS_BREACHED,
    PROFIT_TARGET_REACHED,
    DailyTracker,
    ObjectiveEvent,
    TradingObjectives,
    evaluate_objectives,
)
from app.notify.webhook import WebhookNotifier

OBJECTIVES = TradingObjectives(
    min_trading_days=5, max_daily_loss=1500.0, max_loss=3000.0, profit_target=3000.0,
)


class TestDailyTracker:
    def test_initial_state(self):
        t = DailyTracker(50_000.0, day=date(2025, 1, 6))
        assert t.start_balance == 50_000.0
        assert t.low_balance == 50_000.0
        assert t.day == date(2025, 1, 6)

    def test_low_balance_tracks_minimum(self):
        t = DailyTracker(50_000.0, day=date(2025, 1, 6))
        t.update(49_000.0, day=date(2025, 1, 6))
        t.update(49_500.0, day=date(2025, 1, 6))
        assert t.low_balance == 49_000.0
        assert t.start_balance == 50_000.0

    def test_rollover_resets_start_balance(self):
        t = DailyTracker(50_000.0, day=date(2025, 1, 6))
        t.update(48_000.0, day=date(2025, 1, 6))
        t.update(48_200.0, day=date(2025, 1, 7))
        assert t.day == date(2025, 1, 7)
        assert t.start_balance == 48_200.0
        assert t.low_balance == 48_200.0


class TestEvaluateObjectives:
    def _tracker(self, start=50_000.0):
        return DailyTracker(start, day=date(2025, 1, 6))

    def test_nothing_hit(self):
        snap = AccountSnapshot(balance=50_500.0, equity=50_400.0)
        assert evaluate_objectives("a1", snap, self._tracker(), OBJECTIVES) == []

    def test_max_loss(self):
        snap = AccountSnapshot(balance=50_000.0, equity=47_000.0)
        events = evaluate_objectives("a1", snap, self._tracker(), OBJECTIVES)
        assert [e.event_type for e in events] == [MAX_LOSS_BREACHED]
        assert events[0].data == {"drawdown": 3000.0}
        assert events[0].account_id == "a1"

    def test_daily_loss(self):
        snap = AccountSnapshot(balance=48_400.0, equity=48_400.0)
        events = evaluate_objectives("a1", snap, self._tracker(), OBJECTIVES)
        assert [e.event_type for e in events] == [DAILY_LOSS_BREACHED]
        assert events[0].data["dailyLoss"] == pytest.approx(1600.0)
        assert events[0].data["lowBalance"] == pytest.approx(48_400.0)

    def test_daily_loss_reports_intraday_low(self):
        tracker = self._tracker()
        tracker.update(48_000.0, day=date(2025, 1, 6))
        snap = AccountSnapshot(balance=48_300.0, equity=48_300.0)
        events = evaluate_objectives("a1", snap, tracker, OBJECTIVES)
        assert events[0].data == {
            "dailyLoss": pytest.approx(1700.0), "lowBalance": 48_000.0,
        }

    def test_min_trading_days_never_raises_event(self):
        objectives = TradingObjectives(
            min_trading_days=30, max_daily_loss=1500.0, max_loss=3000.0, profit_target=3000.0,
        )
        snap = AccountSnapshot(balance=50_000.0, equity=50_000.0)
        assert evaluate_objectives("a1", snap, self._tracker(), objectives) == []

    def test_profit_target(self):
        snap = AccountSnapshot(balance=53_000.0, equity=53_100.0)
        events = evaluate_objectives("a1", snap, self._tracker(), OBJECTIVES)
        assert [e.event_type for e in events] == [PROFIT_TARGET_REACHED]
        assert events[0].data["profit"] == pytest.approx(3000.0)

    def test_payload_shape(self):
        event = ObjectiveEvent(MAX_LOSS_BREACHED, "a1", {"drawdown": 1.0})
        assert event.to_payload() == {
            "eventType": "maxLossBreached",
            "accountId": "a1",
            "data": {"drawdown": 1.0},
        }


class TestWebhookNotifier:
    @pytest.mark.asyncio
    async def test_disabled_without_url(self):
        notifier = WebhookNotifier(None)
        assert not notifier.enabled
        assert await notifier.send(ObjectiveEvent(MAX_LOSS_BREACHED, "a1")) is False

    @pytest.mark.asyncio
    async def test_posts_payload(self, monkeypatch):
        captured = {}

        async def _mock_post(self, url, **kwargs):
            captured["url"] = url
            captured["json"] = kwargs.get("json")
            return httpx.Response(200, json={}, request=httpx.Request("POST", url))

        monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

        notifier = WebhookNotifier("https://hooks.example.com/x")
        ok = await notifier.send(ObjectiveEvent(PROFIT_TARGET_REACHED, "a1", {"profit": 5.0}))

        assert ok is True
        assert captured["url"] == "https://hooks.example.com/x"
        assert captured["json"]["eventType"] == "profitTargetReached"

    @pytest.mark.asyncio
    async def test_failure_is_swallowed(self, monkeypatch):
        async def _mock_post(self, url, **kwargs):
            raise httpx.ConnectError("refused", request=httpx.Request("POST", url))

        monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

        notifier = WebhookNotifier("https://hooks.example.com/x")
        assert await notifier.send(ObjectiveEvent(MAX_LOSS_BREACHED, "a1")) is False
