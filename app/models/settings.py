"""Dashboard settings for one trading account.

Settings change only through a typed ``SettingsUpdate``.  Every field of the
update is validated before anything is merged.
"""

from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from typing import Optional

from app.analytics.models import finite_or_none
from app.analytics.objectives import TradingObjectives


@dataclass(frozen=True)
class DashboardSettings:
    """Per-account dashboard configuration."""

    refresh_interval_seconds: int = 60
    history_start: date = date(2020, 1, 1)
    objectives: Optional[TradingObjectives] = None
    notify_webhooks: bool = True

    def to_dict(self) -> dict:
        objectives = None
        if self.objectives is not None:
            objectives = {
                "min_trading_days": self.objectives.min_trading_days,
                "max_daily_loss": self.objectives.max_daily_loss,
                "max_loss": self.objectives.max_loss,
                "profit_target": self.objectives.profit_target,
            }
        return {
            "refresh_interval_seconds": self.refresh_interval_seconds,
            "history_start": self.history_start.isoformat(),
            "objectives": objectives,
            "notify_webhooks": self.notify_webhooks,
        }


@dataclass(frozen=True)
class SettingsUpdate:
    """A partial settings change.  ``None`` leaves a field untouched."""

    refresh_interval_seconds: Optional[int] = None
    history_start: Optional[date] = None
    objectives: Optional[TradingObjectives] = None
    notify_webhooks: Optional[bool] = None


def apply_update(
    settings: DashboardSettings,
    update: SettingsUpdate,
) -> tuple[DashboardSettings, list[str]]:
    """Validate *update* and merge it into *settings*.

    Returns:
        ``(new_settings, errors)``.  When *errors* is non-empty the original
        settings are returned unchanged.
    """
    errors = validate_update(update)
    if errors:
        return settings, errors

    changes = {
        name: value
        for name, value in (
            ("refresh_interval_seconds", update.refresh_interval_seconds),
            ("history_start", update.history_start),
            ("objectives", update.objectives),
            ("notify_webhooks", update.notify_webhooks),
        )
        if value is not None
    }
    return replace(settings, **changes), []


def validate_update(update: SettingsUpdate) -> list[str]:
    """Return a list of human-readable validation errors (empty if valid)."""
    errors: list[str] = []

    if update.refresh_interval_seconds is not None:
        if not 10 <= update.refresh_interval_seconds <= 3600:
            errors.append("refresh_interval_seconds must be 10–3600")

    if update.history_start is not None:
        if update.history_start > datetime.now(timezone.utc).date():
            errors.append("history_start must not be in the future")

    obj = update.objectives
    if obj is not None:
        if obj.min_trading_days < 0:
            errors.append("objectives.min_trading_days must be >= 0")
        for name in ("max_daily_loss", "max_loss", "profit_target"):
            value = finite_or_none(getattr(obj, name))
            if value is None or value <= 0:
                errors.append(f"objectives.{name} must be a finite number > 0")

    return errors


def update_from_dict(body: dict) -> tuple[SettingsUpdate, list[str]]:
    """Build a ``SettingsUpdate`` from a JSON body.

    Unknown keys and values of the wrong type are reported as errors rather
    than merged.
    """
    errors: list[str] = []
    known = {"refresh_interval_seconds", "history_start", "objectives", "notify_webhooks"}
    for key in body:
        if key not in known:
            errors.append(f"unknown setting: {key}")

    refresh = None
    if body.get("refresh_interval_seconds") is not None:
        value = body["refresh_interval_seconds"]
        if isinstance(value, int) and not isinstance(value, bool):
            refresh = value
        else:
            errors.append("refresh_interval_seconds must be an integer")

    history_start = None
    if body.get("history_start") is not None:
        try:
            history_start = date.fromisoformat(str(body["history_start"]))
        except ValueError:
            errors.append("history_start must be an ISO date (YYYY-MM-DD)")

    objectives = None
    if body.get("objectives") is not None:
        raw = body["objectives"]
        try:
            objectives = TradingObjectives(
                min_trading_days=int(raw["min_trading_days"]),
                max_daily_loss=float(raw["max_daily_loss"]),
                max_loss=float(raw["max_loss"]),
                profit_target=float(raw["profit_target"]),
            )
        except (KeyError, TypeError, ValueError):
            errors.append(
                "objectives must contain numeric min_trading_days, "
                "max_daily_loss, max_loss and profit_target"
            )

    notify = None
    if body.get("notify_webhooks") is not None:
        if isinstance(body["notify_webhooks"], bool):
            notify = body["notify_webhooks"]
        else:
            errors.append("notify_webhooks must be a boolean")

    update = SettingsUpdate(
        refresh_interval_seconds=refresh,
        history_start=history_start,
        objectives=objectives,
        notify_webhooks=notify,
    )
    return update, errors
