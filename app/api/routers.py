"""Internal API routers — account connection, metrics, equity, trades, settings.

No business logic.  Delegates to the ``AccountService``; any provider
failure surfaces as an empty/zero payload with HTTP 200.
"""

import logging
import uuid

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from app.analytics.equity_curve import max_drawdown
from app.models.settings import update_from_dict

logger = logging.getLogger("ascendant.api")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_service = None  # Set via configure_routers()
_watcher = None  # Set via configure_routers()


class ConnectRequest(BaseModel):
    account_id: str
    login: str
    password: str
    server: str


def configure_routers(service=None, watcher=None) -> None:
    """Inject dependencies from the application startup.

    Args:
        service: An ``AccountService`` instance (or duck-type for tests).
        watcher: An ``AccountWatcher`` for the live update stream.
    """
    global _service, _watcher  # noqa: PLW0603
    _service = service
    _watcher = watcher


# ── Connection ───────────────────────────────────────────────────────────


@router.post("/accounts/connect")
async def connect_account(body: ConnectRequest):
    """Provision and connect a MetaTrader account."""
    if _service is None:
        return {"connected": False}
    logger.info("Connect requested for %s on %s", body.account_id, body.server)
    connected = await _service.connect_account(
        body.account_id, body.login, body.password, body.server,
    )
    return {"connected": connected}


@router.delete("/accounts/{account_id}")
async def disconnect_account(account_id: str):
    """Drop an account's connection handle."""
    if _service is not None:
        _service.disconnect(account_id)
    return {"disconnected": True}


@router.get("/accounts/{account_id}/status")
async def get_account_status(account_id: str):
    """Report whether the account answers data queries."""
    if _service is None:
        return {"connected": False}
    return {"connected": await _service.is_connected(account_id)}


# ── Analytics ────────────────────────────────────────────────────────────


@router.get("/accounts/{account_id}/metrics")
async def get_metrics(account_id: str):
    """Return performance metrics, or ``null`` when unavailable."""
    if _service is None:
        return {"metrics": None}
    metrics = await _service.get_account_metrics(account_id)
    return {"metrics": metrics.to_dict() if metrics is not None else None}


@router.get("/accounts/{account_id}/equity")
async def get_equity(account_id: str):
    """Return the daily equity curve and its maximum drawdown."""
    if _service is None:
        return {"points": [], "max_drawdown": 0.0}
    points = await _service.get_equity_history(account_id)
    return {
        "points": [p.to_dict() for p in points],
        "max_drawdown": round(max_drawdown(points), 2),
    }


@router.get("/accounts/{account_id}/trades")
async def get_trades(
    account_id: str,
    limit: int = Query(default=50, ge=1, le=500),
):
    """Return closed trades, newest first, with a P&L total."""
    if _service is None:
        return {"trades": [], "total": 0, "total_pnl": 0.0}
    trades = await _service.get_closed_trades(account_id)
    trades = sorted(trades, key=lambda t: t.close_time, reverse=True)
    total_pnl = sum(t.profit for t in trades)
    return {
        "trades": [t.to_dict() for t in trades[:limit]],
        "total": len(trades),
        "total_pnl": round(total_pnl, 2),
    }


@router.get("/accounts/{account_id}/objectives")
async def get_objectives(account_id: str):
    """Evaluate challenge objectives for the account."""
    if _service is None:
        return {"events": []}
    events = await _service.check_objectives(account_id)
    return {"events": [e.to_payload() for e in events]}


# ── Settings ─────────────────────────────────────────────────────────────


@router.get("/accounts/{account_id}/settings")
async def get_settings(account_id: str):
    """Return the account's dashboard settings."""
    if _service is None:
        return {"settings": None}
    return {"settings": _service.get_settings(account_id).to_dict()}


@router.post("/accounts/{account_id}/settings")
async def post_settings(account_id: str, body: dict):
    """Validate and apply a partial settings update.

    Nothing is applied if any field is invalid.
    """
    if _service is None:
        return {"status": "error", "errors": ["service unavailable"]}

    update, errors = update_from_dict(body)
    if not errors:
        settings, errors = _service.update_settings(account_id, update)
    if errors:
        return {"status": "error", "errors": errors}

    return {"status": "ok", "settings": settings.to_dict()}


# ── Live updates ─────────────────────────────────────────────────────────


@router.websocket("/accounts/{account_id}/stream")
async def stream_account(websocket: WebSocket, account_id: str):
    """Push an update on every refresh until the client disconnects.

    Each socket gets its own subscription, cancelled when the socket
    closes; a refresh still running at that point is discarded.
    """
    await websocket.accept()
    if _watcher is None:
        await websocket.close(code=1011)
        return

    async def _push(update) -> None:
        await websocket.send_json(update.to_dict())

    subscription = _watcher.subscribe(account_id, _push, subscriber=uuid.uuid4().hex)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Stream client for %s disconnected", account_id)
    finally:
        subscription.cancel()
