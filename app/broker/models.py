"""Broker data models — typed representations of MetaApi REST objects."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

# MetaTrader deal types that carry trade P&L.  Everything else on the ledger
# (balance, credit, charge, bonus, commission, interest ...) is an account
# operation.
TRADING_DEAL_TYPES = frozenset({"DEAL_TYPE_BUY", "DEAL_TYPE_SELL"})


@dataclass(frozen=True)
class AccountInformation:
    """Live state of a MetaTrader account."""

    balance: float
    equity: float
    currency: str = "USD"
    leverage: Optional[float] = None
    margin: Optional[float] = None
    free_margin: Optional[float] = None
    platform: str = ""
    broker: str = ""


@dataclass(frozen=True)
class AccountState:
    """Provisioning record of a MetaApi account."""

    account_id: str
    state: str  # e.g. "DEPLOYED", "UNDEPLOYED", "DEPLOYING"
    connection_status: str  # e.g. "CONNECTED", "DISCONNECTED"
    login: str = ""
    server: str = ""
    reliability: str = ""


@dataclass(frozen=True)
class HistoryOrder:
    """A completed order from the account history.

    Numeric fields are ``None`` when the feed sent nothing usable.
    """

    order_id: str
    type: str  # e.g. "ORDER_TYPE_BUY"
    symbol: str
    volume: Optional[float]
    position_id: Optional[str]
    state: str = ""
    open_price: Optional[float] = None
    close_price: Optional[float] = None
    profit: Optional[float] = None
    open_time: Optional[datetime] = None
    close_time: Optional[datetime] = None

    @property
    def direction(self) -> str:
        """``"buy"`` or ``"sell"``; unknown types count as buy."""
        return "sell" if "SELL" in self.type.upper() else "buy"


@dataclass(frozen=True)
class Deal:
    """A ledger deal: trade fills and balance operations alike."""

    deal_id: str
    time: Optional[datetime]
    profit: Optional[float]
    price: Optional[float] = None
    volume: Optional[float] = None
    symbol: str = ""
    position_id: Optional[str] = None
    type: Optional[str] = None  # e.g. "DEAL_TYPE_BUY", "DEAL_TYPE_BALANCE"
    entry_type: Optional[str] = None  # e.g. "DEAL_ENTRY_IN", "DEAL_ENTRY_OUT"

    @property
    def is_trading(self) -> bool:
        """``True`` for trade P&L; untyped deals are assumed to be trades."""
        return self.type is None or self.type in TRADING_DEAL_TYPES
