"""
Base Brokerage Interface
========================
Value records handed to callers and the async interface the adapter
implements. Records are plain data: they are rebuilt on every query and
never mutated by the adapter afterwards.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional
import logging

from .orders import OrderOutcome, OrderRequest

logger = logging.getLogger(__name__)


class PositionSide(Enum):
    BUY = "Buy"
    SELL = "Sell"


@dataclass(frozen=True)
class Credentials:
    """
    Broker login. Transient: consumed by connect() and never persisted.
    The password is excluded from repr so it cannot leak into logs.
    """
    account_number: str
    password: str = field(repr=False)
    server_name: str


@dataclass
class ConnectionResult:
    """Outcome of a connect() call."""
    success: bool
    message: str
    token: Optional[str] = field(default=None, repr=False)
    error: Optional[Exception] = field(default=None, repr=False)


@dataclass(frozen=True)
class Position:
    """Open trade as reported by the bridge."""
    ticket: int
    symbol: str
    side: PositionSide
    volume: float            # display volume (lots)
    native_volume: float     # unit as reported by the bridge
    open_price: float = 0.0
    current_price: float = 0.0
    profit: float = 0.0
    swap: float = 0.0
    commission: float = 0.0
    open_time: Optional[str] = None
    comment: str = ""
    bot_token: Optional[str] = None

    @property
    def is_buy(self) -> bool:
        return self.side == PositionSide.BUY


@dataclass(frozen=True)
class Quote:
    """Bid/ask snapshot for a symbol."""
    symbol: str
    bid: float
    ask: float
    time: str

    @property
    def mid(self) -> float:
        return (self.bid + self.ask) / 2

    @property
    def spread(self) -> float:
        return self.ask - self.bid


@dataclass(frozen=True)
class AccountInfo:
    """AccountSummary merged with (optional) AccountDetails."""
    balance: float = 0.0
    equity: float = 0.0
    margin: float = 0.0
    free_margin: float = 0.0
    margin_level: float = 0.0
    profit: float = 0.0
    currency: Optional[str] = None
    account_number: Optional[str] = None
    account_name: Optional[str] = None
    server_name: Optional[str] = None
    leverage: Optional[float] = None
    credit: Optional[float] = None
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class BaseBrokerage(ABC):
    """
    Async brokerage interface.

    Read operations return empty/None on failure, except authentication
    expiry which always raises so the caller can force a re-login.
    Write operations never raise; they return an OrderOutcome.
    """

    def __init__(self, name: str):
        self.name = name
        self._on_message: List[Callable[[str], None]] = []

    # ========== Connection ==========

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check if a session is held."""

    @abstractmethod
    async def connect(self, credentials: Credentials) -> ConnectionResult:
        """Authenticate against the broker."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Drop the session."""

    # ========== Reads ==========

    @abstractmethod
    async def get_positions(self) -> List[Position]:
        """Get all open positions."""

    @abstractmethod
    async def get_quote(self, symbol: str) -> Optional[Quote]:
        """Get current bid/ask for a symbol."""

    @abstractmethod
    async def get_account_info(self) -> Optional[AccountInfo]:
        """Get balance/equity/margin."""

    async def get_position(self, ticket: int) -> Optional[Position]:
        """
        Get position by ticket.

        Args:
            ticket: Broker ticket

        Returns:
            Position or None
        """
        for pos in await self.get_positions():
            if pos.ticket == ticket:
                return pos
        return None

    # ========== Writes ==========

    @abstractmethod
    async def send_order(self, request: OrderRequest) -> OrderOutcome:
        """Submit a market order."""

    @abstractmethod
    async def close_position(self, ticket: int, volume: Optional[float] = None) -> OrderOutcome:
        """Close an open position by ticket."""

    # ========== Events ==========

    def on_message(self, callback: Callable[[str], None]) -> None:
        """
        Register callback for broker messages.

        Args:
            callback: Function to call on messages
        """
        self._on_message.append(callback)

    def _emit_message(self, message: str) -> None:
        """Emit message to all listeners."""
        logger.info(f"[{self.name}] {message}")
        for callback in self._on_message:
            try:
                callback(message)
            except Exception as e:
                logger.warning(f"[{self.name}] message callback error: {e}")
