"""
Order Types
===========
Order requests and outcomes exchanged with the MT5 bridge.
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Optional


# MT5 trade return codes
TRADE_RETCODE_DONE = 10009
TRADE_RETCODE_ERROR = 10004
TRADE_RETCODE_INVALID_VOLUME = 10014


class OrderSide(Enum):
    """Order direction."""
    BUY = "BUY"
    SELL = "SELL"

    @classmethod
    def parse(cls, value) -> "OrderSide":
        """Accept OrderSide, 'buy'/'BUY'/'Buy' or MT5 order types 0/1."""
        if isinstance(value, cls):
            return value
        if value in (0, "0"):
            return cls.BUY
        if value in (1, "1"):
            return cls.SELL
        text = str(value).strip().upper()
        if text.endswith("BUY"):
            return cls.BUY
        if text.endswith("SELL"):
            return cls.SELL
        raise ValueError(f"Unknown order side: {value!r}")

    @property
    def operation(self) -> str:
        """Bridge spelling of the side ('Buy' / 'Sell')."""
        return self.value.capitalize()


@dataclass
class OrderRequest:
    """
    New market order.

    Optional price levels are only sent to the bridge when set and non-zero.

    Example:
        request = OrderRequest(symbol="XAUUSD", side=OrderSide.BUY, volume=0.01)
    """
    symbol: str
    side: OrderSide
    volume: float
    price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    comment: str = ""
    bot_token: Optional[str] = None

    def __post_init__(self):
        self.side = OrderSide.parse(self.side)

    @property
    def full_comment(self) -> str:
        """Comment with the bot token tag prepended (bot_<token>)."""
        parts = []
        if self.bot_token:
            token = self.bot_token
            parts.append(token if token.startswith("bot_") else f"bot_{token}")
        if self.comment:
            parts.append(self.comment)
        return " - ".join(parts)


@dataclass
class OrderOutcome:
    """
    Result of an order send or position close.

    Write operations never raise; they always return one of these.
    """
    retcode: int
    message: str
    ticket: Optional[int] = None
    realized_profit: Optional[float] = None
    volume_format: Optional[str] = None
    error: Optional[Exception] = field(default=None, repr=False)

    @property
    def success(self) -> bool:
        return self.retcode == TRADE_RETCODE_DONE

    @classmethod
    def ok(cls, message: str, ticket: Optional[int] = None, **kwargs) -> "OrderOutcome":
        return cls(retcode=TRADE_RETCODE_DONE, message=message, ticket=ticket, **kwargs)

    @classmethod
    def failed(
        cls,
        message: str,
        retcode: int = TRADE_RETCODE_ERROR,
        error: Optional[Exception] = None,
        **kwargs
    ) -> "OrderOutcome":
        if retcode == TRADE_RETCODE_DONE:
            retcode = TRADE_RETCODE_ERROR
        return cls(retcode=retcode, message=message, error=error, **kwargs)

    def __repr__(self) -> str:
        state = "OK" if self.success else f"FAIL {self.retcode}"
        return f"OrderOutcome({state}: ticket={self.ticket} {self.message!r})"
