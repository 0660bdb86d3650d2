"""
Position Records
================
Turn raw bridge position records into Position values.

Bridges disagree on field names (``ticket`` vs ``Ticket``, ``lots`` vs
``volume``, ``type: 0`` vs ``type: "Buy"``). The first alias present wins.
"""

import logging
import re
from typing import Any, Iterable, List, Mapping, Optional

from ..base import Position, PositionSide
from ..orders import OrderSide

logger = logging.getLogger(__name__)

BOT_TOKEN_PATTERN = re.compile(r"bot_[A-Za-z0-9-]+")

_TICKET = ("ticket", "Ticket", "position", "Position", "order", "Order")
_SYMBOL = ("symbol", "Symbol")
_TYPE = ("type", "Type", "orderType", "OrderType", "side")
_LOTS = ("lots", "Lots")
_VOLUME = ("volume", "Volume")
_OPEN_PRICE = ("openPrice", "OpenPrice", "priceOpen", "price_open")
_CURRENT_PRICE = ("currentPrice", "CurrentPrice", "closePrice", "ClosePrice", "priceCurrent", "price_current")
_PROFIT = ("profit", "Profit")
_SWAP = ("swap", "Swap")
_COMMISSION = ("commission", "Commission")
_OPEN_TIME = ("openTime", "OpenTime", "time", "Time")
_COMMENT = ("comment", "Comment")

# Keys under which bridges wrap the position array
_WRAPPERS = ("positions", "Positions", "orders", "Orders", "data", "result", "items")


def _first(record: Mapping, names: Iterable[str]) -> Any:
    for name in names:
        value = record.get(name)
        if value is not None and value != "":
            return value
    return None


def _float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _int(value: Any) -> Optional[int]:
    # Tickets are uint64; going through float loses digits above 2**53
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("+-").isdigit():
        return int(value.strip())
    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None
    return number


def extract_bot_token(comment: Optional[str]) -> Optional[str]:
    """Bot token tag (bot_<id>) carried in an order comment, if any."""
    if not comment:
        return None
    match = BOT_TOKEN_PATTERN.search(comment)
    return match.group(0) if match else None


def unwrap_records(body: Any) -> List[Mapping]:
    """Array body, or the first array found under a known wrapper key."""
    if body is None:
        return []
    if isinstance(body, list):
        return [r for r in body if isinstance(r, Mapping)]
    if isinstance(body, Mapping):
        for key in _WRAPPERS:
            if isinstance(body.get(key), list):
                return unwrap_records(body[key])
    return []


def parse_position(record: Mapping) -> Optional[Position]:
    """
    Build a Position from one raw record.

    Returns None for records that are not a live position: no positive
    ticket, no symbol, or no positive volume.
    """
    ticket = _int(_first(record, _TICKET))
    symbol = _first(record, _SYMBOL)
    lots = _first(record, _LOTS)
    raw_volume = _first(record, _VOLUME)

    display = _float(lots if lots is not None else raw_volume)
    native = _float(raw_volume if raw_volume is not None else lots)

    if ticket is None or ticket <= 0 or not symbol or display <= 0:
        return None

    try:
        side = OrderSide.parse(_first(record, _TYPE))
    except ValueError:
        logger.warning(f"Position {ticket}: unknown type {_first(record, _TYPE)!r}, skipped")
        return None

    comment = str(_first(record, _COMMENT) or "")
    open_time = _first(record, _OPEN_TIME)

    return Position(
        ticket=ticket,
        symbol=str(symbol),
        side=PositionSide.BUY if side == OrderSide.BUY else PositionSide.SELL,
        volume=display,
        native_volume=native,
        open_price=_float(_first(record, _OPEN_PRICE)),
        current_price=_float(_first(record, _CURRENT_PRICE)),
        profit=_float(_first(record, _PROFIT)),
        swap=_float(_first(record, _SWAP)),
        commission=_float(_first(record, _COMMISSION)),
        open_time=str(open_time) if open_time is not None else None,
        comment=comment,
        bot_token=extract_bot_token(comment),
    )


def parse_positions(body: Any) -> List[Position]:
    """All valid positions in a Positions/OpenedOrders body ([] for null)."""
    positions = []
    for record in unwrap_records(body):
        position = parse_position(record)
        if position is not None:
            positions.append(position)
    return positions
