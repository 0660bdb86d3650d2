"""
Brokerages Module
=================
Async broker gateway for MT5 accounts behind an HTTP bridge.

Supports:
- Session lifecycle with persisted token and auth-expiry detection
- Broker symbol resolution (suffixes, metal aliases, prop .raw symbols)
- Market orders and idempotent position close with volume probing
- Positions, quotes and account summary

Usage:
    from mt5_gateway.brokerages import MT5Brokerage, Credentials, OrderRequest, OrderSide

    brokerage = MT5Brokerage(config.bridge)
    await brokerage.connect(Credentials("12345", "secret", "Broker-Demo"))

    outcome = await brokerage.send_order(
        OrderRequest(symbol="EURUSD", side=OrderSide.BUY, volume=0.01)
    )
"""

from .orders import (
    OrderSide,
    OrderRequest,
    OrderOutcome,
    TRADE_RETCODE_DONE,
    TRADE_RETCODE_ERROR,
)
from .base import (
    BaseBrokerage,
    Credentials,
    ConnectionResult,
    Position,
    PositionSide,
    Quote,
    AccountInfo,
)

# Lazy import: the facade pulls in httpx
def __getattr__(name):
    if name == "MT5Brokerage":
        from .mt5 import MT5Brokerage
        return MT5Brokerage
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

__all__ = [
    # Orders
    'OrderSide',
    'OrderRequest',
    'OrderOutcome',
    'TRADE_RETCODE_DONE',
    'TRADE_RETCODE_ERROR',
    # Base
    'BaseBrokerage',
    'Credentials',
    'ConnectionResult',
    'Position',
    'PositionSide',
    'Quote',
    'AccountInfo',
    # Implementation (lazy loaded)
    'MT5Brokerage',
]
