"""
MT5 Gateway - Broker Gateway Adapter for MT5 HTTP Bridges
=========================================================

Async adapter that lets a trading application talk to a MetaTrader 5
account through an HTTP bridge.

Modules:
--------
- core: Configuration, logging, error taxonomy
- brokerages: MT5Brokerage facade, order and position types
- brokerages.mt5_bridge: Session Manager, Response Normalizer,
  Order Executor, Position Closer
- brokerages.utils: Symbol Resolver

Usage:
------
    from mt5_gateway import Config, MT5Brokerage, Credentials

    config = Config.load("config.yaml")
    async with MT5Brokerage(config.bridge) as brokerage:
        await brokerage.connect(Credentials("12345", "secret", "Broker-Demo"))
        print(await brokerage.get_positions())
"""

__version__ = "1.0.0"
__author__ = "MT5 Gateway"

from .core import Config, BridgeConfig, setup_logger
from .core.exceptions import BrokerageError
from .brokerages import (
    Credentials,
    OrderOutcome,
    OrderRequest,
    OrderSide,
    MT5Brokerage,
)

__all__ = [
    "Config",
    "BridgeConfig",
    "setup_logger",
    "BrokerageError",
    "Credentials",
    "OrderOutcome",
    "OrderRequest",
    "OrderSide",
    "MT5Brokerage",
]
