"""
Order Executor
==============
Builds OrderSend requests, sends them and normalizes the answer.

Never raises: every path ends in an OrderOutcome so the caller always gets
the bridge's message, even on failure.
"""

import logging
from typing import Any, Dict, TYPE_CHECKING

from ...core.config import BridgeConfig
from ...core.exceptions import BridgeRejectedError, BrokerageError
from ..orders import OrderOutcome, OrderRequest, TRADE_RETCODE_ERROR
from .protocol import classify

if TYPE_CHECKING:
    from ..utils.symbol_normalizer import SymbolResolver
    from .client import MT5BridgeClient

logger = logging.getLogger(__name__)


def build_order_params(request: OrderRequest, symbol: str, slippage: int) -> Dict[str, Any]:
    """
    OrderSend parameters.

    Optional levels are added only when set and non-zero: some brokers read
    an explicit zero price as invalid rather than "market".
    """
    params: Dict[str, Any] = {
        "symbol": symbol,
        "operation": request.side.operation,
        "volume": request.volume,
        "slippage": slippage,
    }
    if request.price:
        params["price"] = request.price
    if request.stop_loss:
        params["stoploss"] = request.stop_loss
    if request.take_profit:
        params["takeprofit"] = request.take_profit
    comment = request.full_comment
    if comment:
        params["comment"] = comment
    return params


class OrderExecutor:
    """Sends new market orders through the bridge session."""

    def __init__(self, client: "MT5BridgeClient", resolver: "SymbolResolver", config: BridgeConfig):
        self._client = client
        self._resolver = resolver
        self._config = config

    async def send_order(self, request: OrderRequest) -> OrderOutcome:
        """
        Resolve + subscribe the symbol, send the order, classify the answer.

        Args:
            request: Order to submit (volume in lots)

        Returns:
            OrderOutcome (retcode 10009 on success, 10004 or the bridge code on failure)
        """
        if request.volume <= 0:
            return OrderOutcome.failed(f"Invalid volume: {request.volume}")

        try:
            symbol = await self._resolver.prepare(request.symbol)
            params = build_order_params(request, symbol, self._config.slippage)

            logger.info(
                f"Sending order: {request.side.value} {request.volume} {symbol}"
                + (f" sl={request.stop_loss}" if request.stop_loss else "")
                + (f" tp={request.take_profit}" if request.take_profit else "")
            )
            response = await self._client.request("OrderSend", params, method=self._config.order_method)

        except BrokerageError as e:
            logger.error(f"Order {request.side.value} {request.symbol} failed: {e.reason}")
            return OrderOutcome.failed(e.reason, error=e)
        except Exception as e:
            logger.error(f"Order {request.side.value} {request.symbol} unexpected error: {e}")
            return OrderOutcome.failed(str(e) or "Unknown error", error=e)

        result = classify(response.body, "OrderSend")
        if not response.ok:
            message = result.message if not result.success else (
                response.text.strip() or f"OrderSend failed with HTTP {response.status_code}"
            )
            logger.error(f"Order rejected (HTTP {response.status_code}): {message}")
            return OrderOutcome.failed(
                message,
                retcode=result.code or TRADE_RETCODE_ERROR,
                error=BridgeRejectedError(message, code=result.code),
            )

        if not result.success:
            logger.error(f"Order rejected by bridge: {result.message}")
            return OrderOutcome.failed(
                result.message,
                retcode=result.code or TRADE_RETCODE_ERROR,
                error=BridgeRejectedError(result.message, code=result.code),
            )

        logger.info(f"Order executed: {request.side.value} {request.volume} {symbol} ticket={result.ticket}")
        return OrderOutcome.ok(result.message, ticket=result.ticket)
