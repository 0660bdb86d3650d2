"""
MetaTrader 5 Bridge Brokerage
=============================

Broker gateway for MT5 accounts reached through an HTTP bridge.

Features:
- Session management with token persistence (connect / disconnect / liveness)
- Symbol resolution against the broker's own symbol list
- Market orders via OrderSend
- Position close via OrderClose with volume-format probing
- Positions, quotes and account summary

Environment Variables:
    MT5_API_URL: Bridge base URL
    MT5_API_KEY: Bridge API key
    MT5_ACCOUNT_TYPE: demo | live | prop

Usage:
    from mt5_gateway.brokerages import MT5Brokerage, Credentials, OrderRequest, OrderSide

    async with MT5Brokerage(Config.load().bridge) as brokerage:
        await brokerage.connect(Credentials("12345", "secret", "Broker-Demo"))
        outcome = await brokerage.send_order(
            OrderRequest(symbol="XAUUSD", side=OrderSide.BUY, volume=0.01)
        )
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

import httpx

from ..core.config import BridgeConfig
from ..core.exceptions import (
    AuthenticationExpiredError,
    BridgeRejectedError,
    BrokerageError,
    NotConnectedError,
)
from .base import AccountInfo, BaseBrokerage, ConnectionResult, Credentials, Position, Quote
from .mt5_bridge.client import MT5BridgeClient
from .mt5_bridge.closer import PositionCloser
from .mt5_bridge.executor import OrderExecutor
from .mt5_bridge.positions import parse_positions, unwrap_records
from .mt5_bridge.protocol import classify
from .mt5_bridge.session import TokenStore
from .orders import OrderOutcome, OrderRequest
from .utils.symbol_normalizer import (
    FALLBACK_SYMBOLS,
    SymbolResolver,
    strip_broker_suffix,
    to_account_symbol,
)

logger = logging.getLogger(__name__)


def _field(body: Mapping, *names: str) -> Any:
    for name in names:
        value = body.get(name)
        if value is not None and value != "":
            return value
    return None


def _number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class MT5Brokerage(BaseBrokerage):
    """
    MT5 bridge adapter.

    Owns one Session Manager and wires the Symbol Resolver, Order Executor
    and Position Closer to it.

    Read operations return [] / None on failure; AuthenticationExpiredError
    always propagates so the caller can force a re-login. Write operations
    never raise.

    Example:
        brokerage = MT5Brokerage(config.bridge, token_store=FileTokenStore())
        result = await brokerage.connect(credentials)
        positions = await brokerage.get_positions()
        outcome = await brokerage.close_position(positions[0].ticket)
    """

    def __init__(
        self,
        config: BridgeConfig,
        token_store: Optional[TokenStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        account_type: Optional[str] = None,
    ):
        """
        Initialize MT5 bridge brokerage.

        Args:
            config: Bridge settings (validated before anything else)
            token_store: Where the session token is persisted
            transport: httpx transport override (tests)
            account_type: Overrides config.account_type (demo, live, prop)

        Raises:
            ConfigurationError: bridge URL or API key missing
        """
        super().__init__("MT5Bridge")

        if account_type is not None:
            config = replace(config, account_type=account_type)
        self.config = config

        self._client = MT5BridgeClient(config, token_store=token_store, transport=transport)
        self._resolver = SymbolResolver(self._client)
        self._executor = OrderExecutor(self._client, self._resolver, config)
        self._closer = PositionCloser(self._client, self._fetch_positions, config)

        logger.info(
            f"MT5Brokerage initialized: url={config.api_url}, account_type={config.account_type}, "
            f"contract={config.credential_style}/{config.positions_endpoint}/{config.order_method}"
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def client(self) -> MT5BridgeClient:
        return self._client

    @property
    def resolver(self) -> SymbolResolver:
        return self._resolver

    # ========== Connection ==========

    @property
    def is_connected(self) -> bool:
        return self._client.is_connected

    def get_stored_token(self) -> Optional[str]:
        return self._client.get_stored_token()

    async def connect(self, credentials: Credentials) -> ConnectionResult:
        result = await self._client.connect(credentials)
        self._resolver.invalidate()
        if result.success:
            self._emit_message(f"Connected to MT5 account {credentials.account_number}")
        else:
            self._emit_message(f"Connection failed: {result.message}")
        return result

    async def disconnect(self) -> None:
        await self._client.disconnect()
        self._resolver.invalidate()
        self._emit_message("Disconnected")

    async def check_connection(self) -> bool:
        return await self._client.check_connection()

    # ========== Positions ==========

    async def _fetch_positions(self) -> List[Position]:
        """
        Open positions, raising on failure.

        The closer relies on this: an empty list means "nothing open",
        never "could not read".
        """
        endpoint = self.config.positions_endpoint
        response = await self._client.request(endpoint)
        if not response.ok:
            raise BridgeRejectedError(f"{endpoint} failed with HTTP {response.status_code}")

        body = response.body
        if isinstance(body, str) or (isinstance(body, Mapping) and not unwrap_records(body)):
            result = classify(body, endpoint)
            if not result.success:
                raise BridgeRejectedError(result.message, code=result.code)

        return parse_positions(body)

    async def get_positions(self) -> List[Position]:
        """
        Get all open positions.

        Returns:
            List of Position ([] on failure)

        Raises:
            AuthenticationExpiredError
        """
        try:
            positions = await self._fetch_positions()
        except AuthenticationExpiredError:
            raise
        except NotConnectedError:
            logger.debug("get_positions called without a session")
            return []
        except BrokerageError as e:
            logger.error(f"Error getting positions: {e.reason}")
            return []
        logger.debug(f"Fetched {len(positions)} open positions")
        return positions

    async def verify_position_exists(self, ticket: int) -> bool:
        """True if the ticket is open; False when it is not or cannot be verified."""
        try:
            positions = await self._fetch_positions()
        except AuthenticationExpiredError:
            raise
        except BrokerageError as e:
            logger.warning(f"Cannot verify position {ticket}: {e.reason}")
            return False
        return any(p.ticket == ticket for p in positions)

    # ========== Symbols ==========

    def account_symbol(self, symbol: str) -> str:
        """Symbol spelling for this account type (prop -> .raw)."""
        return to_account_symbol(symbol, self.config.account_type)

    async def get_symbols(self) -> List[str]:
        """Broker symbol list (raises on failure)."""
        return await self._resolver.get_symbols()

    async def get_available_symbols(self) -> List[str]:
        """Broker symbol list, or a list of common instruments when unavailable."""
        try:
            symbols = await self._resolver.get_symbols()
        except AuthenticationExpiredError:
            raise
        except BrokerageError as e:
            logger.warning(f"Symbol list unavailable ({e.reason}); using fallback list")
            return list(FALLBACK_SYMBOLS)
        return symbols or list(FALLBACK_SYMBOLS)

    # ========== Quotes / Account ==========

    async def get_quote(self, symbol: str) -> Optional[Quote]:
        """
        Get current bid/ask.

        The symbol is resolved and subscribed first; the bridge only
        streams prices for subscribed symbols.

        Returns:
            Quote or None

        Raises:
            AuthenticationExpiredError
        """
        try:
            resolved = await self._resolver.prepare(self.account_symbol(symbol))
            response = await self._client.request("GetQuote", {"symbol": resolved})
        except AuthenticationExpiredError:
            raise
        except BrokerageError as e:
            logger.error(f"Error getting quote for {symbol}: {e.reason}")
            return None

        body = response.body
        if not response.ok or not isinstance(body, Mapping):
            logger.warning(f"No quote for {resolved} (HTTP {response.status_code})")
            return None

        bid = _number(_field(body, "bid", "Bid"))
        ask = _number(_field(body, "ask", "Ask"))
        if bid is None or ask is None:
            logger.warning(f"Quote for {resolved} has no bid/ask: {classify(body, 'GetQuote').message}")
            return None

        time = _field(body, "time", "Time")
        return Quote(
            symbol=resolved,
            bid=bid,
            ask=ask,
            time=str(time) if time is not None else datetime.now(timezone.utc).isoformat(),
        )

    async def get_account_info(self) -> Optional[AccountInfo]:
        """
        AccountSummary merged with AccountDetails.

        AccountDetails is optional; when the bridge does not offer it the
        summary alone is returned.

        Raises:
            AuthenticationExpiredError
        """
        try:
            response = await self._client.request("AccountSummary")
        except AuthenticationExpiredError:
            raise
        except BrokerageError as e:
            logger.error(f"Error getting account summary: {e.reason}")
            return None

        summary = response.body
        if not response.ok or not isinstance(summary, Mapping):
            logger.error(f"AccountSummary failed (HTTP {response.status_code})")
            return None

        details: Mapping = {}
        try:
            detail_response = await self._client.request("AccountDetails")
            if detail_response.ok and isinstance(detail_response.body, Mapping):
                details = detail_response.body
            else:
                logger.warning(f"AccountDetails unavailable (HTTP {detail_response.status_code})")
        except AuthenticationExpiredError:
            raise
        except BrokerageError as e:
            logger.warning(f"AccountDetails unavailable: {e.reason}")

        def pick(*names: str) -> Any:
            value = _field(details, *names)
            return value if value is not None else _field(summary, *names)

        login = pick("login", "Login", "accountNumber", "user")
        return AccountInfo(
            balance=_number(pick("balance", "Balance")) or 0.0,
            equity=_number(pick("equity", "Equity")) or 0.0,
            margin=_number(pick("margin", "Margin")) or 0.0,
            free_margin=_number(pick("freeMargin", "FreeMargin", "free_margin")) or 0.0,
            margin_level=_number(pick("marginLevel", "MarginLevel", "margin_level")) or 0.0,
            profit=_number(pick("profit", "Profit")) or 0.0,
            currency=pick("currency", "Currency"),
            account_number=str(login) if login is not None else None,
            account_name=pick("name", "Name"),
            server_name=pick("server", "Server", "serverName"),
            leverage=_number(pick("leverage", "Leverage")),
            credit=_number(pick("credit", "Credit")),
        )

    # ========== Orders ==========

    async def send_order(self, request: OrderRequest) -> OrderOutcome:
        """
        Submit a market order.

        Returns:
            OrderOutcome (never raises)
        """
        if not self.is_connected:
            error = NotConnectedError()
            return OrderOutcome.failed(error.reason, error=error)

        mapped = self.account_symbol(request.symbol)
        if mapped != request.symbol:
            logger.info(f"Account symbol: {request.symbol} -> {mapped}")
            request = replace(request, symbol=mapped)

        outcome = await self._executor.send_order(request)
        if outcome.success:
            self._emit_message(f"Order filled: {request.side.value} {request.volume} {request.symbol} #{outcome.ticket}")
        return outcome

    async def close_position(self, ticket: int, volume: Optional[float] = None) -> OrderOutcome:
        """
        Close a position by ticket.

        Args:
            ticket: Position ticket
            volume: Volume to close (None = whole position)

        Returns:
            OrderOutcome (never raises; authentication expiry is carried in
            outcome.error)
        """
        try:
            outcome = await self._closer.close(ticket, volume)
        except BrokerageError as e:
            logger.error(f"Close {ticket} failed: {e.reason}")
            return OrderOutcome.failed(e.reason, error=e, ticket=ticket)
        except Exception as e:
            logger.error(f"Close {ticket} unexpected error: {e}")
            return OrderOutcome.failed(str(e) or "Unknown error", error=e, ticket=ticket)

        if outcome.success:
            self._emit_message(f"Position {ticket} closed")
        return outcome

    async def close_positions_for_symbol(self, symbol: str) -> OrderOutcome:
        """
        Close every open position on a symbol, one at a time.

        Returns:
            Aggregate OrderOutcome: success only if every close succeeded
        """
        try:
            positions = await self._fetch_positions()
        except BrokerageError as e:
            logger.error(f"Cannot close {symbol} positions: {e.reason}")
            return OrderOutcome.failed(e.reason, error=e)

        wanted = {
            strip_broker_suffix(symbol).upper(),
            strip_broker_suffix(self.account_symbol(symbol)).upper(),
        }
        targets = [p for p in positions if strip_broker_suffix(p.symbol).upper() in wanted]
        if not targets:
            return OrderOutcome.ok("No positions to close")

        closed = 0
        total_profit = 0.0
        failures = []
        for position in targets:
            outcome = await self.close_position(position.ticket)
            if outcome.success:
                closed += 1
                total_profit += outcome.realized_profit or 0.0
            else:
                failures.append(f"#{position.ticket}: {outcome.message}")

        message = f"Closed {closed} of {len(targets)} positions"
        logger.info(f"{message} on {symbol}, profit={total_profit:.2f}")
        if failures:
            return OrderOutcome.failed(
                f"{message}; " + "; ".join(failures),
                realized_profit=total_profit,
            )
        return OrderOutcome.ok(message, realized_profit=total_profit)
