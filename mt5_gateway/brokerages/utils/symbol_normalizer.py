"""
Symbol Normalizer
=================

Map caller symbols ("EURUSD", "XAUUSD") onto the broker's own spelling
("EURUSD.raw", "GOLD").

Resolution order against the broker's published symbol list:
    1. exact match of the symbol as given
    2. exact match after stripping a broker suffix (.raw, .m, .c, .pro, .ecn, .stp)
    3. precious-metal aliases (XAU/GOLD, XAG/SILVER), first hit wins
    4. substring match in either direction, first hit wins
    5. nothing -> None (caller keeps its own symbol)

Usage:
    from mt5_gateway.brokerages.utils import match_symbol, to_account_symbol

    match_symbol("XAUUSD", ["EURUSD", "GOLD"])      # "GOLD"
    to_account_symbol("EURUSD", "prop")              # "EURUSD.raw"
"""

import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence, TYPE_CHECKING

from ...core.exceptions import (
    AuthenticationExpiredError,
    BridgeRejectedError,
    BrokerageError,
    NotConnectedError,
    UnresolvedSymbolError,
)
from ..mt5_bridge.protocol import classify

if TYPE_CHECKING:
    from ..mt5_bridge.client import MT5BridgeClient

logger = logging.getLogger(__name__)


BROKER_SUFFIXES = ("raw", "m", "c", "pro", "ecn", "stp")
_SUFFIX_PATTERN = re.compile(r"\.(?:%s)$" % "|".join(BROKER_SUFFIXES), re.IGNORECASE)

# Instruments that carry different names across brokers
METAL_ALIASES = (
    ("XAU", "GOLD"),
    ("XAG", "SILVER"),
)

# Never get an account-type suffix appended
SPECIAL_PREFIXES = (
    "XAU", "XAG",
    "US30", "NAS100", "SPX500", "UK100", "GER30",
    "BTC", "ETH", "LTC", "XRP", "BCH",
)

# Offered when the broker list cannot be fetched
FALLBACK_SYMBOLS = [
    "EURUSD", "GBPUSD", "USDJPY", "AUDUSD", "USDCAD", "NZDUSD", "USDCHF",
    "EURJPY", "EURGBP", "GBPJPY", "XAUUSD", "XAGUSD", "USOIL", "UKOIL",
    "US30", "US500", "NAS100", "GER30", "UK100", "JPN225",
    "BTCUSD", "ETHUSD", "LTCUSD", "XRPUSD", "BCHUSD",
]


def strip_broker_suffix(symbol: str) -> str:
    """
    Remove a known broker suffix.

    Example:
        strip_broker_suffix("EURUSD.raw") -> "EURUSD"
        strip_broker_suffix("EURUSD.PRO") -> "EURUSD"
    """
    return _SUFFIX_PATTERN.sub("", (symbol or "").strip())


def has_broker_suffix(symbol: str) -> bool:
    return bool(_SUFFIX_PATTERN.search(symbol or ""))


def is_special_symbol(symbol: str) -> bool:
    """Metals, indices, crypto and oil keep their name on every account type."""
    upper = (symbol or "").upper()
    return upper.startswith(SPECIAL_PREFIXES) or "OIL" in upper


def to_account_symbol(symbol: str, account_type: Optional[str] = None) -> str:
    """
    Symbol spelling expected for an account type.

    Prop accounts trade the ``.raw`` variants; demo and live accounts use
    the plain name.
    """
    if not symbol or is_special_symbol(symbol):
        return symbol
    if account_type == "prop" and not has_broker_suffix(symbol):
        return f"{symbol}.raw"
    return symbol


def _metal_aliases(symbol: str) -> Optional[Sequence[str]]:
    upper = symbol.upper()
    for aliases in METAL_ALIASES:
        if any(alias in upper for alias in aliases):
            return aliases
    return None


def match_symbol(symbol: str, broker_symbols: Iterable[str]) -> Optional[str]:
    """
    Find the broker-native symbol for ``symbol``.

    Args:
        symbol: Caller symbol, possibly with a suffix
        broker_symbols: Broker's published list, in broker order

    Returns:
        Broker symbol or None
    """
    if not symbol:
        return None
    candidates = [s for s in broker_symbols if isinstance(s, str) and s.strip()]
    if not candidates:
        return None

    if symbol in candidates:
        return symbol

    normalized = strip_broker_suffix(symbol)
    if normalized in candidates:
        return normalized
    upper = normalized.upper()
    for broker_symbol in candidates:
        if broker_symbol.upper() == upper:
            return broker_symbol

    aliases = _metal_aliases(normalized)
    if aliases:
        for broker_symbol in candidates:
            if any(alias in broker_symbol.upper() for alias in aliases):
                return broker_symbol

    for broker_symbol in candidates:
        other = broker_symbol.upper()
        if upper in other or other in upper:
            return broker_symbol

    return None


def parse_symbol_list(body) -> List[str]:
    """SymbolList body: JSON array of strings, or a comma/semicolon/newline separated string."""
    if isinstance(body, list):
        return [s.strip() for s in body if isinstance(s, str) and s.strip()]
    if isinstance(body, dict):
        for key in ("symbols", "Symbols", "data", "result"):
            if key in body:
                return parse_symbol_list(body[key])
        return []
    if isinstance(body, str):
        return [s.strip() for s in re.split(r"[,;\n]", body) if s.strip()]
    return []


class SymbolResolver:
    """
    Resolves and subscribes symbols against the connected broker.

    The symbol list is cached per session token.
    """

    def __init__(self, client: "MT5BridgeClient"):
        self._client = client
        self._cache: Dict[str, List[str]] = {}

    def invalidate(self) -> None:
        self._cache.clear()

    async def get_symbols(self) -> List[str]:
        """
        Fetch the broker symbol list.

        Raises:
            NotConnectedError, TransportError, AuthenticationExpiredError,
            BridgeRejectedError
        """
        session = self._client.session
        if session is None:
            raise NotConnectedError()
        cached = self._cache.get(session.token)
        if cached is not None:
            return cached

        response = await self._client.request("SymbolList")
        if not response.ok:
            raise BridgeRejectedError(f"SymbolList failed with HTTP {response.status_code}")

        symbols = parse_symbol_list(response.body)
        if symbols:
            self._cache = {session.token: symbols}
        logger.info(f"Loaded {len(symbols)} symbols from broker")
        return symbols

    async def resolve(self, symbol: str) -> Optional[str]:
        """
        Broker-native symbol for ``symbol``, or None.

        A symbol list that cannot be fetched resolves to None; only
        authentication expiry propagates.
        """
        try:
            symbols = await self.get_symbols()
        except AuthenticationExpiredError:
            raise
        except BrokerageError as e:
            logger.warning(f"Symbol list unavailable, cannot resolve {symbol}: {e.reason}")
            return None
        return match_symbol(symbol, symbols)

    async def subscribe(self, symbol: str) -> bool:
        """
        Best-effort Subscribe. Failure is logged, never raised (except auth expiry).
        """
        try:
            response = await self._client.request("Subscribe", {"symbol": symbol})
        except AuthenticationExpiredError:
            raise
        except BrokerageError as e:
            logger.warning(f"Subscribe {symbol} failed: {e.reason}")
            return False

        result = classify(response.body, "Subscribe")
        if not response.ok or not result.success:
            logger.warning(f"Subscribe {symbol} rejected: {result.message}")
            return False
        return True

    async def prepare(self, symbol: str) -> str:
        """
        Resolve then subscribe; the symbol to trade or quote.

        Falls back to the caller's symbol when nothing matches; the broker
        may still reject it.
        """
        resolved = await self.resolve(symbol)
        if resolved is None:
            logger.warning(UnresolvedSymbolError(symbol).reason + "; using it as given")
            resolved = symbol
        elif resolved != symbol:
            logger.info(f"Symbol resolved: {symbol} -> {resolved}")
        await self.subscribe(resolved)
        return resolved
