"""
Brokerage Utilities
===================

Symbol resolution against the broker's symbol list.
"""

from .symbol_normalizer import (
    SymbolResolver,
    match_symbol,
    strip_broker_suffix,
    to_account_symbol,
    parse_symbol_list,
    FALLBACK_SYMBOLS,
)

__all__ = [
    "SymbolResolver",
    "match_symbol",
    "strip_broker_suffix",
    "to_account_symbol",
    "parse_symbol_list",
    "FALLBACK_SYMBOLS",
]
