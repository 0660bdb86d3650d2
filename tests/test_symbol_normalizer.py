"""
Tests for the Symbol Resolver
=============================
Match precedence, account-type mapping, symbol list parsing and the
resolve / subscribe flow against the fake bridge.
"""

import pytest

from conftest import refuse, reply

from mt5_gateway.core.exceptions import AuthenticationExpiredError, NotConnectedError
from mt5_gateway.brokerages.utils.symbol_normalizer import (
    SymbolResolver,
    match_symbol,
    parse_symbol_list,
    strip_broker_suffix,
    to_account_symbol,
)


class TestStripSuffix:
    @pytest.mark.parametrize("symbol,expected", [
        ("EURUSD.raw", "EURUSD"),
        ("EURUSD.PRO", "EURUSD"),
        ("GBPUSD.m", "GBPUSD"),
        ("USDJPY.ecn", "USDJPY"),
        ("EURUSD", "EURUSD"),
        ("EURUSD.x", "EURUSD.x"),
    ])
    def test_strip(self, symbol, expected):
        assert strip_broker_suffix(symbol) == expected


class TestMatchSymbol:
    """Exact > normalized > metal alias > substring."""

    def test_exact_beats_normalized(self):
        assert match_symbol("EURUSD.raw", ["EURUSD", "EURUSD.raw"]) == "EURUSD.raw"

    def test_normalized_match(self):
        assert match_symbol("EURUSD.raw", ["GBPUSD", "EURUSD"]) == "EURUSD"

    def test_case_insensitive_normalized(self):
        assert match_symbol("eurusd", ["EURUSD"]) == "EURUSD"

    def test_gold_alias(self):
        assert match_symbol("XAUUSD", ["EURUSD", "GOLD"]) == "GOLD"

    def test_silver_alias(self):
        assert match_symbol("XAGUSD", ["SILVER.raw", "EURUSD"]) == "SILVER.raw"

    def test_alias_first_hit_wins(self):
        assert match_symbol("GOLD", ["XAUUSD.m", "GOLD.pro"]) == "XAUUSD.m"

    def test_substring_either_direction(self):
        assert match_symbol("US30", ["US30Cash"]) == "US30Cash"
        assert match_symbol("NAS100Cash", ["NAS100"]) == "NAS100"

    def test_no_match(self):
        assert match_symbol("AUDNZD", ["EURUSD", "GBPUSD"]) is None

    def test_empty_inputs(self):
        assert match_symbol("", ["EURUSD"]) is None
        assert match_symbol("EURUSD", []) is None
        assert match_symbol("EURUSD", ["", "  "]) is None


class TestAccountSymbol:
    def test_prop_gets_raw(self):
        assert to_account_symbol("EURUSD", "prop") == "EURUSD.raw"

    def test_prop_keeps_existing_suffix(self):
        assert to_account_symbol("EURUSD.m", "prop") == "EURUSD.m"

    @pytest.mark.parametrize("symbol", ["XAUUSD", "XAGUSD", "US30", "NAS100", "BTCUSD", "ETHUSD", "USOIL"])
    def test_special_symbols_unchanged(self, symbol):
        assert to_account_symbol(symbol, "prop") == symbol

    @pytest.mark.parametrize("account_type", ["demo", "live", None])
    def test_other_accounts_unchanged(self, account_type):
        assert to_account_symbol("EURUSD", account_type) == "EURUSD"


class TestParseSymbolList:
    def test_array(self):
        assert parse_symbol_list(["EURUSD", " GBPUSD ", "", 5]) == ["EURUSD", "GBPUSD"]

    def test_delimited_string(self):
        assert parse_symbol_list("EURUSD,GBPUSD;USDJPY\nGOLD") == ["EURUSD", "GBPUSD", "USDJPY", "GOLD"]

    def test_wrapped(self):
        assert parse_symbol_list({"symbols": ["EURUSD"]}) == ["EURUSD"]

    def test_garbage(self):
        assert parse_symbol_list(None) == []
        assert parse_symbol_list(42) == []


class TestSymbolResolver:
    @pytest.mark.asyncio
    async def test_resolve_uses_broker_list(self, connected_client, bridge):
        bridge.on("SymbolList", ["EURUSD.raw", "GOLD"])
        resolver = SymbolResolver(connected_client)
        assert await resolver.resolve("XAUUSD") == "GOLD"

    @pytest.mark.asyncio
    async def test_symbol_list_cached_per_session(self, connected_client, bridge):
        bridge.on("SymbolList", ["EURUSD"])
        resolver = SymbolResolver(connected_client)
        await resolver.resolve("EURUSD")
        await resolver.resolve("EURUSD")
        assert len(bridge.calls_to("SymbolList")) == 1

    @pytest.mark.asyncio
    async def test_unavailable_list_resolves_none(self, connected_client, bridge):
        bridge.on("SymbolList", refuse)
        resolver = SymbolResolver(connected_client)
        assert await resolver.resolve("EURUSD") is None

    @pytest.mark.asyncio
    async def test_get_symbols_requires_session(self, client):
        with pytest.raises(NotConnectedError):
            await SymbolResolver(client).get_symbols()

    @pytest.mark.asyncio
    async def test_auth_expiry_propagates(self, connected_client, bridge):
        bridge.on("SymbolList", reply("Invalid token", status=401))
        with pytest.raises(AuthenticationExpiredError):
            await SymbolResolver(connected_client).resolve("EURUSD")

    @pytest.mark.asyncio
    async def test_subscribe_failure_is_not_fatal(self, connected_client, bridge):
        bridge.on("Subscribe", {"error": "Unknown symbol"})
        assert await SymbolResolver(connected_client).subscribe("EURUSD") is False

    @pytest.mark.asyncio
    async def test_prepare_resolves_then_subscribes(self, connected_client, bridge):
        bridge.on("SymbolList", "EURUSD,GOLD")
        symbol = await SymbolResolver(connected_client).prepare("XAUUSD")

        assert symbol == "GOLD"
        assert bridge.endpoints() == ["SymbolList", "Subscribe"]
        assert bridge.calls_to("Subscribe")[0].params["symbol"] == "GOLD"

    @pytest.mark.asyncio
    async def test_prepare_falls_back_to_given_symbol(self, connected_client, bridge):
        bridge.on("SymbolList", ["EURUSD"])
        assert await SymbolResolver(connected_client).prepare("AUDNZD") == "AUDNZD"
