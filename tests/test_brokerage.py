"""
Tests for MT5Brokerage
======================
End-to-end flows through the facade against the fake bridge.
"""

from datetime import datetime

import pytest

from conftest import SESSION_TOKEN, position_record, refuse, reply

from mt5_gateway.core.exceptions import AuthenticationExpiredError, NotConnectedError
from mt5_gateway.brokerages import Credentials, OrderRequest, OrderSide
from mt5_gateway.brokerages.mt5 import MT5Brokerage
from mt5_gateway.brokerages.mt5_bridge.session import MemoryTokenStore
from mt5_gateway.brokerages.utils.symbol_normalizer import FALLBACK_SYMBOLS


class TestScenario:
    @pytest.mark.asyncio
    async def test_connect_positions_close(self, bridge_config, bridge):
        brokerage = MT5Brokerage(bridge_config, token_store=MemoryTokenStore(), transport=bridge.transport)
        bridge.on("ConnectEx", SESSION_TOKEN)
        bridge.on("Positions", None)

        result = await brokerage.connect(Credentials("5012345", "pw-123", "Broker-Demo"))
        assert result.success
        assert brokerage.is_connected

        assert await brokerage.get_positions() == []

        outcome = await brokerage.close_position(12345)
        assert outcome.success
        assert "already closed" in outcome.message
        assert bridge.calls_to("OrderClose") == []

        await brokerage.aclose()

    @pytest.mark.asyncio
    async def test_order_on_gold_alias(self, brokerage, bridge):
        bridge.on("SymbolList", ["EURUSD", "GOLD"])
        bridge.on("OrderSend", {"retcode": 10009, "ticket": 4242})

        outcome = await brokerage.send_order(OrderRequest(symbol="XAUUSD", side="BUY", volume=0.01))

        assert outcome.success
        assert bridge.endpoints() == ["SymbolList", "Subscribe", "OrderSend"]
        assert bridge.calls_to("OrderSend")[0].params["symbol"] == "GOLD"


class TestPositions:
    @pytest.mark.asyncio
    async def test_positions_parsed(self, brokerage, bridge):
        bridge.on("Positions", {"positions": [position_record(ticket=1), position_record(ticket=2, lots=0)]})
        positions = await brokerage.get_positions()
        assert [p.ticket for p in positions] == [1]

    @pytest.mark.asyncio
    async def test_opened_orders_endpoint(self, bridge_config, bridge, connected_store):
        bridge_config.positions_endpoint = "OpenedOrders"
        brokerage = MT5Brokerage(bridge_config, token_store=connected_store, transport=bridge.transport)
        bridge.on("OpenedOrders", [position_record()])
        assert len(await brokerage.get_positions()) == 1
        assert bridge.calls_to("Positions") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("entry", [refuse, reply("down", status=503), {"error": "Bridge busy"}])
    async def test_failure_returns_empty(self, brokerage, bridge, entry):
        bridge.on("Positions", entry)
        assert await brokerage.get_positions() == []

    @pytest.mark.asyncio
    async def test_not_connected_returns_empty(self, bridge_config, bridge):
        brokerage = MT5Brokerage(bridge_config, transport=bridge.transport)
        assert await brokerage.get_positions() == []

    @pytest.mark.asyncio
    async def test_auth_expiry_propagates(self, brokerage, bridge):
        bridge.on("Positions", reply("Unauthorized", status=401))
        with pytest.raises(AuthenticationExpiredError):
            await brokerage.get_positions()
        assert brokerage.get_stored_token() is None
        assert not brokerage.is_connected

    @pytest.mark.asyncio
    async def test_get_position_and_verify(self, brokerage, bridge):
        bridge.on("Positions", [position_record(ticket=7)])
        assert (await brokerage.get_position(7)).ticket == 7
        assert await brokerage.get_position(8) is None
        assert await brokerage.verify_position_exists(7)
        assert not await brokerage.verify_position_exists(8)

    @pytest.mark.asyncio
    async def test_verify_false_when_unreadable(self, brokerage, bridge):
        bridge.on("Positions", refuse)
        assert await brokerage.verify_position_exists(7) is False


class TestClosePosition:
    @pytest.mark.asyncio
    async def test_close_with_probe(self, brokerage, bridge):
        bridge.on("Positions", [position_record(ticket=99, lots=0.1, volume=10000, profit=-3.2)])
        bridge.on("OrderClose", {"error": "Invalid volume"}, {"error": "Invalid volume"}, {"retcode": 10009})

        outcome = await brokerage.close_position(99)

        assert outcome.success
        assert outcome.realized_profit == -3.2
        assert [c.params["lots"] for c in bridge.calls_to("OrderClose")] == [0.1, 10000, 100]

    @pytest.mark.asyncio
    async def test_unreadable_positions_not_treated_as_closed(self, brokerage, bridge):
        bridge.on("Positions", reply("down", status=503))
        bridge.on("OrderClose", {"retcode": 10009})

        outcome = await brokerage.close_position(99)

        assert outcome.success
        assert len(bridge.calls_to("OrderClose")) == 1

    @pytest.mark.asyncio
    async def test_auth_expiry_never_raises(self, brokerage, bridge):
        bridge.on("Positions", reply("Session expired", status=401))

        outcome = await brokerage.close_position(99)

        assert not outcome.success
        assert isinstance(outcome.error, AuthenticationExpiredError)

    @pytest.mark.asyncio
    async def test_not_connected(self, bridge_config, bridge):
        brokerage = MT5Brokerage(bridge_config, transport=bridge.transport)
        outcome = await brokerage.close_position(1)
        assert not outcome.success
        assert isinstance(outcome.error, NotConnectedError)
        assert bridge.calls == []

    @pytest.mark.asyncio
    async def test_close_positions_for_symbol(self, brokerage, bridge):
        bridge.on("Positions", [
            position_record(ticket=1, symbol="EURUSD.raw", profit=2.0),
            position_record(ticket=2, symbol="EURUSD", profit=3.0),
            position_record(ticket=3, symbol="GBPUSD", profit=9.0),
        ])
        bridge.on("OrderClose", {"retcode": 10009})

        outcome = await brokerage.close_positions_for_symbol("EURUSD")

        assert outcome.success
        assert outcome.message == "Closed 2 of 2 positions"
        assert outcome.realized_profit == 5.0
        assert sorted(c.params["ticket"] for c in bridge.calls_to("OrderClose")) == [1, 2]

    @pytest.mark.asyncio
    async def test_close_positions_for_symbol_none_open(self, brokerage, bridge):
        bridge.on("Positions", [])
        outcome = await brokerage.close_positions_for_symbol("EURUSD")
        assert outcome.success
        assert outcome.message == "No positions to close"


class TestOrders:
    @pytest.mark.asyncio
    async def test_prop_account_trades_raw_symbol(self, bridge_config, bridge, connected_store):
        brokerage = MT5Brokerage(
            bridge_config, token_store=connected_store, transport=bridge.transport, account_type="prop"
        )
        bridge.on("SymbolList", ["EURUSD", "EURUSD.raw"])
        bridge.on("OrderSend", 1001)

        outcome = await brokerage.send_order(OrderRequest("EURUSD", OrderSide.BUY, 0.01, bot_token="7"))

        assert outcome.success
        params = bridge.calls_to("OrderSend")[0].params
        assert params["symbol"] == "EURUSD.raw"
        assert params["comment"] == "bot_7"

    @pytest.mark.asyncio
    async def test_not_connected(self, bridge_config, bridge):
        brokerage = MT5Brokerage(bridge_config, transport=bridge.transport)
        outcome = await brokerage.send_order(OrderRequest("EURUSD", "BUY", 0.01))
        assert not outcome.success
        assert outcome.message == "Not connected to MT5 API"
        assert bridge.calls == []


class TestQuotesAndAccount:
    @pytest.mark.asyncio
    async def test_quote(self, brokerage, bridge):
        bridge.on("SymbolList", ["EURUSD"])
        bridge.on("GetQuote", {"bid": 1.1, "ask": 1.1002, "time": "2024-01-02T10:00:00"})

        quote = await brokerage.get_quote("EURUSD")

        assert quote.symbol == "EURUSD"
        assert quote.bid == 1.1
        assert quote.ask == 1.1002
        assert quote.time == "2024-01-02T10:00:00"
        assert bridge.endpoints() == ["SymbolList", "Subscribe", "GetQuote"]

    @pytest.mark.asyncio
    async def test_quote_time_defaults_to_now(self, brokerage, bridge):
        bridge.on("SymbolList", ["EURUSD"])
        bridge.on("GetQuote", {"Bid": "1.1", "Ask": "1.2"})
        quote = await brokerage.get_quote("EURUSD")
        assert datetime.fromisoformat(quote.time).tzinfo is not None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("entry", [{"error": "Unknown symbol"}, refuse, reply("", status=404)])
    async def test_quote_failure_returns_none(self, brokerage, bridge, entry):
        bridge.on("SymbolList", ["EURUSD"])
        bridge.on("GetQuote", entry)
        assert await brokerage.get_quote("EURUSD") is None

    @pytest.mark.asyncio
    async def test_account_info_merges_details(self, brokerage, bridge):
        bridge.on("AccountSummary", {"balance": 1000, "equity": 1010.5, "margin": 20,
                                     "freeMargin": 990.5, "marginLevel": 5052.5, "profit": 10.5})
        bridge.on("AccountDetails", {"currency": "USD", "login": 5012345, "name": "Demo",
                                     "server": "Broker-Demo", "leverage": 500})

        info = await brokerage.get_account_info()

        assert info.balance == 1000
        assert info.free_margin == 990.5
        assert info.currency == "USD"
        assert info.account_number == "5012345"
        assert info.leverage == 500

    @pytest.mark.asyncio
    async def test_account_details_optional(self, brokerage, bridge):
        bridge.on("AccountSummary", {"balance": 50, "equity": 50, "currency": "EUR"})
        info = await brokerage.get_account_info()
        assert info.balance == 50
        assert info.currency == "EUR"

    @pytest.mark.asyncio
    async def test_account_summary_failure(self, brokerage, bridge):
        bridge.on("AccountSummary", refuse)
        assert await brokerage.get_account_info() is None


class TestSymbolsAndSession:
    @pytest.mark.asyncio
    async def test_available_symbols_fallback(self, brokerage, bridge):
        bridge.on("SymbolList", refuse)
        assert await brokerage.get_available_symbols() == FALLBACK_SYMBOLS

    @pytest.mark.asyncio
    async def test_available_symbols_from_broker(self, brokerage, bridge):
        bridge.on("SymbolList", ["EURUSD.raw"])
        assert await brokerage.get_available_symbols() == ["EURUSD.raw"]

    @pytest.mark.asyncio
    async def test_disconnect(self, brokerage, bridge):
        messages = []
        brokerage.on_message(messages.append)

        await brokerage.disconnect()

        assert not brokerage.is_connected
        assert brokerage.get_stored_token() is None
        assert messages == ["Disconnected"]

    @pytest.mark.asyncio
    async def test_context_manager(self, bridge_config, bridge, connected_store):
        async with MT5Brokerage(bridge_config, token_store=connected_store, transport=bridge.transport) as b:
            bridge.on("CheckConnect", True)
            assert await b.check_connection()
