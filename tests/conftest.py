"""
Pytest Fixtures for MT5 Gateway
===============================

Shared test fixtures used across all test files.

The MT5 bridge is faked with httpx.MockTransport: each endpoint gets a
script of replies and every request is recorded, so tests can assert which
endpoints were (or were not) called.
"""

import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List

sys.path.insert(0, str(Path(__file__).parent.parent))

import httpx
import pytest

from mt5_gateway.core.config import BridgeConfig
from mt5_gateway.brokerages.mt5 import MT5Brokerage
from mt5_gateway.brokerages.mt5_bridge.client import MT5BridgeClient
from mt5_gateway.brokerages.mt5_bridge.session import MemoryTokenStore, TOKEN_KEY


SESSION_TOKEN = "a1b2c3d4-e5f6-7890-abcd-ef1234567890"
BASE_URL = "https://bridge.test"


@dataclass
class BridgeCall:
    """One request seen by the fake bridge."""
    endpoint: str
    method: str
    params: Dict[str, Any]


def reply(body: Any = None, status: int = 200) -> httpx.Response:
    """Bridge reply: None -> empty body, str -> raw text, anything else -> JSON."""
    if body is None:
        return httpx.Response(status)
    if isinstance(body, str):
        return httpx.Response(status, text=body)
    return httpx.Response(status, json=body)


def refuse(request: httpx.Request, params: Dict[str, Any]):
    """Script entry that fails like a refused TCP connection."""
    raise httpx.ConnectError("Connection refused", request=request)


def time_out(request: httpx.Request, params: Dict[str, Any]):
    raise httpx.ReadTimeout("timed out", request=request)


class FakeBridge:
    """
    Scripted MT5 bridge.

    Example:
        bridge.on("Positions", [])
        bridge.on("OrderClose", {"error": "Invalid volume"}, {"retcode": 10009})

    A script entry is a body, an httpx.Response, or a callable
    (request, params) -> entry. The last entry of a script repeats.
    """

    def __init__(self):
        self.routes: Dict[str, List[Any]] = {}
        self.calls: List[BridgeCall] = []
        self.on("Subscribe", True)
        self.on("Disconnect", None)

    def on(self, endpoint: str, *entries: Any) -> "FakeBridge":
        self.routes[endpoint] = list(entries)
        return self

    def calls_to(self, endpoint: str) -> List[BridgeCall]:
        return [c for c in self.calls if c.endpoint == endpoint]

    def endpoints(self) -> List[str]:
        return [c.endpoint for c in self.calls]

    def handler(self, request: httpx.Request) -> httpx.Response:
        endpoint = request.url.path.strip("/")
        params: Dict[str, Any] = dict(request.url.params)
        if request.method != "GET" and request.content:
            params.update(json.loads(request.content))
        self.calls.append(BridgeCall(endpoint, request.method, params))

        script = self.routes.get(endpoint)
        if not script:
            return httpx.Response(404, text=f"Unknown endpoint {endpoint}")
        entry = script.pop(0) if len(script) > 1 else script[0]
        if callable(entry):
            entry = entry(request, params)
        if isinstance(entry, httpx.Response):
            return entry
        return reply(entry)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


# ========== Fixtures ==========


@pytest.fixture
def bridge_config():
    """Valid bridge settings (mtapi contract, POST orders)."""
    return BridgeConfig(base_url=BASE_URL, api_key="test-key-123")


@pytest.fixture
def bridge():
    return FakeBridge()


@pytest.fixture
def token_store():
    return MemoryTokenStore()


@pytest.fixture
def connected_store():
    """Token store holding a session from a previous run."""
    return MemoryTokenStore({TOKEN_KEY: SESSION_TOKEN})


@pytest.fixture
def client(bridge_config, bridge, token_store):
    """Session Manager without a session."""
    return MT5BridgeClient(bridge_config, token_store=token_store, transport=bridge.transport)


@pytest.fixture
def connected_client(bridge_config, bridge, connected_store):
    """Session Manager with a restored session."""
    return MT5BridgeClient(bridge_config, token_store=connected_store, transport=bridge.transport)


@pytest.fixture
def brokerage(bridge_config, bridge, connected_store):
    """Connected MT5Brokerage on a demo account."""
    return MT5Brokerage(bridge_config, token_store=connected_store, transport=bridge.transport)


def position_record(ticket=12345, symbol="EURUSD", type_=0, lots=0.01, volume=None, profit=5.5, **extra):
    """Raw Positions record as the bridge sends it."""
    record = {
        "ticket": ticket,
        "symbol": symbol,
        "type": type_,
        "lots": lots,
        "openPrice": 1.1,
        "currentPrice": 1.1005,
        "profit": profit,
        "comment": "",
    }
    if volume is not None:
        record["volume"] = volume
    record.update(extra)
    return record
