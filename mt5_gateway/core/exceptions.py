"""
Brokerage Errors
================
Typed failures raised (or carried in outcomes) by the MT5 bridge adapter.

Every error has a short ``reason`` suitable for showing to a user. Reasons
never contain credentials or session tokens.
"""

from typing import Optional


class BrokerageError(Exception):
    """Base class for all adapter errors."""

    default_reason = "Broker operation failed"

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason or self.default_reason
        super().__init__(self.reason)


class ConfigurationError(BrokerageError):
    """Bridge URL / API key missing or still a placeholder."""

    default_reason = "MT5 bridge is not configured"


class NotConnectedError(BrokerageError):
    """No session token is held."""

    default_reason = "Not connected to MT5 API"


class TransportError(BrokerageError):
    """Network-level failure (timeout, refused, DNS). Status code unknown."""

    default_reason = "Could not reach the MT5 bridge"


class AuthenticationExpiredError(BrokerageError):
    """Bridge rejected the session token (HTTP 401 or textual signal)."""

    default_reason = "Authentication failed. Please reconnect your MT5 account."


class InvalidCredentialsError(BrokerageError):
    default_reason = "Invalid account number or password"


class InvalidServerError(BrokerageError):
    default_reason = "Invalid broker server name"


class AccountDisabledError(BrokerageError):
    default_reason = "Trading account is disabled"


class BridgeRejectedError(BrokerageError):
    """Bridge answered, but the normalized response is a failure."""

    default_reason = "Request rejected by the MT5 bridge"

    def __init__(self, reason: Optional[str] = None, code: Optional[int] = None):
        super().__init__(reason)
        self.code = code


class UnresolvedSymbolError(BrokerageError):
    default_reason = "Symbol not found in broker symbol list"

    def __init__(self, symbol: str):
        super().__init__(f"Symbol {symbol} not found in broker symbol list")
        self.symbol = symbol


class VolumeFormatExhaustedError(BrokerageError):
    default_reason = "No volume format was accepted by the bridge"

    def __init__(self, ticket: int, attempts: int, last_message: str = ""):
        reason = f"Failed to close position {ticket} after trying {attempts} volume formats"
        if last_message:
            reason = f"{reason}: {last_message}"
        super().__init__(reason)
        self.ticket = ticket
        self.attempts = attempts
