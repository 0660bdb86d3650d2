"""
MT5 Bridge Protocol
===================
Normalization of decoded bridge response bodies.

The bridge answers with whatever shape the deployment happens to use: JSON
objects with varying field names, bare strings, bare numbers, booleans or an
empty body. ``classify`` maps any of them onto a small tagged result.

Precedence (first matching rule wins):
    1.  null body                          -> success
    2.  object with positive ticket/order  -> success + ticket
    3.  object with retcode                -> 10009 success, else failure
    4.  object with success flag           -> flag decides
    5.  object with error/Error            -> failure
    6.  object with message string         -> keyword scan
    7.  any other object                   -> success (assumed)
    8.  string                             -> ticket / keyword scan / info
    9.  number                             -> >0 ticket, 0 ok, <0 failure
    10. boolean                            -> flag decides
    11. anything else                      -> failure

An object that carries nothing but silence is treated as accepted: the
bridge omits fields on the happy path far more often than it reports a
clean failure.
"""

import math
from dataclasses import dataclass
from enum import Enum
from numbers import Real
from typing import Any, Mapping, Optional, Tuple

from ..orders import TRADE_RETCODE_DONE


SUCCESS_KEYWORDS = ("success", "executed", "placed")
ERROR_KEYWORDS = ("error", "failed", "invalid")

TICKET_FIELDS = ("ticket", "Ticket", "order", "Order")
TOKEN_ALIASES = ("id", "sessionId", "connectionId", "accessToken", "order", "ticket")
CONNECT_TOKEN_FIELDS = ("token", "Token", "id", "sessionId", "connectionId", "accessToken", "result")

# Shortest string accepted as a bare session token
MIN_TOKEN_LENGTH = 10


class ResultKind(Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class BridgeResult:
    """Tagged result of classifying a bridge body."""
    kind: ResultKind
    message: str
    ticket: Optional[int] = None
    token: Optional[str] = None
    code: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.kind == ResultKind.SUCCESS

    @classmethod
    def ok(cls, message: str, ticket: Optional[int] = None, token: Optional[str] = None,
           code: Optional[int] = None) -> "BridgeResult":
        return cls(ResultKind.SUCCESS, message, ticket=ticket, token=token, code=code)

    @classmethod
    def fail(cls, message: str, code: Optional[int] = None) -> "BridgeResult":
        return cls(ResultKind.FAILURE, message, code=code)


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _as_int(value: Any) -> Optional[int]:
    """Integer value of an int, integral float or numeric string; else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("+-").isdigit():
            return int(text)
    return None


def _positive_ticket(body: Mapping, fields: Tuple[str, ...] = TICKET_FIELDS) -> Optional[int]:
    for name in fields:
        number = _as_int(body.get(name))
        if number is not None and number > 0:
            return number
    return None


def _scan_keywords(text: str) -> Optional[ResultKind]:
    lowered = text.lower()
    if any(word in lowered for word in SUCCESS_KEYWORDS):
        return ResultKind.SUCCESS
    if any(word in lowered for word in ERROR_KEYWORDS):
        return ResultKind.FAILURE
    return None


def _comment(body: Mapping) -> str:
    for name in ("comment", "Comment", "message", "Message", "description"):
        value = body.get(name)
        if isinstance(value, str) and value:
            return value
    return ""


def _classify_number(value: Real, operation: str) -> BridgeResult:
    if value > 0:
        ticket = int(value)
        return BridgeResult.ok(f"{operation} accepted, ticket {ticket}", ticket=ticket)
    if value == 0:
        return BridgeResult.ok(f"{operation} accepted")
    code = abs(int(value))
    return BridgeResult.fail(f"{operation} failed with code {code}", code=code)


def _classify_object(body: Mapping, operation: str) -> BridgeResult:
    ticket = _positive_ticket(body)
    if ticket is not None:
        return BridgeResult.ok(_comment(body) or f"{operation} accepted, ticket {ticket}", ticket=ticket)

    if "retcode" in body:
        code = _as_int(body.get("retcode"))
        comment = _comment(body)
        if code == TRADE_RETCODE_DONE:
            return BridgeResult.ok(
                comment or f"{operation} executed",
                ticket=_positive_ticket(body, ("deal", "Deal", "position")),
                code=code,
            )
        detail = f": {comment}" if comment else ""
        return BridgeResult.fail(f"{operation} failed with retcode {body.get('retcode')}{detail}", code=code)

    if "success" in body:
        if body.get("success") is True:
            ticket, token = None, None
            for name in TOKEN_ALIASES:
                value = body.get(name)
                if value is None or value == "":
                    continue
                number = _as_int(value)
                if number is not None and number > 0:
                    ticket = number
                elif isinstance(value, str):
                    token = value
                if ticket is not None or token is not None:
                    break
            return BridgeResult.ok(_comment(body) or f"{operation} succeeded", ticket=ticket, token=token)
        if body.get("success") is False:
            error = body.get("error") or body.get("Error") or _comment(body)
            return BridgeResult.fail(str(error) if error else f"{operation} failed")

    for name in ("error", "Error"):
        if name in body and body.get(name) not in (None, "", False):
            return BridgeResult.fail(str(body.get(name)))

    message = body.get("message")
    if isinstance(message, str):
        kind = _scan_keywords(message)
        if kind == ResultKind.SUCCESS:
            return BridgeResult.ok(message)
        if kind == ResultKind.FAILURE:
            return BridgeResult.fail(message)

    return BridgeResult.ok(f"{operation}: unrecognized object, assume success")


def _classify_string(body: str, operation: str) -> BridgeResult:
    text = body.strip()
    number = _as_int(text)
    if number is not None:
        return _classify_number(number, operation)

    kind = _scan_keywords(text)
    if kind == ResultKind.FAILURE:
        return BridgeResult.fail(text)
    return BridgeResult.ok(text or f"{operation} accepted")


def classify(body: Any, operation: str = "request") -> BridgeResult:
    """
    Classify a decoded bridge response body.

    Total and pure: never raises, same input gives the same result.

    Args:
        body: Decoded body (dict, list, str, number, bool or None)
        operation: Operation name used in messages (e.g. "OrderSend")

    Returns:
        BridgeResult
    """
    if body is None:
        return BridgeResult.ok(f"{operation} accepted (empty response)")
    if isinstance(body, bool):
        return BridgeResult.ok(f"{operation} succeeded") if body else BridgeResult.fail(f"{operation} failed")
    if isinstance(body, Mapping):
        return _classify_object(body, operation)
    if isinstance(body, str):
        return _classify_string(body, operation)
    if _is_number(body):
        try:
            return _classify_number(body, operation)
        except (ValueError, OverflowError, TypeError):
            return BridgeResult.fail(f"{operation}: unexpected response format")
    return BridgeResult.fail(f"{operation}: unexpected response format")


# ========== Connect ==========

def credential_error_message(text: str) -> Tuple[str, str]:
    """
    Map a bridge connect error text to (error kind, user-facing message).

    Kinds: 'credentials', 'server', 'disabled', 'maintenance', 'other'.
    """
    lowered = (text or "").lower()
    if "disabled" in lowered or "blocked" in lowered:
        return "disabled", "Trading account is disabled. Contact your broker."
    if "maintenance" in lowered:
        return "maintenance", "Broker server is under maintenance. Try again later."
    if "server" in lowered:
        return "server", "Invalid server name. Check the broker server and try again."
    if "password" in lowered:
        return "credentials", "Incorrect password. Check your MT5 password."
    if "account" in lowered or "login" in lowered or "user" in lowered or "credential" in lowered:
        return "credentials", "Invalid account number or password."
    return "other", text.strip() if text and text.strip() else "Connection rejected by MT5 bridge"


def _looks_like_token(text: str) -> bool:
    return len(text) >= MIN_TOKEN_LENGTH and not any(ch.isspace() for ch in text)


def parse_connect_response(body: Any) -> BridgeResult:
    """
    Extract a session token from a ConnectEx body.

    Objects are searched for common token fields; bare strings longer than
    MIN_TOKEN_LENGTH without whitespace are taken as the token itself;
    positive numbers are stringified. Anything else is a failure whose
    message comes from ``credential_error_message``.
    """
    if isinstance(body, Mapping):
        for name in ("error", "Error"):
            if body.get(name):
                return BridgeResult.fail(credential_error_message(str(body.get(name)))[1])
        if body.get("success") is False:
            return BridgeResult.fail(credential_error_message(_comment(body))[1])
        for name in CONNECT_TOKEN_FIELDS:
            value = body.get(name)
            if isinstance(value, str) and value.strip():
                return BridgeResult.ok("Connected successfully", token=value.strip())
            if _is_number(value) and math.isfinite(value) and value > 0:
                return BridgeResult.ok("Connected successfully", token=str(int(value)))
        message = body.get("message")
        if isinstance(message, str) and message:
            return BridgeResult.fail(credential_error_message(message)[1])
        return BridgeResult.fail("Connection response did not contain a session token")

    if isinstance(body, str):
        text = body.strip().strip('"')
        if _looks_like_token(text) and _scan_keywords(text) != ResultKind.FAILURE:
            return BridgeResult.ok("Connected successfully", token=text)
        return BridgeResult.fail(credential_error_message(text)[1])

    if _is_number(body) and math.isfinite(body) and body > 0:
        return BridgeResult.ok("Connected successfully", token=str(int(body)))

    return BridgeResult.fail("Connection response did not contain a session token")
