"""
Position Closer
===============

Closes a position by ticket when the bridge's volume unit is unknown.

The bridge does not document whether OrderClose expects lots, units or
something in between, so the close is a probe: an ordered candidate list
is tried one volume at a time until the bridge accepts one.

    candidates = build_volume_candidates(requested=None, display=0.01, native=1000)
    probe = VolumeProbe(candidates)
    while (candidate := probe.next()) is not None:
        ...
        probe.record(verdict, message)

Closing a ticket that is no longer open is a success (idempotent close).
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Tuple, TYPE_CHECKING

from ...core.config import BridgeConfig
from ...core.exceptions import (
    AuthenticationExpiredError,
    BrokerageError,
    NotConnectedError,
    VolumeFormatExhaustedError,
)
from ..base import Position
from ..orders import OrderOutcome, TRADE_RETCODE_INVALID_VOLUME
from .protocol import classify

if TYPE_CHECKING:
    from .client import MT5BridgeClient

logger = logging.getLogger(__name__)


SCALE_FACTORS = (1000, 10000, 100000, 0.001, 0.0001, 0.00001, 10, 100, 0.1, 0.01)
MAX_SCALED_VOLUME = 1_000_000
FALLBACK_VOLUMES = (0.01, 0.1, 1, 10, 100, 1000, 10000, 100000)
VOLUME_TOLERANCE = 1e-6

ALREADY_CLOSED_PATTERN = re.compile(
    r"position not found|already closed|position_not_exists|position does not exist",
    re.IGNORECASE,
)
INVALID_VOLUME_PATTERN = re.compile(
    r"invalid volume|invalid lots|trade_retcode_invalid_volume",
    re.IGNORECASE,
)


# ========== Candidates ==========

@dataclass(frozen=True)
class VolumeCandidate:
    """One volume to try, and why it is on the list."""
    value: float
    rationale: str


def build_volume_candidates(
    requested: Optional[float] = None,
    display: Optional[float] = None,
    native: Optional[float] = None,
) -> List[VolumeCandidate]:
    """
    Ordered, de-duplicated close volumes, most likely first.

    Order: requested volume, display volume, native volume, display volume
    scaled by each factor, native volume scaled by each factor. Scaled values
    outside (0, 1_000_000) are dropped. Without any position detail the
    fixed fallback volumes follow the requested one.

    Args:
        requested: Volume the caller asked to close
        display: Position volume in lots
        native: Position volume as the bridge reports it

    Returns:
        List of VolumeCandidate, no two within 1e-6 of each other
    """
    candidates: List[VolumeCandidate] = []

    def add(value: Optional[float], rationale: str, bounded: bool = False) -> None:
        if value is None:
            return
        try:
            value = round(float(value), 8)
        except (TypeError, ValueError, OverflowError):
            return
        if value <= 0 or (bounded and value >= MAX_SCALED_VOLUME):
            return
        if any(abs(c.value - value) < VOLUME_TOLERANCE for c in candidates):
            return
        candidates.append(VolumeCandidate(value, rationale))

    add(requested, "requested volume")

    if not display and not native:
        for volume in FALLBACK_VOLUMES:
            add(volume, f"fallback volume {volume:g}")
        return candidates

    add(display, "display volume")
    add(native, "native volume")
    for base, label in ((display, "display"), (native, "native")):
        if not base:
            continue
        for factor in SCALE_FACTORS:
            add(base * factor, f"{label} volume x{factor:g}", bounded=True)

    return candidates


# ========== Probe ==========

class ProbeVerdict(Enum):
    """How the bridge answered one close attempt."""
    ACCEPTED = "accepted"
    ALREADY_CLOSED = "already_closed"
    INVALID_VOLUME = "invalid_volume"
    REJECTED = "rejected"
    TRANSPORT_FAILED = "transport_failed"


_TERMINAL_VERDICTS = (ProbeVerdict.ACCEPTED, ProbeVerdict.ALREADY_CLOSED)


@dataclass(frozen=True)
class ProbeAttempt:
    candidate: VolumeCandidate
    verdict: ProbeVerdict
    message: str = ""


@dataclass
class VolumeProbe:
    """
    Candidate list plus cursor.

    ``next()`` gives the candidate to try, ``record()`` stores its verdict and
    moves on. The probe finishes on the first terminal verdict or when the
    list runs out.
    """
    candidates: List[VolumeCandidate]
    cursor: int = 0
    attempts: List[ProbeAttempt] = field(default_factory=list)
    finished: bool = False

    def next(self) -> Optional[VolumeCandidate]:
        if self.finished or self.cursor >= len(self.candidates):
            return None
        return self.candidates[self.cursor]

    def record(self, verdict: ProbeVerdict, message: str = "") -> ProbeAttempt:
        if self.next() is None:
            raise RuntimeError("Volume probe has no pending candidate")
        attempt = ProbeAttempt(self.candidates[self.cursor], verdict, message)
        self.attempts.append(attempt)
        self.cursor += 1
        if verdict in _TERMINAL_VERDICTS:
            self.finished = True
        return attempt

    @property
    def exhausted(self) -> bool:
        return not self.finished and self.cursor >= len(self.candidates)

    @property
    def last_message(self) -> str:
        return self.attempts[-1].message if self.attempts else ""


def _close_profit(body: Any) -> Optional[float]:
    """Non-zero profit reported in a close response, if any."""
    if not isinstance(body, Mapping):
        return None
    for name in ("profit", "Profit"):
        value = body.get(name)
        if isinstance(value, bool):
            continue
        try:
            profit = float(value)
        except (TypeError, ValueError):
            continue
        if profit:
            return profit
    return None


# ========== Closer ==========

class PositionCloser:
    """
    Closes positions through OrderClose with the volume probe.

    Args:
        client: Session Manager
        fetch_positions: Coroutine returning the open positions; it raises
            on failure instead of returning an empty list
        config: Bridge settings (close volume parameter, HTTP method)
    """

    def __init__(
        self,
        client: "MT5BridgeClient",
        fetch_positions: Callable[[], Awaitable[List[Position]]],
        config: BridgeConfig,
    ):
        self._client = client
        self._fetch_positions = fetch_positions
        self._config = config

    async def _find_position(self, ticket: int) -> Tuple[bool, Optional[Position]]:
        """(positions known, position or None)."""
        try:
            positions = await self._fetch_positions()
        except (AuthenticationExpiredError, NotConnectedError):
            raise
        except BrokerageError as e:
            logger.warning(f"Cannot read positions before closing {ticket}: {e.reason}")
            return False, None
        for position in positions:
            if position.ticket == ticket:
                return True, position
        return True, None

    async def _attempt(
        self,
        ticket: int,
        candidate: VolumeCandidate,
    ) -> Tuple[ProbeVerdict, str, Optional[float]]:
        params = {"ticket": ticket, self._config.close_volume_param: candidate.value}
        try:
            response = await self._client.request("OrderClose", params, method=self._config.order_method)
        except (AuthenticationExpiredError, NotConnectedError):
            raise
        except BrokerageError as e:
            return ProbeVerdict.TRANSPORT_FAILED, e.reason, None

        result = classify(response.body, "OrderClose")
        if response.ok and result.success:
            return ProbeVerdict.ACCEPTED, result.message, _close_profit(response.body)

        # Free-text matching only applies to replies that did not succeed
        text = f"{response.text} {result.message}"
        if ALREADY_CLOSED_PATTERN.search(text):
            return ProbeVerdict.ALREADY_CLOSED, result.message, None
        if result.code == TRADE_RETCODE_INVALID_VOLUME or INVALID_VOLUME_PATTERN.search(text):
            return ProbeVerdict.INVALID_VOLUME, result.message, None
        if result.success:
            return ProbeVerdict.REJECTED, f"OrderClose failed with HTTP {response.status_code}", None
        return ProbeVerdict.REJECTED, result.message, None

    async def close(self, ticket: int, volume: Optional[float] = None) -> OrderOutcome:
        """
        Close a position, probing volume formats until one is accepted.

        Args:
            ticket: Position ticket
            volume: Volume to close (None = whole position)

        Returns:
            OrderOutcome; success carries the realized profit and the
            candidate that worked

        Raises:
            AuthenticationExpiredError: aborts the probe immediately
            NotConnectedError: no session
        """
        known, position = await self._find_position(ticket)
        if known and position is None:
            logger.info(f"Position {ticket} not open; treating as already closed")
            return OrderOutcome.ok(f"Position {ticket} was already closed", ticket=ticket)

        captured_profit = position.profit if position else None
        probe = VolumeProbe(build_volume_candidates(
            requested=volume,
            display=position.volume if position else None,
            native=position.native_volume if position else None,
        ))
        logger.info(f"Closing position {ticket}: {len(probe.candidates)} volume candidates")

        candidate = probe.next()
        while candidate is not None:
            verdict, message, profit = await self._attempt(ticket, candidate)
            probe.record(verdict, message)
            logger.debug(
                f"Close {ticket} attempt {len(probe.attempts)}: "
                f"{candidate.value:g} ({candidate.rationale}) -> {verdict.value}: {message}"
            )

            if verdict == ProbeVerdict.ALREADY_CLOSED:
                logger.info(f"Position {ticket} already closed on the broker side")
                return OrderOutcome.ok(f"Position {ticket} was already closed", ticket=ticket)

            if verdict == ProbeVerdict.ACCEPTED:
                realized = profit if profit is not None else captured_profit
                logger.info(
                    f"Position {ticket} closed with {candidate.rationale} "
                    f"({candidate.value:g}), profit={realized}"
                )
                return OrderOutcome.ok(
                    message or f"Position {ticket} closed",
                    ticket=ticket,
                    realized_profit=realized,
                    volume_format=candidate.rationale,
                )

            candidate = probe.next()

        error = VolumeFormatExhaustedError(ticket, len(probe.attempts), probe.last_message)
        logger.error(error.reason)
        return OrderOutcome.failed(error.reason, error=error, ticket=ticket)
