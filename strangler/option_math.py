"""
option_math.py - Pure helpers over already-fetched market data

Strike selection by delta, strangle credit from mid prices, open-strangle
detection in account positions, IV rank and price tick rounding.

Nothing here talks to the broker or keeps state, so every function is safe
to call from any number of threads.
"""

import logging
import math
from datetime import date, datetime
from typing import Iterable, NamedTuple, Optional, Sequence, Union

from strangler.errors import StrikeMatchError
from strangler.models import Contract, OptionType, Position
from strangler.occ_symbol import decode_option_symbol

logger = logging.getLogger(__name__)

# Strike tolerance when matching strikes recomputed from floats
STRIKE_MATCH_EPSILON = 1e-3


class StrangleStrikes(NamedTuple):
    """Selected strikes and symbols; None for a side with no candidates."""
    put_strike: Optional[float]
    call_strike: Optional[float]
    put_symbol: Optional[str]
    call_symbol: Optional[str]

    @property
    def is_complete(self) -> bool:
        return self.put_strike is not None and self.call_strike is not None


class StrangleMatch(NamedTuple):
    """Result of scanning positions for an open short strangle."""
    found: bool
    put_position: Optional[Position]
    call_position: Optional[Position]


# =============================================================================
# STRIKE SELECTION
# =============================================================================

def select_strangle_strikes(contracts: Iterable[Contract], target_delta: float) -> StrangleStrikes:
    """
    Pick the put and call whose delta is closest to a target.

    Puts are compared by |delta|, calls by delta. Contracts without greeks
    are skipped entirely. On ties the first contract encountered wins.

    Args:
        contracts: Option chain fetched with greeks
        target_delta: Target delta magnitude, e.g. 0.16

    Returns:
        StrangleStrikes: Fields are None for a side with no candidates.
    """
    target = abs(target_delta)
    best_put: Optional[Contract] = None
    best_call: Optional[Contract] = None
    best_put_diff = math.inf
    best_call_diff = math.inf

    for contract in contracts:
        if contract.greeks is None:
            continue

        if contract.option_type is OptionType.PUT:
            diff = abs(abs(contract.greeks.delta) - target)
            if diff < best_put_diff:
                best_put_diff = diff
                best_put = contract
        elif contract.option_type is OptionType.CALL:
            diff = abs(contract.greeks.delta - target)
            if diff < best_call_diff:
                best_call_diff = diff
                best_call = contract

    if best_put is None or best_call is None:
        logger.warning(
            f"Incomplete strangle selection for delta {target:.2f}: "
            f"put={'found' if best_put else 'missing'}, call={'found' if best_call else 'missing'}"
        )
    else:
        logger.debug(
            f"Selected strangle: put {best_put.strike} (delta {best_put.greeks.delta:.3f}) / "
            f"call {best_call.strike} (delta {best_call.greeks.delta:.3f})"
        )

    return StrangleStrikes(
        put_strike=best_put.strike if best_put else None,
        call_strike=best_call.strike if best_call else None,
        put_symbol=best_put.symbol if best_put else None,
        call_symbol=best_call.symbol if best_call else None,
    )


# =============================================================================
# CREDIT
# =============================================================================

def calculate_strangle_credit(contracts: Iterable[Contract], put_strike: float, call_strike: float) -> float:
    """
    Expected credit for selling the strangle at mid prices.

    Args:
        contracts: Option chain for one expiration
        put_strike: Put strike (matched within STRIKE_MATCH_EPSILON)
        call_strike: Call strike (matched within STRIKE_MATCH_EPSILON)

    Returns:
        float: put mid + call mid

    Raises:
        StrikeMatchError: Either leg has no matching contract.
    """
    put_credit = 0.0
    call_credit = 0.0
    put_found = False
    call_found = False

    for contract in contracts:
        if not put_found and contract.option_type is OptionType.PUT and \
                abs(contract.strike - put_strike) <= STRIKE_MATCH_EPSILON:
            put_credit = contract.mid_price
            put_found = True
        if not call_found and contract.option_type is OptionType.CALL and \
                abs(contract.strike - call_strike) <= STRIKE_MATCH_EPSILON:
            call_credit = contract.mid_price
            call_found = True
        if put_found and call_found:
            break

    if not (put_found and call_found):
        raise StrikeMatchError(
            f"missing strikes: put_found={put_found} call_found={call_found} "
            f"for strikes put={put_strike:.2f} call={call_strike:.2f}"
        )

    return put_credit + call_credit


def get_option_by_strike(
    contracts: Iterable[Contract],
    strike: float,
    option_type: OptionType,
) -> Optional[Contract]:
    """First contract of the given type whose strike matches within epsilon."""
    for contract in contracts:
        if contract.option_type is option_type and abs(contract.strike - strike) <= STRIKE_MATCH_EPSILON:
            return contract
    return None


# =============================================================================
# POSITIONS
# =============================================================================

def find_open_strangle(
    positions: Iterable[Position],
    underlying: str,
    accept_lowercase_type: bool = True,
) -> StrangleMatch:
    """
    Look for an open short strangle on an underlying.

    The underlying of each position is taken from the decoded OSI symbol, so
    "AAPL" never matches an "AAPLW..." contract and equity positions are
    ignored. Only positions where Position.is_short holds (quantity at or
    below models.SHORT_QUANTITY_THRESHOLD) count as short. The first
    qualifying put and call are used.

    Args:
        positions: Account positions
        underlying: Underlying to look for (exact, case sensitive)
        accept_lowercase_type: Passed to the symbol decoder

    Returns:
        StrangleMatch: found is True only when both legs exist.
    """
    put_position: Optional[Position] = None
    call_position: Optional[Position] = None

    for position in positions:
        if not position.is_short:
            continue

        decoded = decode_option_symbol(position.symbol, accept_lowercase_type=accept_lowercase_type)
        if decoded is None or decoded.underlying != underlying:
            continue

        if decoded.option_type is OptionType.PUT and put_position is None:
            put_position = position
        elif decoded.option_type is OptionType.CALL and call_position is None:
            call_position = position

    return StrangleMatch(
        found=put_position is not None and call_position is not None,
        put_position=put_position,
        call_position=call_position,
    )


# =============================================================================
# VOLATILITY / DATES / PRICES
# =============================================================================

def calculate_ivr(current_iv: float, historical_ivs: Sequence[float]) -> float:
    """
    Implied Volatility Rank on a 0-100 scale.

    IVR = (current - low) / (high - low) * 100 over the historical window.
    Returns 0 with no history and 50 when the window has no range.
    """
    if not historical_ivs:
        return 0.0

    low = min(historical_ivs)
    high = max(historical_ivs)
    if high == low:
        return 50.0

    return (current_iv - low) / (high - low) * 100


def days_between(start: Union[date, datetime], end: Union[date, datetime]) -> int:
    """Whole calendar days from start to end (negative if end is earlier)."""
    if isinstance(start, datetime):
        start = start.date()
    if isinstance(end, datetime):
        end = end.date()
    return (end - start).days


def _valid_tick(x: float, tick: float) -> bool:
    return tick != 0 and math.isfinite(tick) and math.isfinite(x)


def round_to_tick(x: float, tick: float) -> float:
    """Round to the nearest tick. Non-finite input or zero tick returns x."""
    if not _valid_tick(x, tick):
        return x
    t = abs(tick)
    q = x / t
    return round(math.copysign(math.floor(abs(q) + 0.5), q) * t, 10)


def floor_to_tick(x: float, tick: float) -> float:
    """Round down to a tick (use for sell credits)."""
    if not _valid_tick(x, tick):
        return x
    t = abs(tick)
    return round(math.floor(round(x / t, 9)) * t, 10)


def ceil_to_tick(x: float, tick: float) -> float:
    """Round up to a tick (use for buy debits)."""
    if not _valid_tick(x, tick):
        return x
    t = abs(tick)
    return round(math.ceil(round(x / t, 9)) * t, 10)

