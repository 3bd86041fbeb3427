"""
order_builder.py - Order validation and form construction for Tradier orders

Turns high-level order parameters into an OrderRequest whose to_form()
output is posted (form-urlencoded) to /accounts/{id}/orders.

Validation runs before anything is built, in a fixed order, and stops at the
first problem:

    1. duration   -> InvalidDurationError
    2. price      -> InvalidPriceError     (limit/credit/debit only)
    3. quantity   -> InvalidQuantityError
    4. strikes    -> InvalidStrikesError   (strangles: put < call)
    5. expiration -> InvalidExpirationError

Strike floats are converted to OSI thousandths only when the symbol is
encoded (occ_symbol.format_strike), never earlier.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from strangler.errors import (
    InvalidDurationError,
    InvalidPriceError,
    InvalidQuantityError,
    InvalidStrikesError,
    ValidationError,
)
from strangler.models import OptionType
from strangler.occ_symbol import encode_option_symbol, parse_expiration, require_decoded
from strangler.option_math import round_to_tick


class OrderClass(Enum):
    """Tradier order class."""
    OPTION = "option"
    MULTILEG = "multileg"


class OrderType(Enum):
    """Tradier order type (net type for multileg orders)."""
    MARKET = "market"
    LIMIT = "limit"
    CREDIT = "credit"
    DEBIT = "debit"


class OrderSide(Enum):
    """Option order sides used by this client."""
    SELL_TO_OPEN = "sell_to_open"
    BUY_TO_CLOSE = "buy_to_close"
    SELL_TO_CLOSE = "sell_to_close"


VALID_DURATIONS = ("day", "gtc", "pre", "post")

# Limit prices are sent with two decimals
PRICE_TICK = 0.01

_DURATION_SYNONYMS = {
    "day": "day",
    "gtc": "gtc",
    "good-til-cancelled": "gtc",
    "goodtilcancelled": "gtc",
    "pre": "pre",
    "pre-market": "pre",
    "premarket": "pre",
    "extended-hours-pre": "pre",
    "prehours": "pre",
    "post": "post",
    "post-market": "post",
    "postmarket": "post",
    "extended-hours-post": "post",
    "posthours": "post",
}

# Tradier tags: letters, digits and dashes only, up to 255 characters
MAX_TAG_LENGTH = 255
_TAG_PATTERN = re.compile(r"^[A-Za-z0-9-]+$")


@dataclass(frozen=True)
class OrderLeg:
    """One leg of an order."""
    option_symbol: str
    side: OrderSide
    quantity: int


@dataclass(frozen=True)
class OrderRequest:
    """
    A validated order ready to be posted.

    Attributes:
        order_class: option (single leg) or multileg
        symbol: Underlying symbol
        order_type: market, limit, credit or debit
        duration: day, gtc, pre or post
        price: Limit price (None for market orders)
        legs: One leg for option orders, two for strangles
        tag: Optional idempotency tag
        preview: Ask the broker to validate without placing
    """
    order_class: OrderClass
    symbol: str
    order_type: OrderType
    duration: str
    price: Optional[float]
    legs: List[OrderLeg] = field(default_factory=list)
    tag: Optional[str] = None
    preview: bool = False

    def to_form(self) -> List[Tuple[str, str]]:
        """
        Build the ordered form fields for POST /accounts/{id}/orders.

        Single-leg orders use side/option_symbol/quantity; multileg orders
        use the indexed side[n]/option_symbol[n]/quantity[n] fields.
        """
        form = [
            ("class", self.order_class.value),
            ("symbol", self.symbol),
            ("type", self.order_type.value),
            ("duration", self.duration),
        ]
        if self.price is not None:
            form.append(("price", f"{self.price:.2f}"))
        if self.preview:
            form.append(("preview", "true"))
        if self.tag:
            form.append(("tag", self.tag))

        if self.order_class is OrderClass.OPTION:
            leg = self.legs[0]
            form.extend([
                ("option_symbol", leg.option_symbol),
                ("side", leg.side.value),
                ("quantity", str(leg.quantity)),
            ])
        else:
            for i, leg in enumerate(self.legs):
                form.extend([
                    (f"option_symbol[{i}]", leg.option_symbol),
                    (f"side[{i}]", leg.side.value),
                    (f"quantity[{i}]", str(leg.quantity)),
                ])
        return form


# =============================================================================
# VALIDATION
# =============================================================================

def normalize_duration(duration: str) -> str:
    """
    Normalize an order duration.

    Args:
        duration: Any casing/synonym of day, gtc, pre, post

    Returns:
        str: One of "day", "gtc", "pre", "post"

    Raises:
        InvalidDurationError: Empty or unrecognized duration.
    """
    if duration is None or not str(duration).strip():
        raise InvalidDurationError("duration cannot be empty")

    normalized = _DURATION_SYNONYMS.get(str(duration).strip().lower())
    if normalized is None:
        raise InvalidDurationError(
            f"invalid duration '{duration}': must be one of 'day', 'gtc', 'pre', or 'post'"
        )
    return normalized


def validate_price(price: Optional[float], kind: str = "limit") -> float:
    """
    Require a positive price and round it to the cent.

    The rounded value is what goes on the wire, so a sub-cent price that
    rounds to 0.00 is rejected. kind is used in the error message.
    """
    if price is None or isinstance(price, bool):
        raise InvalidPriceError(f"invalid {kind} price: {price} (must be > 0)")
    try:
        value = float(price)
    except (TypeError, ValueError) as e:
        raise InvalidPriceError(f"invalid {kind} price: {price!r}") from e
    if not value > 0 or value == float("inf"):
        raise InvalidPriceError(f"invalid {kind} price: {value} (must be > 0)")
    rounded = round_to_tick(value, PRICE_TICK)
    if rounded <= 0:
        raise InvalidPriceError(f"invalid {kind} price: {value} rounds to {rounded:.2f} (must be > 0)")
    return rounded


def validate_quantity(quantity: int) -> int:
    """Require a positive whole number of contracts."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        if isinstance(quantity, float) and quantity.is_integer():
            quantity = int(quantity)
        else:
            raise InvalidQuantityError(f"invalid quantity: {quantity!r} (must be a whole number of contracts)")
    if quantity <= 0:
        raise InvalidQuantityError(f"invalid quantity: {quantity} (must be > 0)")
    return quantity


def validate_strangle_strikes(put_strike: float, call_strike: float) -> None:
    """Require put strike strictly below call strike."""
    if not put_strike < call_strike:
        raise InvalidStrikesError(
            f"invalid strikes for strangle: put strike ({put_strike:.2f}) "
            f"must be less than call strike ({call_strike:.2f})"
        )


def validate_tag(tag: Optional[str]) -> Optional[str]:
    """Return a usable tag, None for empty, or raise ValidationError."""
    if tag is None or tag == "":
        return None
    if len(tag) > MAX_TAG_LENGTH or not _TAG_PATTERN.match(tag):
        raise ValidationError(
            f"invalid order tag '{tag}': only letters, digits and dashes, max {MAX_TAG_LENGTH} characters"
        )
    return tag


# =============================================================================
# BUILDERS
# =============================================================================

def build_strangle_order(
    symbol: str,
    put_strike: float,
    call_strike: float,
    expiration,
    quantity: int,
    limit_price: float,
    duration: str = "day",
    tag: Optional[str] = None,
    preview: bool = False,
    buy_to_close: bool = False,
) -> OrderRequest:
    """
    Build a two-leg strangle order.

    Opening orders are net credit with both legs sell_to_open; closing
    orders are net debit with both legs buy_to_close.

    Args:
        symbol: Underlying symbol
        put_strike: Put strike (must be below call_strike)
        call_strike: Call strike
        expiration: Expiration date or "YYYY-MM-DD"
        quantity: Contracts per leg
        limit_price: Net credit (open) or max debit (close)
        duration: Order duration (synonyms accepted)
        tag: Optional idempotency tag
        preview: Validate with the broker without placing
        buy_to_close: Build the closing (debit) order instead

    Returns:
        OrderRequest: multileg order with put leg first.

    Raises:
        ValidationError: First failing check, in the module-level order.
    """
    normalized_duration = normalize_duration(duration)
    price = validate_price(limit_price, "debit" if buy_to_close else "credit")
    qty = validate_quantity(quantity)
    validate_strangle_strikes(put_strike, call_strike)
    exp_date = parse_expiration(expiration)
    order_tag = validate_tag(tag)

    side = OrderSide.BUY_TO_CLOSE if buy_to_close else OrderSide.SELL_TO_OPEN
    order_type = OrderType.DEBIT if buy_to_close else OrderType.CREDIT

    put_symbol = encode_option_symbol(symbol, exp_date, OptionType.PUT, put_strike)
    call_symbol = encode_option_symbol(symbol, exp_date, OptionType.CALL, call_strike)

    return OrderRequest(
        order_class=OrderClass.MULTILEG,
        symbol=symbol.strip(),
        order_type=order_type,
        duration=normalized_duration,
        price=price,
        legs=[
            OrderLeg(put_symbol, side, qty),
            OrderLeg(call_symbol, side, qty),
        ],
        tag=order_tag,
        preview=preview,
    )


def build_single_leg_order(
    option_symbol: str,
    side: OrderSide,
    quantity: int,
    limit_price: Optional[float] = None,
    duration: str = "day",
    tag: Optional[str] = None,
    market: bool = False,
    accept_lowercase_type: bool = True,
) -> OrderRequest:
    """
    Build a single-leg option order (used for closing one leg).

    Args:
        option_symbol: OSI symbol of the contract
        side: BUY_TO_CLOSE or SELL_TO_CLOSE
        quantity: Contracts
        limit_price: Limit price; ignored for market orders
        duration: Order duration
        tag: Optional idempotency tag
        market: Market order instead of limit
        accept_lowercase_type: Passed to the symbol decoder

    Returns:
        OrderRequest: option-class order.

    Raises:
        ValidationError: Bad duration/price/quantity or undecodable symbol.
    """
    normalized_duration = normalize_duration(duration)
    price = None if market else validate_price(limit_price, "limit")
    qty = validate_quantity(quantity)
    decoded = require_decoded(option_symbol, accept_lowercase_type=accept_lowercase_type)
    order_tag = validate_tag(tag)

    return OrderRequest(
        order_class=OrderClass.OPTION,
        symbol=decoded.underlying,
        order_type=OrderType.MARKET if market else OrderType.LIMIT,
        duration=normalized_duration,
        price=price,
        legs=[OrderLeg(option_symbol.strip(), side, qty)],
        tag=order_tag,
    )
