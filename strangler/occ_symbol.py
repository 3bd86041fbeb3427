"""
occ_symbol.py - OCC/OSI option symbol encoding and decoding

Option contracts are identified by the standardized OSI symbol:

    UNDERLYING + YYMMDD + P|C + 8-digit strike in thousandths

    e.g. AAPL250117P00095000  ->  AAPL, 2025-01-17, put, 95.000

Decoding is strict: anything that is not exactly this shape is reported as
"not decodable" (None) instead of returning a truncated or guessed
underlying. Callers that need a hard failure use require_decoded().
"""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import NamedTuple, Optional, Union

from strangler.errors import InvalidExpirationError, InvalidSymbolError
from strangler.models import OptionType

# Largest strike that fits the 8-digit thousandths field
MAX_STRIKE_THOUSANDTHS = 99_999_999

# Underlying, then a 6-digit date not preceded by a digit, type char, 8-digit strike
_OSI_PATTERN = re.compile(r"^(?P<root>.*?)(?<![0-9])(?P<date>[0-9]{6})(?P<type>[PC])(?P<strike>[0-9]{8})$")
_OSI_PATTERN_LOWER_TYPE = re.compile(
    r"^(?P<root>.*?)(?<![0-9])(?P<date>[0-9]{6})(?P<type>[PCpc])(?P<strike>[0-9]{8})$"
)

_TYPE_CHARS = {
    "P": OptionType.PUT,
    "C": OptionType.CALL,
}


class DecodedSymbol(NamedTuple):
    """Components of a decoded option symbol."""
    underlying: str
    expiration: date
    option_type: OptionType
    strike: float


def _coerce_option_type(option_type: Union[OptionType, str]) -> OptionType:
    if isinstance(option_type, OptionType):
        return option_type
    normalized = str(option_type).strip().lower()
    if normalized in ("put", "p"):
        return OptionType.PUT
    if normalized in ("call", "c"):
        return OptionType.CALL
    raise InvalidSymbolError(f"invalid option type '{option_type}': must be put or call")


def parse_expiration(expiration: Union[date, datetime, str]) -> date:
    """Parse a YYYY-MM-DD expiration (dates pass through)."""
    if isinstance(expiration, datetime):
        return expiration.date()
    if isinstance(expiration, date):
        return expiration
    try:
        return datetime.strptime(str(expiration).strip(), "%Y-%m-%d").date()
    except ValueError as e:
        raise InvalidExpirationError(f"invalid expiration format '{expiration}': {e}") from e


def format_strike(strike: float) -> str:
    """
    Format a strike as the 8-digit thousandths field of an OSI symbol.

    The strike is rounded to the nearest 1/1000 (ties away from zero) from
    its shortest decimal representation, so the same float always encodes
    to the same digits.

    Args:
        strike: Strike price in currency units

    Returns:
        str: Zero-padded 8-digit string, e.g. 95.0 -> "00095000"

    Raises:
        InvalidSymbolError: If the strike is not positive or too large.
    """
    try:
        value = Decimal(str(strike))
    except InvalidOperation as e:
        raise InvalidSymbolError(f"invalid strike: {strike!r}") from e
    if not value.is_finite() or value <= 0:
        raise InvalidSymbolError(f"invalid strike {strike}: must be > 0")

    thousandths = int((value * 1000).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if thousandths <= 0 or thousandths > MAX_STRIKE_THOUSANDTHS:
        raise InvalidSymbolError(f"strike {strike} does not fit the 8-digit OSI strike field")
    return f"{thousandths:08d}"


def encode_option_symbol(
    underlying: str,
    expiration: Union[date, datetime, str],
    option_type: Union[OptionType, str],
    strike: float,
) -> str:
    """
    Build an OSI option symbol.

    Args:
        underlying: Underlying ticker, e.g. "SPY" (case preserved)
        expiration: Expiration as a date or "YYYY-MM-DD" string
        option_type: OptionType or "put"/"call"
        strike: Strike price

    Returns:
        str: Symbol such as "SPY241220P00450000"

    Raises:
        InvalidSymbolError: Empty underlying, bad type, non-positive strike
        InvalidExpirationError: Expiration is not a calendar date
    """
    root = (underlying or "").strip()
    if not root:
        raise InvalidSymbolError("underlying symbol cannot be empty")

    opt_type = _coerce_option_type(option_type)
    exp_date = parse_expiration(expiration)
    type_char = "P" if opt_type is OptionType.PUT else "C"

    return f"{root}{exp_date.strftime('%y%m%d')}{type_char}{format_strike(strike)}"


def decode_option_symbol(symbol: str, accept_lowercase_type: bool = True) -> Optional[DecodedSymbol]:
    """
    Decode an OSI option symbol.

    Args:
        symbol: Symbol to decode (surrounding whitespace ignored)
        accept_lowercase_type: Whether "p"/"c" are accepted as the type
            character. The underlying is never case folded.

    Returns:
        DecodedSymbol, or None when the symbol is not decodable (wrong digit
        counts, trailing characters, missing underlying, invalid date).
    """
    if not isinstance(symbol, str):
        return None

    pattern = _OSI_PATTERN_LOWER_TYPE if accept_lowercase_type else _OSI_PATTERN
    match = pattern.match(symbol.strip())
    if not match:
        return None

    underlying = match.group("root").strip()
    if not underlying:
        return None

    try:
        expiration = datetime.strptime(match.group("date"), "%y%m%d").date()
    except ValueError:
        return None

    return DecodedSymbol(
        underlying=underlying,
        expiration=expiration,
        option_type=_TYPE_CHARS[match.group("type").upper()],
        strike=int(match.group("strike")) / 1000.0,
    )


def require_decoded(symbol: str, accept_lowercase_type: bool = True) -> DecodedSymbol:
    """Decode a symbol or raise InvalidSymbolError."""
    decoded = decode_option_symbol(symbol, accept_lowercase_type=accept_lowercase_type)
    if decoded is None:
        raise InvalidSymbolError(f"failed to decode option symbol: {symbol!r}")
    return decoded


def extract_underlying(symbol: str, accept_lowercase_type: bool = True) -> Optional[str]:
    """Return the underlying of an option symbol, or None if not decodable."""
    decoded = decode_option_symbol(symbol, accept_lowercase_type=accept_lowercase_type)
    return decoded.underlying if decoded else None


def option_type_from_symbol(symbol: str) -> Optional[OptionType]:
    """
    Determine put/call from the trailing 9 characters of a symbol.

    Cheaper than a full decode: only checks for 8 trailing digits preceded
    by P or C (either case). The rest of the symbol is not validated.
    """
    if not isinstance(symbol, str) or len(symbol) < 9:
        return None
    strike_part = symbol[-8:]
    if not (strike_part.isascii() and strike_part.isdigit()):
        return None
    return _TYPE_CHARS.get(symbol[-9].upper())
