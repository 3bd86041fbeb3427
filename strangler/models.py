"""
models.py - Dataclasses for Tradier API responses

Each model is an immutable-by-convention snapshot built from the raw JSON
returned by the broker via a from_api() classmethod. The layer never
persists them.

Tradier is inconsistent about collections: a field that normally holds an
array of objects holds a bare object when there is exactly one element,
null (or the string "null") when there are none. as_list() flattens all of
those shapes into a Python list and every collection is parsed through it.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import pytz

from strangler.errors import ValidationError

logger = logging.getLogger(__name__)

# Tradier reports market times in exchange time
US_EASTERN = pytz.timezone("America/New_York")

# Clock states that count as a trading session
TRADING_SESSION_STATES = ("open", "premarket", "postmarket")

# A position is short only at or below this quantity (options trade in whole contracts)
SHORT_QUANTITY_THRESHOLD = -0.5


class OptionType(Enum):
    """Put or call."""
    PUT = "put"
    CALL = "call"

    @classmethod
    def parse(cls, value: Any) -> Optional["OptionType"]:
        """Parse a Tradier option_type field, returning None for anything else."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


def as_list(value: Any) -> List[Any]:
    """
    Normalize a single-object-or-array JSON field into a list.

    Args:
        value: None, "null", a dict or a list

    Returns:
        list: Empty for null-like values, [value] for a single object.
    """
    if value is None:
        return []
    if isinstance(value, str):
        if value.strip() in ("", "null"):
            return []
        return [value]
    if isinstance(value, list):
        return value
    return [value]


def _section(data: Any, key: str) -> Dict[str, Any]:
    """Return a nested dict, treating null/"null"/missing as empty."""
    if not isinstance(data, dict):
        return {}
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def _float(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def _str(value: Any) -> str:
    return "" if value is None else str(value)


# =============================================================================
# MARKET DATA
# =============================================================================

@dataclass(frozen=True)
class Greeks:
    """Option greeks as returned with greeks=true."""
    delta: float = 0.0
    gamma: float = 0.0
    theta: float = 0.0
    vega: float = 0.0
    rho: float = 0.0
    phi: float = 0.0
    bid_iv: float = 0.0
    mid_iv: float = 0.0
    ask_iv: float = 0.0
    smv_vol: float = 0.0
    updated_at: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Greeks":
        return cls(
            delta=_float(data.get("delta")),
            gamma=_float(data.get("gamma")),
            theta=_float(data.get("theta")),
            vega=_float(data.get("vega")),
            rho=_float(data.get("rho")),
            phi=_float(data.get("phi")),
            bid_iv=_float(data.get("bid_iv")),
            mid_iv=_float(data.get("mid_iv")),
            ask_iv=_float(data.get("ask_iv")),
            smv_vol=_float(data.get("smv_vol")),
            updated_at=_str(data.get("updated_at")),
        )


@dataclass(frozen=True)
class Contract:
    """
    A single option contract from an option chain.

    Attributes:
        symbol: OSI option symbol
        underlying: Underlying ticker
        expiration_date: Expiration as YYYY-MM-DD
        option_type: Put or call (None if the broker sent something else)
        strike: Strike price
        bid/ask/last: Quote prices
        greeks: Greeks, or None when the chain was fetched without them
    """
    symbol: str
    underlying: str = ""
    expiration_date: str = ""
    option_type: Optional[OptionType] = None
    strike: float = 0.0
    bid: float = 0.0
    ask: float = 0.0
    last: float = 0.0
    bid_size: int = 0
    ask_size: int = 0
    volume: int = 0
    open_interest: int = 0
    description: str = ""
    greeks: Optional[Greeks] = None

    @property
    def mid_price(self) -> float:
        """Average of bid and ask."""
        return (self.bid + self.ask) / 2

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Contract":
        greeks_data = data.get("greeks")
        return cls(
            symbol=_str(data.get("symbol")),
            underlying=_str(data.get("underlying")),
            expiration_date=_str(data.get("expiration_date")),
            option_type=OptionType.parse(data.get("option_type")),
            strike=_float(data.get("strike")),
            bid=_float(data.get("bid")),
            ask=_float(data.get("ask")),
            last=_float(data.get("last")),
            bid_size=_int(data.get("bid_size")),
            ask_size=_int(data.get("ask_size")),
            volume=_int(data.get("volume")),
            open_interest=_int(data.get("open_interest")),
            description=_str(data.get("description")),
            greeks=Greeks.from_api(greeks_data) if isinstance(greeks_data, dict) else None,
        )


@dataclass(frozen=True)
class Quote:
    """Quote for an equity or option symbol."""
    symbol: str
    description: str = ""
    type: str = ""
    exch: str = ""
    last: float = 0.0
    bid: float = 0.0
    ask: float = 0.0
    bid_size: int = 0
    ask_size: int = 0
    open: float = 0.0
    high: float = 0.0
    low: float = 0.0
    close: float = 0.0
    prevclose: float = 0.0
    change: float = 0.0
    change_percentage: float = 0.0
    volume: int = 0
    average_volume: int = 0
    last_volume: int = 0
    trade_date: int = 0

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Quote":
        return cls(
            symbol=_str(data.get("symbol")),
            description=_str(data.get("description")),
            type=_str(data.get("type")),
            exch=_str(data.get("exch")),
            last=_float(data.get("last")),
            bid=_float(data.get("bid")),
            ask=_float(data.get("ask")),
            bid_size=_int(data.get("bidsize")),
            ask_size=_int(data.get("asksize")),
            open=_float(data.get("open")),
            high=_float(data.get("high")),
            low=_float(data.get("low")),
            close=_float(data.get("close")),
            prevclose=_float(data.get("prevclose")),
            change=_float(data.get("change")),
            change_percentage=_float(data.get("change_percentage")),
            volume=_int(data.get("volume")),
            average_volume=_int(data.get("average_volume")),
            last_volume=_int(data.get("last_volume")),
            trade_date=_int(data.get("trade_date")),
        )


@dataclass(frozen=True)
class HistoricalBar:
    """One OHLCV bar from /markets/history."""
    date: date
    open: float
    high: float
    low: float
    close: float
    volume: int

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "HistoricalBar":
        return cls(
            date=datetime.strptime(_str(data.get("date")), "%Y-%m-%d").date(),
            open=_float(data.get("open")),
            high=_float(data.get("high")),
            low=_float(data.get("low")),
            close=_float(data.get("close")),
            volume=_int(data.get("volume")),
        )


# =============================================================================
# MARKET CLOCK / CALENDAR
# =============================================================================

@dataclass(frozen=True)
class MarketClock:
    """Market clock state (open, closed, premarket, postmarket)."""
    date: str
    description: str
    state: str
    timestamp: int
    next_change: str = ""
    next_state: str = ""

    @property
    def is_trading_session(self) -> bool:
        """True during regular, pre-market or post-market sessions."""
        return self.state in TRADING_SESSION_STATES

    @property
    def as_of(self) -> Optional[datetime]:
        """Clock timestamp as an aware datetime in US/Eastern."""
        if not self.timestamp:
            return None
        return datetime.fromtimestamp(self.timestamp, tz=pytz.utc).astimezone(US_EASTERN)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "MarketClock":
        clock = _section(data, "clock")
        return cls(
            date=_str(clock.get("date")),
            description=_str(clock.get("description")),
            state=_str(clock.get("state")),
            timestamp=_int(clock.get("timestamp")),
            next_change=_str(clock.get("next_change")),
            next_state=_str(clock.get("next_state")),
        )


@dataclass(frozen=True)
class SessionWindow:
    """Start/end of a session as HH:MM strings in exchange time."""
    start: str
    end: str

    @classmethod
    def from_api(cls, data: Any) -> Optional["SessionWindow"]:
        if not isinstance(data, dict):
            return None
        return cls(start=_str(data.get("start")), end=_str(data.get("end")))


@dataclass(frozen=True)
class MarketDay:
    """A single day of the market calendar."""
    date: str
    status: str
    description: str = ""
    premarket: Optional[SessionWindow] = None
    open: Optional[SessionWindow] = None
    postmarket: Optional[SessionWindow] = None

    @property
    def is_open(self) -> bool:
        return self.status == "open"

    def session_start(self) -> Optional[datetime]:
        """Regular session open as an aware US/Eastern datetime."""
        if not self.open or not self.open.start:
            return None
        naive = datetime.strptime(f"{self.date} {self.open.start}", "%Y-%m-%d %H:%M")
        return US_EASTERN.localize(naive)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "MarketDay":
        return cls(
            date=_str(data.get("date")),
            status=_str(data.get("status")),
            description=_str(data.get("description")),
            premarket=SessionWindow.from_api(data.get("premarket")),
            open=SessionWindow.from_api(data.get("open")),
            postmarket=SessionWindow.from_api(data.get("postmarket")),
        )


@dataclass(frozen=True)
class MarketCalendar:
    """Market calendar for one month."""
    month: int
    year: int
    days: List[MarketDay] = field(default_factory=list)

    def get_day(self, day: str) -> Optional[MarketDay]:
        """Look up a day by YYYY-MM-DD."""
        for market_day in self.days:
            if market_day.date == day:
                return market_day
        return None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "MarketCalendar":
        calendar = _section(data, "calendar")
        days = _section(calendar, "days")
        return cls(
            month=_int(calendar.get("month")),
            year=_int(calendar.get("year")),
            days=[MarketDay.from_api(d) for d in as_list(days.get("day")) if isinstance(d, dict)],
        )


# =============================================================================
# ACCOUNT
# =============================================================================

@dataclass(frozen=True)
class Position:
    """
    An open account holding.

    Attributes:
        id: Broker position ID
        symbol: OSI option symbol or equity ticker
        quantity: Signed quantity (negative = short)
        cost_basis: Total cost basis (negative for credit received)
        date_acquired: ISO timestamp from the broker
    """
    id: int
    symbol: str
    quantity: float
    cost_basis: float = 0.0
    date_acquired: str = ""

    @property
    def is_short(self) -> bool:
        return self.quantity <= SHORT_QUANTITY_THRESHOLD

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Position":
        return cls(
            id=_int(data.get("id")),
            symbol=_str(data.get("symbol")),
            quantity=_float(data.get("quantity")),
            cost_basis=_float(data.get("cost_basis")),
            date_acquired=_str(data.get("date_acquired")),
        )


@dataclass(frozen=True)
class Balance:
    """
    Account balances.

    Tradier nests buying power under a section named after the account
    type (margin, pdt or cash), so option_buying_power() dispatches on it.
    """
    account_number: str
    account_type: str
    total_equity: float = 0.0
    total_cash: float = 0.0
    equity: float = 0.0
    market_value: float = 0.0
    open_pl: float = 0.0
    close_pl: float = 0.0
    option_short_value: float = 0.0
    option_long_value: float = 0.0
    option_requirement: float = 0.0
    current_requirement: float = 0.0
    pending_orders_count: int = 0
    margin: Dict[str, Any] = field(default_factory=dict)
    cash: Dict[str, Any] = field(default_factory=dict)
    pdt: Dict[str, Any] = field(default_factory=dict)

    def option_buying_power(self) -> float:
        """
        Option buying power for this account type.

        Raises:
            ValidationError: If the section for the account type is missing
                or the account type is unknown.
        """
        if self.account_type == "margin":
            if self.margin:
                return _float(self.margin.get("option_buying_power"))
            raise ValidationError("margin account type specified but margin data is missing")
        if self.account_type == "pdt":
            if self.pdt:
                return _float(self.pdt.get("option_buying_power"))
            raise ValidationError("pdt account type specified but pdt data is missing")
        if self.account_type == "cash":
            if self.cash:
                return _float(self.cash.get("cash_available"))
            raise ValidationError("cash account type specified but cash data is missing")
        raise ValidationError(f"unknown account type: {self.account_type}")

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Balance":
        balances = _section(data, "balances")
        return cls(
            account_number=_str(balances.get("account_number")),
            account_type=_str(balances.get("account_type")),
            total_equity=_float(balances.get("total_equity")),
            total_cash=_float(balances.get("total_cash")),
            equity=_float(balances.get("equity")),
            market_value=_float(balances.get("market_value")),
            open_pl=_float(balances.get("open_pl")),
            close_pl=_float(balances.get("close_pl")),
            option_short_value=_float(balances.get("option_short_value")),
            option_long_value=_float(balances.get("option_long_value")),
            option_requirement=_float(balances.get("option_requirement")),
            current_requirement=_float(balances.get("current_requirement")),
            pending_orders_count=_int(balances.get("pending_orders_count")),
            margin=_section(balances, "margin"),
            cash=_section(balances, "cash"),
            pdt=_section(balances, "pdt"),
        )


# =============================================================================
# ORDERS
# =============================================================================

class OrderStatus(Enum):
    """Tradier order statuses."""
    OPEN = "open"
    PARTIALLY_FILLED = "partially_filled"
    FILLED = "filled"
    EXPIRED = "expired"
    CANCELED = "canceled"
    PENDING = "pending"
    REJECTED = "rejected"
    CALCULATED = "calculated"
    ACCEPTED_FOR_BIDDING = "accepted_for_bidding"
    ERROR = "error"
    HELD = "held"
    OK = "ok"


TERMINAL_ORDER_STATUSES = ("filled", "expired", "canceled", "rejected", "error")


@dataclass(frozen=True)
class OrderResult:
    """
    Order as acknowledged or reported by the broker.

    Place-order responses only carry id/status/partner_id; status lookups
    carry the full order. Missing fields default to zero/empty.

    exit_target_price is set locally on results of an emulated OTOCO entry
    and holds the synthetic profit-taking debit.
    """
    id: int
    status: str = ""
    symbol: str = ""
    side: str = ""
    type: str = ""
    order_class: str = ""
    duration: str = ""
    price: float = 0.0
    quantity: float = 0.0
    avg_fill_price: float = 0.0
    exec_quantity: float = 0.0
    last_fill_price: float = 0.0
    last_fill_quantity: float = 0.0
    remaining_quantity: float = 0.0
    create_date: str = ""
    transaction_date: str = ""
    tag: str = ""
    partner_id: str = ""
    exit_target_price: Optional[float] = None

    @property
    def is_filled(self) -> bool:
        return self.status == OrderStatus.FILLED.value

    @property
    def is_partially_filled(self) -> bool:
        return self.status == OrderStatus.PARTIALLY_FILLED.value

    @property
    def is_pending(self) -> bool:
        return self.status in (
            OrderStatus.OPEN.value,
            OrderStatus.PENDING.value,
            OrderStatus.OK.value,
            OrderStatus.ACCEPTED_FOR_BIDDING.value,
            OrderStatus.HELD.value,
            OrderStatus.CALCULATED.value,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ORDER_STATUSES

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "OrderResult":
        order = _section(data, "order")
        return cls(
            id=_int(order.get("id")),
            status=_str(order.get("status")),
            symbol=_str(order.get("symbol")),
            side=_str(order.get("side")),
            type=_str(order.get("type")),
            order_class=_str(order.get("class")),
            duration=_str(order.get("duration")),
            price=_float(order.get("price")),
            quantity=_float(order.get("quantity")),
            avg_fill_price=_float(order.get("avg_fill_price")),
            exec_quantity=_float(order.get("exec_quantity")),
            last_fill_price=_float(order.get("last_fill_price")),
            last_fill_quantity=_float(order.get("last_fill_quantity")),
            remaining_quantity=_float(order.get("remaining_quantity")),
            create_date=_str(order.get("create_date")),
            transaction_date=_str(order.get("transaction_date")),
            tag=_str(order.get("tag")),
            partner_id=_str(order.get("partner_id")),
        )
