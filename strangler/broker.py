"""
broker.py - Broker capability contract and the Tradier implementation

Broker is the interface the rest of a trading system codes against.
TradierBroker implements it by holding a TradierAPI and forwarding each
call explicitly; the only method with its own policy is
place_strangle_order, which decides between an OTOCO-style entry and a
plain credit strangle:

    use_otoco False -> plain strangle
    use_otoco True  -> OTOCO attempt
                       ok                           -> return it
                       FeatureUnsupportedError / 501 -> warn, one plain strangle
                       anything else                -> raise unchanged

The fallback never chains: whatever the plain strangle does is returned or
raised as is.
"""

import hashlib
import logging
import secrets
import threading
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import List, Optional, Union

from strangler.config_loader import BrokerConfig
from strangler.errors import is_feature_unsupported
from strangler.models import (
    Contract,
    HistoricalBar,
    MarketCalendar,
    MarketClock,
    OrderResult,
    Position,
    Quote,
)
from strangler.tradier_api import TradierAPI

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime, str]


def make_order_tag(prefix: str, *parts, nonce: bool = True) -> str:
    """
    Build a broker-safe idempotency tag.

    The tag is the prefix, the first 8 hex digits of a SHA-256 over the
    prefix and parts, and (unless nonce=False) a random 4-hex-digit suffix
    so retried submissions of the same order stay distinguishable.

    Floats are formatted to cents before hashing, so 2.35 and 2.350001
    produce the same tag.

    Example:
        tag = make_order_tag("entry", "SPY", "2025-01-17", 400.0, 450.0, 1, 2.35, account_id)
    """
    formatted = [f"{p:.2f}" if isinstance(p, float) else str(p) for p in parts]
    canonical = "-".join([prefix] + formatted)
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:8]
    tag = f"{prefix}-{digest}"
    if nonce:
        tag = f"{tag}-{secrets.token_hex(2)}"
    return tag


class Broker(ABC):
    """
    Broker capability contract.

    Every method accepts an optional per-call timeout (seconds) and a
    threading.Event. Setting the event cancels the call, before it is sent
    or while it is in flight, with RequestCancelledError.
    """

    # ---- account ----

    @abstractmethod
    def get_account_balance(self, timeout: Optional[float] = None,
                            cancel_event: Optional[threading.Event] = None) -> float:
        """Total account equity."""

    @abstractmethod
    def get_option_buying_power(self, timeout: Optional[float] = None,
                                cancel_event: Optional[threading.Event] = None) -> float:
        """Buying power available for option trades."""

    @abstractmethod
    def get_positions(self, timeout: Optional[float] = None,
                      cancel_event: Optional[threading.Event] = None) -> List[Position]:
        ...

    # ---- market data ----

    @abstractmethod
    def get_quote(self, symbol: str, timeout: Optional[float] = None,
                  cancel_event: Optional[threading.Event] = None) -> Quote:
        ...

    @abstractmethod
    def get_expirations(self, symbol: str, timeout: Optional[float] = None,
                        cancel_event: Optional[threading.Event] = None) -> List[str]:
        ...

    @abstractmethod
    def get_option_chain(self, symbol: str, expiration: DateLike, with_greeks: bool = True,
                         timeout: Optional[float] = None,
                         cancel_event: Optional[threading.Event] = None) -> List[Contract]:
        ...

    @abstractmethod
    def get_market_clock(self, delayed: bool = False, timeout: Optional[float] = None,
                         cancel_event: Optional[threading.Event] = None) -> MarketClock:
        ...

    @abstractmethod
    def get_market_calendar(self, month: int = 0, year: int = 0, timeout: Optional[float] = None,
                            cancel_event: Optional[threading.Event] = None) -> MarketCalendar:
        ...

    @abstractmethod
    def is_trading_day(self, delayed: bool = False, timeout: Optional[float] = None,
                       cancel_event: Optional[threading.Event] = None) -> bool:
        ...

    @abstractmethod
    def get_historical_data(self, symbol: str, start: DateLike, end: DateLike, interval: str = "daily",
                            timeout: Optional[float] = None,
                            cancel_event: Optional[threading.Event] = None) -> List[HistoricalBar]:
        ...

    # ---- orders ----

    @abstractmethod
    def place_strangle_order(self, symbol: str, put_strike: float, call_strike: float,
                             expiration: DateLike, quantity: int, credit: float,
                             profit_target: Optional[float] = None, duration: str = "day",
                             tag: Optional[str] = None, preview: bool = False,
                             timeout: Optional[float] = None,
                             cancel_event: Optional[threading.Event] = None) -> OrderResult:
        """Open a short strangle for a net credit."""

    @abstractmethod
    def place_strangle_otoco(self, symbol: str, put_strike: float, call_strike: float,
                             expiration: DateLike, quantity: int, credit: float,
                             profit_target: float, duration: str = "day",
                             tag: Optional[str] = None, preview: bool = False,
                             timeout: Optional[float] = None,
                             cancel_event: Optional[threading.Event] = None) -> OrderResult:
        """Open a short strangle with an attached profit target."""

    @abstractmethod
    def close_strangle_position(self, symbol: str, put_strike: float, call_strike: float,
                                expiration: DateLike, quantity: int, max_debit: float,
                                duration: str = "day", tag: Optional[str] = None,
                                timeout: Optional[float] = None,
                                cancel_event: Optional[threading.Event] = None) -> OrderResult:
        """Buy back both legs of a strangle for at most max_debit."""

    @abstractmethod
    def place_buy_to_close_order(self, option_symbol: str, quantity: int, max_price: float,
                                 duration: str = "day", tag: Optional[str] = None,
                                 timeout: Optional[float] = None,
                                 cancel_event: Optional[threading.Event] = None) -> OrderResult:
        ...

    @abstractmethod
    def place_sell_to_close_order(self, option_symbol: str, quantity: int, min_price: float,
                                  duration: str = "day", tag: Optional[str] = None,
                                  timeout: Optional[float] = None,
                                  cancel_event: Optional[threading.Event] = None) -> OrderResult:
        ...

    @abstractmethod
    def place_buy_to_close_market_order(self, option_symbol: str, quantity: int,
                                        duration: str = "day", tag: Optional[str] = None,
                                        timeout: Optional[float] = None,
                                        cancel_event: Optional[threading.Event] = None) -> OrderResult:
        ...

    @abstractmethod
    def place_sell_to_close_market_order(self, option_symbol: str, quantity: int,
                                         duration: str = "day", tag: Optional[str] = None,
                                         timeout: Optional[float] = None,
                                         cancel_event: Optional[threading.Event] = None) -> OrderResult:
        ...

    @abstractmethod
    def get_order_status(self, order_id: int, timeout: Optional[float] = None,
                         cancel_event: Optional[threading.Event] = None) -> OrderResult:
        ...


class TradierBroker(Broker):
    """
    Broker backed by the Tradier REST API.

    Attributes:
        config (BrokerConfig): Client configuration
        api (TradierAPI): Low-level client all calls are forwarded to
    """

    def __init__(self, config: BrokerConfig, api: Optional[TradierAPI] = None):
        """
        Initialize the broker.

        Args:
            config: Broker configuration (profit target already validated)
            api: Optional pre-built TradierAPI (tests inject one)
        """
        self.config = config
        self.api = api if api is not None else TradierAPI(config)

        logger.info(
            f"TradierBroker ready: use_otoco={config.use_otoco} "
            f"profit_target={config.profit_target:.0%}"
        )

    # =========================================================================
    # ACCOUNT
    # =========================================================================

    def get_account_balance(self, timeout=None, cancel_event=None) -> float:
        return self.api.get_balance(timeout=timeout, cancel_event=cancel_event).total_equity

    def get_option_buying_power(self, timeout=None, cancel_event=None) -> float:
        balance = self.api.get_balance(timeout=timeout, cancel_event=cancel_event)
        return balance.option_buying_power()

    def get_positions(self, timeout=None, cancel_event=None) -> List[Position]:
        return self.api.get_positions(timeout=timeout, cancel_event=cancel_event)

    # =========================================================================
    # MARKET DATA
    # =========================================================================

    def get_quote(self, symbol, timeout=None, cancel_event=None) -> Quote:
        return self.api.get_quote(symbol, timeout=timeout, cancel_event=cancel_event)

    def get_expirations(self, symbol, timeout=None, cancel_event=None) -> List[str]:
        return self.api.get_expirations(symbol, timeout=timeout, cancel_event=cancel_event)

    def get_option_chain(self, symbol, expiration, with_greeks=True, timeout=None,
                         cancel_event=None) -> List[Contract]:
        return self.api.get_option_chain(symbol, expiration, with_greeks,
                                         timeout=timeout, cancel_event=cancel_event)

    def get_market_clock(self, delayed=False, timeout=None, cancel_event=None) -> MarketClock:
        return self.api.get_market_clock(delayed, timeout=timeout, cancel_event=cancel_event)

    def get_market_calendar(self, month=0, year=0, timeout=None, cancel_event=None) -> MarketCalendar:
        return self.api.get_market_calendar(month, year, timeout=timeout, cancel_event=cancel_event)

    def is_trading_day(self, delayed=False, timeout=None, cancel_event=None) -> bool:
        return self.api.is_trading_day(delayed, timeout=timeout, cancel_event=cancel_event)

    def get_historical_data(self, symbol, start, end, interval="daily", timeout=None,
                            cancel_event=None) -> List[HistoricalBar]:
        return self.api.get_historical_data(symbol, start, end, interval,
                                            timeout=timeout, cancel_event=cancel_event)

    # =========================================================================
    # ORDERS
    # =========================================================================

    def place_strangle_order(self, symbol, put_strike, call_strike, expiration, quantity, credit,
                             profit_target=None, duration="day", tag=None, preview=False,
                             timeout=None, cancel_event=None) -> OrderResult:
        """
        Open a short strangle, using an OTOCO-style entry when configured.

        Args:
            profit_target: Overrides config.profit_target for the OTOCO attempt

        Raises:
            ValidationError: Bad parameters (never reaches the network)
            APIError / TransportError: From whichever submission failed
        """
        if not self.config.use_otoco:
            return self.api.place_strangle_order(
                symbol, put_strike, call_strike, expiration, quantity, credit,
                duration=duration, tag=tag, preview=preview,
                timeout=timeout, cancel_event=cancel_event,
            )

        target = self.config.profit_target if profit_target is None else profit_target
        try:
            return self.place_strangle_otoco(
                symbol, put_strike, call_strike, expiration, quantity, credit, target,
                duration=duration, tag=tag, preview=preview,
                timeout=timeout, cancel_event=cancel_event,
            )
        except Exception as e:
            if not is_feature_unsupported(e):
                raise
            logger.warning(f"OTOCO not available for {symbol} strangle ({e}); placing plain credit strangle")

        return self.api.place_strangle_order(
            symbol, put_strike, call_strike, expiration, quantity, credit,
            duration=duration, tag=tag, preview=preview,
            timeout=timeout, cancel_event=cancel_event,
        )

    def place_strangle_otoco(self, symbol, put_strike, call_strike, expiration, quantity, credit,
                             profit_target, duration="day", tag=None, preview=False,
                             timeout=None, cancel_event=None) -> OrderResult:
        return self.api.place_strangle_otoco(
            symbol, put_strike, call_strike, expiration, quantity, credit, profit_target,
            duration=duration, tag=tag, preview=preview,
            timeout=timeout, cancel_event=cancel_event,
        )

    def close_strangle_position(self, symbol, put_strike, call_strike, expiration, quantity, max_debit,
                                duration="day", tag=None, timeout=None, cancel_event=None) -> OrderResult:
        return self.api.place_strangle_buy_to_close(
            symbol, put_strike, call_strike, expiration, quantity, max_debit,
            duration=duration, tag=tag, timeout=timeout, cancel_event=cancel_event,
        )

    def place_buy_to_close_order(self, option_symbol, quantity, max_price, duration="day", tag=None,
                                 timeout=None, cancel_event=None) -> OrderResult:
        return self.api.place_buy_to_close_order(option_symbol, quantity, max_price, duration, tag,
                                                 timeout=timeout, cancel_event=cancel_event)

    def place_sell_to_close_order(self, option_symbol, quantity, min_price, duration="day", tag=None,
                                  timeout=None, cancel_event=None) -> OrderResult:
        return self.api.place_sell_to_close_order(option_symbol, quantity, min_price, duration, tag,
                                                  timeout=timeout, cancel_event=cancel_event)

    def place_buy_to_close_market_order(self, option_symbol, quantity, duration="day", tag=None,
                                        timeout=None, cancel_event=None) -> OrderResult:
        return self.api.place_buy_to_close_market_order(option_symbol, quantity, duration, tag,
                                                        timeout=timeout, cancel_event=cancel_event)

    def place_sell_to_close_market_order(self, option_symbol, quantity, duration="day", tag=None,
                                         timeout=None, cancel_event=None) -> OrderResult:
        return self.api.place_sell_to_close_market_order(option_symbol, quantity, duration, tag,
                                                         timeout=timeout, cancel_event=cancel_event)

    def get_order_status(self, order_id, timeout=None, cancel_event=None) -> OrderResult:
        return self.api.get_order_status(order_id, timeout=timeout, cancel_event=cancel_event)
