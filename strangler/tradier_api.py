"""
tradier_api.py - Tradier REST API client

Low-level client for the Tradier brokerage API:
- Market data: quotes, expirations, option chains, clock, calendar, history
- Account: balances, positions
- Orders: strangle entry/exit (multileg), single-leg closes, order status

Every request carries the bearer token and Accept: application/json; order
submissions are form-urlencoded. Any non-2xx response is raised as
APIError (status + raw body); connection problems are raised as
TransportError. Nothing here retries.

Each call takes an optional timeout (seconds, defaults to
BrokerConfig.timeout) and an optional threading.Event. Setting the event
before or during the call makes it return promptly with
RequestCancelledError; an order POST already on the wire may still reach
the broker.

Example:
    >>> api = TradierAPI(BrokerConfig(api_key="...", account_id="..."))
    >>> quote = api.get_quote("SPY")
    >>> print(f"SPY last: {quote.last}")
"""

import dataclasses
import logging
import threading
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import requests

from strangler.config_loader import BrokerConfig
from strangler.errors import (
    APIError,
    FeatureUnsupportedError,
    OTOCO_UNSUPPORTED_MESSAGE,
    QuoteNotFoundError,
    RequestCancelledError,
    RequestTimeoutError,
    TransportError,
    ValidationError,
)
from strangler.models import (
    Balance,
    Contract,
    HistoricalBar,
    MarketCalendar,
    MarketClock,
    OrderResult,
    Position,
    Quote,
    as_list,
)
from strangler.option_math import round_to_tick
from strangler.order_builder import (
    PRICE_TICK,
    OrderRequest,
    OrderSide,
    build_single_leg_order,
    build_strangle_order,
    validate_tag,
)

logger = logging.getLogger(__name__)

SUCCESS_STATUS_CODES = (200, 201, 202, 204)

# Cap on error bodies kept in APIError
MAX_ERROR_BODY_BYTES = 64 * 1024

RATE_LIMIT_HEADERS = ("X-Ratelimit-Available", "X-RateLimit-Available", "X-RateLimit-Remaining")

# How often an in-flight request checks its cancel event (seconds)
CANCEL_POLL_INTERVAL = 0.05


def _parse_date(value: Union[date, datetime, str]) -> str:
    if isinstance(value, (date, datetime)):
        return value.strftime("%Y-%m-%d")
    return str(value)


class TradierAPI:
    """
    Tradier REST client.

    Attributes:
        config (BrokerConfig): Immutable client configuration
        base_url (str): Resolved endpoint without trailing slash
        session (requests.Session): HTTP session (injectable for tests)
    """

    def __init__(self, config: BrokerConfig, session: Optional[requests.Session] = None):
        """
        Initialize the Tradier client.

        Args:
            config: Broker configuration
            session: Optional requests session; a new one is created if omitted
        """
        self.config = config
        self.base_url = config.resolved_base_url
        self.rate_limits = config.resolved_rate_limits
        self.session = session if session is not None else requests.Session()

        logger.info(
            f"TradierAPI initialized ({'sandbox' if config.sandbox else 'live'}) "
            f"base_url={self.base_url} timeout={config.timeout}s rate_limit={self.rate_limits.standard}/min"
        )

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Accept": "application/json",
            "User-Agent": self.config.user_agent,
        }

    def _account_path(self, suffix: str = "") -> str:
        return f"/accounts/{self.config.account_id}{suffix}"

    def _log_rate_limit(self, response: requests.Response):
        remaining = None
        for header in RATE_LIMIT_HEADERS:
            remaining = response.headers.get(header)
            if remaining:
                break
        if not remaining:
            return
        if self.config.sandbox:
            logger.info(f"Rate limit remaining: {remaining}")
        else:
            logger.debug(f"Rate limit remaining: {remaining}")

    def _send(self, cancel_event: Optional[threading.Event], **request_kwargs) -> requests.Response:
        """
        Send one request, abandoning it if cancel_event is set while in flight.

        Without a cancel event the request runs on the calling thread. With
        one, it runs on a worker thread while the caller waits for either the
        response or the event. An abandoned request finishes in the
        background, bounded by its timeout.
        """
        if cancel_event is None:
            return self.session.request(**request_kwargs)

        outcome = {}
        done = threading.Event()

        def worker():
            try:
                outcome["response"] = self.session.request(**request_kwargs)
            except Exception as e:
                outcome["error"] = e
            finally:
                done.set()

        threading.Thread(target=worker, name="tradier-request", daemon=True).start()

        method = request_kwargs.get("method")
        url = request_kwargs.get("url")
        while not done.wait(CANCEL_POLL_INTERVAL):
            if cancel_event.is_set():
                logger.warning(f"Cancelled in-flight request {method} {url}")
                raise RequestCancelledError(f"{method} {url} cancelled while in flight")

        if "error" in outcome:
            raise outcome["error"]
        return outcome["response"]

    def _make_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Sequence[Tuple[str, str]]] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Dict[str, Any]:
        """
        Make an authenticated API request.

        Args:
            method: HTTP method
            endpoint: Path below the base URL, e.g. "/markets/quotes"
            params: Query parameters
            data: Form fields for POST (sent form-urlencoded)
            timeout: Seconds; defaults to config.timeout
            cancel_event: Cancels the call if set before or during the request

        Returns:
            dict: Decoded JSON body ({} for 204 or empty bodies).

        Raises:
            APIError: Non-2xx response
            RequestCancelledError: cancel_event was set
            RequestTimeoutError: The request timed out
            TransportError: Any other connection failure or undecodable body
        """
        url = f"{self.base_url}{endpoint}"

        if cancel_event is not None and cancel_event.is_set():
            raise RequestCancelledError(f"{method} {url} cancelled before sending")

        try:
            response = self._send(
                cancel_event,
                method=method,
                url=url,
                headers=self._headers(),
                params=params,
                data=data,
                timeout=timeout if timeout is not None else self.config.timeout,
            )
        except requests.exceptions.Timeout as e:
            logger.error(f"Request timeout for {method} {endpoint}")
            raise RequestTimeoutError(f"{method} {url} timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Request error for {method} {endpoint}: {e}")
            raise TransportError(f"{method} {url} failed: {e}") from e

        self._log_rate_limit(response)

        if response.status_code not in SUCCESS_STATUS_CODES:
            body = (response.text or "")[:MAX_ERROR_BODY_BYTES]
            retry_after = response.headers.get("Retry-After")
            logger.error(f"API request failed: {method} {endpoint} -> {response.status_code} - {body}")
            raise APIError(response.status_code, body, method=method, url=url, retry_after=retry_after)

        if response.status_code == 204 or not response.text:
            return {}

        try:
            payload = response.json()
        except ValueError as e:
            raise TransportError(f"{method} {url} returned invalid JSON: {e}") from e

        # Tradier answers some empty collections with a bare "null"
        return payload if isinstance(payload, dict) else {}

    # =========================================================================
    # MARKET DATA
    # =========================================================================

    def get_quote(self, symbol: str, timeout: Optional[float] = None,
                  cancel_event: Optional[threading.Event] = None) -> Quote:
        """
        Get the current quote for a symbol.

        Raises:
            QuoteNotFoundError: If the broker returned no quote for the symbol.
        """
        response = self._make_request(
            "GET", "/markets/quotes",
            params={"symbols": symbol, "greeks": "false"},
            timeout=timeout, cancel_event=cancel_event,
        )
        section = response.get("quotes")
        quotes = as_list(section.get("quote")) if isinstance(section, dict) else []
        if not quotes:
            raise QuoteNotFoundError(f"no quote found for symbol: {symbol}")
        return Quote.from_api(quotes[0])

    def get_expirations(self, symbol: str, timeout: Optional[float] = None,
                        cancel_event: Optional[threading.Event] = None) -> List[str]:
        """Available option expirations (YYYY-MM-DD) for an underlying."""
        response = self._make_request(
            "GET", "/markets/options/expirations",
            params={"symbol": symbol, "includeAllRoots": "true", "strikes": "false"},
            timeout=timeout, cancel_event=cancel_event,
        )
        expirations = response.get("expirations")
        if not isinstance(expirations, dict):
            return []
        return [str(d) for d in as_list(expirations.get("date"))]

    def get_option_chain(self, symbol: str, expiration: Union[date, str], with_greeks: bool = True,
                         timeout: Optional[float] = None,
                         cancel_event: Optional[threading.Event] = None) -> List[Contract]:
        """
        Option chain for one expiration.

        Args:
            symbol: Underlying symbol
            expiration: Expiration date or YYYY-MM-DD
            with_greeks: Request greeks (needed for strike selection)
        """
        response = self._make_request(
            "GET", "/markets/options/chains",
            params={
                "symbol": symbol,
                "expiration": _parse_date(expiration),
                "greeks": "true" if with_greeks else "false",
            },
            timeout=timeout, cancel_event=cancel_event,
        )
        options = response.get("options")
        if not isinstance(options, dict):
            return []
        return [Contract.from_api(o) for o in as_list(options.get("option")) if isinstance(o, dict)]

    def get_market_clock(self, delayed: bool = False, timeout: Optional[float] = None,
                         cancel_event: Optional[threading.Event] = None) -> MarketClock:
        """Current market clock."""
        response = self._make_request(
            "GET", "/markets/clock",
            params={"delayed": "true" if delayed else "false"},
            timeout=timeout, cancel_event=cancel_event,
        )
        return MarketClock.from_api(response)

    def get_market_calendar(self, month: int = 0, year: int = 0, timeout: Optional[float] = None,
                            cancel_event: Optional[threading.Event] = None) -> MarketCalendar:
        """
        Market calendar for a month. month/year of 0 mean the current month.
        """
        params = {}
        if month > 0:
            params["month"] = f"{month:02d}"
        if year > 0:
            params["year"] = f"{year:04d}"

        response = self._make_request(
            "GET", "/markets/calendar",
            params=params or None,
            timeout=timeout, cancel_event=cancel_event,
        )
        return MarketCalendar.from_api(response)

    def is_trading_day(self, delayed: bool = False, timeout: Optional[float] = None,
                       cancel_event: Optional[threading.Event] = None) -> bool:
        """True during open, premarket or postmarket sessions."""
        return self.get_market_clock(delayed, timeout=timeout, cancel_event=cancel_event).is_trading_session

    def get_historical_data(
        self,
        symbol: str,
        start: Union[date, datetime, str],
        end: Union[date, datetime, str],
        interval: str = "daily",
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[HistoricalBar]:
        """
        Historical OHLCV bars.

        Args:
            symbol: Symbol
            start: First day (inclusive)
            end: Last day (inclusive)
            interval: daily, weekly or monthly (empty means daily)
        """
        response = self._make_request(
            "GET", "/markets/history",
            params={
                "symbol": symbol,
                "interval": interval or "daily",
                "start": _parse_date(start),
                "end": _parse_date(end),
            },
            timeout=timeout, cancel_event=cancel_event,
        )
        history = response.get("history")
        if not isinstance(history, dict):
            return []

        bars = []
        for day in as_list(history.get("day")):
            try:
                bars.append(HistoricalBar.from_api(day))
            except ValueError as e:
                raise TransportError(f"failed to parse history for {symbol}: {e}") from e
        return bars

    # =========================================================================
    # ACCOUNT
    # =========================================================================

    def get_balance(self, timeout: Optional[float] = None,
                    cancel_event: Optional[threading.Event] = None) -> Balance:
        """Account balances."""
        response = self._make_request(
            "GET", self._account_path("/balances"),
            timeout=timeout, cancel_event=cancel_event,
        )
        return Balance.from_api(response)

    def get_positions(self, timeout: Optional[float] = None,
                      cancel_event: Optional[threading.Event] = None) -> List[Position]:
        """Open positions (empty list when the account is flat)."""
        response = self._make_request(
            "GET", self._account_path("/positions"),
            timeout=timeout, cancel_event=cancel_event,
        )
        positions = response.get("positions")
        if not isinstance(positions, dict):
            return []
        return [Position.from_api(p) for p in as_list(positions.get("position")) if isinstance(p, dict)]

    # =========================================================================
    # ORDERS
    # =========================================================================

    def submit_order(self, order: OrderRequest, timeout: Optional[float] = None,
                     cancel_event: Optional[threading.Event] = None) -> OrderResult:
        """Post a validated order."""
        legs = ", ".join(f"{leg.side.value} {leg.quantity} x {leg.option_symbol}" for leg in order.legs)
        logger.info(
            f"Placing {order.order_class.value} {order.order_type.value} order on {order.symbol}: {legs}"
            + (f" @ {order.price:.2f}" if order.price is not None else "")
            + (" [preview]" if order.preview else "")
        )

        response = self._make_request(
            "POST", self._account_path("/orders"),
            data=order.to_form(),
            timeout=timeout, cancel_event=cancel_event,
        )
        result = OrderResult.from_api(response)
        logger.info(f"Order accepted: id={result.id} status={result.status}")
        return result

    def place_strangle_order(
        self,
        symbol: str,
        put_strike: float,
        call_strike: float,
        expiration: Union[date, str],
        quantity: int,
        credit: float,
        duration: str = "day",
        tag: Optional[str] = None,
        preview: bool = False,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> OrderResult:
        """
        Sell to open a strangle for a net credit.

        Raises:
            ValidationError: Before any request, if the parameters are bad.
        """
        order = build_strangle_order(
            symbol, put_strike, call_strike, expiration, quantity, credit,
            duration=duration, tag=tag, preview=preview,
        )
        return self.submit_order(order, timeout=timeout, cancel_event=cancel_event)

    def place_strangle_buy_to_close(
        self,
        symbol: str,
        put_strike: float,
        call_strike: float,
        expiration: Union[date, str],
        quantity: int,
        max_debit: float,
        duration: str = "day",
        tag: Optional[str] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> OrderResult:
        """Buy to close both legs of a strangle for at most max_debit."""
        order = build_strangle_order(
            symbol, put_strike, call_strike, expiration, quantity, max_debit,
            duration=duration, tag=tag, buy_to_close=True,
        )
        return self.submit_order(order, timeout=timeout, cancel_event=cancel_event)

    def place_strangle_otoco(
        self,
        symbol: str,
        put_strike: float,
        call_strike: float,
        expiration: Union[date, str],
        quantity: int,
        credit: float,
        profit_target: float,
        duration: str = "day",
        tag: Optional[str] = None,
        preview: bool = False,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> OrderResult:
        """
        Strangle entry with an attached profit target (OTOCO emulation).

        Tradier has no OTOCO class for multileg orders. When the account is
        not configured for it (otoco_multileg_supported False) this raises
        FeatureUnsupportedError without touching the network.
        Otherwise the entry is submitted with the profit target encoded in
        the tag ("otoco-profit-<thousandths>", tags cannot contain periods)
        and the synthetic exit debit credit * (1 - profit_target) is
        returned on the result.

        Raises:
            FeatureUnsupportedError: Multi-leg OTOCO not available
            ValidationError: Bad parameters or profit target outside 0-1
        """
        if not 0.0 <= profit_target <= 1.0:
            raise ValidationError(f"invalid profit_target {profit_target}: must be between 0.0 and 1.0")

        base_tag = validate_tag(tag)
        profit_thousandths = int(round(profit_target * 1000))
        otoco_tag = f"otoco-profit-{profit_thousandths}"
        final_tag = f"{base_tag}-{otoco_tag}" if base_tag else otoco_tag

        # Validate locally first so bad input never masquerades as unsupported
        order = build_strangle_order(
            symbol, put_strike, call_strike, expiration, quantity, credit,
            duration=duration, tag=final_tag, preview=preview,
        )

        if not self.config.otoco_multileg_supported:
            raise FeatureUnsupportedError(OTOCO_UNSUPPORTED_MESSAGE)

        exit_price = round_to_tick(order.price * (1 - profit_target), PRICE_TICK)
        result = self.submit_order(order, timeout=timeout, cancel_event=cancel_event)
        logger.info(f"OTOCO entry {result.id}: profit target {profit_target:.0%}, exit at {exit_price:.2f} debit")

        return dataclasses.replace(result, exit_target_price=exit_price)

    def _place_single_leg(
        self,
        option_symbol: str,
        side: OrderSide,
        quantity: int,
        price: Optional[float],
        duration: str,
        tag: Optional[str],
        market: bool,
        timeout: Optional[float],
        cancel_event: Optional[threading.Event],
    ) -> OrderResult:
        order = build_single_leg_order(
            option_symbol, side, quantity,
            limit_price=price, duration=duration, tag=tag, market=market,
            accept_lowercase_type=self.config.accept_lowercase_option_type,
        )
        return self.submit_order(order, timeout=timeout, cancel_event=cancel_event)

    def place_buy_to_close_order(self, option_symbol: str, quantity: int, max_price: float,
                                 duration: str = "day", tag: Optional[str] = None,
                                 timeout: Optional[float] = None,
                                 cancel_event: Optional[threading.Event] = None) -> OrderResult:
        """Limit buy-to-close for one option leg."""
        return self._place_single_leg(option_symbol, OrderSide.BUY_TO_CLOSE, quantity, max_price,
                                      duration, tag, False, timeout, cancel_event)

    def place_sell_to_close_order(self, option_symbol: str, quantity: int, min_price: float,
                                  duration: str = "day", tag: Optional[str] = None,
                                  timeout: Optional[float] = None,
                                  cancel_event: Optional[threading.Event] = None) -> OrderResult:
        """Limit sell-to-close for one option leg."""
        return self._place_single_leg(option_symbol, OrderSide.SELL_TO_CLOSE, quantity, min_price,
                                      duration, tag, False, timeout, cancel_event)

    def place_buy_to_close_market_order(self, option_symbol: str, quantity: int,
                                        duration: str = "day", tag: Optional[str] = None,
                                        timeout: Optional[float] = None,
                                        cancel_event: Optional[threading.Event] = None) -> OrderResult:
        """Market buy-to-close for one option leg."""
        return self._place_single_leg(option_symbol, OrderSide.BUY_TO_CLOSE, quantity, None,
                                      duration, tag, True, timeout, cancel_event)

    def place_sell_to_close_market_order(self, option_symbol: str, quantity: int,
                                         duration: str = "day", tag: Optional[str] = None,
                                         timeout: Optional[float] = None,
                                         cancel_event: Optional[threading.Event] = None) -> OrderResult:
        """Market sell-to-close for one option leg."""
        return self._place_single_leg(option_symbol, OrderSide.SELL_TO_CLOSE, quantity, None,
                                      duration, tag, True, timeout, cancel_event)

    def get_order_status(self, order_id: int, timeout: Optional[float] = None,
                         cancel_event: Optional[threading.Event] = None) -> OrderResult:
        """Current state of an order."""
        response = self._make_request(
            "GET", self._account_path(f"/orders/{order_id}"),
            timeout=timeout, cancel_event=cancel_event,
        )
        return OrderResult.from_api(response)
