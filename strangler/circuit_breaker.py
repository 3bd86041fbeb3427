"""
circuit_breaker.py - Circuit breaker for broker calls

Stops hammering the broker while it is failing and probes for recovery:

    CLOSED    -> calls pass; outcomes counted per interval
    OPEN      -> calls fail fast with CircuitOpenError for `timeout` seconds
    HALF_OPEN -> up to `max_requests` trial calls; one failure reopens,
                 `max_requests` consecutive successes close

The breaker trips from CLOSED once at least `min_requests` calls were seen
in the current interval and the failure share reaches `failure_ratio`.

Every state change starts a new generation and clears the counts. A call
remembers the generation it started in; if the state changed while it was
in flight its outcome is dropped, so a slow request cannot reopen a
breaker that has since recovered.

CircuitBreakerBroker wraps any Broker and routes every method through one
breaker. Caller mistakes (ValidationError) count as successes: they say
nothing about the broker's health.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from strangler.broker import Broker
from strangler.errors import CircuitBreakerResultError, CircuitOpenError, ValidationError
from strangler.models import (
    Contract,
    HistoricalBar,
    MarketCalendar,
    MarketClock,
    OrderResult,
    Position,
    Quote,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_REQUESTS = 3
DEFAULT_INTERVAL_SECONDS = 60.0
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MIN_REQUESTS = 5
DEFAULT_FAILURE_RATIO = 0.6


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    HALF_OPEN = "half-open"
    OPEN = "open"


def default_is_successful(error: Optional[BaseException]) -> bool:
    """No error, or an error that is the caller's fault."""
    return error is None or isinstance(error, ValidationError)


@dataclass(frozen=True)
class CircuitBreakerSettings:
    """
    Circuit breaker configuration.

    Attributes:
        name: Name used in logs and errors
        max_requests: Trial calls allowed in HALF_OPEN, and consecutive
            successes needed there to close (values < 1 mean 1)
        interval: Seconds between count resets in CLOSED (<= 0 never resets)
        timeout: Seconds to stay OPEN before probing (<= 0 means 60)
        min_requests: Calls needed in an interval before the breaker can trip
        failure_ratio: Failure share that trips the breaker (0.0-1.0)
        is_successful: Classifies a call outcome; receives None on success
    """
    name: str = "tradier"
    max_requests: int = DEFAULT_MAX_REQUESTS
    interval: float = DEFAULT_INTERVAL_SECONDS
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    min_requests: int = DEFAULT_MIN_REQUESTS
    failure_ratio: float = DEFAULT_FAILURE_RATIO
    is_successful: Callable[[Optional[BaseException]], bool] = default_is_successful

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "CircuitBreakerSettings":
        """Build from a full config dict (uses its "circuit_breaker" section)."""
        section = config.get("circuit_breaker", {}) or {}
        return cls(
            name=section.get("name", "tradier"),
            max_requests=int(section.get("max_requests", DEFAULT_MAX_REQUESTS)),
            interval=float(section.get("interval_seconds", DEFAULT_INTERVAL_SECONDS)),
            timeout=float(section.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)),
            min_requests=int(section.get("min_requests", DEFAULT_MIN_REQUESTS)),
            failure_ratio=float(section.get("failure_ratio", DEFAULT_FAILURE_RATIO)),
        )


@dataclass
class Counts:
    """Call counts for the current generation."""
    requests: int = 0
    total_successes: int = 0
    total_failures: int = 0
    consecutive_successes: int = 0
    consecutive_failures: int = 0

    def on_request(self):
        self.requests += 1

    def on_success(self):
        self.total_successes += 1
        self.consecutive_successes += 1
        self.consecutive_failures = 0

    def on_failure(self):
        self.total_failures += 1
        self.consecutive_failures += 1
        self.consecutive_successes = 0

    def clear(self):
        self.requests = 0
        self.total_successes = 0
        self.total_failures = 0
        self.consecutive_successes = 0
        self.consecutive_failures = 0


StateChangeCallback = Callable[[str, CircuitState, CircuitState], None]


class CircuitBreaker:
    """
    Thread-safe circuit breaker.

    One lock guards state, counts and transitions. The state-change callback
    runs after the lock is released, so it may call back into the breaker.

    Example:
        >>> breaker = CircuitBreaker(CircuitBreakerSettings(name="tradier"))
        >>> balance = breaker.call(api.get_balance)
    """

    def __init__(
        self,
        settings: Optional[CircuitBreakerSettings] = None,
        clock: Callable[[], float] = time.monotonic,
        on_state_change: Optional[StateChangeCallback] = None,
    ):
        """
        Initialize the breaker in CLOSED state.

        Args:
            settings: Breaker settings (defaults if omitted)
            clock: Monotonic seconds source (tests inject a fake)
            on_state_change: Called as (name, from_state, to_state)
        """
        self.settings = settings or CircuitBreakerSettings()
        self.name = self.settings.name
        self._max_requests = max(1, self.settings.max_requests)
        self._interval = self.settings.interval
        self._timeout = self.settings.timeout if self.settings.timeout > 0 else 60.0
        self._is_successful = self.settings.is_successful or default_is_successful
        self._clock = clock
        self._on_state_change = on_state_change

        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._generation = 0
        self._counts = Counts()
        self._expiry: Optional[float] = None
        self._pending: List[Tuple[CircuitState, CircuitState]] = []

        self._new_generation(self._clock())

        logger.info(
            f"Circuit breaker '{self.name}' initialized: max_requests={self._max_requests} "
            f"interval={self._interval}s timeout={self._timeout}s "
            f"trip at {self.settings.min_requests}+ requests with {self.settings.failure_ratio:.0%} failures"
        )

    # =========================================================================
    # PUBLIC
    # =========================================================================

    @property
    def state(self) -> CircuitState:
        """Current state (applies any due OPEN -> HALF_OPEN or interval reset)."""
        with self._lock:
            state, _ = self._current_state(self._clock())
        self._notify()
        return state

    @property
    def counts(self) -> Counts:
        """Snapshot of the current generation's counts."""
        with self._lock:
            self._current_state(self._clock())
            snapshot = Counts(**self._counts.__dict__)
        self._notify()
        return snapshot

    def call(self, fn: Callable, *args, **kwargs):
        """
        Run fn through the breaker.

        Returns:
            Whatever fn returns.

        Raises:
            CircuitOpenError: OPEN, or HALF_OPEN with all trial slots taken
            BaseException: Anything fn raises, unchanged
        """
        generation = self._before_request()
        try:
            result = fn(*args, **kwargs)
        except Exception as e:
            self._after_request(generation, self._is_successful(e))
            raise
        except BaseException:
            # KeyboardInterrupt and friends still settle the request as a failure
            self._after_request(generation, False)
            raise
        self._after_request(generation, self._is_successful(None))
        return result

    # =========================================================================
    # STATE MACHINE
    # =========================================================================

    def _before_request(self) -> int:
        with self._lock:
            now = self._clock()
            state, generation = self._current_state(now)

            if state is CircuitState.OPEN:
                error = CircuitOpenError(f"circuit breaker '{self.name}' is open", name=self.name, state=state)
            elif state is CircuitState.HALF_OPEN and self._counts.requests >= self._max_requests:
                error = CircuitOpenError(
                    f"circuit breaker '{self.name}': too many requests while half-open",
                    name=self.name, state=state,
                )
            else:
                error = None
                self._counts.on_request()

        self._notify()
        if error is not None:
            raise error
        return generation

    def _after_request(self, before_generation: int, success: bool):
        with self._lock:
            now = self._clock()
            state, generation = self._current_state(now)
            if generation == before_generation:
                if success:
                    self._on_success(state, now)
                else:
                    self._on_failure(state, now)
        self._notify()

    def _on_success(self, state: CircuitState, now: float):
        if state is CircuitState.CLOSED:
            self._counts.on_success()
        elif state is CircuitState.HALF_OPEN:
            self._counts.on_success()
            if self._counts.consecutive_successes >= self._max_requests:
                self._set_state(CircuitState.CLOSED, now)

    def _on_failure(self, state: CircuitState, now: float):
        if state is CircuitState.CLOSED:
            self._counts.on_failure()
            if self._ready_to_trip():
                self._set_state(CircuitState.OPEN, now)
        elif state is CircuitState.HALF_OPEN:
            self._set_state(CircuitState.OPEN, now)

    def _ready_to_trip(self) -> bool:
        counts = self._counts
        if counts.requests < self.settings.min_requests or counts.requests == 0:
            return False
        return counts.total_failures / counts.requests >= self.settings.failure_ratio

    def _current_state(self, now: float) -> Tuple[CircuitState, int]:
        if self._state is CircuitState.CLOSED:
            if self._expiry is not None and self._expiry <= now:
                self._new_generation(now)
        elif self._state is CircuitState.OPEN:
            if self._expiry is not None and self._expiry <= now:
                self._set_state(CircuitState.HALF_OPEN, now)
        return self._state, self._generation

    def _set_state(self, new_state: CircuitState, now: float):
        if self._state is new_state:
            return

        previous = self._state
        counts = self._counts
        self._state = new_state
        self._new_generation(now)

        if new_state is CircuitState.OPEN:
            logger.critical(
                f"CIRCUIT BREAKER '{self.name}' OPENED ({previous.value} -> open)! "
                f"Broker calls blocked for {self._timeout:.0f}s. "
                f"Failures: {counts.total_failures}/{counts.requests}"
            )
        elif new_state is CircuitState.HALF_OPEN:
            logger.warning(f"Circuit breaker '{self.name}' half-open: probing broker with up to {self._max_requests} calls")
        else:
            logger.info(f"Circuit breaker '{self.name}' closed ({previous.value} -> closed). Broker calls resumed.")

        self._pending.append((previous, new_state))

    def _new_generation(self, now: float):
        self._generation += 1
        self._counts.clear()

        if self._state is CircuitState.CLOSED:
            self._expiry = now + self._interval if self._interval > 0 else None
        elif self._state is CircuitState.OPEN:
            self._expiry = now + self._timeout
        else:
            self._expiry = None

    def _notify(self):
        """Deliver queued transitions to the callback outside the lock."""
        with self._lock:
            pending, self._pending = self._pending, []
        if self._on_state_change is None:
            return
        for previous, new_state in pending:
            self._on_state_change(self.name, previous, new_state)


class CircuitBreakerBroker(Broker):
    """
    Broker decorator that routes every call through a CircuitBreaker.

    Errors from the wrapped broker are re-raised unchanged; only an open
    breaker produces its own CircuitOpenError.
    """

    def __init__(self, broker: Broker, settings: Optional[CircuitBreakerSettings] = None,
                 breaker: Optional[CircuitBreaker] = None):
        """
        Args:
            broker: Broker to protect
            settings: Breaker settings (ignored if breaker is given)
            breaker: Pre-built breaker (tests inject one with a fake clock)
        """
        self.broker = broker
        self.breaker = breaker if breaker is not None else CircuitBreaker(settings)

    def _execute(self, expected_type, fn: Callable, *args, **kwargs):
        """Run fn through the breaker and check the result's type."""
        result = self.breaker.call(fn, *args, **kwargs)
        if not isinstance(result, expected_type):
            raise CircuitBreakerResultError(
                f"unexpected result type from {getattr(fn, '__name__', fn)}: "
                f"expected {getattr(expected_type, '__name__', expected_type)}, got {type(result).__name__}"
            )
        return result

    # ---- account ----

    def get_account_balance(self, timeout=None, cancel_event=None) -> float:
        return self._execute((int, float), self.broker.get_account_balance,
                             timeout=timeout, cancel_event=cancel_event)

    def get_option_buying_power(self, timeout=None, cancel_event=None) -> float:
        return self._execute((int, float), self.broker.get_option_buying_power,
                             timeout=timeout, cancel_event=cancel_event)

    def get_positions(self, timeout=None, cancel_event=None) -> List[Position]:
        return self._execute(list, self.broker.get_positions, timeout=timeout, cancel_event=cancel_event)

    # ---- market data ----

    def get_quote(self, symbol, timeout=None, cancel_event=None) -> Quote:
        return self._execute(Quote, self.broker.get_quote, symbol, timeout=timeout, cancel_event=cancel_event)

    def get_expirations(self, symbol, timeout=None, cancel_event=None) -> List[str]:
        return self._execute(list, self.broker.get_expirations, symbol,
                             timeout=timeout, cancel_event=cancel_event)

    def get_option_chain(self, symbol, expiration, with_greeks=True, timeout=None,
                         cancel_event=None) -> List[Contract]:
        return self._execute(list, self.broker.get_option_chain, symbol, expiration, with_greeks,
                             timeout=timeout, cancel_event=cancel_event)

    def get_market_clock(self, delayed=False, timeout=None, cancel_event=None) -> MarketClock:
        return self._execute(MarketClock, self.broker.get_market_clock, delayed,
                             timeout=timeout, cancel_event=cancel_event)

    def get_market_calendar(self, month=0, year=0, timeout=None, cancel_event=None) -> MarketCalendar:
        return self._execute(MarketCalendar, self.broker.get_market_calendar, month, year,
                             timeout=timeout, cancel_event=cancel_event)

    def is_trading_day(self, delayed=False, timeout=None, cancel_event=None) -> bool:
        return self._execute(bool, self.broker.is_trading_day, delayed,
                             timeout=timeout, cancel_event=cancel_event)

    def get_historical_data(self, symbol, start, end, interval="daily", timeout=None,
                            cancel_event=None) -> List[HistoricalBar]:
        return self._execute(list, self.broker.get_historical_data, symbol, start, end, interval,
                             timeout=timeout, cancel_event=cancel_event)

    # ---- orders ----

    def place_strangle_order(self, symbol, put_strike, call_strike, expiration, quantity, credit,
                             profit_target=None, duration="day", tag=None, preview=False,
                             timeout=None, cancel_event=None) -> OrderResult:
        return self._execute(
            OrderResult, self.broker.place_strangle_order,
            symbol, put_strike, call_strike, expiration, quantity, credit,
            profit_target=profit_target, duration=duration, tag=tag, preview=preview,
            timeout=timeout, cancel_event=cancel_event,
        )

    def place_strangle_otoco(self, symbol, put_strike, call_strike, expiration, quantity, credit,
                             profit_target, duration="day", tag=None, preview=False,
                             timeout=None, cancel_event=None) -> OrderResult:
        return self._execute(
            OrderResult, self.broker.place_strangle_otoco,
            symbol, put_strike, call_strike, expiration, quantity, credit, profit_target,
            duration=duration, tag=tag, preview=preview,
            timeout=timeout, cancel_event=cancel_event,
        )

    def close_strangle_position(self, symbol, put_strike, call_strike, expiration, quantity, max_debit,
                                duration="day", tag=None, timeout=None, cancel_event=None) -> OrderResult:
        return self._execute(
            OrderResult, self.broker.close_strangle_position,
            symbol, put_strike, call_strike, expiration, quantity, max_debit,
            duration=duration, tag=tag, timeout=timeout, cancel_event=cancel_event,
        )

    def place_buy_to_close_order(self, option_symbol, quantity, max_price, duration="day", tag=None,
                                 timeout=None, cancel_event=None) -> OrderResult:
        return self._execute(OrderResult, self.broker.place_buy_to_close_order,
                             option_symbol, quantity, max_price, duration, tag,
                             timeout=timeout, cancel_event=cancel_event)

    def place_sell_to_close_order(self, option_symbol, quantity, min_price, duration="day", tag=None,
                                  timeout=None, cancel_event=None) -> OrderResult:
        return self._execute(OrderResult, self.broker.place_sell_to_close_order,
                             option_symbol, quantity, min_price, duration, tag,
                             timeout=timeout, cancel_event=cancel_event)

    def place_buy_to_close_market_order(self, option_symbol, quantity, duration="day", tag=None,
                                        timeout=None, cancel_event=None) -> OrderResult:
        return self._execute(OrderResult, self.broker.place_buy_to_close_market_order,
                             option_symbol, quantity, duration, tag,
                             timeout=timeout, cancel_event=cancel_event)

    def place_sell_to_close_market_order(self, option_symbol, quantity, duration="day", tag=None,
                                         timeout=None, cancel_event=None) -> OrderResult:
        return self._execute(OrderResult, self.broker.place_sell_to_close_market_order,
                             option_symbol, quantity, duration, tag,
                             timeout=timeout, cancel_event=cancel_event)

    def get_order_status(self, order_id, timeout=None, cancel_event=None) -> OrderResult:
        return self._execute(OrderResult, self.broker.get_order_status, order_id,
                             timeout=timeout, cancel_event=cancel_event)
