"""
errors.py - Exception taxonomy for the Tradier strangle client

Every failure the client can surface maps onto one of these classes:

    StranglerError
    ├── ValidationError           bad caller input, never sent to the network
    ├── APIError                  non-2xx broker response (status + raw body)
    ├── FeatureUnsupportedError   broker does not support the requested feature
    ├── QuoteNotFoundError        successful quote response without a quote
    ├── CircuitOpenError          circuit breaker rejected the call
    ├── CircuitBreakerResultError wrapped call returned an unexpected shape
    └── TransportError            connection, timeout or cancellation failure

Only FeatureUnsupportedError (or an APIError carrying HTTP 501) authorizes
the OTOCO -> plain strangle fallback. See is_feature_unsupported().
"""

from typing import Optional


class StranglerError(Exception):
    """Base class for all errors raised by this package."""


# =============================================================================
# VALIDATION ERRORS
# =============================================================================

class ValidationError(StranglerError, ValueError):
    """Malformed caller input. Raised before any network call."""


class InvalidDurationError(ValidationError):
    """Order duration is not one of day, gtc, pre, post (or a synonym)."""


class InvalidPriceError(ValidationError):
    """Limit/credit/debit price is missing or not positive."""


class InvalidQuantityError(ValidationError):
    """Order quantity is not a positive whole number of contracts."""


class InvalidStrikesError(ValidationError):
    """Strangle strikes are inverted or equal (put must be below call)."""


class InvalidExpirationError(ValidationError):
    """Expiration is not a calendar date in YYYY-MM-DD form."""


class InvalidSymbolError(ValidationError):
    """Option symbol cannot be encoded or decoded."""


class StrikeMatchError(ValidationError):
    """A requested strike has no matching contract in the option chain."""


# =============================================================================
# BROKER / NETWORK ERRORS
# =============================================================================

class APIError(StranglerError):
    """
    Non-2xx response from the broker.

    Attributes:
        status: HTTP status code
        body: Raw response body (capped by the transport)
        method: HTTP method of the failed request
        url: Request URL
        retry_after: Value of the Retry-After header, if the broker sent one
    """

    def __init__(
        self,
        status: int,
        body: str,
        method: str = "",
        url: str = "",
        retry_after: Optional[str] = None,
    ):
        self.status = status
        self.body = body
        self.method = method
        self.url = url
        self.retry_after = retry_after
        super().__init__(f"API error {status}: {body}")

    @property
    def is_transient(self) -> bool:
        """True for rate limiting (429) and server errors (5xx)."""
        return self.status == 429 or 500 <= self.status <= 599

    @property
    def is_permanent(self) -> bool:
        """True for client-side 4xx errors other than rate limiting."""
        return 400 <= self.status <= 499 and self.status != 429


class FeatureUnsupportedError(StranglerError):
    """The broker does not support the requested feature (e.g. multi-leg OTOCO)."""


class QuoteNotFoundError(StranglerError):
    """A 2xx quote response held no quote for the requested symbol."""


# Message of the error raised when multi-leg OTOCO is not available
OTOCO_UNSUPPORTED_MESSAGE = "otoco unsupported for multi-leg strangle"

HTTP_NOT_IMPLEMENTED = 501


def is_feature_unsupported(error: BaseException) -> bool:
    """
    Check whether an error is the narrow "feature unsupported" signal.

    Only a FeatureUnsupportedError or an explicit HTTP 501 from the
    broker qualifies. Rate limits, auth failures and validation rejections
    do not.
    """
    if isinstance(error, FeatureUnsupportedError):
        return True
    return isinstance(error, APIError) and error.status == HTTP_NOT_IMPLEMENTED


class CircuitOpenError(StranglerError):
    """
    Raised when the circuit breaker rejects a call without invoking the broker.

    Attributes:
        name: Circuit breaker name
        state: Circuit state at rejection time
    """

    def __init__(self, message: str, name: str = "", state=None):
        self.name = name
        self.state = state
        super().__init__(message)


class CircuitBreakerResultError(StranglerError):
    """A call executed through the circuit breaker returned an unexpected type."""


class TransportError(StranglerError):
    """Connection-level failure talking to the broker."""


class RequestTimeoutError(TransportError):
    """The request did not complete within its timeout."""


class RequestCancelledError(TransportError):
    """The caller cancelled the request before it completed."""
