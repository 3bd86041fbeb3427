"""
Strangler - resilient Tradier broker client for short-strangle trading.

This package contains:
- occ_symbol: OSI option symbol encoding/decoding
- order_builder: Order validation and Tradier form construction
- tradier_api: Low-level Tradier REST client
- broker: Broker contract + TradierBroker (OTOCO entry with fallback)
- circuit_breaker: CircuitBreaker and the CircuitBreakerBroker decorator
- option_math: Strike selection, strangle credit, open-strangle detection
- models: Dataclasses for Tradier responses
- config_loader: JSON config -> BrokerConfig
- logger_service: Logging setup

Call chain:
    caller -> CircuitBreakerBroker -> TradierBroker -> TradierAPI -> Tradier

Usage:
    from strangler import (
        ConfigLoader, TradierBroker, CircuitBreakerBroker, CircuitBreakerSettings,
        setup_logging, select_strangle_strikes, calculate_strangle_credit,
    )

    loader = ConfigLoader("config/config.json")
    config = loader.load_config()
    setup_logging(config)

    broker = CircuitBreakerBroker(
        TradierBroker(loader.broker_config()),
        CircuitBreakerSettings.from_config(config),
    )

    chain = broker.get_option_chain("SPY", "2025-01-17", with_greeks=True)
    strikes = select_strangle_strikes(chain, target_delta=0.16)
    credit = calculate_strangle_credit(chain, strikes.put_strike, strikes.call_strike)
    order = broker.place_strangle_order("SPY", strikes.put_strike, strikes.call_strike,
                                        "2025-01-17", 1, credit)

OTOCO NOTE
================================================================================
Tradier has no native OTOCO for multi-leg orders. With use_otoco enabled the
broker first tries an emulated OTOCO entry; only FeatureUnsupportedError
(or HTTP 501) triggers the single fallback to a plain credit strangle.
Rate limits (429), rejections (400) and outages propagate unchanged.
================================================================================
"""

from strangler.errors import (
    StranglerError,
    ValidationError,
    InvalidDurationError,
    InvalidPriceError,
    InvalidQuantityError,
    InvalidStrikesError,
    InvalidExpirationError,
    InvalidSymbolError,
    StrikeMatchError,
    APIError,
    FeatureUnsupportedError,
    OTOCO_UNSUPPORTED_MESSAGE,
    QuoteNotFoundError,
    is_feature_unsupported,
    CircuitOpenError,
    CircuitBreakerResultError,
    TransportError,
    RequestTimeoutError,
    RequestCancelledError,
)
from strangler.models import (
    OptionType,
    Greeks,
    Contract,
    Quote,
    HistoricalBar,
    MarketClock,
    MarketCalendar,
    MarketDay,
    Position,
    Balance,
    OrderResult,
    OrderStatus,
)
from strangler.occ_symbol import (
    encode_option_symbol,
    decode_option_symbol,
    extract_underlying,
    option_type_from_symbol,
)
from strangler.order_builder import (
    OrderRequest,
    OrderLeg,
    OrderSide,
    normalize_duration,
    build_strangle_order,
    build_single_leg_order,
)
from strangler.option_math import (
    StrangleStrikes,
    StrangleMatch,
    select_strangle_strikes,
    calculate_strangle_credit,
    get_option_by_strike,
    find_open_strangle,
    calculate_ivr,
    days_between,
    round_to_tick,
    floor_to_tick,
    ceil_to_tick,
)
from strangler.config_loader import BrokerConfig, RateLimits, ConfigLoader
from strangler.tradier_api import TradierAPI
from strangler.broker import Broker, TradierBroker, make_order_tag
from strangler.circuit_breaker import (
    CircuitState,
    CircuitBreaker,
    CircuitBreakerSettings,
    CircuitBreakerBroker,
)
from strangler.logger_service import setup_logging

__all__ = [
    # Errors
    'StranglerError', 'ValidationError', 'InvalidDurationError', 'InvalidPriceError',
    'InvalidQuantityError', 'InvalidStrikesError', 'InvalidExpirationError',
    'InvalidSymbolError', 'StrikeMatchError', 'APIError', 'FeatureUnsupportedError',
    'OTOCO_UNSUPPORTED_MESSAGE', 'QuoteNotFoundError', 'is_feature_unsupported',
    'CircuitOpenError', 'CircuitBreakerResultError', 'TransportError', 'RequestTimeoutError',
    'RequestCancelledError',
    # Models
    'OptionType', 'Greeks', 'Contract', 'Quote', 'HistoricalBar', 'MarketClock',
    'MarketCalendar', 'MarketDay', 'Position', 'Balance', 'OrderResult', 'OrderStatus',
    # Symbols / orders
    'encode_option_symbol', 'decode_option_symbol', 'extract_underlying', 'option_type_from_symbol',
    'OrderRequest', 'OrderLeg', 'OrderSide', 'normalize_duration',
    'build_strangle_order', 'build_single_leg_order',
    # Option math
    'StrangleStrikes', 'StrangleMatch', 'select_strangle_strikes', 'calculate_strangle_credit',
    'get_option_by_strike', 'find_open_strangle', 'calculate_ivr', 'days_between',
    'round_to_tick', 'floor_to_tick', 'ceil_to_tick',
    # Config
    'BrokerConfig', 'RateLimits', 'ConfigLoader',
    # Broker
    'TradierAPI', 'Broker', 'TradierBroker', 'make_order_tag',
    'CircuitState', 'CircuitBreaker', 'CircuitBreakerSettings', 'CircuitBreakerBroker',
    # Logging
    'setup_logging',
]
