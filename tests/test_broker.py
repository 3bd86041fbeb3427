"""
Unit tests for TradierBroker forwarding and the OTOCO fallback policy.

TradierAPI is replaced by a MagicMock so each test can script what the
OTOCO attempt and the plain strangle do.

Run tests with: python -m pytest tests/test_broker.py -v
"""

import os
import re
import sys
from unittest.mock import MagicMock

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from strangler.broker import Broker, TradierBroker, make_order_tag
from strangler.config_loader import BrokerConfig
from strangler.errors import (
    APIError,
    FeatureUnsupportedError,
    InvalidStrikesError,
    OTOCO_UNSUPPORTED_MESSAGE,
    RequestTimeoutError,
)
from strangler.models import Balance, OrderResult
from strangler.tradier_api import TradierAPI

STRANGLE_ARGS = ("SPY", 400, 450, "2024-12-20", 1, 2.35)


def make_broker(use_otoco=True, profit_target=0.5):
    config = BrokerConfig(api_key="k", account_id="a", use_otoco=use_otoco, profit_target=profit_target)
    api = MagicMock(spec=TradierAPI)
    return TradierBroker(config, api=api), api


class TestOTOCOPolicy:
    """place_strangle_order chooses between OTOCO and a plain strangle."""

    def test_otoco_disabled_places_plain(self):
        broker, api = make_broker(use_otoco=False)
        api.place_strangle_order.return_value = OrderResult(id=1, status="ok")

        result = broker.place_strangle_order(*STRANGLE_ARGS)

        assert result.id == 1
        api.place_strangle_otoco.assert_not_called()
        api.place_strangle_order.assert_called_once()

    def test_otoco_success_returned(self):
        broker, api = make_broker()
        api.place_strangle_otoco.return_value = OrderResult(id=2, status="ok", exit_target_price=1.18)

        result = broker.place_strangle_order(*STRANGLE_ARGS, tag="entry-1")

        assert result.id == 2
        api.place_strangle_order.assert_not_called()
        args, kwargs = api.place_strangle_otoco.call_args
        assert args == STRANGLE_ARGS + (0.5,)
        assert kwargs["tag"] == "entry-1"

    def test_profit_target_override(self):
        broker, api = make_broker()
        api.place_strangle_otoco.return_value = OrderResult(id=2)

        broker.place_strangle_order(*STRANGLE_ARGS, profit_target=0.3)

        assert api.place_strangle_otoco.call_args[0][-1] == 0.3

    def test_unsupported_falls_back_once(self):
        broker, api = make_broker()
        api.place_strangle_otoco.side_effect = FeatureUnsupportedError(OTOCO_UNSUPPORTED_MESSAGE)
        api.place_strangle_order.return_value = OrderResult(id=3, status="ok")

        result = broker.place_strangle_order(*STRANGLE_ARGS, tag="entry-1", preview=True)

        assert result.id == 3
        api.place_strangle_order.assert_called_once()
        args, kwargs = api.place_strangle_order.call_args
        assert args == STRANGLE_ARGS
        assert kwargs["tag"] == "entry-1"
        assert kwargs["preview"] is True

    def test_http_501_falls_back(self):
        broker, api = make_broker()
        api.place_strangle_otoco.side_effect = APIError(501, "not implemented")
        api.place_strangle_order.return_value = OrderResult(id=4)

        assert broker.place_strangle_order(*STRANGLE_ARGS).id == 4

    @pytest.mark.parametrize("error", [
        APIError(429, "rate limited"),
        APIError(400, "invalid order"),
        APIError(500, "server error"),
        RequestTimeoutError("timed out"),
        InvalidStrikesError("bad strikes"),
    ])
    def test_other_errors_not_retried(self, error):
        broker, api = make_broker()
        api.place_strangle_otoco.side_effect = error

        with pytest.raises(type(error)) as exc_info:
            broker.place_strangle_order(*STRANGLE_ARGS)

        assert exc_info.value is error
        api.place_strangle_order.assert_not_called()

    def test_fallback_not_chained(self):
        broker, api = make_broker()
        api.place_strangle_otoco.side_effect = FeatureUnsupportedError("nope")
        fallback_error = APIError(501, "also not implemented")
        api.place_strangle_order.side_effect = fallback_error

        with pytest.raises(APIError) as exc_info:
            broker.place_strangle_order(*STRANGLE_ARGS)

        assert exc_info.value is fallback_error
        assert api.place_strangle_otoco.call_count == 1
        assert api.place_strangle_order.call_count == 1


class TestForwarding:
    """Explicit forwarding to TradierAPI."""

    def test_is_a_broker(self):
        broker, _ = make_broker()
        assert isinstance(broker, Broker)

    def test_account_balance_is_total_equity(self):
        broker, api = make_broker()
        api.get_balance.return_value = Balance(account_number="a", account_type="margin", total_equity=25000.0,
                                               margin={"option_buying_power": 10000.0})

        assert broker.get_account_balance() == 25000.0
        assert broker.get_option_buying_power() == 10000.0

    def test_close_strangle_position(self):
        broker, api = make_broker()
        api.place_strangle_buy_to_close.return_value = OrderResult(id=9)

        assert broker.close_strangle_position("SPY", 400, 450, "2024-12-20", 1, 0.5).id == 9
        api.place_strangle_buy_to_close.assert_called_once()

    def test_timeout_and_cancel_passed_through(self):
        broker, api = make_broker()
        api.get_quote.return_value = MagicMock()

        broker.get_quote("SPY", timeout=3.0, cancel_event="evt")

        api.get_quote.assert_called_once_with("SPY", timeout=3.0, cancel_event="evt")

    def test_single_leg_methods(self):
        broker, api = make_broker()

        broker.place_buy_to_close_order("AAPL250117P00095000", 1, 0.5)
        broker.place_sell_to_close_order("AAPL250117P00095000", 1, 0.5)
        broker.place_buy_to_close_market_order("AAPL250117P00095000", 1)
        broker.place_sell_to_close_market_order("AAPL250117P00095000", 1)

        api.place_buy_to_close_order.assert_called_once()
        api.place_sell_to_close_order.assert_called_once()
        api.place_buy_to_close_market_order.assert_called_once()
        api.place_sell_to_close_market_order.assert_called_once()


class TestMakeOrderTag:
    """Idempotency tags."""

    def test_deterministic_without_nonce(self):
        a = make_order_tag("entry", "SPY", "2024-12-20", 400.0, 450.0, 1, 2.35, nonce=False)
        b = make_order_tag("entry", "SPY", "2024-12-20", 400.0, 450.0, 1, 2.35, nonce=False)

        assert a == b
        assert re.match(r"^entry-[0-9a-f]{8}$", a)

    def test_nonce_suffix(self):
        tag = make_order_tag("exit", "SPY", 1)
        assert re.match(r"^exit-[0-9a-f]{8}-[0-9a-f]{4}$", tag)

    def test_different_orders_differ(self):
        a = make_order_tag("entry", "SPY", 400.0, nonce=False)
        b = make_order_tag("entry", "SPY", 401.0, nonce=False)
        assert a != b
