"""
Unit tests for the low-level Tradier client.

The requests.Session is a MagicMock, so these tests check exactly what
would go over the wire without any network access.

Run tests with: python -m pytest tests/test_tradier_api.py -v
"""

import json
import os
import sys
import threading
import traceback
from unittest.mock import MagicMock

import pytest
import requests

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from strangler.config_loader import BrokerConfig
from strangler.errors import (
    APIError,
    FeatureUnsupportedError,
    InvalidStrikesError,
    QuoteNotFoundError,
    RequestCancelledError,
    RequestTimeoutError,
    TransportError,
    ValidationError,
)
from strangler.tradier_api import MAX_ERROR_BODY_BYTES, TradierAPI


def make_response(status_code=200, payload=None, text=None, headers=None):
    response = MagicMock()
    response.status_code = status_code
    if text is None:
        text = json.dumps(payload) if payload is not None else ""
    response.text = text
    response.headers = headers or {}
    if payload is not None:
        response.json.return_value = payload
    else:
        response.json.side_effect = ValueError("no json")
    return response


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def config():
    return BrokerConfig(api_key="test-key", account_id="VA000001", sandbox=True)


@pytest.fixture
def api(config, session):
    return TradierAPI(config, session=session)


def sent(session):
    """kwargs of the last session.request call."""
    return session.request.call_args.kwargs


# =============================================================================
# TRANSPORT
# =============================================================================

class TestTransport:
    """Headers, URLs, status handling and error mapping."""

    def test_headers_and_url(self, api, session):
        session.request.return_value = make_response(payload={"clock": {"state": "open"}})

        api.get_market_clock()

        kwargs = sent(session)
        assert kwargs["method"] == "GET"
        assert kwargs["url"] == "https://sandbox.tradier.com/v1/markets/clock"
        assert kwargs["headers"]["Authorization"] == "Bearer test-key"
        assert kwargs["headers"]["Accept"] == "application/json"
        assert kwargs["headers"]["User-Agent"]
        assert kwargs["timeout"] == 10.0

    def test_live_and_custom_base_url(self, session):
        live = TradierAPI(BrokerConfig(api_key="k", account_id="a", sandbox=False), session=session)
        custom = TradierAPI(BrokerConfig(api_key="k", account_id="a", base_url="http://localhost:8080/v1/"),
                            session=session)
        assert live.base_url == "https://api.tradier.com/v1"
        assert custom.base_url == "http://localhost:8080/v1"

    def test_per_call_timeout(self, api, session):
        session.request.return_value = make_response(payload={"clock": {"state": "open"}})
        api.get_market_clock(timeout=2.5)
        assert sent(session)["timeout"] == 2.5

    @pytest.mark.parametrize("status", [400, 401, 404, 429, 500, 503])
    def test_non_success_raises_api_error(self, api, session, status):
        session.request.return_value = make_response(status, text="boom")

        with pytest.raises(APIError) as exc_info:
            api.get_positions()

        assert exc_info.value.status == status
        assert exc_info.value.body == "boom"
        assert exc_info.value.method == "GET"
        assert exc_info.value.is_transient is (status == 429 or status >= 500)

    def test_retry_after_captured(self, api, session):
        session.request.return_value = make_response(429, text="slow down", headers={"Retry-After": "30"})

        with pytest.raises(APIError) as exc_info:
            api.get_quote("SPY")
        assert exc_info.value.retry_after == "30"

    def test_error_body_capped(self, api, session):
        session.request.return_value = make_response(500, text="x" * (MAX_ERROR_BODY_BYTES + 100))

        with pytest.raises(APIError) as exc_info:
            api.get_positions()
        assert len(exc_info.value.body) == MAX_ERROR_BODY_BYTES

    def test_no_content(self, api, session):
        session.request.return_value = make_response(204)
        assert api.get_positions() == []

    def test_timeout_mapped(self, api, session):
        session.request.side_effect = requests.exceptions.Timeout("read timed out")

        with pytest.raises(RequestTimeoutError) as exc_info:
            api.get_quote("SPY")
        assert isinstance(exc_info.value.__cause__, requests.exceptions.Timeout)

    def test_connection_error_mapped(self, api, session):
        session.request.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(TransportError):
            api.get_quote("SPY")

    def test_invalid_json(self, api, session):
        session.request.return_value = make_response(200, text="<html>")

        with pytest.raises(TransportError):
            api.get_quote("SPY")

    def test_cancelled_before_sending(self, api, session):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(RequestCancelledError):
            api.get_quote("SPY", cancel_event=cancel)
        session.request.assert_not_called()

    def test_cancelled_while_in_flight(self, api, session):
        cancel = threading.Event()
        release = threading.Event()

        def hanging_request(**kwargs):
            cancel.set()
            release.wait(5)
            return make_response(payload={})

        session.request.side_effect = hanging_request
        try:
            with pytest.raises(RequestCancelledError):
                api.get_quote("SPY", cancel_event=cancel)
        finally:
            release.set()

    def test_unset_cancel_event_returns_response(self, api, session):
        session.request.return_value = make_response(payload={"quotes": {"quote": {"symbol": "SPY", "last": 451.0}}})

        assert api.get_quote("SPY", cancel_event=threading.Event()).last == 451.0

    def test_worker_timeout_mapped(self, api, session):
        session.request.side_effect = requests.exceptions.Timeout("read timed out")

        with pytest.raises(RequestTimeoutError):
            api.get_quote("SPY", cancel_event=threading.Event())


# =============================================================================
# MARKET DATA
# =============================================================================

class TestMarketData:
    """Request parameters and single-or-array decoding."""

    def test_quote(self, api, session):
        session.request.return_value = make_response(payload={
            "quotes": {"quote": {"symbol": "SPY", "last": 450.5, "bid": 450.4, "ask": 450.6}}
        })

        quote = api.get_quote("SPY")

        assert quote.last == 450.5
        assert sent(session)["params"] == {"symbols": "SPY", "greeks": "false"}

    def test_quote_missing(self, api, session):
        session.request.return_value = make_response(payload={"quotes": {"unmatched_symbols": {"symbol": "XYZ"}}})

        with pytest.raises(QuoteNotFoundError) as exc_info:
            api.get_quote("XYZ")
        assert not isinstance(exc_info.value, APIError)

    def test_expirations_single_and_array(self, api, session):
        session.request.return_value = make_response(payload={"expirations": {"date": "2025-01-17"}})
        assert api.get_expirations("SPY") == ["2025-01-17"]
        assert sent(session)["params"] == {"symbol": "SPY", "includeAllRoots": "true", "strikes": "false"}

        session.request.return_value = make_response(payload={"expirations": {"date": ["2025-01-17", "2025-01-24"]}})
        assert api.get_expirations("SPY") == ["2025-01-17", "2025-01-24"]

        session.request.return_value = make_response(payload={"expirations": None})
        assert api.get_expirations("SPY") == []

    def test_option_chain(self, api, session):
        session.request.return_value = make_response(payload={"options": {"option": [
            {"symbol": "SPY241220P00400000", "option_type": "put", "strike": 400, "greeks": {"delta": -0.16}},
            {"symbol": "SPY241220C00450000", "option_type": "call", "strike": 450, "greeks": {"delta": 0.15}},
        ]}})

        chain = api.get_option_chain("SPY", "2024-12-20")

        assert len(chain) == 2
        assert sent(session)["params"] == {"symbol": "SPY", "expiration": "2024-12-20", "greeks": "true"}

    def test_calendar_params(self, api, session):
        session.request.return_value = make_response(payload={"calendar": {"month": 3, "year": 2025, "days": None}})

        api.get_market_calendar(3, 2025)
        assert sent(session)["params"] == {"month": "03", "year": "2025"}

        api.get_market_calendar()
        assert sent(session)["params"] is None

    def test_is_trading_day(self, api, session):
        session.request.return_value = make_response(payload={"clock": {"state": "premarket"}})
        assert api.is_trading_day() is True

        session.request.return_value = make_response(payload={"clock": {"state": "closed"}})
        assert api.is_trading_day() is False

    def test_history(self, api, session):
        session.request.return_value = make_response(payload={"history": {"day": {
            "date": "2025-01-16", "open": 1, "high": 2, "low": 0.5, "close": 1.5, "volume": 10,
        }}})

        bars = api.get_historical_data("SPY", "2025-01-01", "2025-01-16", interval="")

        assert len(bars) == 1
        assert sent(session)["params"] == {
            "symbol": "SPY", "interval": "daily", "start": "2025-01-01", "end": "2025-01-16",
        }

    def test_positions_null_string(self, api, session):
        session.request.return_value = make_response(payload={"positions": "null"})
        assert api.get_positions() == []
        assert sent(session)["url"].endswith("/accounts/VA000001/positions")


# =============================================================================
# ORDERS
# =============================================================================

class TestOrders:
    """Order submission."""

    ORDER_OK = {"order": {"id": 123, "status": "ok"}}

    def test_strangle_form_post(self, api, session):
        session.request.return_value = make_response(payload=self.ORDER_OK)

        result = api.place_strangle_order("SPY", 400, 450, "2024-12-20", 1, 2.35, tag="entry-abc")

        kwargs = sent(session)
        form = dict(kwargs["data"])
        assert kwargs["method"] == "POST"
        assert kwargs["url"].endswith("/accounts/VA000001/orders")
        assert form["class"] == "multileg"
        assert form["type"] == "credit"
        assert form["price"] == "2.35"
        assert form["tag"] == "entry-abc"
        assert form["option_symbol[0]"] == "SPY241220P00400000"
        assert result.id == 123

    def test_inverted_strikes_never_sent(self, api, session):
        with pytest.raises(InvalidStrikesError):
            api.place_strangle_order("AAPL", 100, 95, "2025-01-17", 1, 2.0)
        session.request.assert_not_called()

    def test_buy_to_close_strangle(self, api, session):
        session.request.return_value = make_response(payload=self.ORDER_OK)

        api.place_strangle_buy_to_close("SPY", 400, 450, "2024-12-20", 1, 1.2)

        form = dict(sent(session)["data"])
        assert form["type"] == "debit"
        assert form["side[0]"] == "buy_to_close"
        assert form["side[1]"] == "buy_to_close"

    def test_single_leg_market(self, api, session):
        session.request.return_value = make_response(payload=self.ORDER_OK)

        api.place_buy_to_close_market_order("AAPL250117P00095000", 2)

        form = dict(sent(session)["data"])
        assert form["class"] == "option"
        assert form["symbol"] == "AAPL"
        assert form["type"] == "market"
        assert form["side"] == "buy_to_close"
        assert "price" not in form

    def test_single_leg_limit_sell(self, api, session):
        session.request.return_value = make_response(payload=self.ORDER_OK)

        api.place_sell_to_close_order("AAPL250117C00105000", 1, 0.75, duration="gtc")

        form = dict(sent(session)["data"])
        assert form["side"] == "sell_to_close"
        assert form["price"] == "0.75"
        assert form["duration"] == "gtc"

    def test_order_status(self, api, session):
        session.request.return_value = make_response(payload={"order": {"id": 123, "status": "filled"}})

        result = api.get_order_status(123)

        assert result.is_filled
        assert sent(session)["url"].endswith("/accounts/VA000001/orders/123")


class TestOTOCO:
    """Emulated OTOCO entry."""

    def test_unsupported_without_network(self, api, session):
        with pytest.raises(FeatureUnsupportedError):
            api.place_strangle_otoco("SPY", 400, 450, "2024-12-20", 1, 2.0, 0.5)
        session.request.assert_not_called()

    def test_unsupported_raises_fresh_error_each_time(self, api):
        errors = []
        for _ in range(3):
            with pytest.raises(FeatureUnsupportedError) as exc_info:
                api.place_strangle_otoco("SPY", 400, 450, "2024-12-20", 1, 2.0, 0.5)
            errors.append(exc_info.value)

        assert len({id(e) for e in errors}) == 3
        depths = [len(traceback.extract_tb(e.__traceback__)) for e in errors]
        assert depths[0] == depths[1] == depths[2]

    def test_validation_before_unsupported(self, api, session):
        with pytest.raises(InvalidStrikesError):
            api.place_strangle_otoco("SPY", 450, 400, "2024-12-20", 1, 2.0, 0.5)

    def test_profit_target_range(self, session):
        api = TradierAPI(BrokerConfig(api_key="k", account_id="a", otoco_multileg_supported=True), session=session)
        with pytest.raises(ValidationError):
            api.place_strangle_otoco("SPY", 400, 450, "2024-12-20", 1, 2.0, 1.5)
        session.request.assert_not_called()

    def test_supported_tags_entry_and_sets_exit(self, session):
        api = TradierAPI(BrokerConfig(api_key="k", account_id="a", otoco_multileg_supported=True), session=session)
        session.request.return_value = make_response(payload={"order": {"id": 77, "status": "ok"}})

        result = api.place_strangle_otoco("SPY", 400, 450, "2024-12-20", 1, 2.0, 0.5, tag="entry-1")

        form = dict(sent(session)["data"])
        assert form["tag"] == "entry-1-otoco-profit-500"
        assert result.id == 77
        assert result.exit_target_price == pytest.approx(1.0)

    def test_tag_without_prefix(self, session):
        api = TradierAPI(BrokerConfig(api_key="k", account_id="a", otoco_multileg_supported=True), session=session)
        session.request.return_value = make_response(payload={"order": {"id": 78, "status": "ok"}})

        result = api.place_strangle_otoco("SPY", 400, 450, "2024-12-20", 1, 2.35, 0.25)

        assert dict(sent(session)["data"])["tag"] == "otoco-profit-250"
        assert result.exit_target_price == pytest.approx(1.76)
