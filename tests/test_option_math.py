"""
Unit tests for strike selection, credit calculation and position matching.

Run tests with: python -m pytest tests/test_option_math.py -v
"""

import math
import os
import sys
from datetime import date, datetime

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from strangler.errors import StrikeMatchError
from strangler.models import Contract, Greeks, OptionType, Position
from strangler.option_math import (
    calculate_ivr,
    calculate_strangle_credit,
    ceil_to_tick,
    days_between,
    find_open_strangle,
    floor_to_tick,
    get_option_by_strike,
    round_to_tick,
    select_strangle_strikes,
)


def make_contract(option_type, strike, delta=None, bid=1.0, ask=1.2):
    type_char = "P" if option_type is OptionType.PUT else "C"
    return Contract(
        symbol=f"SPY241220{type_char}{int(strike * 1000):08d}",
        underlying="SPY",
        expiration_date="2024-12-20",
        option_type=option_type,
        strike=strike,
        bid=bid,
        ask=ask,
        greeks=Greeks(delta=delta) if delta is not None else None,
    )


def make_position(symbol, quantity):
    return Position(id=abs(hash(symbol)) % 10000, symbol=symbol, quantity=quantity)


# =============================================================================
# STRIKE SELECTION
# =============================================================================

class TestSelectStrangleStrikes:
    """Delta-targeted strike selection."""

    @pytest.fixture
    def chain(self):
        return [
            make_contract(OptionType.PUT, 390, -0.10),
            make_contract(OptionType.PUT, 400, -0.16),
            make_contract(OptionType.PUT, 410, -0.25),
            make_contract(OptionType.CALL, 450, 0.12),
            make_contract(OptionType.CALL, 440, 0.18),
        ]

    def test_closest_delta(self, chain):
        strikes = select_strangle_strikes(chain, 0.16)

        assert strikes.put_strike == 400
        assert strikes.call_strike == 440
        assert strikes.put_symbol == "SPY241220P00400000"
        assert strikes.call_symbol == "SPY241220C00440000"
        assert strikes.is_complete

    def test_negative_target_treated_as_magnitude(self, chain):
        assert select_strangle_strikes(chain, -0.16).put_strike == 400

    def test_contracts_without_greeks_ignored(self):
        chain = [
            make_contract(OptionType.PUT, 400, None),
            make_contract(OptionType.PUT, 380, -0.05),
            make_contract(OptionType.CALL, 450, None),
        ]
        strikes = select_strangle_strikes(chain, 0.16)

        assert strikes.put_strike == 380
        assert strikes.call_strike is None
        assert not strikes.is_complete

    def test_ties_go_to_first_encountered(self):
        first = make_contract(OptionType.PUT, 380, -0.25)
        second = make_contract(OptionType.PUT, 420, -0.75)

        assert select_strangle_strikes([first, second], 0.5).put_strike == 380
        assert select_strangle_strikes([second, first], 0.5).put_strike == 420

    def test_empty_chain(self):
        strikes = select_strangle_strikes([], 0.16)
        assert strikes.put_strike is None and strikes.call_strike is None


# =============================================================================
# CREDIT
# =============================================================================

class TestStrangleCredit:
    """Mid-price credit calculation."""

    @pytest.fixture
    def chain(self):
        return [
            make_contract(OptionType.PUT, 400, bid=1.0, ask=1.2),
            make_contract(OptionType.CALL, 450, bid=0.9, ask=1.1),
            make_contract(OptionType.CALL, 400, bid=50.0, ask=51.0),
        ]

    def test_sum_of_mids(self, chain):
        assert calculate_strangle_credit(chain, 400, 450) == pytest.approx(2.1)

    def test_symmetric_in_leg_order(self, chain):
        assert calculate_strangle_credit(list(reversed(chain)), 400, 450) == \
            pytest.approx(calculate_strangle_credit(chain, 400, 450))

    def test_strike_matched_within_epsilon(self, chain):
        assert calculate_strangle_credit(chain, 400.0004, 449.9996) == pytest.approx(2.1)

    def test_missing_leg_is_an_error(self, chain):
        with pytest.raises(StrikeMatchError):
            calculate_strangle_credit(chain, 395, 450)
        with pytest.raises(StrikeMatchError):
            calculate_strangle_credit(chain, 400, 455)

    def test_get_option_by_strike(self, chain):
        assert get_option_by_strike(chain, 400, OptionType.CALL).bid == 50.0
        assert get_option_by_strike(chain, 401, OptionType.PUT) is None


# =============================================================================
# POSITIONS
# =============================================================================

class TestFindOpenStrangle:
    """Open short strangle detection."""

    def test_aapl_found_using_only_aapl_legs(self):
        put = make_position("AAPL250117P00095000", -1)
        call = make_position("AAPL250117C00105000", -2)
        other = make_position("MSFT250117P00400000", -1)

        match = find_open_strangle([put, call, other], "AAPL")

        assert match.found
        assert match.put_position is put
        assert match.call_position is call

    def test_similar_prefix_does_not_match(self):
        positions = [
            make_position("AAPLW250117P00095000", -1),
            make_position("AAPLW250117C00105000", -1),
        ]
        assert not find_open_strangle(positions, "AAPL").found

    def test_long_and_fractional_quantities_ignored(self):
        positions = [
            make_position("AAPL250117P00095000", 1),
            make_position("AAPL250117C00105000", -0.2),
        ]
        match = find_open_strangle(positions, "AAPL")

        assert not match.found
        assert match.put_position is None
        assert match.call_position is None

    def test_one_leg_only_not_found(self):
        match = find_open_strangle([make_position("AAPL250117P00095000", -1)], "AAPL")
        assert not match.found
        assert match.put_position is not None

    def test_equity_positions_ignored(self):
        positions = [
            make_position("AAPL", -100),
            make_position("AAPL250117P00095000", -1),
            make_position("AAPL250117C00105000", -1),
        ]
        match = find_open_strangle(positions, "AAPL")
        assert match.found
        assert match.put_position.symbol == "AAPL250117P00095000"

    def test_first_qualifying_leg_wins(self):
        first_put = make_position("AAPL250117P00095000", -1)
        second_put = make_position("AAPL250221P00090000", -1)
        call = make_position("AAPL250117C00105000", -1)

        match = find_open_strangle([first_put, second_put, call], "AAPL")
        assert match.put_position is first_put


# =============================================================================
# MISC HELPERS
# =============================================================================

class TestIVR:
    """IV rank."""

    def test_rank(self):
        assert calculate_ivr(0.30, [0.20, 0.40, 0.25]) == pytest.approx(50.0)
        assert calculate_ivr(0.40, [0.20, 0.40]) == pytest.approx(100.0)

    def test_no_history(self):
        assert calculate_ivr(0.30, []) == 0.0

    def test_flat_history(self):
        assert calculate_ivr(0.30, [0.25, 0.25]) == 50.0


class TestDaysBetween:

    def test_dates_and_datetimes(self):
        assert days_between(date(2025, 1, 1), date(2025, 1, 17)) == 16
        assert days_between(datetime(2025, 1, 17, 15, 0), date(2025, 1, 1)) == -16


class TestTickRounding:
    """Price tick rounding helpers."""

    def test_round_half_away_from_zero(self):
        assert round_to_tick(2.345, 0.05) == pytest.approx(2.35)
        assert round_to_tick(0.125, 0.25) == pytest.approx(0.25)
        assert round_to_tick(-0.125, 0.25) == pytest.approx(-0.25)

    def test_floor_and_ceil(self):
        assert floor_to_tick(2.37, 0.05) == pytest.approx(2.35)
        assert ceil_to_tick(2.31, 0.05) == pytest.approx(2.35)
        assert floor_to_tick(2.35, 0.05) == pytest.approx(2.35)
        assert ceil_to_tick(2.35, 0.05) == pytest.approx(2.35)

    def test_degenerate_inputs_pass_through(self):
        assert round_to_tick(2.37, 0) == 2.37
        assert math.isnan(floor_to_tick(float("nan"), 0.05))
        assert ceil_to_tick(float("inf"), 0.05) == float("inf")
