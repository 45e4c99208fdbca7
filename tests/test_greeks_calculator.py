"""
Tests for the implied volatility solver and gamma pricer
"""

import math
from datetime import date, datetime

import pytest

from conftest import make_quote
from gex_monitor.gex.greeks_calculator import MARKET_TZ, MAX_VOL, GreeksCalculator
from gex_monitor.ingestion.market_data import OptionType, PriceQuoteType


@pytest.fixture
def calc():
    return GreeksCalculator(risk_free_rate=0.05, dividend_yield=0.0)


class TestGamma:
    """Closed-form gamma"""

    def test_matches_closed_form(self, calc):
        S, K, T, sigma, r = 100.0, 100.0, 0.5, 0.2, 0.05
        d1 = (math.log(S / K) + (r + 0.5 * sigma ** 2) * T) / (sigma * math.sqrt(T))
        expected = math.exp(-d1 ** 2 / 2) / math.sqrt(2 * math.pi) / (S * sigma * math.sqrt(T))

        assert calc.gamma(S, K, T, sigma) == pytest.approx(expected, rel=1e-9)

    def test_dividend_yield_lowers_gamma_scale(self):
        no_div = GreeksCalculator(0.05, 0.0).gamma(100, 100, 0.5, 0.2)
        with_div = GreeksCalculator(0.05, 0.03).gamma(100, 100, 0.5, 0.2)
        assert with_div != pytest.approx(no_div)
        assert with_div > 0

    def test_expired_or_zero_vol_is_zero(self, calc):
        assert calc.gamma(100, 100, 0.0, 0.2) == 0.0
        assert calc.gamma(100, 100, 0.5, 0.0) == 0.0

    def test_same_for_call_and_put(self, calc):
        T = 45 / 365
        call_price = calc.bs_price(100, 105, T, 0.25, OptionType.CALL)
        put_price = calc.bs_price(100, 105, T, 0.25, OptionType.PUT)

        call = calc.solve_contract(make_quote(105, OptionType.CALL, ask=call_price, time_to_expiration=T))
        put = calc.solve_contract(make_quote(105, OptionType.PUT, ask=put_price, time_to_expiration=T))

        assert call.implied_volatility == pytest.approx(put.implied_volatility, abs=1e-6)
        assert call.gamma == pytest.approx(put.gamma, rel=1e-6)


class TestImpliedVol:
    """Bounded Brent solver"""

    @pytest.mark.parametrize("option_type,strike,vol", [
        (OptionType.CALL, 105.0, 0.30),
        (OptionType.PUT, 95.0, 0.45),
        (OptionType.CALL, 100.0, 2.5),
    ])
    def test_recovers_volatility(self, calc, option_type, strike, vol):
        price = calc.bs_price(100.0, strike, 0.25, vol, option_type)
        iv = calc.implied_vol(price, 100.0, strike, 0.25, option_type)
        assert iv == pytest.approx(vol, abs=1e-6)

    def test_accepts_string_option_type(self, calc):
        price = calc.bs_price(100.0, 100.0, 0.25, 0.2, 'call')
        assert calc.implied_vol(price, 100.0, 100.0, 0.25, 'CALL') == pytest.approx(0.2, abs=1e-6)

    def test_price_below_intrinsic_has_no_solution(self, calc):
        # Deep ITM call is worth at least ~12.2 (spot minus discounted strike)
        assert calc.implied_vol(5.0, 100.0, 90.0, 0.5, OptionType.CALL) is None

    def test_price_above_spot_has_no_solution(self, calc):
        assert calc.implied_vol(150.0, 100.0, 100.0, 0.5, OptionType.CALL) is None

    def test_volatility_outside_domain_is_rejected_not_clamped(self, calc):
        price = calc.bs_price(100.0, 100.0, 1.0, 3.5, OptionType.CALL)
        assert price < 100.0
        assert calc.implied_vol(price, 100.0, 100.0, 1.0, OptionType.CALL) is None

    @pytest.mark.parametrize("price,spot,strike,T", [
        (0.0, 100.0, 100.0, 0.5),
        (5.0, 100.0, 100.0, 0.0),
        (5.0, 0.0, 100.0, 0.5),
        (float('nan'), 100.0, 100.0, 0.5),
        (5.0, 100.0, float('inf'), 0.5),
    ])
    def test_degenerate_inputs(self, calc, price, spot, strike, T):
        assert calc.implied_vol(price, spot, strike, T, OptionType.CALL) is None

    def test_recovers_very_low_volatility(self, calc):
        price = calc.bs_price(100.0, 100.0, 1.0, 5e-5, OptionType.CALL, risk_free_rate=0.0)
        assert price == pytest.approx(0.001995, rel=1e-3)

        iv = calc.implied_vol(price, 100.0, 100.0, 1.0, OptionType.CALL, risk_free_rate=0.0)
        assert iv == pytest.approx(5e-5, rel=1e-3)

    def test_result_is_inside_domain(self, calc):
        price = calc.bs_price(100.0, 110.0, 0.1, 0.6, OptionType.PUT)
        iv = calc.implied_vol(price, 100.0, 110.0, 0.1, OptionType.PUT)
        assert 0 < iv < MAX_VOL


class TestSolveContract:

    def test_uses_requested_price_type(self, calc):
        T = 30 / 365
        ask = calc.bs_price(100, 100, T, 0.30, OptionType.CALL)
        bid = calc.bs_price(100, 100, T, 0.20, OptionType.CALL)
        quote = make_quote(100.0, ask=ask, bid=bid, time_to_expiration=T)

        assert calc.solve_contract(quote).implied_volatility == pytest.approx(0.30, abs=1e-6)
        solved_bid = calc.solve_contract(quote, PriceQuoteType.BID)
        assert solved_bid.implied_volatility == pytest.approx(0.20, abs=1e-6)

    def test_mid_needs_both_sides(self, calc):
        quote = make_quote(100.0, ask=3.0, bid=0.0)
        assert calc.solve_contract(quote, PriceQuoteType.MID) is None

    def test_unsolvable_quote_returns_none(self, calc):
        assert calc.solve_contract(make_quote(100.0, ask=250.0)) is None


class TestTimeToExpiration:

    def test_one_day_before_close(self, calc):
        now = MARKET_TZ.localize(datetime(2026, 10, 19, 16, 0))
        T = calc.time_to_expiration(date(2026, 10, 20), now)
        assert T == pytest.approx(1 / 365.25)

    def test_expired_is_zero(self, calc):
        now = MARKET_TZ.localize(datetime(2026, 10, 21, 9, 30))
        assert calc.time_to_expiration(date(2026, 10, 20), now) == 0.0

    def test_naive_current_time_is_market_time(self, calc):
        T = calc.time_to_expiration(date(2026, 10, 20), datetime(2026, 10, 20, 15, 0))
        assert T == pytest.approx(3600 / (365.25 * 24 * 3600))
