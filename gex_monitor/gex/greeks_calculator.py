"""
Options Greeks Calculator using Black-Scholes model

Implied volatility inversion and gamma pricing for the GEX engine.
"""

import math
import numpy as np
from scipy.stats import norm
from scipy.optimize import brentq
from datetime import datetime, time as dt_time, date
from typing import Optional
import pytz

from gex_monitor.gex.gex_metrics import ContractQuote, SolvedContract
from gex_monitor.ingestion.market_data import OptionType, PriceQuoteType
from gex_monitor.utils import get_logger

logger = get_logger(__name__)

MARKET_TZ = pytz.timezone('America/New_York')

# Accepted implied volatility domain is the open interval (0, MAX_VOL).
# The solver brackets from MIN_VOL; lower volatilities have no solution.
MIN_VOL = 1e-6
MAX_VOL = 3.0

SOLVER_XTOL = 1e-8
SOLVER_MAX_ITERATIONS = 100
PRICE_TOLERANCE = 1e-6

# Floor for very short DTE (< 1 hour) to avoid numerical issues
MIN_TIME_TO_EXPIRATION = 1 / 365 / 24


class GreeksCalculator:
    """Calculate implied volatility and gamma using Black-Scholes with dividends"""

    def __init__(self, risk_free_rate=0.05, dividend_yield=0.0):
        """
        Args:
            risk_free_rate: Annual risk-free rate (default 5%)
            dividend_yield: Annual continuous dividend yield (default 0)
        """
        self.risk_free_rate = risk_free_rate
        self.dividend_yield = dividend_yield

    def _rates(self, risk_free_rate, dividend_yield):
        r = self.risk_free_rate if risk_free_rate is None else risk_free_rate
        q = self.dividend_yield if dividend_yield is None else dividend_yield
        return r, q

    @staticmethod
    def _effective_time(T):
        return max(T, MIN_TIME_TO_EXPIRATION)

    def bs_price(self, spot, strike, time_to_expiration, volatility, option_type,
                 risk_free_rate=None, dividend_yield=None) -> float:
        """Black-Scholes-Merton price with continuous dividend yield"""
        option_type = OptionType.parse(option_type)
        r, q = self._rates(risk_free_rate, dividend_yield)

        S = spot
        K = strike
        T = self._effective_time(time_to_expiration)
        sigma = volatility

        d1 = (np.log(S / K) + (r - q + 0.5 * sigma ** 2) * T) / (sigma * np.sqrt(T))
        d2 = d1 - sigma * np.sqrt(T)

        if option_type is OptionType.CALL:
            return float(S * np.exp(-q * T) * norm.cdf(d1) - K * np.exp(-r * T) * norm.cdf(d2))
        return float(K * np.exp(-r * T) * norm.cdf(-d2) - S * np.exp(-q * T) * norm.cdf(-d1))

    def gamma(self, spot, strike, time_to_expiration, volatility,
              risk_free_rate=None, dividend_yield=None) -> float:
        """
        Closed-form gamma. Same for calls and puts (with dividend adjustment).

        Returns:
            Gamma (>= 0), or 0.0 for expired contracts / zero volatility
        """
        if time_to_expiration <= 0 or volatility <= 0:
            return 0.0

        r, q = self._rates(risk_free_rate, dividend_yield)

        S = spot
        K = strike
        T = self._effective_time(time_to_expiration)
        sigma = volatility

        d1 = (np.log(S / K) + (r - q + 0.5 * sigma ** 2) * T) / (sigma * np.sqrt(T))
        return float(norm.pdf(d1) * np.exp(-q * T) / (S * sigma * np.sqrt(T)))

    def price_bounds(self, spot, strike, time_to_expiration, option_type,
                     risk_free_rate=None, dividend_yield=None):
        """No-arbitrage (lower, upper) price bounds for a European option"""
        option_type = OptionType.parse(option_type)
        r, q = self._rates(risk_free_rate, dividend_yield)
        T = self._effective_time(time_to_expiration)

        discounted_spot = spot * math.exp(-q * T)
        discounted_strike = strike * math.exp(-r * T)

        if option_type is OptionType.CALL:
            return max(discounted_spot - discounted_strike, 0.0), discounted_spot
        return max(discounted_strike - discounted_spot, 0.0), discounted_strike

    def implied_vol(self, price, spot, strike, time_to_expiration, option_type,
                    risk_free_rate=None, dividend_yield=None) -> Optional[float]:
        """
        Back out implied volatility from an observed option price

        Uses Brent's method on the price residual, bracketed by the accepted
        volatility domain and bounded by SOLVER_MAX_ITERATIONS.

        Args:
            price: Observed option price
            spot: Current underlying price
            strike: Strike price
            time_to_expiration: Time to expiration in years
            option_type: OptionType or 'call'/'put'
            risk_free_rate: Overrides the calculator's rate if given
            dividend_yield: Overrides the calculator's yield if given

        Returns:
            Implied volatility in (0, MAX_VOL) or None if it can't be solved
        """
        option_type = OptionType.parse(option_type)
        r, q = self._rates(risk_free_rate, dividend_yield)

        inputs = (price, spot, strike, time_to_expiration, r, q)
        if not all(math.isfinite(x) for x in inputs):
            return None

        if price <= 0 or spot <= 0 or strike <= 0 or time_to_expiration <= 0:
            return None

        lower, upper = self.price_bounds(spot, strike, time_to_expiration, option_type, r, q)
        if price <= lower or price >= upper:
            logger.debug(f"Price {price} outside no-arbitrage bounds ({lower:.4f}, {upper:.4f}) "
                         f"for {option_type.value} {strike}")
            return None

        def objective(sigma):
            """Difference between theoretical and market price"""
            return self.bs_price(spot, strike, time_to_expiration, sigma, option_type, r, q) - price

        low_residual = objective(MIN_VOL)
        high_residual = objective(MAX_VOL)
        if not (math.isfinite(low_residual) and math.isfinite(high_residual)):
            return None

        # Root not bracketed: the price implies a volatility outside the domain
        if low_residual > 0 or high_residual < 0:
            return None

        try:
            iv, result = brentq(objective, MIN_VOL, MAX_VOL, xtol=SOLVER_XTOL,
                                maxiter=SOLVER_MAX_ITERATIONS, full_output=True, disp=False)
        except (ValueError, RuntimeError) as e:
            logger.debug(f"IV solver failed for {option_type.value} {strike}: {e}")
            return None

        if not result.converged:
            return None

        if not math.isfinite(iv) or not 0 < iv < MAX_VOL:
            return None

        if abs(objective(iv)) > PRICE_TOLERANCE * max(1.0, price):
            return None

        return float(iv)

    def solve_contract(self, quote: ContractQuote,
                       price_type: PriceQuoteType = PriceQuoteType.ASK) -> Optional[SolvedContract]:
        """
        Solve implied volatility and gamma for a single quote

        Returns:
            SolvedContract, or None if the contract is excluded
        """
        iv = self.implied_vol(
            price=quote.price(price_type),
            spot=quote.spot,
            strike=quote.strike,
            time_to_expiration=quote.time_to_expiration,
            option_type=quote.option_type,
            risk_free_rate=quote.risk_free_rate,
            dividend_yield=quote.dividend_yield
        )
        if iv is None:
            return None

        gamma = self.gamma(
            spot=quote.spot,
            strike=quote.strike,
            time_to_expiration=quote.time_to_expiration,
            volatility=iv,
            risk_free_rate=quote.risk_free_rate,
            dividend_yield=quote.dividend_yield
        )
        if not math.isfinite(gamma):
            return None

        return SolvedContract(quote=quote, implied_volatility=iv, gamma=gamma)

    def time_to_expiration(self, expiration, current_time=None) -> float:
        """Calculate time to expiration in years (0 once expired)"""
        if current_time is None:
            current_time = datetime.now(MARKET_TZ)

        # Convert expiration to datetime if it's a date
        if isinstance(expiration, date) and not isinstance(expiration, datetime):
            # Options expire at 4:00 PM ET
            exp_datetime = MARKET_TZ.localize(datetime.combine(expiration, dt_time(16, 0)))
        elif expiration.tzinfo is None:
            exp_datetime = MARKET_TZ.localize(expiration)
        else:
            exp_datetime = expiration

        # Ensure current_time is timezone-aware
        if current_time.tzinfo is None:
            current_time = MARKET_TZ.localize(current_time)

        time_diff = (exp_datetime - current_time).total_seconds()
        T = time_diff / (365.25 * 24 * 3600)

        return max(T, 0.0)
