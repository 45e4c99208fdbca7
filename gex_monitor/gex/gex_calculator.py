"""
Gamma Exposure (GEX) Calculator

Calculates dealer gamma exposure by strike from option chain quotes.
"""

import math
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from gex_monitor.gex.gex_metrics import (
    CONTRACT_MULTIPLIER, ContractQuote, ExposureSnapshot, SolvedContract
)
from gex_monitor.gex.greeks_calculator import GreeksCalculator, MAX_VOL
from gex_monitor.ingestion.market_data import PriceQuoteType
from gex_monitor.utils import get_logger

logger = get_logger(__name__)


class GEXCalculator:
    """Calculate per-strike gamma exposure from contract quotes"""

    def __init__(self, greeks_calc: Optional[GreeksCalculator] = None,
                 price_type: PriceQuoteType = PriceQuoteType.ASK):
        """
        Args:
            greeks_calc: Solver/pricer used for implied volatility and gamma
            price_type: Which quoted price implied volatility is solved from
        """
        self.greeks_calc = greeks_calc or GreeksCalculator()
        self.price_type = price_type

    @staticmethod
    def contract_gex(contract: SolvedContract, spot: float) -> float:
        """
        Signed dollar gamma exposure of one contract

        GEX = sign x Gamma x Open Interest x 100 x Spot x Strike,
        negative for calls and positive for puts.
        """
        return (contract.option_type.dealer_sign * contract.gamma * contract.open_interest
                * CONTRACT_MULTIPLIER * spot * contract.strike)

    def solve(self, quotes: Iterable[ContractQuote]) -> List[SolvedContract]:
        """Solve every eligible quote, dropping the ones that fail"""
        solved = []
        skipped = 0
        failed = 0

        for quote in quotes:
            if not quote.is_eligible:
                skipped += 1
                continue

            contract = self.greeks_calc.solve_contract(quote, self.price_type)
            if contract is None or not _is_valid_solution(contract):
                failed += 1
                continue

            solved.append(contract)

        logger.debug(f"Solved {len(solved)} contracts ({skipped} skipped, {failed} failed)")
        return solved

    def aggregate(self, solved: Iterable[SolvedContract], spot: float,
                  computed_at: Optional[datetime] = None) -> ExposureSnapshot:
        """Fold solved contracts into a fresh per-strike snapshot"""
        strike_gex: Dict[float, float] = {}
        strike_net_gamma: Dict[float, float] = {}
        used = 0

        for contract in solved:
            gex = self.contract_gex(contract, spot)
            if not math.isfinite(gex):
                logger.debug(f"Non-finite GEX for {contract.option_type.value} "
                             f"{contract.strike}, skipping")
                continue

            strike = contract.strike
            strike_gex[strike] = strike_gex.get(strike, 0.0) + gex
            strike_net_gamma[strike] = (strike_net_gamma.get(strike, 0.0)
                                        + contract.gamma * contract.open_interest)
            used += 1

        # A strike whose running sum overflowed is dropped as a whole
        for strike in [k for k, v in strike_gex.items()
                       if not (math.isfinite(v) and math.isfinite(strike_net_gamma[k]))]:
            del strike_gex[strike]
            del strike_net_gamma[strike]

        return ExposureSnapshot(
            spot=spot,
            by_strike=strike_gex,
            net_gamma_by_strike=strike_net_gamma,
            computed_at=computed_at or datetime.now(timezone.utc),
            contracts_used=used
        )

    def calculate(self, quotes: Iterable[ContractQuote], spot: float,
                  computed_at: Optional[datetime] = None) -> ExposureSnapshot:
        """
        Calculate GEX by strike for a batch of quotes

        Args:
            quotes: Contract quotes, calls and puts
            spot: Underlying price used for the dollar conversion
            computed_at: Snapshot timestamp (defaults to now, UTC)

        Returns:
            New ExposureSnapshot built from scratch
        """
        quotes = list(quotes)
        snapshot = self.aggregate(self.solve(quotes), spot, computed_at)

        logger.debug(f"GEX calculated from {snapshot.contracts_used}/{len(quotes)} contracts: "
                     f"{len(snapshot.by_strike)} strikes, Net=${snapshot.net_gex_millions:.1f}M")
        return snapshot

    @staticmethod
    def filter_strikes(contracts, spot: float, strike_range_pct: float) -> list:
        """
        Keep contracts within strike_range_pct percent of spot, ordered by strike

        Args:
            contracts: Objects with a .strike attribute
            spot: Current underlying price
            strike_range_pct: Half-width of the band, in percent of spot
        """
        band = spot * strike_range_pct / 100
        in_range = [c for c in contracts if abs(c.strike - spot) <= band]
        return sorted(in_range, key=lambda c: c.strike)


def _is_valid_solution(contract: SolvedContract) -> bool:
    iv = contract.implied_volatility
    return (iv is not None and math.isfinite(iv) and 0 < iv <= MAX_VOL
            and math.isfinite(contract.gamma))
