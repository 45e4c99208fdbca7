"""
GEX Metrics Data Structures

Defines data classes and structures for gamma exposure metrics.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Optional, Mapping

from gex_monitor.ingestion.market_data import OptionType, PriceQuoteType

# Contract multiplier (100 shares per contract)
CONTRACT_MULTIPLIER = 100


@dataclass(frozen=True)
class ContractQuote:
    """Point-in-time view of one option contract, read-only to the engine"""
    strike: float
    option_type: OptionType
    ask: float
    open_interest: int
    spot: float
    time_to_expiration: float        # Years
    risk_free_rate: float
    dividend_yield: float
    bid: float = 0.0
    last: float = 0.0

    def price(self, quote_type: PriceQuoteType = PriceQuoteType.ASK) -> float:
        """Observed price for the requested quote type (0 if unavailable)"""
        if quote_type is PriceQuoteType.ASK:
            return self.ask
        if quote_type is PriceQuoteType.BID:
            return self.bid
        if quote_type is PriceQuoteType.LAST:
            return self.last
        if self.bid > 0 and self.ask > 0:
            return (self.bid + self.ask) / 2
        return 0.0

    @property
    def is_eligible(self) -> bool:
        """Only quoted contracts with open interest reach the solver"""
        return self.ask > 0 and self.open_interest > 0


@dataclass(frozen=True)
class SolvedContract:
    """A contract whose implied volatility and gamma were computed"""
    quote: ContractQuote
    implied_volatility: float
    gamma: float

    @property
    def strike(self) -> float:
        return self.quote.strike

    @property
    def option_type(self) -> OptionType:
        return self.quote.option_type

    @property
    def open_interest(self) -> int:
        return self.quote.open_interest


@dataclass(frozen=True)
class ExposureSnapshot:
    """
    Result of one aggregation run.

    Immutable once built. A newer snapshot replaces it wholesale; strikes that
    are absent from a later run are simply not present in the later snapshot.
    """
    spot: float
    by_strike: Mapping[float, float]             # Strike -> signed GEX (dollars)
    net_gamma_by_strike: Mapping[float, float]   # Strike -> sum(gamma * OI)
    computed_at: datetime
    contracts_used: int = 0

    def __post_init__(self):
        """Validate and freeze the strike maps"""
        if not self.spot > 0:
            raise ValueError(f"Invalid underlying price: {self.spot}")

        if set(self.by_strike) != set(self.net_gamma_by_strike):
            raise ValueError("GEX and net gamma maps must share the same strikes")

        for strike, value in self.by_strike.items():
            if not math.isfinite(value):
                raise ValueError(f"Non-finite GEX at strike {strike}: {value}")

        for strike, value in self.net_gamma_by_strike.items():
            if not math.isfinite(value) or value < 0:
                raise ValueError(f"Invalid net gamma at strike {strike}: {value}")

        # Read-only views over private copies, ordered by strike
        object.__setattr__(self, 'by_strike', MappingProxyType(
            {k: self.by_strike[k] for k in sorted(self.by_strike)}))
        object.__setattr__(self, 'net_gamma_by_strike', MappingProxyType(
            {k: self.net_gamma_by_strike[k] for k in sorted(self.net_gamma_by_strike)}))

    @classmethod
    def empty(cls, spot: float, computed_at: Optional[datetime] = None) -> 'ExposureSnapshot':
        """Snapshot with no contributing strikes"""
        return cls(
            spot=spot,
            by_strike={},
            net_gamma_by_strike={},
            computed_at=computed_at or datetime.now(timezone.utc)
        )

    @property
    def strikes(self):
        return list(self.by_strike.keys())

    @property
    def is_empty(self) -> bool:
        return len(self.by_strike) == 0

    @property
    def total_positive_gex(self) -> float:
        """Sum of support (positive) exposure"""
        return sum(v for v in self.by_strike.values() if v > 0)

    @property
    def total_negative_gex(self) -> float:
        """Sum of resistance (negative) exposure"""
        return sum(v for v in self.by_strike.values() if v < 0)

    @property
    def net_gex(self) -> float:
        return self.total_positive_gex + self.total_negative_gex

    @property
    def net_gex_millions(self) -> float:
        """Net gamma exposure in millions"""
        return self.net_gex / 1e6

    @property
    def total_positive_gex_millions(self) -> float:
        return self.total_positive_gex / 1e6

    @property
    def total_negative_gex_millions(self) -> float:
        return self.total_negative_gex / 1e6

    def distance_percent(self, strike: float) -> float:
        """Unsigned distance from spot to strike as a percent of spot"""
        return abs(self.spot - strike) / self.spot * 100

    def to_dict(self) -> dict:
        """Convert snapshot to dictionary for serialization"""
        return {
            'spot': self.spot,
            'computed_at': self.computed_at.isoformat(),
            'contracts_used': self.contracts_used,
            'net_gex': self.net_gex,
            'by_strike': dict(self.by_strike),
            'net_gamma_by_strike': dict(self.net_gamma_by_strike)
        }


@dataclass(frozen=True)
class CriticalAlert:
    """Large exposure level close to spot. Ephemeral, never persisted."""
    strike: float
    gex: float
    distance_percent: float

    @property
    def gex_millions(self) -> float:
        return self.gex / 1e6

    def message(self) -> str:
        """Alert line for the external alert sink"""
        return (f"CRITICAL GAMMA LEVEL ALERT: {self.strike:.2f} "
                f"(GEX: {self.gex_millions:.1f}M) - Distance: {self.distance_percent:.1f}%")


@dataclass(frozen=True)
class GammaLevel:
    """A strike whose exposure clears the configured threshold"""
    strike: float
    gex: float
    distance_percent: float          # Signed: positive above spot
    kind: str = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, 'kind', 'Support' if self.gex > 0 else 'Resistance')

    @property
    def gex_millions(self) -> float:
        return self.gex / 1e6

    def describe(self, show_value: bool = True) -> str:
        """One-line description, e.g. '450.00 | Support | GEX: 12.5M | +1.3%'"""
        if not show_value:
            return f"{self.strike:.2f} | {self.kind} | {self.distance_percent:+.1f}%"
        return (f"{self.strike:.2f} | {self.kind} | GEX: {abs(self.gex_millions):.1f}M | "
                f"{self.distance_percent:+.1f}%")
