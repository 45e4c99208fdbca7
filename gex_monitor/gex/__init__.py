"""
GEX (Gamma Exposure) Module

This module handles gamma exposure calculations and analysis for option chains.

Components:
    - gex_metrics: Data structures for quotes, snapshots and alerts
    - greeks_calculator: Implied volatility solver and gamma pricer
    - gex_calculator: Core GEX aggregation engine
    - gex_analyzer: Critical level detection and level analysis
    - snapshot_store: Atomic publication of the latest snapshot
    - recompute: Single-flight recompute coordination
    - gex_scheduler: Timer/quote driven GEX recalculation
"""

from ..ingestion.market_data import OptionType, PriceQuoteType
from .gex_metrics import (
    ContractQuote, CriticalAlert, ExposureSnapshot, GammaLevel, SolvedContract
)
from .greeks_calculator import GreeksCalculator
from .gex_calculator import GEXCalculator
from .gex_analyzer import GEXAnalyzer
from .snapshot_store import SnapshotStore
from .recompute import RecomputeCoordinator
from .gex_scheduler import GEXScheduler

__all__ = [
    'OptionType',
    'PriceQuoteType',
    'ContractQuote',
    'CriticalAlert',
    'ExposureSnapshot',
    'GammaLevel',
    'SolvedContract',
    'GreeksCalculator',
    'GEXCalculator',
    'GEXAnalyzer',
    'SnapshotStore',
    'RecomputeCoordinator',
    'GEXScheduler'
]
