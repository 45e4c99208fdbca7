"""
Ingestion Module

This module defines how option-chain data reaches the GEX engine.

Components:
    - market_data: Provider interface, contract descriptors and subscriptions
    - chain_file_provider: Provider backed by a YAML/JSON chain file

Usage:
    from gex_monitor.ingestion import ChainFileProvider
    provider = ChainFileProvider('chain.yaml')
    series = provider.nearest_series('SPY')
    contracts = provider.list_strikes(series)
"""

from .market_data import (
    ContractDescriptor, MarketDataProvider, OptionSeries, OptionType,
    PriceQuoteType, Subscription
)
from .chain_file_provider import ChainFileProvider

__all__ = [
    'ContractDescriptor',
    'MarketDataProvider',
    'OptionSeries',
    'OptionType',
    'PriceQuoteType',
    'Subscription',
    'ChainFileProvider'
]
