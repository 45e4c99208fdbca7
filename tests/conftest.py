"""
Pytest Configuration
====================

Shared fixtures and fakes for testing.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from gex_monitor.config import ENV_OVERRIDES
from gex_monitor.gex.gex_metrics import ContractQuote, SolvedContract
from gex_monitor.ingestion.market_data import (
    ContractDescriptor, MarketDataProvider, OptionSeries, OptionType, Subscription
)


def make_quote(strike=100.0, option_type=OptionType.CALL, ask=5.0, open_interest=500,
               spot=100.0, time_to_expiration=30 / 365, risk_free_rate=0.05,
               dividend_yield=0.0, bid=0.0, last=0.0):
    return ContractQuote(
        strike=strike,
        option_type=option_type,
        ask=ask,
        open_interest=open_interest,
        spot=spot,
        time_to_expiration=time_to_expiration,
        risk_free_rate=risk_free_rate,
        dividend_yield=dividend_yield,
        bid=bid,
        last=last
    )


def ts(seconds: float) -> datetime:
    return datetime(2026, 1, 2, 15, 0, tzinfo=timezone.utc) + timedelta(seconds=seconds)


class FixedGreeks:
    """Greeks stand-in returning a fixed implied volatility and gamma"""

    def __init__(self, iv=0.20, gamma=0.05, fail_strikes=()):
        self.iv = iv
        self.gamma = gamma
        self.fail_strikes = set(fail_strikes)
        self.calls = 0

    def solve_contract(self, quote, price_type=None):
        self.calls += 1
        if quote.strike in self.fail_strikes:
            return None
        return SolvedContract(quote=quote, implied_volatility=self.iv, gamma=self.gamma)

    def time_to_expiration(self, expiration, current_time=None):
        return 30 / 365


class FailingUnsubscribe(Exception):
    pass


class FakeProvider(MarketDataProvider):
    """In-memory provider with push-style quote updates"""

    def __init__(self, underlying='SPY', spot=100.0, contracts=None, series=None,
                 failing_unsubscribe=()):
        self.underlying = underlying
        self.spot = spot
        self.contracts = list(contracts or [])
        expiration = date.today() + timedelta(days=30)
        self.series = (
            [OptionSeries(underlying, expiration + timedelta(days=7)),
             OptionSeries(underlying, expiration)]
            if series is None else series
        )
        self.failing_unsubscribe = set(failing_unsubscribe)
        self.callbacks = {}
        self.released = []

    def list_expiration_series(self, underlying):
        return self.series if underlying == self.underlying else []

    def list_strikes(self, series):
        return list(self.contracts)

    def subscribe(self, contract, callback):
        self.callbacks[contract.symbol] = callback

        def release():
            if contract.symbol in self.failing_unsubscribe:
                raise FailingUnsubscribe(contract.symbol)
            self.callbacks.pop(contract.symbol, None)
            self.released.append(contract.symbol)

        return Subscription(contract, release)

    def last_price(self, underlying):
        return self.spot

    def push(self, symbol):
        """Simulate a quote update for one contract"""
        callback = self.callbacks.get(symbol)
        if callback:
            contract = next(c for c in self.contracts if c.symbol == symbol)
            callback(contract)


def make_contract(strike, option_type=OptionType.CALL, ask=5.0, open_interest=500, **kwargs):
    letter = 'C' if option_type is OptionType.CALL else 'P'
    return ContractDescriptor(
        symbol=f"SPY {letter}{strike:g}",
        strike=strike,
        option_type=option_type,
        ask=ask,
        open_interest=open_interest,
        **kwargs
    )


@pytest.fixture
def clean_env(monkeypatch):
    """Remove config override variables from the environment"""
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def chain_contracts():
    """Calls and puts around a 100 spot, plus two strikes outside a 10% band"""
    contracts = []
    for strike in (85.0, 95.0, 100.0, 105.0, 115.0):
        contracts.append(make_contract(strike, OptionType.CALL))
        contracts.append(make_contract(strike, OptionType.PUT))
    return contracts
