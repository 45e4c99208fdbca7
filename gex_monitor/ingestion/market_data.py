"""
Market Data Provider Interface

Contract between the GEX engine and whatever feeds it option-chain data
(series discovery, strike enumeration, live quote updates, spot price).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Callable, Optional, Sequence

from gex_monitor.utils import get_logger

logger = get_logger(__name__)


class OptionType(Enum):
    """Option right"""
    CALL = 'call'
    PUT = 'put'

    @property
    def dealer_sign(self) -> int:
        """
        Sign of dealer gamma exposure.

        Dealers are modeled as net short both calls and puts against customer
        flow: calls count negative (resistance), puts positive (support).
        """
        return -1 if self is OptionType.CALL else 1

    @classmethod
    def parse(cls, value) -> 'OptionType':
        """Accept an OptionType or a case-insensitive 'call'/'put' string"""
        if isinstance(value, OptionType):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Invalid option type: {value!r}") from None


class PriceQuoteType(Enum):
    """Which observed price the implied volatility solver inverts"""
    ASK = 'ask'
    BID = 'bid'
    MID = 'mid'
    LAST = 'last'


@dataclass(frozen=True)
class OptionSeries:
    """One expiration of an underlying's option chain"""
    underlying: str
    expiration: date


@dataclass
class ContractDescriptor:
    """
    Live handle to a single option contract.

    The provider keeps ask/bid/last/open_interest current; the engine only
    reads them when it takes a snapshot.
    """
    symbol: str
    strike: float
    option_type: OptionType
    ask: float = 0.0
    bid: float = 0.0
    last: float = 0.0
    open_interest: int = 0


QuoteCallback = Callable[[ContractDescriptor], None]


class Subscription:
    """
    Handle returned by MarketDataProvider.subscribe.

    unsubscribe() is idempotent; the handle can also be used as a context manager.
    """

    def __init__(self, contract: ContractDescriptor, release: Callable[[], None]):
        self.contract = contract
        self._release = release
        self.active = True

    def unsubscribe(self):
        """Stop receiving updates for this contract"""
        if not self.active:
            return
        self.active = False
        self._release()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.unsubscribe()


class MarketDataProvider(ABC):
    """Source of option-chain data consumed by the GEX scheduler"""

    @abstractmethod
    def list_expiration_series(self, underlying: str) -> Sequence[OptionSeries]:
        """All listed expirations for an underlying"""

    @abstractmethod
    def list_strikes(self, series: OptionSeries) -> Sequence[ContractDescriptor]:
        """All contracts (calls and puts) of one expiration"""

    @abstractmethod
    def subscribe(self, contract: ContractDescriptor, callback: QuoteCallback) -> Subscription:
        """Fire callback on every last-trade or quote change of contract"""

    @abstractmethod
    def last_price(self, underlying: str) -> Optional[float]:
        """Last traded price of the underlying"""

    def nearest_series(self, underlying: str) -> Optional[OptionSeries]:
        """Nearest expiration, or None when no series is listed"""
        series = self.list_expiration_series(underlying)
        if not series:
            return None
        return min(series, key=lambda s: s.expiration)
