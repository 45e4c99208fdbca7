"""
GEX Calculation Scheduler

Loads the nearest-expiration option chain, subscribes to live quote updates and
recomputes GEX on a timer and on every quote change. Recomputes are single-flight;
results are published to a SnapshotStore and checked for critical levels.
"""

import asyncio
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from gex_monitor.config import MonitorConfig
from gex_monitor.gex.gex_analyzer import GEXAnalyzer
from gex_monitor.gex.gex_calculator import GEXCalculator
from gex_monitor.gex.gex_metrics import ContractQuote, ExposureSnapshot
from gex_monitor.gex.greeks_calculator import GreeksCalculator
from gex_monitor.gex.recompute import RecomputeCoordinator
from gex_monitor.gex.snapshot_store import SnapshotStore
from gex_monitor.ingestion.market_data import (
    ContractDescriptor, MarketDataProvider, OptionSeries, OptionType, Subscription
)
from gex_monitor.utils import get_logger

logger = get_logger(__name__)
alert_logger = get_logger('gex_monitor.alerts')


def log_alert(message: str):
    """Default alert sink"""
    alert_logger.warning(message)


class GEXScheduler:
    """Schedule and run GEX calculations against a live option chain"""

    def __init__(self, provider: MarketDataProvider, config: Optional[MonitorConfig] = None,
                 alert_sink: Optional[Callable[[str], None]] = None,
                 calculator: Optional[GEXCalculator] = None,
                 store: Optional[SnapshotStore] = None):
        """
        Args:
            provider: Market data source
            config: Monitor settings (defaults to MonitorConfig())
            alert_sink: Receives formatted critical level alert lines
            calculator: GEX calculator (built from config when omitted)
            store: Snapshot store shared with readers
        """
        self.provider = provider
        self.config = config or MonitorConfig()
        self.symbol = self.config.symbol

        logger.info(f"Initializing GEX Scheduler for {self.symbol} "
                    f"(interval: {self.config.update_frequency_ms}ms)")

        self.greeks_calc = GreeksCalculator(
            risk_free_rate=self.config.risk_free_rate,
            dividend_yield=self.config.dividend_yield
        )
        self.calculator = calculator or GEXCalculator(self.greeks_calc, self.config.price_quote_type)
        self.analyzer = GEXAnalyzer(gex_threshold=self.config.gex_threshold)
        self.store = store or SnapshotStore()
        self.alert_sink = alert_sink or log_alert
        self.coordinator = RecomputeCoordinator(self._recompute, name=self.symbol)

        self.series: Optional[OptionSeries] = None
        self.contracts: List[ContractDescriptor] = []
        self.current_spot: Optional[float] = None
        self.data_loaded = False

        self._subscriptions: List[Subscription] = []
        self._started = False
        self._stop_event: Optional[asyncio.Event] = None

        self.stats = {
            'calculations': 0,
            'alerts': 0,
            'stale_publishes': 0
        }

    def load(self) -> bool:
        """
        Discover the nearest series, filter strikes around spot and subscribe

        Returns:
            True when contracts were loaded, False when data is unavailable
        """
        series = self.provider.nearest_series(self.symbol)
        if series is None:
            logger.error(f"No option series found for symbol: {self.symbol}")
            return False

        all_strikes = self.provider.list_strikes(series)
        if not all_strikes:
            logger.error(f"No strikes found for nearest series {series.expiration}")
            return False

        spot = self.provider.last_price(self.symbol)
        if not spot or spot <= 0:
            logger.error(f"No last price available for {self.symbol}")
            return False

        contracts = self.calculator.filter_strikes(all_strikes, spot, self.config.strike_range_pct)
        if not contracts:
            logger.error(f"No strikes within {self.config.strike_range_pct:.1f}% "
                         f"of ${spot:.2f} for {series.expiration}")
            return False

        # Reloading replaces the previous subscriptions
        self.release_subscriptions()

        try:
            for contract in contracts:
                self._subscriptions.append(self.provider.subscribe(contract, self._on_quote))
        except Exception:
            self.release_subscriptions()
            raise

        self.series = series
        self.contracts = contracts
        self.current_spot = spot
        self.data_loaded = True

        calls = sum(1 for c in contracts if c.option_type is OptionType.CALL)
        puts = len(contracts) - calls
        logger.info(f"✅ Loaded {calls} calls and {puts} puts for GEX calculation "
                    f"(exp {series.expiration}, spot ${spot:.2f})")
        return True

    def _on_quote(self, contract: ContractDescriptor):
        """Quote/last-trade callback from the provider, possibly on another thread"""
        if self.data_loaded and self._started:
            self.coordinator.request_threadsafe('quote')

    def trigger(self, source: str = 'manual') -> bool:
        """Request a recompute from the event loop thread"""
        if not self.data_loaded:
            return False
        return self.coordinator.request(source)

    def snapshot_quotes(self, now: Optional[datetime] = None) -> Tuple[List[ContractQuote], float]:
        """Read the live contracts into immutable quotes"""
        spot = self.provider.last_price(self.symbol)
        if spot and spot > 0:
            self.current_spot = spot
        spot = self.current_spot

        T = self.greeks_calc.time_to_expiration(self.series.expiration, now)

        quotes = [
            ContractQuote(
                strike=contract.strike,
                option_type=contract.option_type,
                ask=contract.ask,
                open_interest=contract.open_interest,
                spot=spot,
                time_to_expiration=T,
                risk_free_rate=self.config.risk_free_rate,
                dividend_yield=self.config.dividend_yield,
                bid=contract.bid,
                last=contract.last
            )
            for contract in self.contracts
        ]
        return quotes, spot

    async def _recompute(self):
        """One full recompute: solve, aggregate, publish, check levels"""
        quotes, spot = self.snapshot_quotes()

        snapshot = await asyncio.to_thread(self.calculator.calculate, quotes, spot)

        if not self.store.publish(snapshot):
            self.stats['stale_publishes'] += 1
            return

        self.stats['calculations'] += 1
        logger.debug(f"GEX Calculation #{self.stats['calculations']}: "
                     f"{len(snapshot.by_strike)} strikes, Net=${snapshot.net_gex_millions:.1f}M")

        if self.config.alert_on_critical_levels:
            self.check_critical_levels(snapshot)

    def check_critical_levels(self, snapshot: ExposureSnapshot):
        """Send an alert line to the sink when the snapshot has a critical level"""
        alert = self.analyzer.find_critical_level(snapshot)
        if alert is None:
            return None

        self.stats['alerts'] += 1
        self.alert_sink(alert.message())
        return alert

    def get_current_snapshot(self) -> Optional[ExposureSnapshot]:
        """Latest published snapshot, for renderers and other readers"""
        return self.store.current()

    async def start(self) -> bool:
        """Load (if needed) and kick off the first calculation"""
        self.coordinator.bind_loop()
        self._stop_event = asyncio.Event()

        if not self.data_loaded and not self.load():
            return False

        self._started = True
        self.coordinator.request('initial')
        return True

    async def run(self):
        """Main scheduler loop: periodic recompute until stop() or close()"""
        logger.info("="*60)
        logger.info(f"Starting GEX Scheduler for {self.symbol}")
        logger.info("="*60)

        if not self._started and not await self.start():
            logger.warning("Option data unavailable, scheduler not started")
            return

        interval = self.config.update_interval

        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                self.coordinator.request('timer')

        logger.info(f"GEX Scheduler stopped - Calculations: {self.stats['calculations']}, "
                    f"Alerts: {self.stats['alerts']}, "
                    f"Failures: {self.coordinator.stats['failures']}")

    def stop(self):
        """Ask run() to exit after the current interval wait"""
        if self._stop_event is not None:
            self._stop_event.set()

    def release_subscriptions(self):
        """Best-effort unsubscribe; a failing release never stops the others"""
        subscriptions, self._subscriptions = self._subscriptions, []

        for subscription in subscriptions:
            try:
                subscription.unsubscribe()
            except Exception as e:
                logger.warning(f"Failed to unsubscribe {subscription.contract.symbol}: {e}")

    async def close(self):
        """Stop scheduling, finish the in-flight run and release subscriptions"""
        self.stop()
        self._started = False
        self.data_loaded = False

        try:
            await self.coordinator.close()
        except Exception as e:
            logger.warning(f"Error waiting for in-flight recompute: {e}")

        self.release_subscriptions()
        logger.info(f"GEX Scheduler for {self.symbol} closed")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
