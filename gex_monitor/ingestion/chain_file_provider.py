"""
Chain File Provider

MarketDataProvider backed by a YAML or JSON option-chain file. Used by the CLI
and for offline runs. Calling reload() re-reads the file, updates the live
contract descriptors in place and notifies subscribers of changed contracts.

File layout:

    underlying: SPY
    spot: 450.25
    expirations:
      - expiration: 2026-10-23
        contracts:
          - {strike: 450, type: call, ask: 5.20, bid: 5.00, open_interest: 1200}
          - {strike: 450, type: put, ask: 4.80, bid: 4.60, open_interest: 900}
"""

import json
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import yaml
from dateutil import parser as date_parser

from gex_monitor.ingestion.market_data import (
    ContractDescriptor, MarketDataProvider, OptionSeries, OptionType,
    QuoteCallback, Subscription
)
from gex_monitor.utils import get_logger

logger = get_logger(__name__)

ContractKey = Tuple[date, float, OptionType]


def _parse_expiration(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date_parser.parse(str(value)).date()


class ChainFileProvider(MarketDataProvider):
    """Serve an option chain loaded from disk"""

    def __init__(self, path):
        """
        Args:
            path: Path to a .yaml/.yml or .json chain file
        """
        self.path = Path(path)
        self.underlying: Optional[str] = None
        self.spot: Optional[float] = None

        self._series: Dict[date, OptionSeries] = {}
        self._contracts: Dict[ContractKey, ContractDescriptor] = {}
        self._subscribers: Dict[int, Tuple[ContractDescriptor, QuoteCallback]] = {}
        self._next_id = 0
        self._lock = threading.Lock()

        self.reload()

    def _read_file(self) -> dict:
        if not self.path.exists():
            logger.error(f"Chain file not found: {self.path}")
            raise FileNotFoundError(f"Chain file not found: {self.path}")

        with open(self.path, 'r') as f:
            if self.path.suffix.lower() == '.json':
                data = json.load(f)
            else:
                data = yaml.safe_load(f)

        if not isinstance(data, dict):
            raise ValueError(f"Chain file {self.path} must contain a mapping")
        return data

    def reload(self) -> int:
        """
        Re-read the chain file

        Series and contracts missing from the file are dropped. A dropped
        contract is zeroed (no ask, no open interest) so its subscribers stop
        contributing exposure.

        Returns:
            Number of subscribed contracts that were notified
        """
        data = self._read_file()

        changed: List[ContractDescriptor] = []
        seen_series: Dict[date, OptionSeries] = {}
        seen_keys = set()

        with self._lock:
            self.underlying = str(data.get('underlying', '')).upper() or None
            self.spot = float(data['spot']) if data.get('spot') is not None else None

            for entry in data.get('expirations') or []:
                expiration = _parse_expiration(entry['expiration'])
                seen_series[expiration] = self._series.get(expiration) or OptionSeries(
                    underlying=self.underlying, expiration=expiration
                )

                for row in entry.get('contracts') or []:
                    option_type = OptionType.parse(row['type'])
                    strike = float(row['strike'])
                    key = (expiration, strike, option_type)
                    seen_keys.add(key)

                    fields = {
                        'ask': float(row.get('ask', 0) or 0),
                        'bid': float(row.get('bid', 0) or 0),
                        'last': float(row.get('last', 0) or 0),
                        'open_interest': int(row.get('open_interest', 0) or 0),
                    }

                    contract = self._contracts.get(key)
                    if contract is None:
                        symbol = row.get('symbol') or (
                            f"{self.underlying} {expiration:%y%m%d}"
                            f"{option_type.value[0].upper()}{strike:g}"
                        )
                        self._contracts[key] = ContractDescriptor(
                            symbol=symbol, strike=strike, option_type=option_type, **fields
                        )
                        continue

                    if any(getattr(contract, name) != value for name, value in fields.items()):
                        for name, value in fields.items():
                            setattr(contract, name, value)
                        changed.append(contract)

            for key in [k for k in self._contracts if k not in seen_keys]:
                contract = self._contracts.pop(key)
                if contract.ask or contract.bid or contract.last or contract.open_interest:
                    contract.ask = contract.bid = contract.last = 0.0
                    contract.open_interest = 0
                    changed.append(contract)

            self._series = seen_series

        logger.debug(f"Loaded chain file {self.path}: {len(self._series)} series, "
                     f"{len(self._contracts)} contracts")

        return self._notify(changed)

    def _notify(self, changed: List[ContractDescriptor]) -> int:
        with self._lock:
            targets = [
                (contract, callback) for contract, callback in self._subscribers.values()
                if any(contract is c for c in changed)
            ]

        for contract, callback in targets:
            callback(contract)
        return len(targets)

    def list_expiration_series(self, underlying: str) -> Sequence[OptionSeries]:
        if self.underlying and underlying.upper() != self.underlying:
            return []
        with self._lock:
            return sorted(self._series.values(), key=lambda s: s.expiration)

    def list_strikes(self, series: OptionSeries) -> Sequence[ContractDescriptor]:
        with self._lock:
            contracts = [
                contract for (expiration, _, _), contract in self._contracts.items()
                if expiration == series.expiration
            ]
        return sorted(contracts, key=lambda c: (c.strike, c.option_type.value))

    def subscribe(self, contract: ContractDescriptor, callback: QuoteCallback) -> Subscription:
        with self._lock:
            subscription_id = self._next_id
            self._next_id += 1
            self._subscribers[subscription_id] = (contract, callback)

        def release():
            with self._lock:
                self._subscribers.pop(subscription_id, None)

        return Subscription(contract, release)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def last_price(self, underlying: str) -> Optional[float]:
        if self.underlying and underlying.upper() != self.underlying:
            return None
        return self.spot
