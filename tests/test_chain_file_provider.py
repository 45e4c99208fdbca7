"""
Tests for the chain file provider and the command line tool
"""

import json
import logging
import os
import re
import threading
from datetime import date, timedelta

import pytest
import yaml

from gex_monitor.config import MonitorConfig
from gex_monitor.gex.gex_cli import calculate_snapshot, main
from gex_monitor.gex.gex_scheduler import GEXScheduler
from gex_monitor.gex.greeks_calculator import GreeksCalculator
from gex_monitor.ingestion.chain_file_provider import ChainFileProvider
from gex_monitor.ingestion.market_data import OptionType


def chain_data(spot=100.0, days=30, open_interest=1000):
    """Chain priced at a flat 20% volatility"""
    greeks = GreeksCalculator(risk_free_rate=0.05)
    expiration = date.today() + timedelta(days=days)
    T = greeks.time_to_expiration(expiration)

    contracts = []
    for strike in (90.0, 95.0, 99.0, 100.0, 101.0, 105.0, 110.0, 130.0):
        for option_type in (OptionType.CALL, OptionType.PUT):
            price = greeks.bs_price(spot, strike, T, 0.20, option_type)
            contracts.append({
                'strike': strike,
                'type': option_type.value,
                'ask': round(price, 6),
                'bid': round(price * 0.95, 6),
                'open_interest': open_interest,
            })

    return {
        'underlying': 'SPY',
        'spot': spot,
        'expirations': [
            {'expiration': (expiration + timedelta(days=7)).isoformat(), 'contracts': contracts[:4]},
            {'expiration': expiration.isoformat(), 'contracts': contracts},
        ]
    }


@pytest.fixture
def chain_file(tmp_path):
    path = tmp_path / "chain.yaml"
    path.write_text(yaml.safe_dump(chain_data()))
    return path


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "monitor_config.yaml"
    path.write_text(yaml.safe_dump({'monitor': {'symbol': 'SPY', 'gex_threshold': 1_000_000}}))
    return str(path)


class TestChainFileProvider:

    def test_loads_yaml(self, chain_file):
        provider = ChainFileProvider(chain_file)

        assert provider.underlying == 'SPY'
        assert provider.last_price('spy') == 100.0
        assert len(provider.list_expiration_series('SPY')) == 2

        series = provider.nearest_series('SPY')
        assert series.expiration == date.today() + timedelta(days=30)

        contracts = provider.list_strikes(series)
        assert len(contracts) == 16
        assert [c.strike for c in contracts][:2] == [90.0, 90.0]

    def test_loads_json(self, tmp_path):
        path = tmp_path / "chain.json"
        path.write_text(json.dumps(chain_data()))
        provider = ChainFileProvider(path)

        assert provider.nearest_series('SPY') is not None

    def test_other_underlying_has_no_data(self, chain_file):
        provider = ChainFileProvider(chain_file)
        assert provider.list_expiration_series('QQQ') == []
        assert provider.last_price('QQQ') is None
        assert provider.nearest_series('QQQ') is None

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ChainFileProvider(tmp_path / "missing.yaml")

    def test_reload_notifies_changed_contracts(self, chain_file):
        provider = ChainFileProvider(chain_file)
        contracts = provider.list_strikes(provider.nearest_series('SPY'))
        received = []
        for contract in contracts:
            provider.subscribe(contract, received.append)

        assert provider.reload() == 0

        chain_file.write_text(yaml.safe_dump(chain_data(open_interest=2000)))
        assert provider.reload() == 16
        assert all(c.open_interest == 2000 for c in received)
        # Descriptors are updated in place
        assert contracts[0].open_interest == 2000

    def test_unsubscribe_stops_notifications(self, chain_file):
        provider = ChainFileProvider(chain_file)
        contract = provider.list_strikes(provider.nearest_series('SPY'))[0]
        received = []

        with provider.subscribe(contract, received.append) as subscription:
            assert provider.subscriber_count == 1
        assert not subscription.active
        assert provider.subscriber_count == 0

        chain_file.write_text(yaml.safe_dump(chain_data(open_interest=3000)))
        provider.reload()
        assert received == []

    def test_reload_drops_removed_series_and_contracts(self, tmp_path):
        near = date.today() + timedelta(days=3)
        far = date.today() + timedelta(days=7)
        row = {'type': 'call', 'ask': 5.0, 'open_interest': 500}
        path = tmp_path / "chain.yaml"
        path.write_text(yaml.safe_dump({
            'underlying': 'SPY',
            'spot': 100.0,
            'expirations': [
                {'expiration': near.isoformat(), 'contracts': [dict(row, strike=100.0)]},
                {'expiration': far.isoformat(),
                 'contracts': [dict(row, strike=100.0), dict(row, strike=101.0)]},
            ]
        }))
        provider = ChainFileProvider(path)
        far_series = [s for s in provider.list_expiration_series('SPY') if s.expiration == far][0]
        removed = [c for c in provider.list_strikes(far_series) if c.strike == 101.0][0]
        received = []
        provider.subscribe(removed, received.append)

        path.write_text(yaml.safe_dump({
            'underlying': 'SPY',
            'spot': 100.0,
            'expirations': [
                {'expiration': far.isoformat(), 'contracts': [dict(row, strike=100.0)]},
            ]
        }))
        assert provider.reload() == 1

        assert [s.expiration for s in provider.list_expiration_series('SPY')] == [far]
        assert provider.nearest_series('SPY').expiration == far
        assert [c.strike for c in provider.list_strikes(far_series)] == [100.0]
        # The subscriber sees the dropped contract with no quote and no open interest
        assert received == [removed]
        assert (removed.ask, removed.open_interest) == (0.0, 0)


class TestCommandLine:

    def test_calculate(self, chain_file, config_file, capsys):
        assert main(['--config', config_file, 'calculate', str(chain_file)]) == 0

        out = capsys.readouterr().out
        assert "GEX SUMMARY: SPY" in out
        assert "Market Regime" in out

    def test_levels(self, chain_file, config_file, capsys):
        assert main(['--config', config_file, 'levels', str(chain_file), '--threshold', '0.5']) == 0
        assert "KEY GAMMA LEVELS: SPY" in capsys.readouterr().out

    def test_missing_chain_file(self, tmp_path, config_file, capsys):
        assert main(['--config', config_file, 'calculate', str(tmp_path / "none.yaml")]) == 1
        assert "Error" in capsys.readouterr().out

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "gex-monitor" in capsys.readouterr().out

    def test_calculate_releases_subscriptions(self, chain_file):
        scheduler = GEXScheduler(ChainFileProvider(chain_file), MonitorConfig())
        snapshot = calculate_snapshot(scheduler)

        assert snapshot is not None
        assert scheduler.get_current_snapshot() is snapshot
        assert scheduler.provider.subscriber_count == 0

    def test_display_toggles(self, chain_file, tmp_path, capsys):
        config = tmp_path / "quiet.yaml"
        config.write_text(yaml.safe_dump({'monitor': {
            'symbol': 'SPY', 'show_gamma_levels': False, 'show_gex_values': False
        }}))

        assert main(['--config', str(config), 'calculate', str(chain_file)]) == 0

        out = capsys.readouterr().out
        assert "GEX SUMMARY: SPY" in out
        assert "Net GEX" not in out
        assert "KEY LEVELS" not in out

    def test_log_level_option(self, chain_file, config_file):
        root = logging.getLogger()
        previous = root.level
        try:
            assert main(['--log-level', 'debug', '--config', config_file,
                         'calculate', str(chain_file)]) == 0
            assert root.level == logging.DEBUG
        finally:
            root.setLevel(previous)

    def test_watch_recomputes_when_chain_file_changes(self, chain_file, tmp_path, capsys, clean_env):
        # The timer never fires within the run, so extra calculations come from quotes
        config = tmp_path / "watch.yaml"
        config.write_text(yaml.safe_dump({'monitor': {'symbol': 'SPY', 'update_frequency_ms': 60_000}}))

        def rewrite_chain():
            staged = tmp_path / "chain.staged.yaml"
            staged.write_text(yaml.safe_dump(chain_data(open_interest=2500)))
            os.replace(staged, chain_file)

        timer = threading.Timer(0.3, rewrite_chain)
        timer.start()
        try:
            code = main(['--config', str(config), 'watch', str(chain_file),
                         '--duration', '1.5', '--poll', '0.05'])
        finally:
            timer.cancel()
            timer.join()

        assert code == 0
        out = capsys.readouterr().out
        assert "GEX SUMMARY: SPY" in out
        calculations = int(re.search(r"Calculations: (\d+)", out).group(1))
        assert calculations >= 2
