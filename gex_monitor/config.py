"""
Monitor Configuration

Loads monitor settings from a YAML file, with .env / environment overrides.
"""

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv

from gex_monitor.ingestion.market_data import PriceQuoteType
from gex_monitor.utils import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = "config/monitor_config.yaml"

# Environment variable -> config field
ENV_OVERRIDES = {
    'GEX_SYMBOL': 'symbol',
    'GEX_THRESHOLD': 'gex_threshold',
    'GEX_UPDATE_FREQUENCY_MS': 'update_frequency_ms',
    'GEX_RISK_FREE_RATE': 'risk_free_rate',
    'GEX_DIVIDEND_YIELD': 'dividend_yield',
    'GEX_STRIKE_RANGE_PCT': 'strike_range_pct',
}


class ConfigError(ValueError):
    """Invalid or missing monitor configuration"""


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass(frozen=True)
class MonitorConfig:
    """Settings consumed by the GEX scheduler"""
    symbol: str = 'SPY'
    strike_range_pct: float = 10.0          # Strikes within +/- this % of spot
    gex_threshold: float = 1_000_000        # Absolute dollar exposure
    update_frequency_ms: int = 2000         # Periodic recompute interval
    risk_free_rate: float = 0.05
    dividend_yield: float = 0.0
    price_quote_type: PriceQuoteType = PriceQuoteType.ASK
    show_gamma_levels: bool = True          # Rendering only
    show_gex_values: bool = True            # Rendering only
    alert_on_critical_levels: bool = True

    def __post_init__(self):
        """Coerce types and validate"""
        try:
            object.__setattr__(self, 'symbol', str(self.symbol).upper())
            object.__setattr__(self, 'strike_range_pct', float(self.strike_range_pct))
            object.__setattr__(self, 'gex_threshold', float(self.gex_threshold))
            object.__setattr__(self, 'update_frequency_ms', int(self.update_frequency_ms))
            object.__setattr__(self, 'risk_free_rate', float(self.risk_free_rate))
            object.__setattr__(self, 'dividend_yield', float(self.dividend_yield))
            if not isinstance(self.price_quote_type, PriceQuoteType):
                object.__setattr__(self, 'price_quote_type',
                                   PriceQuoteType(str(self.price_quote_type).lower()))
            for name in ('show_gamma_levels', 'show_gex_values', 'alert_on_critical_levels'):
                object.__setattr__(self, name, _parse_bool(getattr(self, name)))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid monitor configuration: {e}") from e

        if not self.symbol:
            raise ConfigError("Symbol is required")
        if self.strike_range_pct <= 0:
            raise ConfigError(f"strike_range_pct must be positive: {self.strike_range_pct}")
        if self.gex_threshold < 0:
            raise ConfigError(f"gex_threshold cannot be negative: {self.gex_threshold}")
        if self.update_frequency_ms <= 0:
            raise ConfigError(f"update_frequency_ms must be positive: {self.update_frequency_ms}")

    @property
    def update_interval(self) -> float:
        """Recompute interval in seconds"""
        return self.update_frequency_ms / 1000

    @classmethod
    def from_dict(cls, data: dict) -> 'MonitorConfig':
        """Build from a mapping, ignoring unknown keys"""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(sorted(unknown))}")
        return cls(**{k: v for k, v in data.items() if k in known})


def load_config(config_path: Optional[str] = None, env_file: Optional[str] = None) -> MonitorConfig:
    """
    Load monitor configuration

    Args:
        config_path: YAML file path. Defaults to config/monitor_config.yaml when it
            exists; an explicitly given path must exist.
        env_file: Optional .env file to load before reading overrides

    Returns:
        MonitorConfig
    """
    load_dotenv(env_file)

    data = {}
    path = Path(config_path or DEFAULT_CONFIG_PATH)

    if path.exists():
        logger.debug(f"Loading configuration from {path}...")
        with open(path, 'r') as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ConfigError(f"Configuration file {path} must contain a mapping")
        data = raw.get('monitor', raw) or {}
    elif config_path:
        logger.error(f"Configuration file not found: {config_path}")
        raise ConfigError(f"Configuration file not found: {config_path}")
    else:
        logger.debug("No configuration file, using defaults")

    config = MonitorConfig.from_dict(data)

    overrides = {}
    for env_name, field_name in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            overrides[field_name] = value
            logger.debug(f"{field_name} overridden by {env_name}")

    if overrides:
        config = replace(config, **overrides)

    logger.info(f"✅ Configuration loaded for {config.symbol} "
                f"(threshold ${config.gex_threshold / 1e6:.1f}M, "
                f"interval {config.update_frequency_ms}ms)")
    return config
