"""
GEX Analyzer

Critical level detection and trading insights from exposure snapshots.
"""

from typing import List, Optional, Tuple

from gex_monitor.gex.gex_metrics import CriticalAlert, ExposureSnapshot, GammaLevel
from gex_monitor.utils import get_logger

logger = get_logger(__name__)

# Multiple of the GEX threshold a level must exceed to be critical
CRITICAL_MULTIPLIER = 2.0

# Critical levels must be strictly closer than this to spot (percent)
PROXIMITY_PERCENT = 2.0

# Net GEX (millions) beyond which the market regime is no longer neutral
REGIME_THRESHOLD_MILLIONS = 5.0

# Dollar exposure below which a strike is treated as flat for the gamma flip
FLIP_MIN_GEX = 1.0


class GEXAnalyzer:
    """Analyze exposure snapshots for key and critical gamma levels"""

    def __init__(self, gex_threshold: float = 1_000_000):
        """
        Args:
            gex_threshold: Absolute dollar exposure a strike must exceed to matter
        """
        if gex_threshold < 0:
            raise ValueError(f"GEX threshold cannot be negative: {gex_threshold}")
        self.gex_threshold = gex_threshold

    @property
    def critical_threshold(self) -> float:
        return self.gex_threshold * CRITICAL_MULTIPLIER

    def _ranked_strikes(self, snapshot: ExposureSnapshot) -> List[Tuple[float, float]]:
        """
        (strike, gex) above threshold, largest |gex| first.

        Ties on |gex| go to the strike nearest spot, then the lowest strike.
        """
        candidates = [
            (strike, gex) for strike, gex in snapshot.by_strike.items()
            if abs(gex) > self.gex_threshold
        ]
        return sorted(
            candidates,
            key=lambda item: (-abs(item[1]), abs(item[0] - snapshot.spot), item[0])
        )

    def find_critical_level(self, snapshot: Optional[ExposureSnapshot]) -> Optional[CriticalAlert]:
        """
        Check whether the dominant gamma level is critical

        The strike with the largest |gex| above the threshold is critical when
        |gex| > 2 x threshold and it lies strictly within 2% of spot.

        Returns:
            CriticalAlert or None
        """
        if snapshot is None or snapshot.is_empty:
            return None

        ranked = self._ranked_strikes(snapshot)
        if not ranked:
            return None

        strike, gex = ranked[0]
        if not abs(gex) > self.critical_threshold:
            return None

        distance = snapshot.distance_percent(strike)
        if not distance < PROXIMITY_PERCENT:
            logger.debug(f"Max gamma strike {strike:.2f} is {distance:.1f}% from spot, no alert")
            return None

        return CriticalAlert(strike=strike, gex=gex, distance_percent=distance)

    def key_levels(self, snapshot: Optional[ExposureSnapshot], limit: int = 10) -> List[GammaLevel]:
        """
        Strongest gamma levels above the threshold

        Args:
            snapshot: Snapshot to analyze
            limit: Maximum number of levels to return

        Returns:
            GammaLevel list, largest |gex| first
        """
        if snapshot is None:
            return []

        levels = []
        for strike, gex in self._ranked_strikes(snapshot)[:max(limit, 0)]:
            distance = (strike - snapshot.spot) / snapshot.spot * 100
            levels.append(GammaLevel(strike=strike, gex=gex, distance_percent=distance))
        return levels

    def support_resistance(self, snapshot: Optional[ExposureSnapshot]) -> dict:
        """
        Split threshold levels into support (positive GEX) and resistance (negative GEX)

        Returns:
            Dictionary with 'support' and 'resistance' strike lists, nearest to spot first
        """
        if snapshot is None:
            return {'support': [], 'resistance': []}

        levels = self.key_levels(snapshot, limit=len(snapshot.by_strike))
        by_distance = sorted(levels, key=lambda lvl: (abs(lvl.distance_percent), lvl.strike))

        return {
            'support': [lvl.strike for lvl in by_distance if lvl.kind == 'Support'],
            'resistance': [lvl.strike for lvl in by_distance if lvl.kind == 'Resistance']
        }

    @staticmethod
    def market_regime(snapshot: Optional[ExposureSnapshot]) -> str:
        """
        SUPPRESSED when net GEX is strongly positive (dealer hedging dampens moves),
        VOLATILE when strongly negative, NEUTRAL otherwise.
        """
        if snapshot is None:
            return 'NEUTRAL'

        net_millions = snapshot.net_gex_millions
        if net_millions > REGIME_THRESHOLD_MILLIONS:
            return 'SUPPRESSED'
        if net_millions < -REGIME_THRESHOLD_MILLIONS:
            return 'VOLATILE'
        return 'NEUTRAL'

    @staticmethod
    def find_gamma_flip(snapshot: Optional[ExposureSnapshot]) -> Optional[float]:
        """
        Find the strike where net GEX changes sign

        Strikes with |gex| at or below FLIP_MIN_GEX (calls and puts that
        cancel out) are ignored.
        """
        if snapshot is None:
            return None

        strikes = sorted(k for k, v in snapshot.by_strike.items() if abs(v) > FLIP_MIN_GEX)

        for i in range(len(strikes) - 1):
            strike1 = strikes[i]
            strike2 = strikes[i + 1]

            net1 = snapshot.by_strike[strike1]
            net2 = snapshot.by_strike[strike2]

            # Check for sign change
            if (net1 > 0 and net2 < 0) or (net1 < 0 and net2 > 0):
                # Linear interpolation
                return strike1 + (strike2 - strike1) * abs(net1) / (abs(net1) + abs(net2))

        return None

    def summarize(self, snapshot: Optional[ExposureSnapshot], symbol: str = '',
                  limit: int = 10, show_levels: bool = True,
                  show_values: bool = True) -> str:
        """
        Return human-readable summary of a snapshot

        Args:
            show_levels: Include the key gamma levels section
            show_values: Include dollar GEX amounts (totals and per level)
        """
        if snapshot is None:
            return f"No GEX data available for {symbol}".rstrip()

        lines = [
            f"\n{'='*60}",
            f"GEX SUMMARY: {symbol}".rstrip(),
            f"{'='*60}",
            f"Computed: {snapshot.computed_at.strftime('%Y-%m-%d %H:%M:%S %Z')}",
            f"",
            f"CURRENT STATE:",
            f"  Spot Price: ${snapshot.spot:.2f}",
            f"  Market Regime: {self.market_regime(snapshot)}",
            f"  Strikes: {len(snapshot.by_strike)} ({snapshot.contracts_used} contracts)",
            f"  ",
            f"GAMMA EXPOSURE:",
        ]

        if show_values:
            lines.extend([
                f"  Net GEX: ${snapshot.net_gex_millions:+.1f}M",
                f"  Pos: ${snapshot.total_positive_gex_millions:.1f}M | "
                f"Neg: ${abs(snapshot.total_negative_gex_millions):.1f}M",
            ])

        flip = self.find_gamma_flip(snapshot)
        if flip is not None:
            lines.append(f"  Gamma Flip Point: ${flip:.2f}")

        if show_levels:
            levels = self.key_levels(snapshot, limit)
            lines.extend([f"  ", f"KEY LEVELS (> ${self.gex_threshold / 1e6:.1f}M):"])
            if levels:
                lines.extend(f"  {level.describe(show_value=show_values)}" for level in levels)
            else:
                lines.append("  None above threshold")

        alert = self.find_critical_level(snapshot)
        if alert:
            lines.extend([f"  ", f"  {alert.message()}"])

        lines.append(f"{'='*60}\n")
        return "\n".join(lines)
