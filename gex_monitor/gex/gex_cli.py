#!/usr/bin/env python3
"""
GEX Command Line Interface

Utility for calculating and watching GEX levels from an option chain file.
"""

import argparse
import asyncio
import sys
from dataclasses import replace

import yaml

from gex_monitor.config import ConfigError, load_config
from gex_monitor.gex.gex_scheduler import GEXScheduler
from gex_monitor.ingestion.chain_file_provider import ChainFileProvider
from gex_monitor.utils import get_logger, setup_logging

logger = get_logger(__name__)


def build_scheduler(args) -> GEXScheduler:
    """Create a scheduler over the chain file named on the command line"""
    config = load_config(args.config)
    overrides = {}
    if args.symbol:
        overrides['symbol'] = args.symbol
    if getattr(args, 'threshold', None) is not None:
        overrides['gex_threshold'] = args.threshold * 1e6
    if overrides:
        config = replace(config, **overrides)

    provider = ChainFileProvider(args.chain_file)
    return GEXScheduler(provider, config, alert_sink=lambda line: print(f"⚠️  {line}"))


def calculate_snapshot(scheduler: GEXScheduler):
    """Load the chain and run a single calculation"""
    if not scheduler.load():
        return None

    try:
        quotes, spot = scheduler.snapshot_quotes()
        snapshot = scheduler.calculator.calculate(quotes, spot)
        scheduler.store.publish(snapshot)
    finally:
        scheduler.release_subscriptions()
    return snapshot


def render_summary(scheduler: GEXScheduler, snapshot, limit: int) -> str:
    """Summary text honoring the configured display toggles"""
    return scheduler.analyzer.summarize(
        snapshot,
        scheduler.symbol,
        limit=limit,
        show_levels=scheduler.config.show_gamma_levels,
        show_values=scheduler.config.show_gex_values
    )


def cmd_calculate(args):
    """Calculate GEX for a chain file"""
    scheduler = build_scheduler(args)

    print(f"\n{'='*60}")
    print(f"Calculating GEX for {scheduler.symbol}")
    print(f"{'='*60}")

    snapshot = calculate_snapshot(scheduler)
    if snapshot is None:
        print("❌ No GEX metrics calculated")
        return 1

    print(render_summary(scheduler, snapshot, args.limit))
    return 0


def cmd_levels(args):
    """Find key gamma levels"""
    scheduler = build_scheduler(args)
    snapshot = calculate_snapshot(scheduler)
    if snapshot is None:
        print("❌ No GEX metrics calculated")
        return 1

    levels = scheduler.analyzer.support_resistance(snapshot)

    print(f"\n{'='*60}")
    print(f"KEY GAMMA LEVELS: {scheduler.symbol}")
    print(f"Threshold: ${scheduler.config.gex_threshold / 1e6:.1f}M")
    print(f"{'='*60}\n")

    if levels['support']:
        print("SUPPORT LEVELS (Positive GEX):")
        for strike in levels['support'][:args.limit]:
            print(f"  ${strike:.2f}")
        print()
    else:
        print("No significant support levels found\n")

    if levels['resistance']:
        print("RESISTANCE LEVELS (Negative GEX):")
        for strike in levels['resistance'][:args.limit]:
            print(f"  ${strike:.2f}")
        print()
    else:
        print("No significant resistance levels found\n")

    print(f"{'='*60}\n")
    return 0


async def watch(args) -> int:
    """Run the scheduler, re-reading the chain file every poll interval"""
    scheduler = build_scheduler(args)
    provider = scheduler.provider

    async with scheduler:
        if not scheduler.data_loaded:
            print("❌ Option data unavailable")
            return 1

        run_task = asyncio.create_task(scheduler.run())

        async def poll_file():
            while True:
                await asyncio.sleep(args.poll)
                try:
                    provider.reload()
                except (OSError, ValueError, yaml.YAMLError) as e:
                    logger.warning(f"Failed to reload chain file: {e}")

        poll_task = asyncio.create_task(poll_file())

        try:
            await asyncio.sleep(args.duration)
        finally:
            poll_task.cancel()
            scheduler.stop()
            await asyncio.gather(run_task, poll_task, return_exceptions=True)

    print(render_summary(scheduler, scheduler.get_current_snapshot(), args.limit))
    print(f"Calculations: {scheduler.stats['calculations']}, "
          f"Alerts: {scheduler.stats['alerts']}, "
          f"Coalesced: {scheduler.coordinator.stats['coalesced']}, "
          f"Dropped: {scheduler.coordinator.stats['dropped']}")
    return 0


def cmd_watch(args):
    """Continuously recompute GEX while the chain file changes"""
    return asyncio.run(watch(args))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='gex-monitor',
        description='Gamma Exposure Monitor Command Line Tool',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  %(prog)s calculate chain.yaml
  %(prog)s levels chain.yaml --threshold 5
  %(prog)s watch chain.yaml --duration 60 --poll 2
        '''
    )
    parser.add_argument('--config', default=None, help='Path to monitor config YAML')
    parser.add_argument('--log-level', default=None, help='Logging level (default: LOG_LEVEL or INFO)')

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    def add_common(sub):
        sub.add_argument('chain_file', help='Option chain file (.yaml/.yml/.json)')
        sub.add_argument('--symbol', default=None, help='Underlying symbol (default: from config)')
        sub.add_argument('--threshold', type=float, default=None,
                         help='GEX threshold in millions (default: from config)')
        sub.add_argument('--limit', type=int, default=10, help='Number of levels to show')

    calc_parser = subparsers.add_parser('calculate', help='Calculate GEX once')
    add_common(calc_parser)
    calc_parser.set_defaults(func=cmd_calculate)

    levels_parser = subparsers.add_parser('levels', help='Find key gamma levels')
    add_common(levels_parser)
    levels_parser.set_defaults(func=cmd_levels)

    watch_parser = subparsers.add_parser('watch', help='Recompute while the chain file changes')
    add_common(watch_parser)
    watch_parser.add_argument('--duration', type=float, default=60.0,
                              help='How long to watch in seconds (default: 60)')
    watch_parser.add_argument('--poll', type=float, default=2.0,
                              help='Chain file reload interval in seconds (default: 2)')
    watch_parser.set_defaults(func=cmd_watch)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.log_level:
        setup_logging(args.log_level)

    if not args.command:
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except (ConfigError, FileNotFoundError) as e:
        print(f"\n❌ Error: {e}\n")
        return 1
    except Exception as e:
        print(f"\n❌ Error: {e}\n")
        logger.error(f"Command failed: {e}", exc_info=True)
        return 1


if __name__ == '__main__':
    sys.exit(main())
