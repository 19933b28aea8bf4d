#!/usr/bin/env python3
"""Command-line interface for the bar cache."""

from __future__ import annotations

import argparse
import sys
from datetime import datetime, time, timezone


def parse_date(date_str: str, end_of_day: bool = False) -> datetime:
    """Parse date string to datetime.

    With ``end_of_day`` the result is the last instant of that date, so an
    end date includes its own session.
    """
    day = datetime.strptime(date_str, "%Y-%m-%d").date()
    return datetime.combine(day, time.max if end_of_day else time(), tzinfo=timezone.utc)


def _print_bars(title: str, bars: list, limit: int) -> None:
    print(f"\n{title}")
    print(f"{'Date':<12} {'Open':>10} {'High':>10} {'Low':>10} {'Close':>10} {'Volume':>14}")
    print("-" * 70)
    shown = bars if limit <= 0 else bars[-limit:]
    for bar in shown:
        print(
            f"{bar.timestamp:%Y-%m-%d}   {bar.open:>10.2f} {bar.high:>10.2f} "
            f"{bar.low:>10.2f} {bar.close:>10.2f} {bar.volume:>14,}"
        )
    if len(shown) < len(bars):
        print(f"   ... {len(bars) - len(shown)} earlier bars not shown")


def cmd_bars(args: argparse.Namespace) -> int:
    """Load and print bars for one symbol."""
    from barcache.commands.get_bars import (DEFAULT_CACHE_DIR, build_provider,
                                            configure_logging)
    from barcache.exceptions import BarCacheError
    from barcache.types import DateRange, GetBarsConfig, Instrument

    configure_logging(args.log_level)

    try:
        start_date = parse_date(args.start)
        end_date = parse_date(args.end, end_of_day=True)
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    instrument = Instrument.from_symbol(args.symbol)
    source_params = {"directory": args.csv_dir} if args.csv_dir else {}

    provider = None
    try:
        config = GetBarsConfig(
            instruments=[instrument],
            date_range=DateRange(start=start_date, end=end_date),
            data_source="csv" if args.csv_dir else "yahoo",
            source_params=source_params,
            cache_dir=args.cache_dir or DEFAULT_CACHE_DIR,
            fetch_timeout=args.timeout,
        )
        provider = build_provider(config)
        bars = provider.get_bars(instrument, start_date, end_date)
    except (ValueError, BarCacheError) as e:
        print(f"Error: {e}")
        return 1
    finally:
        if provider is not None:
            provider.close()

    _print_bars(f"{args.symbol}: {len(bars)} bars", bars, args.limit)
    return 0


def cmd_fetch(args: argparse.Namespace) -> int:
    """Load every instrument of a configuration file."""
    from barcache.commands.get_bars import (build_provider, configure_logging,
                                            load_get_bars_config)
    from barcache.exceptions import BarCacheError, ConfigError

    try:
        config = load_get_bars_config(args.config)
        provider = build_provider(config)
    except ConfigError as e:
        print(f"Configuration error: {e}")
        return 1

    configure_logging(args.log_level or config.log_level)

    print("=" * 60)
    print("FETCH BARS")
    print("=" * 60)
    print(f"Instruments: {', '.join(i.nickname for i in config.instruments)}")
    print(f"Period:      {config.date_range}")
    print(f"Source:      {config.data_source}")
    print(f"Cache:       {config.cache_dir}")

    try:
        results = provider.get_many(
            config.instruments,
            config.date_range.start,
            config.date_range.end,
            max_workers=config.max_workers,
        )
    finally:
        provider.close()

    failures = 0
    print()
    for nickname, result in results.items():
        if isinstance(result, BarCacheError):
            failures += 1
            print(f"   {nickname:<12} FAILED  {result}")
        else:
            print(
                f"   {nickname:<12} {len(result):>6} bars  "
                f"{result[0].timestamp:%Y-%m-%d} .. {result[-1].timestamp:%Y-%m-%d}"
            )

    return 1 if failures else 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Cached daily price bars",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Bars command
    bars_parser = subparsers.add_parser("bars", help="Print bars for one symbol")
    bars_parser.add_argument("symbol", help="Stock symbol (e.g., AAPL)")
    bars_parser.add_argument(
        "--start", default="2023-01-01", help="Start date (YYYY-MM-DD)"
    )
    bars_parser.add_argument(
        "--end", default="2024-01-01", help="End date (YYYY-MM-DD)"
    )
    bars_parser.add_argument("--cache-dir", help="Disk cache directory")
    bars_parser.add_argument(
        "--csv-dir", help="Read {symbol}.csv files from this folder instead of Yahoo"
    )
    bars_parser.add_argument(
        "--timeout", type=float, default=30.0, help="Fetch timeout in seconds"
    )
    bars_parser.add_argument(
        "-n", "--limit", type=int, default=20, help="Bars to print, 0 for all"
    )
    bars_parser.add_argument("--log-level", default="WARNING", help="Logging level")

    # Fetch command
    fetch_parser = subparsers.add_parser(
        "fetch", help="Load all instruments of a configuration file"
    )
    fetch_parser.add_argument("config", help="Path to YAML configuration file")
    fetch_parser.add_argument("--log-level", help="Override the configured logging level")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "bars":
        return cmd_bars(args)
    elif args.command == "fetch":
        return cmd_fetch(args)

    return 0


if __name__ == "__main__":
    sys.exit(main())
