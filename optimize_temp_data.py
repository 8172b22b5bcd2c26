#!/usr/bin/env python3
"""Pre-aggregate the chart data page files

Reads every page data file in TEMP_DATA_DIR/chart-data (``*.json`` or
``*.json.gz``), computes the daily/weekly/monthly/quarterly/yearly datasets
per chart and writes the results to ``chart-data/aggregated`` together with
``_optimization_summary.json``. The /api/temp-data-aggregated route serves
these files.

With --fetch the page files are first refreshed from the upstream chart
APIs listed in CHART_CONFIGS_DIR/{pageId}.json.
"""

# CRITICAL: Set Windows event loop policy FIRST, before any other imports
import os
import sys

if sys.platform == "win32":
    import asyncio

    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Load environment variables early
from dotenv import load_dotenv

load_dotenv()

import argparse
from pathlib import Path

from api.aggregation.fetcher import refresh_chart_data
from api.aggregation.optimizer import optimize_directory
from api.config import settings


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Pre-aggregate chart data page files")
    parser.add_argument(
        "--source",
        type=Path,
        default=Path(settings.TEMP_DATA_DIR) / "chart-data",
        help="Directory with the page data files (default: TEMP_DATA_DIR/chart-data)",
    )
    parser.add_argument(
        "--configs",
        type=Path,
        default=Path(settings.CHART_CONFIGS_DIR),
        help="Directory with per-page chart configs (default: CHART_CONFIGS_DIR)",
    )
    parser.add_argument(
        "--fetch",
        action="store_true",
        help="Refresh the page files from the upstream chart APIs first",
    )
    args = parser.parse_args(argv)

    if args.fetch:
        print(f"📡 Fetching chart data for the pages in {args.configs}")
        fetched = refresh_chart_data(args.configs, args.source, optimize=False)
        print(f"Fetched {fetched['successfulFetches']}/{fetched['totalCharts']} charts ({fetched['successRate']})")

    if not args.source.is_dir():
        print(f"❌ Source directory not found: {args.source}")
        return 1

    print(f"🔧 Optimizing page files in {args.source}")
    summary = optimize_directory(args.source, args.configs)

    print("\nOptimization completed:")
    print(f"Files processed: {summary['totalFiles']}")
    print(f"Size: {summary['originalSizeMB']}MB → {summary['optimizedSizeMB']}MB ({summary['totalSizeSavings']})")
    print(f"Data points reduced: {summary['totalPointsReduced']}")
    for result in summary["results"][:5]:
        print(f"  {result['file']}: {result['sizeSavings']}% smaller")
    return 0


if __name__ == "__main__":
    sys.exit(main())
