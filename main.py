"""
Main entry point: export npm download counts per version as OTLP metrics.

Runs every configured package once and exits; schedule it externally
(cron, a Kubernetes CronJob, a systemd timer).
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import List, Optional

from dotenv import load_dotenv

# Add project root to PYTHONPATH so imports work when running this script directly
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from core.config import load_settings
from core.exceptions import ExporterError
from core.pipeline_orchestrator import run_all

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="npm-downloads-exporter",
        description="Export npm download counts per package version as OTLP metrics.",
    )
    parser.add_argument("--config", help="YAML config file (default: $EXPORTER_CONFIG)")
    parser.add_argument("--dry-run", action="store_true", help="Log data points instead of exporting them")
    parser.add_argument("--log-level", help="Logging level (default: $LOG_LEVEL or INFO)")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Run once; return the process exit status."""
    # Load .env file
    load_dotenv()
    args = parse_args(argv)

    # Logging is configured before settings so config errors are reported too
    logging.basicConfig(
        level=(args.log_level or os.getenv("LOG_LEVEL") or "INFO").upper(),
        format=LOG_FORMAT,
    )
    logger = logging.getLogger("npm_downloads_exporter")

    try:
        settings = load_settings(args.config)
        if args.log_level is None:
            logging.getLogger().setLevel(settings.log_level)
        logger.info(f"Exporting downloads for: {', '.join(settings.packages)}")
        total = asyncio.run(run_all(settings, dry_run=args.dry_run))
    except ExporterError as e:
        logger.error(f"{type(e).__name__}: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1

    logger.info(f"Done: {total} records across {len(settings.packages)} package(s)")
    return 0


def run() -> None:
    """Console-script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
