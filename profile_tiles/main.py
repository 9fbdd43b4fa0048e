"""
profile-tiles command-line entry point.

    profile-tiles --start 1990-01 --end 1990-12 --source data/archives --output data/tiles

Options override the matching settings from the environment / .env file.
"""

import argparse
import sys
from typing import Optional

import structlog
from pydantic import ValidationError

from profile_tiles.config import Settings, get_settings
from profile_tiles.logging_config import configure_logging
from profile_tiles.pipeline import run

logger = structlog.get_logger(__name__)


def _year_month(value: str) -> tuple[int, int]:
    try:
        year, month = (int(part) for part in value.split("-"))
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM, got {value!r}")
    if not 1 <= month <= 12:
        raise argparse.ArgumentTypeError(f"month out of range in {value!r}")
    return year, month


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="profile-tiles",
        description="Consolidate monthly profile archives into lon/lat tile tables.",
    )
    parser.add_argument("--start", type=_year_month, help="first month, YYYY-MM")
    parser.add_argument("--end", type=_year_month, help="last month, YYYY-MM")
    parser.add_argument("--source", help="directory holding the regional archives")
    parser.add_argument("--output", help="directory receiving tile files")
    parser.add_argument("--workers", type=int, help="worker threads (1 = sequential)")
    parser.add_argument("--tile-size", type=float, help="tile width/height in degrees")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    overrides = {}
    if args.start:
        overrides["START_YEAR"], overrides["START_MONTH"] = args.start
    if args.end:
        overrides["END_YEAR"], overrides["END_MONTH"] = args.end
    if args.source:
        overrides["SOURCE_DIR"] = args.source
    if args.output:
        overrides["OUTPUT_DIR"] = args.output
    if args.workers is not None:
        overrides["MAX_WORKERS"] = args.workers
    if args.tile_size is not None:
        overrides["TILE_SIZE_DEGREES"] = args.tile_size

    try:
        settings = Settings(**overrides) if overrides else get_settings()
    except ValidationError as e:
        print(f"invalid settings: {e}", file=sys.stderr)
        return 2

    configure_logging(settings)

    try:
        run(settings)
    except OSError as e:
        logger.error("run_aborted", error=str(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
