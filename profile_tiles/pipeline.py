"""
profile-tiles Consolidation Pipeline

Orchestrates a run: for each (year, month) chunk, expand every region's
archive, parse and filter each profile file, route surviving rows into the
chunk's tiles, then flush all tiles.

Pipeline Steps (process_chunk):
    1. Expand each region archive into a temporary directory
    2. Parse + filter + route every profile file (fan-out when MAX_WORKERS > 1)
    3. Barrier: wait for every file of the chunk
    4. Sort and write every non-empty tile (fan-out when MAX_WORKERS > 1)
    5. Log the chunk's statistics

Per-file failures are counted and logged, never raised. Output write
failures abort the run.
"""

import tempfile
import threading
import traceback
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Iterator, Optional

import structlog

from profile_tiles.config import Settings
from profile_tiles.ingestion.archives import archive_path, expand_region
from profile_tiles.ingestion.cleaner import filter_profile
from profile_tiles.ingestion.parser import parse_profile_file
from profile_tiles.stats import RunStatistics, log_statistics
from profile_tiles.tiles.router import ChunkTiles
from profile_tiles.tiles.writer import flush_chunk

logger = structlog.get_logger(__name__)


def iter_months(settings: Settings) -> Iterator[tuple[int, int]]:
    """Every (year, month) from START to END, inclusive."""
    year, month = settings.START_YEAR, settings.START_MONTH
    while (year, month) <= (settings.END_YEAR, settings.END_MONTH):
        yield year, month
        month += 1
        if month > 12:
            year, month = year + 1, 1


def process_profile(
    file_path: Path,
    archive: str,
    tiles: ChunkTiles,
    settings: Settings,
) -> RunStatistics:
    """
    Parse, filter and route one profile file.

    Owns a fresh RunStatistics so it can run on any worker; the caller
    merges the result.
    """
    stats = RunStatistics()
    try:
        result = parse_profile_file(
            str(file_path),
            tiles.year,
            tiles.month,
            settings,
            stats,
            archive=archive,
        )
        if not result.success:
            return stats

        filtered = filter_profile(result.record, settings, stats)
        stats.add("rows", tiles.route(filtered))
    except Exception as e:
        stats.add("exceptions")
        logger.error(
            "profile_processing_failed",
            source=f"{archive}/{file_path.name}",
            error=str(e),
            traceback=traceback.format_exc(),
        )
    return stats


def _process_files(
    files: list[Path],
    archive: str,
    tiles: ChunkTiles,
    settings: Settings,
    chunk_stats: RunStatistics,
) -> None:
    if settings.MAX_WORKERS == 1:
        for file_path in files:
            chunk_stats.merge(process_profile(file_path, archive, tiles, settings))
        return

    lock = threading.Lock()

    def _work(file_path: Path) -> None:
        stats = process_profile(file_path, archive, tiles, settings)
        with lock:
            chunk_stats.merge(stats)

    with ThreadPoolExecutor(max_workers=settings.MAX_WORKERS, thread_name_prefix="profile") as executor:
        futures = [executor.submit(_work, file_path) for file_path in files]
        # Barrier: every file of this archive is routed before returning
        for future in futures:
            future.result()


def process_chunk(year: int, month: int, settings: Settings) -> RunStatistics:
    """
    Consolidate one (year, month) chunk across all regions.

    Returns:
        Statistics for this chunk only

    Raises:
        OSError: A tile could not be written
    """
    log = logger.bind(year=year, month=month)
    log.info("chunk_started")

    chunk_stats = RunStatistics()
    tiles = ChunkTiles(year, month, settings)
    sources: list[str] = []

    for region in settings.REGIONS:
        archive = archive_path(settings, region, year, month).name
        with tempfile.TemporaryDirectory(prefix=f"{region}{year:04d}{month:02d}_", dir=settings.WORK_DIR) as tmpdir:
            files = expand_region(settings, region, year, month, Path(tmpdir))
            if files is None:
                chunk_stats.add("archives_missing")
                continue

            sources.append(archive)
            chunk_stats.add("archives")
            _process_files(files, archive, tiles, settings, chunk_stats)

    flush_chunk(tiles, settings, chunk_stats, sources=sources)

    log_statistics(chunk_stats, scope="chunk", year=year, month=month)
    log.info("chunk_complete", tiles=len(tiles))
    return chunk_stats


def run(settings: Settings, stats: Optional[RunStatistics] = None) -> RunStatistics:
    """
    Consolidate every chunk from START to END.

    Cumulative statistics, including every impossible-value listing, are
    logged at the end of each year and at the end of the run.

    Args:
        settings: Run settings
        stats: Existing cumulative statistics to append to

    Returns:
        Cumulative statistics for the run
    """
    run_stats = stats if stats is not None else RunStatistics()
    log = logger.bind(
        start=f"{settings.START_YEAR:04d}-{settings.START_MONTH:02d}",
        end=f"{settings.END_YEAR:04d}-{settings.END_MONTH:02d}",
    )
    log.info("run_started", output_dir=settings.OUTPUT_DIR, workers=settings.MAX_WORKERS)

    for year, month in iter_months(settings):
        run_stats.merge(process_chunk(year, month, settings))
        if month == 12 and (year, month) != (settings.END_YEAR, settings.END_MONTH):
            log_statistics(run_stats, scope="year", include_diagnostics=True, year=year)

    log_statistics(run_stats, scope="run", include_diagnostics=True)
    log.info("run_complete")
    return run_stats
