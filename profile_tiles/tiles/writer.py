"""
profile-tiles Tile Writer

Finalizes a processing chunk: every non-empty tile accumulator is sorted by
(time, station_id, depth), written to one netCDF table named after the
tile's lower-left corner, and discarded.

Output layout:
    OUTPUT_DIR/<YYYY>/<MM>/<lon>E_<lat>N.nc

Files are written to a temporary sibling and renamed into place, so a
crashed run never leaves a truncated tile behind. Output errors are fatal
and propagate to the caller.
"""

import os
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import numpy as np
import structlog
import xarray as xr

from profile_tiles.config import Settings
from profile_tiles.stats import RunStatistics
from profile_tiles.tiles.router import ChunkTiles, TileAccumulator, TileState, tile_name

logger = structlog.get_logger(__name__)

COLUMN_ATTRS = {
    "organization": {"long_name": "Organization code from the stream identifier"},
    "platform": {"long_name": "Platform code"},
    "data_type": {"long_name": "Data type code from the stream identifier"},
    "cruise": {"long_name": "Cruise identifier"},
    "station_id": {"long_name": "Station id from the profile file name"},
    "longitude": {"long_name": "Longitude", "units": "degrees_east", "standard_name": "longitude"},
    "latitude": {"long_name": "Latitude", "units": "degrees_north", "standard_name": "latitude"},
    "time": {
        "long_name": "Time",
        "units": "seconds since 1970-01-01T00:00:00Z",
        "standard_name": "time",
    },
    "depth": {"long_name": "Depth", "units": "m", "positive": "down", "standard_name": "depth"},
    "temperature": {
        "long_name": "Sea water temperature",
        "units": "degree_Celsius",
        "standard_name": "sea_water_temperature",
    },
    "salinity": {
        "long_name": "Sea water salinity",
        "units": "PSU",
        "standard_name": "sea_water_practical_salinity",
    },
}

# Positions stay float64 so every row maps back to the tile it was routed to
COLUMN_DTYPES = {
    "station_id": np.int32,
    "longitude": np.float64,
    "latitude": np.float64,
    "time": np.float64,
    "depth": np.float32,
    "temperature": np.float32,
    "salinity": np.float32,
}

# Columns allowed to hold missing values
NULLABLE = ("temperature", "salinity")


def chunk_directory(output_dir: str, year: int, month: int) -> Path:
    return Path(output_dir) / f"{year:04d}" / f"{month:02d}"


def _build_dataset(
    tile: TileAccumulator,
    columns: dict[str, np.ndarray],
    sources: Optional[list[str]],
) -> xr.Dataset:
    data_vars = {}
    for name, values in columns.items():
        dtype = COLUMN_DTYPES.get(name)
        if dtype is None:
            values = values.astype(str)
        else:
            values = values.astype(dtype)
        data_vars[name] = xr.Variable(("row",), values, attrs=COLUMN_ATTRS[name])

    attrs = {
        **tile.metadata,
        "row_count": int(len(columns["time"])),
        "date_created": datetime.now(timezone.utc).isoformat(),
        "featureType": "profile",
        "cdm_data_type": "Profile",
    }
    if sources:
        attrs["source_archives"] = ", ".join(sources)
    return xr.Dataset(data_vars, attrs=attrs)


def write_tile(
    tile: TileAccumulator,
    settings: Settings,
    year: int,
    month: int,
    sources: Optional[list[str]] = None,
) -> Path:
    """
    Sort, persist and discard one tile accumulator.

    Args:
        tile: Accumulator in the ACCUMULATING state
        settings: Run settings (output dir, tiling)
        year: Chunk year
        month: Chunk month
        sources: Archive names that fed this chunk, stored as an attribute

    Returns:
        Path of the written file

    Raises:
        OSError: The output directory or file could not be written
    """
    name = tile_name(tile.key, settings)
    target_dir = chunk_directory(settings.OUTPUT_DIR, year, month)
    target = target_dir / f"{name}.nc"
    tmp = target_dir / f".{name}.nc.tmp"

    columns = tile.begin_flush()
    ds = _build_dataset(tile, columns, sources)

    encoding = {
        name: {"_FillValue": None} for name in COLUMN_DTYPES if name not in NULLABLE
    }
    encoding.update({name: {"_FillValue": np.float32(np.nan)} for name in NULLABLE})

    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        ds.to_netcdf(tmp, engine="netcdf4", encoding=encoding)
        os.replace(tmp, target)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        logger.error("tile_write_failed", tile=name, path=str(target), error=str(e))
        raise
    finally:
        ds.close()

    tile.discard()
    logger.info("tile_written", tile=name, path=str(target), rows=len(columns["time"]))
    return target


def flush_chunk(
    tiles: ChunkTiles,
    settings: Settings,
    stats: RunStatistics,
    sources: Optional[list[str]] = None,
) -> list[Path]:
    """
    Persist every non-empty tile of a chunk.

    Tiles never share state, so with MAX_WORKERS > 1 they are written
    concurrently. The first write error aborts the flush and propagates.

    Returns:
        Written paths, in tile-key order
    """
    log = logger.bind(year=tiles.year, month=tiles.month)
    pending = [tile for tile in tiles if tile.state is TileState.ACCUMULATING and tile.n_rows]

    if not pending:
        log.info("chunk_flush_skipped_no_tiles")
        return []

    log.info("chunk_flush_started", tiles=len(pending))

    if settings.MAX_WORKERS > 1:
        with ThreadPoolExecutor(max_workers=settings.MAX_WORKERS, thread_name_prefix="flush") as executor:
            futures = [
                executor.submit(write_tile, tile, settings, tiles.year, tiles.month, sources)
                for tile in pending
            ]
            paths = [future.result() for future in futures]
    else:
        paths = [write_tile(tile, settings, tiles.year, tiles.month, sources) for tile in pending]

    stats.add("tiles_written", len(paths))
    stats.add("rows_written", sum(tile.n_rows for tile in pending))
    log.info("chunk_flush_complete", tiles=len(paths))
    return paths
