"""
profile-tiles Tile Router & Accumulator

Maps filtered profiles to fixed-size lon/lat tiles and accumulates their
depth rows for one processing chunk (one month, all regions).

Tile membership is a pure function of a profile's clamped position, so
profiles can be routed from any worker thread. Each accumulator has its own
lock; the chunk registry lock only guards get-or-create.
"""

import math
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, NamedTuple

import numpy as np
import structlog

from profile_tiles.config import Settings
from profile_tiles.ingestion.parser import ProfileRecord

logger = structlog.get_logger(__name__)

# Output column order
COLUMNS = (
    "organization",
    "platform",
    "data_type",
    "cruise",
    "station_id",
    "longitude",
    "latitude",
    "time",
    "depth",
    "temperature",
    "salinity",
)


class TileKey(NamedTuple):
    lon_bucket: int
    lat_bucket: int


class TileState(str, Enum):
    EMPTY = "empty"
    ACCUMULATING = "accumulating"
    FLUSHING = "flushing"
    DISCARDED = "discarded"


def _bucket(value: float, minimum: float, maximum: float, size: float) -> int:
    clamped = min(max(value, minimum), math.nextafter(maximum, minimum))
    return int(math.floor((clamped - minimum) / size))


def tile_key_of(longitude: float, latitude: float, settings: Settings) -> TileKey:
    """
    Tile of a position.

    Values at or beyond the domain maximum clamp into the last bucket;
    values below the minimum clamp into the first.
    """
    size = settings.TILE_SIZE_DEGREES
    return TileKey(
        _bucket(longitude, settings.MIN_LON, settings.MAX_LON, size),
        _bucket(latitude, settings.MIN_LAT, settings.MAX_LAT, size),
    )


def tile_origin(key: TileKey, settings: Settings) -> tuple[float, float]:
    """Lower-left (lon, lat) corner of a tile."""
    size = settings.TILE_SIZE_DEGREES
    return (
        settings.MIN_LON + key.lon_bucket * size,
        settings.MIN_LAT + key.lat_bucket * size,
    )


def tile_name(key: TileKey, settings: Settings) -> str:
    """Deterministic output name, e.g. '-180E_-90N'."""
    lon, lat = tile_origin(key, settings)
    return f"{lon:g}E_{lat:g}N"


@dataclass
class TileAccumulator:
    """
    Growing table of depth rows for one tile within one chunk.

    Rows arrive per profile as column blocks and are only concatenated when
    the tile is flushed.
    """
    key: TileKey
    metadata: dict[str, Any] = field(default_factory=dict)
    state: TileState = TileState.EMPTY
    n_rows: int = 0
    _blocks: dict[str, list[np.ndarray]] = field(
        default_factory=lambda: {name: [] for name in COLUMNS}
    )
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def append(self, record: ProfileRecord) -> int:
        """Append every level of a filtered profile, broadcasting its scalars."""
        n = record.n_levels
        if n == 0:
            return 0

        scalars = {
            "organization": np.full(n, record.organization, dtype=object),
            "platform": np.full(n, record.platform, dtype=object),
            "data_type": np.full(n, record.data_type, dtype=object),
            "cruise": np.full(n, record.cruise, dtype=object),
            "station_id": np.full(n, record.station_id, dtype=np.int64),
            "longitude": np.full(n, record.longitude, dtype=np.float64),
            "latitude": np.full(n, record.latitude, dtype=np.float64),
            "time": np.full(n, record.time, dtype=np.int64),
            "depth": record.depth.values,
            "temperature": record.temperature.values,
            "salinity": record.salinity.values,
        }

        with self._lock:
            if self.state in (TileState.FLUSHING, TileState.DISCARDED):
                raise RuntimeError(f"tile {self.key} already flushed in this chunk")
            for name in COLUMNS:
                self._blocks[name].append(scalars[name])
            self.n_rows += n
            self.state = TileState.ACCUMULATING
        return n

    def begin_flush(self) -> dict[str, np.ndarray]:
        """
        Move to FLUSHING and return the rows sorted by (time, station_id, depth).
        """
        with self._lock:
            if self.state is not TileState.ACCUMULATING:
                raise RuntimeError(f"tile {self.key} cannot flush from state {self.state.value}")
            self.state = TileState.FLUSHING
            columns = {name: np.concatenate(self._blocks[name]) for name in COLUMNS}

        order = np.lexsort((columns["depth"], columns["station_id"], columns["time"]))
        return {name: values[order] for name, values in columns.items()}

    def discard(self) -> None:
        with self._lock:
            self._blocks = {name: [] for name in COLUMNS}
            self.state = TileState.DISCARDED


class ChunkTiles:
    """Accumulators of one chunk, keyed by TileKey and created on first use."""

    def __init__(self, year: int, month: int, settings: Settings):
        self.year = year
        self.month = month
        self.settings = settings
        self._tiles: dict[TileKey, TileAccumulator] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._tiles)

    def __iter__(self) -> Iterator[TileAccumulator]:
        with self._lock:
            tiles = sorted(self._tiles.values(), key=lambda t: t.key)
        return iter(tiles)

    def get_or_create(self, key: TileKey, source: str) -> TileAccumulator:
        with self._lock:
            tile = self._tiles.get(key)
            if tile is None:
                lon, lat = tile_origin(key, self.settings)
                size = self.settings.TILE_SIZE_DEGREES
                tile = TileAccumulator(
                    key=key,
                    metadata={
                        "year": self.year,
                        "month": self.month,
                        "tile_size_degrees": size,
                        "geospatial_lon_min": lon,
                        "geospatial_lon_max": lon + size,
                        "geospatial_lat_min": lat,
                        "geospatial_lat_max": lat + size,
                        "first_source": source,
                    },
                )
                self._tiles[key] = tile
                logger.debug("tile_created", tile=tile_name(key, self.settings), source=source)
            return tile

    def route(self, record: ProfileRecord) -> int:
        """
        Append a filtered profile's rows to its tile.

        A profile with no surviving rows creates and touches nothing.

        Returns:
            Number of rows appended
        """
        if record.n_levels == 0:
            return 0
        key = tile_key_of(record.longitude, record.latitude, self.settings)
        return self.get_or_create(key, record.source).append(record)
