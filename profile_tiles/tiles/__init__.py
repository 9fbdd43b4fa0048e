"""
Tile routing and persistence.

Exports:
    TileKey: (lon_bucket, lat_bucket) of a tile
    tile_key_of: Tile of a position
    tile_name: Output name of a tile
    TileAccumulator: Growing row table of one tile
    ChunkTiles: Accumulators of one processing chunk
    write_tile: Sort, persist and discard one tile
    flush_chunk: Persist every non-empty tile of a chunk
"""

from profile_tiles.tiles.router import (
    ChunkTiles,
    TileAccumulator,
    TileKey,
    TileState,
    tile_key_of,
    tile_name,
)
from profile_tiles.tiles.writer import flush_chunk, write_tile

__all__ = [
    # Router exports
    "ChunkTiles",
    "TileAccumulator",
    "TileKey",
    "TileState",
    "tile_key_of",
    "tile_name",
    # Writer exports
    "flush_chunk",
    "write_tile",
]
