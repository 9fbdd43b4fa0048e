"""
Profile ingestion module.

Exports:
    parse_profile_file: Parse one profile file into a ProfileRecord
    ParseResult: Record or rejection from parsing
    ProfileRecord: One profile's metadata and measurement columns
    MeasurementColumn: Per-level values with flags
    RejectionReason: Why a file produced no record
    filter_profile: Apply flag allow-set and impossible ranges to a record
    expand_region: Expand a region's monthly archive
"""

from profile_tiles.ingestion.archives import ArchiveError, expand_region
from profile_tiles.ingestion.cleaner import filter_profile
from profile_tiles.ingestion.parser import (
    MeasurementColumn,
    ParseResult,
    ProfileRecord,
    RejectionReason,
    parse_profile_file,
)

__all__ = [
    # Archive exports
    "ArchiveError",
    "expand_region",
    # Cleaner exports
    "filter_profile",
    # Parser exports
    "MeasurementColumn",
    "ParseResult",
    "ProfileRecord",
    "RejectionReason",
    "parse_profile_file",
]
