"""
profile-tiles Quality & Plausibility Filter

Applies the quality-flag allow-set and impossible-value ranges to the
per-level measurements of a parsed profile.

Per depth level:
1. A level whose depth flag is not accepted, or whose depth is missing or
   impossible, is removed.
2. Temperature and salinity are checked independently; a value with an
   unaccepted flag, a missing-value sentinel, or an impossible value becomes
   NaN.
3. A level left with neither temperature nor salinity is removed.

The filter never mutates its input; it returns a new ProfileRecord with
compacted columns. Flags travel with their rows, so filtering an already
filtered record removes nothing further.
"""

from dataclasses import replace
from typing import Optional

import numpy as np
import structlog

from profile_tiles.config import ImpossibleRange, Settings
from profile_tiles.ingestion.parser import MeasurementColumn, ProfileRecord
from profile_tiles.stats import RunStatistics

logger = structlog.get_logger(__name__)


def _missing_mask(column: MeasurementColumn, configured: Optional[float]) -> np.ndarray:
    """True where a value is NaN or equals a declared/configured sentinel."""
    sentinels = list(column.missing_values)
    if configured is not None:
        sentinels.append(configured)
    mask = np.isnan(column.values)
    for sentinel in sentinels:
        mask |= column.values == sentinel
    return mask


def _record_impossible(
    quantity: str,
    values: np.ndarray,
    bounds: ImpossibleRange,
    source: str,
    stats: RunStatistics,
) -> None:
    """Append the worst below-min and above-max value of one profile, once each."""
    if values.size == 0:
        return
    below = values[values < bounds.minimum]
    if below.size:
        stats.record_below_min(quantity, source, below.min())
    above = values[values > bounds.maximum]
    if above.size:
        stats.record_above_max(quantity, source, above.max())


def _check_column(
    quantity: str,
    column: MeasurementColumn,
    candidate: np.ndarray,
    record: ProfileRecord,
    settings: Settings,
    stats: RunStatistics,
) -> np.ndarray:
    """
    Validity mask for one measurement column over the candidate levels.

    Counts good/bad only for candidate levels and records impossible-value
    diagnostics for values whose flag and sentinel checks passed.
    """
    bounds = settings.impossible_range(quantity)
    flag_ok = np.isin(column.flags, list(settings.accepted_flags))
    present = ~_missing_mask(column, settings.missing_value(quantity))

    with np.errstate(invalid="ignore"):
        in_range = (column.values >= bounds.minimum) & (column.values <= bounds.maximum)

    trusted = candidate & flag_ok & present
    _record_impossible(quantity, column.values[trusted & ~in_range], bounds, record.source, stats)

    valid = trusted & in_range
    stats.count_good(quantity, int(valid.sum()))
    stats.count_bad(quantity, int((candidate & ~valid).sum()))
    return valid


def filter_profile(
    record: ProfileRecord,
    settings: Settings,
    stats: RunStatistics,
) -> ProfileRecord:
    """
    Filter the depth levels of one profile.

    Args:
        record: Parsed profile
        settings: Run settings (allow-set, impossible ranges, sentinels)
        stats: Statistics to count good/bad levels and diagnostics into

    Returns:
        A new ProfileRecord holding only levels with a valid depth and at
        least one valid temperature or salinity
    """
    depth_ok = _check_column("depth", record.depth, np.ones(record.n_levels, dtype=bool), record, settings, stats)

    temperature_ok = _check_column("temperature", record.temperature, depth_ok, record, settings, stats)
    salinity_ok = _check_column("salinity", record.salinity, depth_ok, record, settings, stats)

    keep = depth_ok & (temperature_ok | salinity_ok)

    temperature = MeasurementColumn(
        values=np.where(temperature_ok, record.temperature.values, np.nan),
        flags=record.temperature.flags,
        missing_values=record.temperature.missing_values,
    )
    salinity = MeasurementColumn(
        values=np.where(salinity_ok, record.salinity.values, np.nan),
        flags=record.salinity.flags,
        missing_values=record.salinity.missing_values,
    )

    filtered = replace(
        record,
        depth=record.depth.take(keep),
        temperature=temperature.take(keep),
        salinity=salinity.take(keep),
    )

    if filtered.n_levels:
        stats.add("profiles_with_data")

    logger.debug(
        "profile_filtered",
        source=record.source,
        levels_in=record.n_levels,
        levels_out=filtered.n_levels,
    )
    return filtered
