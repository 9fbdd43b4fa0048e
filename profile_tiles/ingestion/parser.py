"""
profile-tiles Profile Parser

Parses one GTSPP-style profile file (one vertical cast per file) using
xarray into a ProfileRecord: scalar station/position/time metadata plus
parallel depth, temperature and salinity columns with per-level flags.

Parsing never raises. Every outcome is a ParseResult; rejections carry a
RejectionReason and are counted in the RunStatistics passed in.
"""

import calendar
import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import cftime
import numpy as np
import structlog
import xarray as xr

from profile_tiles.config import Settings
from profile_tiles.stats import RunStatistics

logger = structlog.get_logger(__name__)

# Scalar metadata variables
STREAM_VARIABLE = "stream_ident"
PLATFORM_VARIABLE = "platform_code"
CRUISE_VARIABLE = "cruise_id"
POSITION_FLAG_VARIABLE = "position_quality_flag"
TIME_FLAG_VARIABLE = "time_quality_flag"

# Per-level measurement variables: our name -> (value variable, flag variable)
MEASUREMENT_VARIABLES = {
    "depth": ("z", "z_variable_quality_flag"),
    "temperature": ("temperature", "temperature_quality_flag"),
    "salinity": ("salinity", "salinity_quality_flag"),
}

NO_FLAG = -1

_EPOCH = datetime(1970, 1, 1)


class RejectionReason(str, Enum):
    """Why a profile file did not produce a record."""
    BAD_STATION = "bad_station"
    BAD_POSITION = "bad_position"
    BAD_TIME = "bad_time"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class MeasurementColumn:
    """
    One per-level measurement with its flags.

    values are float64 with NaN for absent data; flags are int64 with
    NO_FLAG where the file had no readable flag. Both kinds are fixed
    when the file is loaded.
    """
    values: np.ndarray
    flags: np.ndarray
    missing_values: tuple[float, ...] = ()

    def __len__(self) -> int:
        return len(self.values)

    def take(self, keep: np.ndarray) -> "MeasurementColumn":
        """New column holding only the rows selected by a boolean mask."""
        return MeasurementColumn(
            values=self.values[keep],
            flags=self.flags[keep],
            missing_values=self.missing_values,
        )


@dataclass(frozen=True)
class ProfileRecord:
    """One profile file's worth of data."""
    station_id: int
    source: str  # "<archive>/<file>"
    organization: str
    data_type: str
    platform: str
    cruise: str
    position_quality_flag: int
    time_quality_flag: int
    longitude: float
    latitude: float
    time: int  # seconds since 1970-01-01T00:00:00Z
    depth: MeasurementColumn
    temperature: MeasurementColumn
    salinity: MeasurementColumn

    @property
    def n_levels(self) -> int:
        return len(self.depth)


@dataclass
class ParseResult:
    """Result from parsing a profile file: a record or a rejection."""
    success: bool
    record: Optional[ProfileRecord] = None
    rejection: Optional[RejectionReason] = None
    error_message: Optional[str] = None
    warnings: list[str] = field(default_factory=list)


def station_id_from_name(filename: str, pattern: str) -> Optional[int]:
    """
    Extract the station id from a profile file name.

    The pattern's first group must capture the digits, e.g.
    "gtspp_12345678_te_111.nc" -> 12345678.
    """
    match = re.match(pattern, filename)
    if match is None:
        return None
    try:
        return int(match.group(1))
    except (IndexError, ValueError):
        return None


def normalize_longitude(lon: float) -> float:
    """Normalize a longitude into (-180, 180]."""
    lon = ((lon + 180.0) % 360.0) - 180.0
    if lon <= -180.0:
        lon += 360.0
    return lon


def month_window(year: int, month: int) -> tuple[int, int]:
    """Epoch seconds of [first instant of month, first instant of next month)."""
    start = calendar.timegm((year, month, 1, 0, 0, 0))
    if month == 12:
        end = calendar.timegm((year + 1, 1, 1, 0, 0, 0))
    else:
        end = calendar.timegm((year, month + 1, 1, 0, 0, 0))
    return start, end


def _to_text(values: Any) -> str:
    """Join a char array (or decode a string scalar) and strip it."""
    flat = np.asarray(values).ravel()
    parts = [
        v.decode("utf-8", "replace") if isinstance(v, bytes) else str(v)
        for v in flat
    ]
    return "".join(parts).strip()


def _read_string(ds: xr.Dataset, var_name: str) -> Optional[str]:
    """Read a scalar string variable; None if the variable is absent."""
    if var_name not in ds.variables:
        return None
    return _to_text(ds[var_name].values)


def _declared_missing(attrs: dict) -> tuple[float, ...]:
    sentinels = []
    for key in ("_FillValue", "missing_value"):
        if key in attrs:
            for value in np.atleast_1d(attrs[key]):
                try:
                    sentinels.append(float(value))
                except (TypeError, ValueError):
                    continue
    return tuple(sentinels)


def _is_missing(value: float, sentinels: tuple[float, ...]) -> bool:
    return bool(np.isnan(value)) or value in sentinels


def _read_scalar_flag(ds: xr.Dataset, var_name: str) -> Optional[int]:
    """Read a quality flag that must be a single integer (char or numeric)."""
    if var_name not in ds.variables:
        return None
    values = np.asarray(ds[var_name].values)
    if values.dtype.kind in "SUO":
        text = _to_text(values)
        return int(text) if text.isdigit() else None
    if values.size != 1:
        return None
    value = float(values.ravel()[0])
    if np.isnan(value) or value in _declared_missing(ds[var_name].attrs):
        return None
    return int(value)


def _read_scalar_float(ds: xr.Dataset, var_name: str) -> Optional[float]:
    """Read a single float; None if absent, not scalar, NaN or a sentinel."""
    if var_name not in ds.variables:
        return None
    values = np.asarray(ds[var_name].values)
    if values.size != 1 or values.dtype.kind not in "iuf":
        return None
    value = float(values.ravel()[0])
    if _is_missing(value, _declared_missing(ds[var_name].attrs)):
        return None
    return value


def _flag_array(values: np.ndarray) -> np.ndarray:
    """Convert a per-level flag array of any stored kind to int64."""
    flat = np.asarray(values).ravel()
    if flat.dtype.kind in "SUO":
        decoded = [
            v.decode("utf-8", "replace") if isinstance(v, bytes) else str(v)
            for v in flat
        ]
        return np.array(
            [int(c.strip()) if c.strip().isdigit() else NO_FLAG for c in decoded],
            dtype=np.int64,
        )
    if flat.dtype.kind == "f":
        return np.where(np.isnan(flat), NO_FLAG, flat).astype(np.int64)
    return flat.astype(np.int64)


def _read_column(ds: xr.Dataset, quantity: str, n_levels: Optional[int]) -> MeasurementColumn:
    """
    Load one measurement column.

    An absent value variable yields an all-missing column of n_levels rows.
    Raises ValueError when flags and values disagree in length.
    """
    value_var, flag_var = MEASUREMENT_VARIABLES[quantity]

    if value_var not in ds.variables:
        if n_levels is None:
            raise ValueError(f"missing required variable: {value_var}")
        return MeasurementColumn(
            values=np.full(n_levels, np.nan),
            flags=np.full(n_levels, NO_FLAG, dtype=np.int64),
        )

    if flag_var not in ds.variables:
        raise ValueError(f"missing flag variable: {flag_var}")

    values = np.asarray(ds[value_var].values, dtype=np.float64).ravel()
    flags = _flag_array(ds[flag_var].values)

    if len(flags) != len(values):
        raise ValueError(
            f"{flag_var} has {len(flags)} levels but {value_var} has {len(values)}"
        )
    if n_levels is not None and len(values) != n_levels:
        raise ValueError(f"{value_var} has {len(values)} levels, expected {n_levels}")

    return MeasurementColumn(
        values=values,
        flags=flags,
        missing_values=_declared_missing(ds[value_var].attrs),
    )


def _epoch_seconds(ds: xr.Dataset) -> Optional[int]:
    """Convert the time variable to whole epoch seconds, or None."""
    value = _read_scalar_float(ds, "time")
    units = ds["time"].attrs.get("units") if "time" in ds.variables else None
    if value is None or not units:
        return None
    try:
        moment = cftime.num2date(
            value,
            units,
            calendar=ds["time"].attrs.get("calendar", "standard"),
            only_use_cftime_datetimes=False,
            only_use_python_datetimes=True,
        )
    except (ValueError, TypeError, OverflowError):
        return None
    # Round half up to correct floating round-off in the stored offset
    return math.floor((moment.replace(tzinfo=None) - _EPOCH).total_seconds() + 0.5)


def _reject(
    reason: RejectionReason,
    message: str,
    warnings: Optional[list[str]] = None,
) -> ParseResult:
    return ParseResult(
        success=False,
        rejection=reason,
        error_message=message,
        warnings=warnings or [],
    )


def _parse_dataset(
    ds: xr.Dataset,
    station_id: int,
    source: str,
    year: int,
    month: int,
    settings: Settings,
    stats: RunStatistics,
    log: Any,
) -> ParseResult:
    warnings: list[str] = []
    accepted = settings.accepted_flags

    # Stream code: 2-char organization + 2-char data type
    stream = _read_string(ds, STREAM_VARIABLE)
    if stream:
        organization, data_type = stream[:2], stream[2:4]
    else:
        organization = data_type = ""
        warnings.append("no_stream")

    platform = _read_string(ds, PLATFORM_VARIABLE)
    if platform is None:
        platform = ""
        warnings.append("no_platform")

    cruise = _read_string(ds, CRUISE_VARIABLE)
    if cruise is None:
        cruise = ""
        warnings.append("no_cruise")

    for kind in warnings:
        stats.warn(kind)
        log.warning("profile_metadata_missing", missing=kind)

    # Position: flag then values
    position_flag = _read_scalar_flag(ds, POSITION_FLAG_VARIABLE)
    if position_flag is None or position_flag not in accepted:
        stats.count_bad("position")
        return _reject(
            RejectionReason.BAD_POSITION,
            f"position quality flag {position_flag} not accepted",
            warnings,
        )

    longitude = _read_scalar_float(ds, "longitude")
    latitude = _read_scalar_float(ds, "latitude")
    if longitude is None or latitude is None:
        stats.count_bad("position")
        return _reject(RejectionReason.BAD_POSITION, "missing longitude or latitude", warnings)

    position_ok = True
    for quantity, value in (("longitude", longitude), ("latitude", latitude)):
        bounds = settings.impossible_range(quantity)
        if value < bounds.minimum:
            stats.record_below_min(quantity, source, value)
            position_ok = False
        elif value > bounds.maximum:
            stats.record_above_max(quantity, source, value)
            position_ok = False
    if not position_ok:
        stats.count_bad("position")
        return _reject(
            RejectionReason.BAD_POSITION,
            f"impossible position lon={longitude} lat={latitude}",
            warnings,
        )
    stats.count_good("position")

    # Time: flag then value inside the month window
    time_flag = _read_scalar_flag(ds, TIME_FLAG_VARIABLE)
    if time_flag is None or time_flag not in accepted:
        stats.count_bad("time")
        return _reject(
            RejectionReason.BAD_TIME,
            f"time quality flag {time_flag} not accepted",
            warnings,
        )

    seconds = _epoch_seconds(ds)
    window_start, window_end = month_window(year, month)
    if seconds is None or not window_start <= seconds < window_end:
        stats.count_bad("time")
        return _reject(
            RejectionReason.BAD_TIME,
            f"time {seconds} outside {year:04d}-{month:02d}",
            warnings,
        )
    stats.count_good("time")

    depth = _read_column(ds, "depth", None)
    temperature = _read_column(ds, "temperature", len(depth))
    salinity = _read_column(ds, "salinity", len(depth))

    record = ProfileRecord(
        station_id=station_id,
        source=source,
        organization=organization,
        data_type=data_type,
        platform=platform,
        cruise=cruise,
        position_quality_flag=position_flag,
        time_quality_flag=time_flag,
        longitude=normalize_longitude(longitude),
        latitude=latitude,
        time=seconds,
        depth=depth,
        temperature=temperature,
        salinity=salinity,
    )
    return ParseResult(success=True, record=record, warnings=warnings)


def parse_profile_file(
    file_path: str,
    year: int,
    month: int,
    settings: Settings,
    stats: RunStatistics,
    archive: str = "",
) -> ParseResult:
    """
    Parse one profile file into a ProfileRecord.

    Args:
        file_path: Path to the netCDF profile file
        year: Year of the processing chunk
        month: Month of the processing chunk; the profile time must fall in it
        settings: Run settings (flag allow-set, impossible ranges, name pattern)
        stats: Statistics to count rejections and warnings into
        archive: Name of the archive the file came from, for diagnostics

    Returns:
        ParseResult with the record or a rejection reason
    """
    filename = Path(file_path).name
    source = f"{archive}/{filename}"
    log = logger.bind(source=source)

    stats.add("files")

    station_id = station_id_from_name(filename, settings.PROFILE_FILE_PATTERN)
    if station_id is None:
        stats.count_bad("station")
        log.warning("station_id_not_found")
        return _reject(RejectionReason.BAD_STATION, f"cannot extract station id from {filename}")
    stats.count_good("station")

    try:
        with xr.open_dataset(file_path, decode_cf=False, mask_and_scale=False) as ds:
            result = _parse_dataset(ds, station_id, source, year, month, settings, stats, log)
    except Exception as e:
        stats.add("exceptions")
        log.error("parse_failed", error=str(e))
        return _reject(RejectionReason.MALFORMED, f"Failed to parse profile file: {str(e)}")

    if not result.success:
        log.debug("profile_rejected", reason=result.rejection.value, error=result.error_message)
    return result
