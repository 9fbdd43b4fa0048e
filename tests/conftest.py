"""
Shared pytest fixtures.

Provides:
- Settings bound to a temporary source/output tree
- A factory writing synthetic GTSPP-style profile files with netCDF4
- A factory building regional archives from profile files
- A factory building ProfileRecord objects directly (no file I/O)
"""

import tarfile
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence

import cftime
import netCDF4 as nc
import numpy as np
import pytest

from profile_tiles.config import Settings
from profile_tiles.ingestion.parser import MeasurementColumn, ProfileRecord

TIME_UNITS = "days since 1900-01-01 00:00:00"
FILL = 99999.0


def _char_variable(ds: nc.Dataset, name: str, text: str) -> None:
    """Write text as a char array on its own STRINGn dimension (GTSPP convention)."""
    dim = f"string_{name}"
    width = max(len(text), 1)
    ds.createDimension(dim, width)
    var = ds.createVariable(name, "S1", (dim,))
    var[:] = np.array([c.encode() for c in text.ljust(width)], dtype="S1")


def _flag_variable(ds: nc.Dataset, name: str, flags: Sequence, dims: tuple, numeric: bool) -> None:
    if numeric:
        var = ds.createVariable(name, "i1", dims)
        var[:] = np.array([int(f) for f in flags], dtype=np.int8)
    else:
        var = ds.createVariable(name, "S1", dims)
        var[:] = np.array([str(f).encode() for f in flags], dtype="S1")


@pytest.fixture()
def settings(tmp_path) -> Settings:
    """Settings for a one-month run (2001-03) over two regions."""
    source = tmp_path / "archives"
    source.mkdir()
    return Settings(
        _env_file=None,
        SOURCE_DIR=str(source),
        OUTPUT_DIR=str(tmp_path / "tiles"),
        WORK_DIR=None,
        REGIONS=["at", "pa"],
        START_YEAR=2001,
        START_MONTH=3,
        END_YEAR=2001,
        END_MONTH=3,
        TILE_SIZE_DEGREES=10.0,
    )


@pytest.fixture()
def write_profile(tmp_path):
    """
    Factory writing one synthetic profile file.

    Defaults describe a good two-level profile at lon=10, lat=10 on
    2001-03-15 12:00 UTC with temperature only.
    """
    profile_dir = tmp_path / "profiles"
    profile_dir.mkdir(exist_ok=True)

    def _write(
        name: str = "gtspp_1001_te_111.nc",
        directory: Optional[Path] = None,
        stream: Optional[str] = "MEBA",
        platform: Optional[str] = "33P2",
        cruise: Optional[str] = "CR01",
        position_flag="1",
        time_flag="1",
        longitude: Optional[float] = 10.0,
        latitude: Optional[float] = 10.0,
        when: Optional[datetime] = datetime(2001, 3, 15, 12, 0, 0),
        time_value: Optional[float] = None,
        time_units: Optional[str] = TIME_UNITS,
        depth: Sequence[float] = (0.0, 50.0),
        depth_flags: Sequence = ("1", "1"),
        temperature: Optional[Sequence[float]] = (10.0, 11.0),
        temperature_flags: Optional[Sequence] = ("1", "1"),
        salinity: Optional[Sequence[float]] = None,
        salinity_flags: Optional[Sequence] = None,
        numeric_flags: bool = False,
    ) -> Path:
        path = (directory or profile_dir) / name
        ds = nc.Dataset(str(path), "w", format="NETCDF4")
        try:
            ds.createDimension("time", 1)
            ds.createDimension("z", len(depth))

            if stream is not None:
                _char_variable(ds, "stream_ident", stream)
            if platform is not None:
                _char_variable(ds, "platform_code", platform)
            if cruise is not None:
                _char_variable(ds, "cruise_id", cruise)

            if position_flag is not None:
                _flag_variable(ds, "position_quality_flag", [position_flag], ("time",), numeric_flags)
            if time_flag is not None:
                _flag_variable(ds, "time_quality_flag", [time_flag], ("time",), numeric_flags)

            for var_name, value in (("longitude", longitude), ("latitude", latitude)):
                var = ds.createVariable(var_name, "f4", ("time",), fill_value=np.float32(FILL))
                var[0] = FILL if value is None else value

            time_var = ds.createVariable("time", "f8", ("time",), fill_value=FILL)
            if time_units is not None:
                time_var.units = time_units
            if time_value is not None:
                time_var[0] = time_value
            elif when is not None:
                time_var[0] = cftime.date2num(when, TIME_UNITS)
            else:
                time_var[0] = FILL

            z = ds.createVariable("z", "f4", ("z",), fill_value=np.float32(FILL))
            z[:] = np.array(depth, dtype=np.float32)
            _flag_variable(ds, "z_variable_quality_flag", depth_flags, ("z",), numeric_flags)

            if temperature is not None:
                temp = ds.createVariable("temperature", "f4", ("z",), fill_value=np.float32(FILL))
                temp[:] = np.array(temperature, dtype=np.float32)
                _flag_variable(ds, "temperature_quality_flag", temperature_flags, ("z",), numeric_flags)

            if salinity is not None:
                sal = ds.createVariable("salinity", "f4", ("z",), fill_value=np.float32(FILL))
                sal[:] = np.array(salinity, dtype=np.float32)
                _flag_variable(ds, "salinity_quality_flag", salinity_flags, ("z",), numeric_flags)
        finally:
            ds.close()
        return path

    return _write


@pytest.fixture()
def make_archive(settings):
    """Factory packing profile files into SOURCE_DIR/<region><yyyy><mm>.tgz (or .zip)."""

    def _make(region: str, files: Sequence[Path], year: int = 2001, month: int = 3, kind: str = "tgz") -> Path:
        name = settings.ARCHIVE_TEMPLATE.format(region=region, year=year, month=month)
        if kind == "zip":
            name = name.rsplit(".", 1)[0] + ".zip"
        path = Path(settings.SOURCE_DIR) / name
        if kind == "zip":
            with zipfile.ZipFile(path, "w") as zf:
                for f in files:
                    zf.write(f, arcname=f"{region}/{f.name}")
        else:
            with tarfile.open(path, "w:gz") as tf:
                for f in files:
                    tf.add(f, arcname=f"{region}/{f.name}")
        return path

    return _make


@pytest.fixture()
def make_record():
    """Factory building a ProfileRecord in memory."""

    def _column(values, flags, missing=(FILL,)) -> MeasurementColumn:
        return MeasurementColumn(
            values=np.array(values, dtype=np.float64),
            flags=np.array(flags, dtype=np.int64),
            missing_values=tuple(missing),
        )

    def _make(
        depth=(0.0, 50.0),
        depth_flags=(1, 1),
        temperature=(10.0, 11.0),
        temperature_flags=(1, 1),
        salinity=None,
        salinity_flags=None,
        station_id: int = 1001,
        longitude: float = 10.0,
        latitude: float = 10.0,
        time: int = 984657600,  # 2001-03-15T12:00:00Z
        source: str = "at200103.tgz/gtspp_1001_te_111.nc",
    ) -> ProfileRecord:
        n = len(depth)
        if salinity is None:
            salinity = [np.nan] * n
            salinity_flags = [-1] * n
        return ProfileRecord(
            station_id=station_id,
            source=source,
            organization="ME",
            data_type="BA",
            platform="33P2",
            cruise="CR01",
            position_quality_flag=1,
            time_quality_flag=1,
            longitude=longitude,
            latitude=latitude,
            time=time,
            depth=_column(depth, depth_flags),
            temperature=_column(temperature, temperature_flags),
            salinity=_column(salinity, salinity_flags),
        )

    return _make
