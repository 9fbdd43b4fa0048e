"""
profile-tiles Configuration

Uses pydantic-settings to load configuration from environment variables and .env file.
All settings are validated when a Settings instance is created.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Quantities that carry an impossible-value range
QUANTITIES = ("longitude", "latitude", "depth", "temperature", "salinity")


@dataclass(frozen=True)
class ImpossibleRange:
    """Closed interval of physically possible values for one quantity."""
    minimum: float
    maximum: float

    def contains(self, value: float) -> bool:
        """True if value lies inside the closed interval (NaN never does)."""
        return self.minimum <= value <= self.maximum


class Settings(BaseSettings):
    """
    Consolidation settings loaded from environment variables.

    Every value can be overridden via environment variables or a .env file.
    Lists, tuples and dicts are given as JSON, e.g.
    ACCEPTED_QUALITY_FLAGS='[1, 2]'.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =========================================================================
    # Locations
    # =========================================================================
    SOURCE_DIR: str = "data/archives"
    OUTPUT_DIR: str = "data/tiles"
    WORK_DIR: Optional[str] = None  # None = system temp dir

    # =========================================================================
    # Input naming
    # =========================================================================
    REGIONS: list[str] = ["at", "in", "pa"]
    ARCHIVE_TEMPLATE: str = "{region}{year:04d}{month:02d}.tgz"
    PROFILE_FILE_PATTERN: str = r"^[^_]+_(\d+)_.+\.nc$"

    # =========================================================================
    # Run window (inclusive)
    # =========================================================================
    START_YEAR: int = 1990
    START_MONTH: int = 1
    END_YEAR: int = 1990
    END_MONTH: int = 12

    # =========================================================================
    # Tiling
    # =========================================================================
    TILE_SIZE_DEGREES: float = 10.0
    MIN_LON: float = -180.0
    MAX_LON: float = 180.0
    MIN_LAT: float = -90.0
    MAX_LAT: float = 90.0

    # =========================================================================
    # Quality policy
    # =========================================================================
    # 1=correct, 2=probably correct, 5=modified (so now correct)
    ACCEPTED_QUALITY_FLAGS: list[int] = [1, 2, 5]

    IMPOSSIBLE_LONGITUDE: tuple[float, float] = (-180.0, 360.0)
    IMPOSSIBLE_LATITUDE: tuple[float, float] = (-90.0, 90.0)
    IMPOSSIBLE_DEPTH: tuple[float, float] = (-0.4, 10000.0)
    IMPOSSIBLE_TEMPERATURE: tuple[float, float] = (-4.0, 40.0)
    IMPOSSIBLE_SALINITY: tuple[float, float] = (0.0, 41.0)

    MISSING_VALUES: dict[str, float] = {
        "depth": 99999.0,
        "temperature": 99999.0,
        "salinity": 99999.0,
    }

    # =========================================================================
    # Execution
    # =========================================================================
    MAX_WORKERS: int = 1  # 1 = strictly sequential

    # =========================================================================
    # Application
    # =========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    @field_validator("START_MONTH", "END_MONTH")
    @classmethod
    def _check_month(cls, value: int) -> int:
        if not 1 <= value <= 12:
            raise ValueError(f"month must be 1-12, got {value}")
        return value

    @field_validator("TILE_SIZE_DEGREES")
    @classmethod
    def _check_tile_size(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("TILE_SIZE_DEGREES must be positive")
        return value

    @field_validator("MAX_WORKERS")
    @classmethod
    def _check_workers(cls, value: int) -> int:
        if value < 1:
            raise ValueError("MAX_WORKERS must be at least 1")
        return value

    @field_validator(
        "IMPOSSIBLE_LONGITUDE",
        "IMPOSSIBLE_LATITUDE",
        "IMPOSSIBLE_DEPTH",
        "IMPOSSIBLE_TEMPERATURE",
        "IMPOSSIBLE_SALINITY",
    )
    @classmethod
    def _check_range(cls, value: tuple[float, float]) -> tuple[float, float]:
        if value[0] > value[1]:
            raise ValueError(f"range minimum {value[0]} exceeds maximum {value[1]}")
        return value

    @model_validator(mode="after")
    def _check_window_and_domain(self) -> "Settings":
        if (self.END_YEAR, self.END_MONTH) < (self.START_YEAR, self.START_MONTH):
            raise ValueError("END_YEAR/END_MONTH is before START_YEAR/START_MONTH")
        if self.MIN_LON >= self.MAX_LON or self.MIN_LAT >= self.MAX_LAT:
            raise ValueError("tile domain minimum must be below its maximum")
        return self

    # =========================================================================
    # Derived views
    # =========================================================================
    @property
    def accepted_flags(self) -> frozenset[int]:
        return frozenset(self.ACCEPTED_QUALITY_FLAGS)

    def impossible_range(self, quantity: str) -> ImpossibleRange:
        """ImpossibleRange for one of QUANTITIES."""
        low, high = getattr(self, f"IMPOSSIBLE_{quantity.upper()}")
        return ImpossibleRange(float(low), float(high))

    def missing_value(self, quantity: str) -> Optional[float]:
        return self.MISSING_VALUES.get(quantity)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
