"""
profile-tiles: consolidates monthly oceanographic profile archives into
quality-filtered, time-sorted lon/lat tile tables.
"""

__version__ = "0.1.0"
