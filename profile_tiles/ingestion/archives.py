"""
profile-tiles Archive Extraction

Locates a region's monthly archive and expands it into a directory of
individual profile files. Supports .zip, .tar, .tgz and .tar.gz.
"""

import os
import tarfile
import zipfile
from pathlib import Path
from typing import Optional

import structlog

from profile_tiles.config import Settings

logger = structlog.get_logger(__name__)

PROFILE_SUFFIXES = (".nc",)


class ArchiveError(Exception):
    """An archive exists but cannot be expanded."""


def archive_path(settings: Settings, region: str, year: int, month: int) -> Path:
    """Expected location of one region's archive for a month."""
    name = settings.ARCHIVE_TEMPLATE.format(region=region, year=year, month=month)
    return Path(settings.SOURCE_DIR) / name


def _safe_members(tf: tarfile.TarFile, dest: Path) -> list[tarfile.TarInfo]:
    """Regular-file members whose resolved path stays inside dest."""
    root = dest.resolve()
    members = []
    for member in tf.getmembers():
        if not member.isfile():
            continue
        target = (dest / member.name).resolve()
        if root not in target.parents:
            logger.warning("archive_member_skipped", member=member.name)
            continue
        members.append(member)
    return members


def extract_archive(path: Path, dest: Path) -> None:
    """
    Expand an archive into dest.

    Raises:
        ArchiveError: The archive is corrupt or of an unknown kind
    """
    name = path.name.lower()
    try:
        if name.endswith(".zip"):
            with zipfile.ZipFile(path, "r") as zf:
                zf.extractall(dest)
        elif name.endswith((".tgz", ".tar.gz", ".tar")):
            with tarfile.open(path, "r:*") as tf:
                tf.extractall(dest, members=_safe_members(tf, dest))
        else:
            raise ArchiveError(f"Unsupported archive type: {path.name}")
    except (zipfile.BadZipFile, tarfile.TarError, EOFError) as e:
        raise ArchiveError(f"Invalid archive {path.name}: {str(e)}") from e


def list_profile_files(directory: Path) -> list[Path]:
    """Profile files under directory, in sorted listing order."""
    files = []
    for root, _dirs, names in os.walk(directory):
        for f in names:
            if f.lower().endswith(PROFILE_SUFFIXES):
                files.append(Path(root) / f)
    return sorted(files, key=lambda p: (p.name, str(p)))


def expand_region(
    settings: Settings,
    region: str,
    year: int,
    month: int,
    dest: Path,
) -> Optional[list[Path]]:
    """
    Expand one region's monthly archive into dest.

    Returns:
        Profile files found, or None when the archive is missing or invalid
        (already logged)
    """
    path = archive_path(settings, region, year, month)
    log = logger.bind(archive=path.name, region=region)

    if not path.exists():
        log.warning("archive_missing", path=str(path))
        return None

    try:
        extract_archive(path, dest)
    except ArchiveError as e:
        log.error("archive_extraction_failed", error=str(e))
        return None

    files = list_profile_files(dest)
    log.info("archive_extracted", file_count=len(files))
    return files
