"""
Archive handlers for local backups.

A local backup is a zip file holding the four bundle entries at its root.
Extraction writes each member separately, so a damaged member only loses
that entry.
"""

import os
import logging
import zipfile
import zlib
from pathlib import Path
from datetime import datetime

from .errors import BundleIOError

logger = logging.getLogger(__name__)

ARCHIVE_EXTENSION = 'zip'


class CompressionError(BundleIOError):
    """Raised when archive creation or extraction fails."""
    pass


def create_bundle_archive(bundle_dir: str, output_path: str) -> str:
    """
    Create a zip archive from a bundle directory.

    Args:
        bundle_dir: Bundle directory to archive
        output_path: Path where archive should be created (without extension)

    Returns:
        Full path to the created archive file

    Raises:
        CompressionError: If archive creation fails
    """
    bundle = Path(bundle_dir)
    if not bundle.is_dir():
        raise CompressionError(f"Bundle directory does not exist: {bundle_dir}")

    archive_path = f"{output_path}.{ARCHIVE_EXTENSION}"

    try:
        os.makedirs(os.path.dirname(archive_path) or '.', exist_ok=True)
        with zipfile.ZipFile(archive_path, 'w', zipfile.ZIP_DEFLATED) as zipf:
            for item in sorted(bundle.rglob('*')):
                if item.is_file():
                    # Members are relative to the bundle root
                    zipf.write(item, item.relative_to(bundle).as_posix())
        return archive_path
    except Exception as e:
        # Clean up partial archive on failure
        if os.path.exists(archive_path):
            try:
                os.remove(archive_path)
            except OSError:
                logger.warning(f"Failed to remove partial archive {archive_path}")
        raise CompressionError(f"Failed to create archive: {e}")


def extract_bundle_archive(archive_path: str, dest_dir: str) -> int:
    """
    Extract a bundle archive into a directory.

    Members whose names would escape dest_dir are refused; members that fail
    to decompress are skipped and logged.

    Args:
        archive_path: Path to the zip archive
        dest_dir: Directory to extract into (created if missing)

    Returns:
        Number of members extracted

    Raises:
        CompressionError: If the archive cannot be opened
    """
    dest = Path(dest_dir).resolve()

    try:
        zipf = zipfile.ZipFile(archive_path, 'r')
    except (OSError, zipfile.BadZipFile) as e:
        raise CompressionError(f"Cannot open archive {archive_path}: {e}")

    extracted = 0
    with zipf:
        dest.mkdir(parents=True, exist_ok=True)

        for member in zipf.infolist():
            if member.is_dir():
                continue

            target = (dest / member.filename).resolve()
            if dest not in target.parents:
                logger.warning(f"Refusing archive member outside bundle: {member.filename}")
                continue

            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(zipf.read(member))
                extracted += 1
            except (OSError, zlib.error, zipfile.BadZipFile, zipfile.LargeZipFile) as e:
                logger.warning(f"Skipping damaged archive member {member.filename}: {e}")

    return extracted


def generate_archive_filename(prefix: str = 'lnreader_backup') -> str:
    """
    Generate a standardized archive filename.

    Format: {prefix}-{YYYYMMDD_HHMMSS}.zip

    Args:
        prefix: Leading part of the filename

    Returns:
        Filename (without path)
    """
    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')

    # Sanitize prefix (replace spaces and special chars with underscores)
    safe_prefix = "".join(
        c if c.isalnum() or c in ('-', '_') else '_'
        for c in prefix
    )

    return f"{safe_prefix}-{timestamp}.{ARCHIVE_EXTENSION}"


def strip_archive_extension(filename: str) -> str:
    """
    Strip archive extension from filename.

    Args:
        filename: Archive filename with extension

    Returns:
        Filename without extension
    """
    suffix = f".{ARCHIVE_EXTENSION}"
    if filename.endswith(suffix):
        return filename[:-len(suffix)]
    return os.path.splitext(filename)[0]


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Args:
        archive_path: Path to the archive file

    Returns:
        File size in bytes

    Raises:
        CompressionError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")
    except Exception as e:
        raise CompressionError(f"Failed to get archive size: {e}")
