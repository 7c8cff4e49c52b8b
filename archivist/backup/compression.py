"""
Archive builder for backup sources.

Packs the immediate regular files of a source directory into a ZIP archive
at maximum deflate compression. File contents are streamed in fixed-size
chunks so memory use does not grow with file size.

Archive names follow the format:
    {prefix}-{ISO-8601 timestamp with ':' and '.' replaced by '-'}.zip[.crypt]
"""

import logging
import os
import zipfile
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from .errors import CompressionError


logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX = '.zip'
ENCRYPTED_SUFFIX = '.zip.crypt'
COMPRESS_LEVEL = 9
CHUNK_SIZE = 64 * 1024

ProgressCallback = Callable[[int, int], None]


def _list_source_files(source_dir: str) -> Tuple[List[Tuple[str, str]], int]:
    """
    Enumerate the regular files directly inside source_dir.

    Returns:
        Tuple of ([(entry name, full path)], total size in bytes)
    """
    files = []
    total = 0

    with os.scandir(source_dir) as entries:
        for entry in sorted(entries, key=lambda e: e.name):
            try:
                if not entry.is_file(follow_symlinks=True):
                    continue
                size = entry.stat(follow_symlinks=True).st_size
            except FileNotFoundError:
                logger.warning(f"Entry vanished while scanning, skipping: {entry.path}")
                continue

            files.append((entry.name, entry.path))
            total += size

    return files, total


def create_archive(
    source_dir: str,
    archive_path: str,
    progress_callback: Optional[ProgressCallback] = None,
    chunk_size: int = CHUNK_SIZE
) -> int:
    """
    Create a ZIP archive from the immediate files of a directory.

    Subdirectories are not descended into. An entry that disappears between
    listing and reading is logged and skipped; any other I/O error aborts.

    Args:
        source_dir: Directory whose files should be archived
        archive_path: Path of the archive to create
        progress_callback: Optional callable receiving (processed_bytes, total_bytes)
        chunk_size: Read size used when streaming file contents

    Returns:
        Size of the finished archive in bytes, measured after it has been
        flushed and synced to disk

    Raises:
        CompressionError: If the source cannot be read or the archive cannot be written
    """
    if not os.path.isdir(source_dir):
        raise CompressionError(f"Source is not a directory: {source_dir}")

    try:
        files, total = _list_source_files(source_dir)
        processed = 0

        with open(archive_path, 'wb') as sink:
            with zipfile.ZipFile(sink, 'w', zipfile.ZIP_DEFLATED, compresslevel=COMPRESS_LEVEL) as zipf:
                for name, path in files:
                    try:
                        src = open(path, 'rb')
                    except FileNotFoundError:
                        logger.warning(f"Entry vanished before it could be archived, skipping: {path}")
                        continue

                    with src, zipf.open(name, 'w', force_zip64=True) as dest:
                        while True:
                            data = src.read(chunk_size)
                            if not data:
                                break
                            dest.write(data)
                            processed += len(data)
                            if progress_callback:
                                progress_callback(processed, total)

                    logger.debug(f"Added {path} to archive")

            sink.flush()
            os.fsync(sink.fileno())

        return os.path.getsize(archive_path)

    except CompressionError:
        _remove_partial(archive_path)
        raise
    except (OSError, zipfile.BadZipFile) as e:
        _remove_partial(archive_path)
        raise CompressionError(f"Failed to create archive: {e}")


def _remove_partial(archive_path: str):
    if os.path.exists(archive_path):
        try:
            os.remove(archive_path)
        except OSError as e:
            logger.warning(f"Failed to remove partial archive {archive_path}: {e}")


def format_timestamp(now: Optional[datetime] = None) -> str:
    """
    Render an instant as a filename-safe ISO-8601 string.

    2024-01-15T12:30:45.123Z becomes 2024-01-15T12-30-45-123Z
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)

    iso = now.strftime('%Y-%m-%dT%H:%M:%S.') + f"{now.microsecond // 1000:03d}Z"
    return iso.replace(':', '-').replace('.', '-')


def generate_archive_filename(prefix: str, encrypted: bool = False, now: Optional[datetime] = None) -> str:
    """
    Generate the final archive filename for a run.

    Args:
        prefix: Task archive prefix
        encrypted: Whether the encrypted suffix should be appended
        now: Timestamp to embed (default: current UTC time)

    Returns:
        Filename (without path)
    """
    suffix = ENCRYPTED_SUFFIX if encrypted else ARCHIVE_SUFFIX
    return f"{prefix}-{format_timestamp(now)}{suffix}"


def is_archive_name(name: str, prefix: Optional[str] = None) -> bool:
    """
    Check whether a file or object name belongs to a task's archives.

    The name must end with the plain or encrypted archive suffix and, when a
    prefix is given, start with "{prefix}-".
    """
    if not (name.endswith(ARCHIVE_SUFFIX) or name.endswith(ENCRYPTED_SUFFIX)):
        return False
    if prefix:
        return name.startswith(f"{prefix}-")
    return True


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        CompressionError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise CompressionError(f"Failed to get archive size: {e}")
