"""Folder scanner -- walks a library root and yields candidate book files.

Walks depth-first with os.walk(), visiting directories and files in sorted
order so repeated scans of an unchanged tree produce the same sequence.
Unreadable directories are logged and skipped, never fatal.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from .models import AUDIO_EXTENSIONS, BOOK_EXTENSIONS, LibraryFile
from .titles import is_series_folder

if TYPE_CHECKING:
    from .concurrency import CancellationToken

log = logger.bind(stage="scanner")

# NAS recycle bins, Synology thumbnails, calibre trash
SYSTEM_DIRS = frozenset({"#recycle", "@eaDir", ".caltrash"})


def should_ignore(name: str) -> bool:
    """Hidden entries and system folders are never part of a library."""
    return name.startswith(".") or name in SYSTEM_DIRS


def scan_library(
    root: Path,
    extensions: frozenset[str] = BOOK_EXTENSIONS,
    cancel: CancellationToken | None = None,
    group_audio_folders: bool = False,
    warnings: list[str] | None = None,
) -> Iterator[LibraryFile]:
    """Yield every book file under root, depth-first.

    Args:
        root: Library root directory
        extensions: Lowercase extensions (with dot) to keep
        cancel: Checked before each folder; raises ScanCancelledError when set
        group_audio_folders: Collapse a folder of audio chapter files into a
            single folder-based entry located in the folder's parent
        warnings: Optional list collecting human-readable skip reasons

    Each call starts a fresh walk.
    """
    log.debug(f"scan_library(root={root}, group_audio_folders={group_audio_folders})")

    def _warn(message: str) -> None:
        log.warning(message)
        if warnings is not None:
            warnings.append(message)

    if not root.is_dir():
        _warn(f"Library root does not exist or is not a directory: {root}")
        return

    def _on_error(err: OSError) -> None:
        _warn(f"Skipping unreadable folder {err.filename}: {err.strerror or err}")

    folder_count = 0
    file_count = 0

    for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error):
        if cancel is not None:
            cancel.raise_if_cancelled(root)

        # Prune ignored folders and fix traversal order
        dirnames[:] = sorted(d for d in dirnames if not should_ignore(d))
        folder = Path(dirpath)
        folder_count += 1

        books = sorted(
            f
            for f in filenames
            if not should_ignore(f) and Path(f).suffix.lower() in extensions
        )
        if not books:
            continue

        audio = [f for f in books if Path(f).suffix.lower() in AUDIO_EXTENSIONS]
        if (
            group_audio_folders
            and folder != root
            and len(audio) > 1
            and not is_series_folder(audio)
        ):
            log.debug(f"Collapsing {len(audio)} audio files into one audiobook: {folder}")
            yield LibraryFile(
                folder_path=folder.parent,
                file_name=folder.name,
                extension="",
                folder_based=True,
            )
            file_count += 1
            books = [f for f in books if f not in audio]

        for name in books:
            file_count += 1
            yield LibraryFile(
                folder_path=folder,
                file_name=name,
                extension=Path(name).suffix.lower(),
            )

    log.info(f"Scanned {root}: {file_count} book files in {folder_count} folders")
