"""Metadata writer contract and registry.

Format adapters (EPUB, PDF, CBX, audiobook) live outside this package and
implement MetadataWriter. Cover replacement is an explicit capability: a
writer lists the CoverSource values it supports in cover_capabilities, and
calling anything else raises UnsupportedCapabilityError instead of
silently doing nothing.

The grouping engine never calls writers; plan_metadata_writes() pairs the
files of finished groups with the writer that will handle them downstream.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path
from typing import Any

from loguru import logger

from .errors import UnsupportedCapabilityError, WriterNotFoundError
from .models import BookFileType, BookGroup, CoverSource, LibraryFile

log = logger.bind(stage="writers")


class MetadataWriter(ABC):
    """Writes book metadata back into files of one format."""

    supported_type: BookFileType
    cover_capabilities: frozenset[CoverSource] = frozenset()

    @abstractmethod
    def save_metadata_to_file(
        self,
        path: Path,
        metadata: Mapping[str, Any],
        thumbnail_url: str | None = None,
        clear_flags: Iterable[str] | None = None,
    ) -> None:
        """Write metadata into the file in place."""

    @abstractmethod
    def should_save_metadata_to_file(self, path: Path) -> bool:
        """Whether this writer can write to this particular file."""

    def supports(self, capability: CoverSource) -> bool:
        return capability in self.cover_capabilities

    def replace_cover_from_upload(self, path: Path, upload: Any) -> None:
        self._require(CoverSource.UPLOAD)
        self._replace_cover_from_upload(path, upload)

    def replace_cover_from_bytes(self, path: Path, data: bytes) -> None:
        self._require(CoverSource.BYTES)
        self._replace_cover_from_bytes(path, data)

    def replace_cover_from_url(self, path: Path, url: str) -> None:
        self._require(CoverSource.URL)
        self._replace_cover_from_url(path, url)

    # Subclasses override the hooks for the capabilities they declare

    def _replace_cover_from_upload(self, path: Path, upload: Any) -> None:
        raise NotImplementedError

    def _replace_cover_from_bytes(self, path: Path, data: bytes) -> None:
        raise NotImplementedError

    def _replace_cover_from_url(self, path: Path, url: str) -> None:
        raise NotImplementedError

    def _require(self, capability: CoverSource) -> None:
        if not self.supports(capability):
            raise UnsupportedCapabilityError(type(self).__name__, capability.value)


class WriterRegistry:
    """Maps a book type to the writer that handles it."""

    def __init__(self, writers: Iterable[MetadataWriter] = ()) -> None:
        self._writers: dict[BookFileType, MetadataWriter] = {}
        for writer in writers:
            self.register(writer)

    def register(self, writer: MetadataWriter) -> None:
        existing = self._writers.get(writer.supported_type)
        if existing is not None and existing is not writer:
            log.warning(
                f"Replacing {type(existing).__name__} with {type(writer).__name__} "
                f"for {writer.supported_type}"
            )
        self._writers[writer.supported_type] = writer

    def get_writer(self, book_type: BookFileType | None) -> MetadataWriter | None:
        if book_type is None:
            return None
        return self._writers.get(book_type)

    def get_writer_or_raise(self, book_type: BookFileType | None) -> MetadataWriter:
        writer = self.get_writer(book_type)
        if writer is None:
            raise WriterNotFoundError(book_type)
        return writer

    def __contains__(self, book_type: object) -> bool:
        return book_type in self._writers

    def __len__(self) -> int:
        return len(self._writers)


def plan_metadata_writes(
    groups: Iterable[BookGroup], registry: WriterRegistry
) -> Iterator[tuple[BookGroup, LibraryFile, MetadataWriter]]:
    """Yield (group, file, writer) for every file a registered writer accepts.

    Files without a writer, or whose writer declines them, are skipped.
    """
    for group in groups:
        for f in group.files:
            writer = registry.get_writer(f.book_type)
            if writer is None:
                log.debug(f"No writer for {f.file_name} ({f.book_type})")
                continue
            if not writer.should_save_metadata_to_file(f.full_path):
                log.debug(f"{type(writer).__name__} declined {f.file_name}")
                continue
            yield group, f, writer
