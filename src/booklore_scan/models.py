"""Core enums, constants, and data types for the library scanner.

Enums:
    OrganizationMode -- Per-library policy for clustering files into books
                        (book_per_folder, auto_detect).
    BookFileType     -- Supported book formats, ordered by default priority.
    CoverSource      -- Cover replacement inputs a metadata writer may support.

Dataclasses:
    LibraryFile  -- One scanned file (or collapsed audiobook folder).
    BookGroup    -- Files judged to be formats/editions of one logical book.
    Library      -- A configured library root and its organization mode.
    ExistingBook -- A book already known downstream, used by rescans.
    RescanResult -- Files to attach to existing books plus new groups.
    ScanReport   -- Per-library outcome of a scan pass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from .errors import UnknownOrganizationModeError


class OrganizationMode(StrEnum):
    """How a library lays out book files on disk.

    book_per_folder -- every folder is one book; all files inside are formats
                       of that book (no fuzzy matching).
    auto_detect     -- folder-centric fuzzy matching with series awareness,
                       for mixed or unknown layouts.
    """

    BOOK_PER_FOLDER = "book_per_folder"
    AUTO_DETECT = "auto_detect"

    @classmethod
    def parse(cls, value: OrganizationMode | str | None) -> OrganizationMode:
        """Resolve a configured mode. None means auto_detect."""
        if value is None:
            return cls.AUTO_DETECT
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower().replace("-", "_")
            for mode in cls:
                if key == mode.value:
                    return mode
        raise UnknownOrganizationModeError(value)


class BookFileType(StrEnum):
    PDF = "pdf"
    EPUB = "epub"
    CBX = "cbx"
    FB2 = "fb2"
    MOBI = "mobi"
    AZW3 = "azw3"
    AUDIOBOOK = "audiobook"


class CoverSource(StrEnum):
    UPLOAD = "upload"
    BYTES = "bytes"
    URL = "url"


EXTENSIONS_BY_TYPE: dict[BookFileType, frozenset[str]] = {
    BookFileType.PDF: frozenset({".pdf"}),
    BookFileType.EPUB: frozenset({".epub"}),
    BookFileType.CBX: frozenset({".cbz", ".cbr", ".cb7"}),
    BookFileType.FB2: frozenset({".fb2"}),
    BookFileType.MOBI: frozenset({".mobi"}),
    BookFileType.AZW3: frozenset({".azw3", ".azw"}),
    BookFileType.AUDIOBOOK: frozenset({".m4b", ".m4a", ".mp3"}),
}

_TYPE_BY_EXTENSION: dict[str, BookFileType] = {
    ext: book_type
    for book_type, extensions in EXTENSIONS_BY_TYPE.items()
    for ext in extensions
}

BOOK_EXTENSIONS: frozenset[str] = frozenset(_TYPE_BY_EXTENSION)

AUDIO_EXTENSIONS: frozenset[str] = EXTENSIONS_BY_TYPE[BookFileType.AUDIOBOOK]


def book_type_for(extension: str) -> BookFileType | None:
    """Map a file extension (with or without the dot) to its book type."""
    ext = extension.lower()
    if ext and not ext.startswith("."):
        ext = f".{ext}"
    return _TYPE_BY_EXTENSION.get(ext)


@dataclass(frozen=True)
class LibraryFile:
    """A candidate book file produced by the scanner.

    folder_based entries stand for a whole folder of audio chapter files;
    file_name is then the folder name and extension is empty.
    """

    folder_path: Path
    file_name: str
    extension: str
    folder_based: bool = False

    @classmethod
    def from_path(cls, path: Path) -> LibraryFile:
        return cls(
            folder_path=path.parent,
            file_name=path.name,
            extension=path.suffix.lower(),
        )

    @property
    def full_path(self) -> Path:
        return self.folder_path / self.file_name

    @property
    def group_folder(self) -> Path:
        """Folder the entry belongs to as a book: a collapsed audiobook
        folder stands for itself, not for its parent."""
        if self.folder_based:
            return self.full_path
        return self.folder_path

    @property
    def stem(self) -> str:
        if self.extension and self.file_name.lower().endswith(self.extension):
            return self.file_name[: -len(self.extension)]
        return self.file_name

    @property
    def book_type(self) -> BookFileType | None:
        if self.folder_based:
            return BookFileType.AUDIOBOOK
        return book_type_for(self.extension)


@dataclass
class BookGroup:
    """Files judged to be alternate formats or editions of one book."""

    representative_title: str
    files: list[LibraryFile] = field(default_factory=list)
    series_index: float | None = None

    def add(self, library_file: LibraryFile) -> None:
        if library_file not in self.files:
            self.files.append(library_file)

    def primary_file(
        self, format_priority: list[BookFileType] | None = None
    ) -> LibraryFile | None:
        """Pick the file that should back the book entity.

        Uses the position in format_priority when given (unlisted types
        rank last), otherwise BookFileType declaration order. Files with
        an unknown type are never primary.
        """
        order = list(BookFileType)

        def rank(f: LibraryFile) -> int:
            book_type = f.book_type
            if format_priority:
                if book_type in format_priority:
                    return format_priority.index(book_type)
                return len(format_priority) + len(order)
            return order.index(book_type)

        typed = [f for f in self.files if f.book_type is not None]
        if not typed:
            return None
        return min(typed, key=rank)

    def to_dict(self, format_priority: list[BookFileType] | None = None) -> dict:
        primary = self.primary_file(format_priority)
        return {
            "title": self.representative_title,
            "series_index": self.series_index,
            "primary": str(primary.full_path) if primary else None,
            "files": [str(f.full_path) for f in self.files],
        }


@dataclass(frozen=True)
class Library:
    name: str
    root: Path
    mode: OrganizationMode = OrganizationMode.AUTO_DETECT


@dataclass(frozen=True)
class ExistingBook:
    """A book entity that already exists downstream.

    Books without a primary_file_name are "fileless" (e.g. created from
    metadata only) and are matched by title.
    """

    book_id: int
    folder_path: Path | None = None
    title: str | None = None
    primary_file_name: str | None = None
    deleted: bool = False

    @property
    def has_files(self) -> bool:
        return bool(self.primary_file_name)


@dataclass
class RescanResult:
    files_to_attach: dict[int, list[LibraryFile]] = field(default_factory=dict)
    new_groups: list[BookGroup] = field(default_factory=list)


@dataclass
class ScanReport:
    """Outcome of scanning one library.

    groups is empty when the scan was cancelled or failed.
    """

    library: Library
    groups: list[BookGroup] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    file_count: int = 0
    cancelled: bool = False
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.cancelled and not self.error
