"""Book grouping engine -- clusters scanned files into logical books.

Strategies:
    BookPerFolderStrategy -- one group per folder, no fuzzy matching.
    AutoDetectStrategy    -- folder-name fuzzy matching with series-aware
                             splitting ("Vol 1" and "Vol 2" never merge).

Entry points:
    select_strategy       -- OrganizationMode -> strategy (stateless dispatch).
    group_for_initial_scan -- group every file of a fresh library.
    group_for_rescan      -- attach new files to existing books first, then
                             group whatever is left.

Results are deterministic: groups are ordered by the path of their first
file and files inside a group are ordered by path.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from loguru import logger

from .errors import UnknownOrganizationModeError
from .models import BookGroup, ExistingBook, LibraryFile, OrganizationMode, RescanResult
from .titles import display_title, extract_series_number, normalize_title, title_similarity

if TYPE_CHECKING:
    from .config import ScanConfig

log = logger.bind(stage="grouping")

DEFAULT_SIMILARITY_THRESHOLD = 0.85
FILELESS_MATCH_THRESHOLD = 0.85

Scorer = Callable[[str, str], float]


class GroupingStrategy(Protocol):
    def group_files(self, files: Iterable[LibraryFile]) -> list[BookGroup]: ...


def _sorted_unique(files: Iterable[LibraryFile]) -> list[LibraryFile]:
    return sorted(set(files), key=lambda f: str(f.full_path))


def _ordered(groups: Iterable[BookGroup]) -> list[BookGroup]:
    result = []
    for group in groups:
        if not group.files:
            continue
        group.files.sort(key=lambda f: str(f.full_path))
        result.append(group)
    result.sort(key=lambda g: str(g.files[0].full_path))
    return result


def series_compatible(a: float | None, b: float | None) -> bool:
    """Series numbers agree: both absent, or both present and equal.

    One side numbered and the other not counts as a mismatch.
    """
    if a is None and b is None:
        return True
    if a is None or b is None:
        return False
    return a == b


# ---------------------------------------------------------------------------
# BookPerFolder
# ---------------------------------------------------------------------------


class BookPerFolderStrategy:
    """Every distinct parent folder is one book."""

    def __init__(self, series_markers: Sequence[str] | None = None) -> None:
        self.series_markers = series_markers

    def group_files(self, files: Iterable[LibraryFile]) -> list[BookGroup]:
        files = _sorted_unique(files)
        by_folder: dict[Path, BookGroup] = {}
        for f in files:
            group = by_folder.get(f.group_folder)
            if group is None:
                name = f.group_folder.name or str(f.group_folder)
                group = BookGroup(
                    representative_title=name,
                    series_index=extract_series_number(name, self.series_markers),
                )
                by_folder[f.group_folder] = group
            group.add(f)

        groups = _ordered(by_folder.values())
        log.debug(f"BOOK_PER_FOLDER grouping: {len(files)} files into {len(groups)} groups")
        return groups


# ---------------------------------------------------------------------------
# AutoDetect
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _FolderRef:
    path: Path
    title: str
    series: float | None


class AutoDetectStrategy:
    """Folder-centric fuzzy grouping.

    Each folder holding scanned files provides a reference title. A file
    joins the best-scoring reference among its own folder, its parent
    folder, and its direct subfolders, provided the score reaches the
    threshold and the series numbers agree. Exact score ties go to the
    lexicographically first folder path. Files matching no folder are
    grouped by (folder, normalized title, series number).
    """

    def __init__(
        self,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        series_markers: Sequence[str] | None = None,
        library_root: Path | None = None,
        scorer: Scorer = title_similarity,
    ) -> None:
        self.similarity_threshold = similarity_threshold
        self.series_markers = series_markers
        self.library_root = library_root
        self.scorer = scorer

    def _is_reference(self, folder: Path) -> bool:
        if self.library_root is None:
            return True
        # The library root (and anything above it) names the library, not a book
        return folder != self.library_root and folder.is_relative_to(self.library_root)

    def _score(self, ref: _FolderRef, title: str) -> float:
        if not ref.title or not title:
            return 0.0
        return self.scorer(ref.title, title)

    def group_files(self, files: Iterable[LibraryFile]) -> list[BookGroup]:
        files = _sorted_unique(files)
        if not files:
            return []

        refs: dict[Path, _FolderRef] = {}
        children: dict[Path, list[Path]] = {}
        for folder in sorted({f.group_folder for f in files}, key=str):
            refs[folder] = _FolderRef(
                path=folder,
                title=normalize_title(folder.name, self.series_markers),
                series=extract_series_number(folder.name, self.series_markers),
            )
            children.setdefault(folder.parent, []).append(folder)

        folder_groups: dict[Path, BookGroup] = {}
        loose_groups: dict[tuple[Path, str, float | None], BookGroup] = {}

        for f in files:
            title = normalize_title(f.stem, self.series_markers)
            series = extract_series_number(f.stem, self.series_markers)

            candidates = [f.group_folder, f.group_folder.parent]
            candidates.extend(children.get(f.group_folder, []))

            best: tuple[float, str, _FolderRef] | None = None
            for path in candidates:
                ref = refs.get(path)
                if ref is None or not self._is_reference(path):
                    continue
                if not series_compatible(ref.series, series):
                    log.debug(
                        f"Series mismatch: '{f.file_name}' ({series}) vs "
                        f"folder '{path.name}' ({ref.series})"
                    )
                    continue
                score = self._score(ref, title)
                if score < self.similarity_threshold:
                    continue
                key = (-score, str(path), ref)
                if best is None or key[:2] < best[:2]:
                    best = key

            if best is not None:
                ref = best[2]
                group = folder_groups.get(ref.path)
                if group is None:
                    group = BookGroup(
                        representative_title=ref.path.name,
                        series_index=ref.series,
                    )
                    folder_groups[ref.path] = group
                group.add(f)
                log.debug(
                    f"AUTO_DETECT: '{f.file_name}' -> folder '{ref.path.name}' "
                    f"(similarity: {-best[0]:.2f})"
                )
                continue

            loose_key = (f.group_folder, title, series)
            group = loose_groups.get(loose_key)
            if group is None:
                group = BookGroup(
                    representative_title=display_title(f.stem),
                    series_index=series,
                )
                loose_groups[loose_key] = group
            group.add(f)
            log.debug(f"AUTO_DETECT: '{f.file_name}' matched no folder, keyed on '{title}'")

        groups = _ordered([*folder_groups.values(), *loose_groups.values()])
        log.debug(
            f"AUTO_DETECT grouping: {len(files)} files into {len(groups)} groups "
            f"({len(folder_groups)} folder-matched)"
        )
        return groups


# ---------------------------------------------------------------------------
# Strategy selection
# ---------------------------------------------------------------------------


def _book_per_folder(config: ScanConfig | None, library_root: Path | None) -> GroupingStrategy:
    markers = config.series_markers if config is not None else None
    return BookPerFolderStrategy(series_markers=markers)


def _auto_detect(config: ScanConfig | None, library_root: Path | None) -> GroupingStrategy:
    if config is None:
        return AutoDetectStrategy(library_root=library_root)
    return AutoDetectStrategy(
        similarity_threshold=config.similarity_threshold,
        series_markers=config.series_markers,
        library_root=library_root,
    )


_STRATEGIES: dict[OrganizationMode, Callable[[ScanConfig | None, Path | None], GroupingStrategy]] = {
    OrganizationMode.BOOK_PER_FOLDER: _book_per_folder,
    OrganizationMode.AUTO_DETECT: _auto_detect,
}


def select_strategy(
    mode: OrganizationMode | str | None,
    config: ScanConfig | None = None,
    library_root: Path | None = None,
) -> GroupingStrategy:
    """Map an organization mode to its grouping strategy.

    Raises UnknownOrganizationModeError for anything that is not a
    recognized mode.
    """
    resolved = OrganizationMode.parse(mode)
    factory = _STRATEGIES.get(resolved)
    if factory is None:
        raise UnknownOrganizationModeError(mode)
    return factory(config, library_root)


def group_for_initial_scan(
    files: Iterable[LibraryFile],
    mode: OrganizationMode | str | None,
    config: ScanConfig | None = None,
    library_root: Path | None = None,
) -> list[BookGroup]:
    """Group every file of a library scan into books."""
    return select_strategy(mode, config, library_root).group_files(files)


# ---------------------------------------------------------------------------
# Rescan
# ---------------------------------------------------------------------------


def _book_key(name: str, markers: Sequence[str] | None) -> tuple[str, float | None]:
    stem = name.rsplit(".", 1)[0] if "." in name[1:] else name
    return normalize_title(stem, markers), extract_series_number(stem, markers)


def _book_key_for_file(f: LibraryFile, markers: Sequence[str] | None) -> tuple[str, float | None]:
    # Collapsed audiobook folders have no extension to strip
    return normalize_title(f.stem, markers), extract_series_number(f.stem, markers)


def group_for_rescan(
    files: Iterable[LibraryFile],
    existing_books: Iterable[ExistingBook],
    mode: OrganizationMode | str | None,
    library_root: Path | None = None,
    config: ScanConfig | None = None,
) -> RescanResult:
    """Match new files against books that already exist, then group the rest.

    Order of checks per file:
      1. Fileless books (metadata only) matched by title similarity.
      2. Root-level files are never attached to folder books.
      3. Books with files in the same folder: a single book takes the file
         (auto_detect also requires compatible series numbers); several
         books need an exact title+series match, or under auto_detect the
         best fuzzy match at or above the threshold.
    Unmatched files are grouped with the mode's strategy.
    """
    resolved = OrganizationMode.parse(mode)
    markers = config.series_markers if config is not None else None
    threshold = (
        config.similarity_threshold if config is not None else DEFAULT_SIMILARITY_THRESHOLD
    )
    fileless_threshold = (
        config.fileless_match_threshold if config is not None else FILELESS_MATCH_THRESHOLD
    )

    active = sorted((b for b in existing_books if not b.deleted), key=lambda b: b.book_id)
    fileless = [b for b in active if not b.has_files and b.title]
    by_folder: dict[Path, list[ExistingBook]] = {}
    for book in active:
        if book.has_files and book.folder_path is not None:
            by_folder.setdefault(book.folder_path, []).append(book)

    result = RescanResult()
    unmatched: list[LibraryFile] = []

    for f in _sorted_unique(files):
        match = _match_fileless(f, fileless, fileless_threshold, markers)
        if match is None and f.group_folder != library_root:
            match = _match_in_folder(
                f, by_folder.get(f.group_folder, []), resolved, threshold, markers
            )
        if match is not None:
            result.files_to_attach.setdefault(match.book_id, []).append(f)
        else:
            unmatched.append(f)

    if unmatched:
        result.new_groups = select_strategy(resolved, config, library_root).group_files(unmatched)

    log.info(
        f"Rescan grouping: {sum(len(v) for v in result.files_to_attach.values())} files "
        f"attached to {len(result.files_to_attach)} books, "
        f"{len(result.new_groups)} new groups"
    )
    return result


def _match_fileless(
    f: LibraryFile,
    fileless: list[ExistingBook],
    threshold: float,
    markers: Sequence[str] | None,
) -> ExistingBook | None:
    if not fileless:
        return None
    file_title = normalize_title(f.stem, markers)
    for book in fileless:
        if book.folder_path is not None and book.folder_path != f.group_folder:
            continue
        similarity = title_similarity(file_title, normalize_title(book.title or "", markers))
        if similarity >= threshold:
            log.debug(f"Matched '{f.file_name}' to fileless book {book.book_id} ({book.title})")
            return book
    return None


def _match_in_folder(
    f: LibraryFile,
    books: list[ExistingBook],
    mode: OrganizationMode,
    threshold: float,
    markers: Sequence[str] | None,
) -> ExistingBook | None:
    if not books:
        return None

    file_title, file_series = _book_key_for_file(f, markers)

    if len(books) == 1:
        book = books[0]
        if mode == OrganizationMode.AUTO_DETECT:
            _, book_series = _book_key(book.primary_file_name or "", markers)
            if not series_compatible(book_series, file_series):
                return None
        log.debug(f"{mode.name}: attaching '{f.file_name}' to single book {book.book_id}")
        return book

    if mode == OrganizationMode.BOOK_PER_FOLDER:
        log.warning(
            f"BOOK_PER_FOLDER: multiple books ({len(books)}) in folder "
            f"'{f.group_folder}', using filename match"
        )

    best: ExistingBook | None = None
    best_similarity = 0.0
    for book in books:
        book_title, book_series = _book_key(book.primary_file_name or "", markers)
        if (book_title, book_series) == (file_title, file_series):
            return book
        if mode != OrganizationMode.AUTO_DETECT:
            continue
        if not series_compatible(book_series, file_series):
            continue
        similarity = title_similarity(file_title, book_title)
        if similarity >= threshold and similarity > best_similarity:
            best_similarity = similarity
            best = book

    if best is not None:
        log.debug(
            f"AUTO_DETECT: fuzzy matched '{f.file_name}' to book {best.book_id} "
            f"(similarity: {best_similarity:.2f})"
        )
    return best
