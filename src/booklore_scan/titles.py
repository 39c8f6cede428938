"""Title normalization, series-number extraction, and similarity scoring.

Folder names and file stems go through the same normalize_title() so a
folder reference and a filename title are comparable. Similarity uses
rapidfuzz token_sort_ratio scaled to [0, 1].
"""

import re
import unicodedata
from collections.abc import Iterable

from loguru import logger
from rapidfuzz import fuzz

log = logger.bind(stage="titles")

DEFAULT_MARKERS: tuple[str, ...] = ("book", "volume", "vol", "no", "#")

_NUMBER = r"(\d{1,3}(?:\.\d+)?)(?!\d)"

# "Part 2", "(Disc 1)", "- CD 3" -- split chapters, never a series position
_PART_DISC = re.compile(
    r"\s*[(\[\-]?\s*\b(?:part|pt|dis[ck]|cd)\s*\d+\s*[)\]]?",
    re.IGNORECASE,
)
_BRACKETED = re.compile(r"[(\[{][^)\]}]*[)\]}]")
_BRACKETED_NUMBER = re.compile(r"[(\[]\s*" + _NUMBER + r"\s*[)\]]")
_LEADING_NUMBER = re.compile(r"^\s*" + _NUMBER + r"(?=\s*[-.–_:)]|\s+\S)")
_TRAILING_NUMBER = re.compile(r"(?:^|[\s_])" + _NUMBER + r"\s*$")
_TRAILING_SEPARATORS = re.compile(r"[\s\-–:,]+$")

_EDITION_MARKERS = [
    re.compile(r"\b\d+(?:st|nd|rd|th)\s+anniversary(?:\s+edition)?\b", re.IGNORECASE),
    re.compile(
        r"\b(?:special|deluxe|collector'?s|illustrated|revised|expanded|annotated"
        r"|anniversary|definitive|complete|uncut|author'?s\s+preferred)\s+edition\b",
        re.IGNORECASE,
    ),
    re.compile(r"\b(?:un)?abridged\b", re.IGNORECASE),
    re.compile(r"\baudio\s*book\b", re.IGNORECASE),
]

# Trailing words naming a collection rather than a book
_COLLECTION_SUFFIXES = frozenset({"series", "trilogy", "saga", "cycle", "collection"})

# Audio chapter stems that say nothing about which book they belong to
_GENERIC_AUDIO_TITLES = frozenset(
    {
        "chapter",
        "track",
        "part",
        "disc",
        "disk",
        "cd",
        "side",
        "intro",
        "epilogue",
        "prologue",
        "outro",
    }
)


def _marker_pattern(markers: Iterable[str]) -> re.Pattern[str]:
    alternatives = []
    for marker in sorted({m.lower() for m in markers if m}, key=len, reverse=True):
        escaped = re.escape(marker)
        if marker[0].isalpha():
            escaped = r"(?<![a-z])" + escaped
        if marker[-1].isalpha():
            escaped = escaped + r"(?![a-z])"
        alternatives.append(escaped)
    if not alternatives:
        # Matches nothing
        return re.compile(r"(?!x)x")
    return re.compile(
        r"(?:" + "|".join(alternatives) + r")\.?\s*" + _NUMBER,
        re.IGNORECASE,
    )


_DEFAULT_MARKER_PATTERN = _marker_pattern(DEFAULT_MARKERS)


def _pattern_for(markers: Iterable[str] | None) -> re.Pattern[str]:
    if markers is None:
        return _DEFAULT_MARKER_PATTERN
    return _marker_pattern(markers)


def _fold(name: str) -> str:
    """Drop accents so "Les Misérables" compares equal to "Les Miserables"."""
    decomposed = unicodedata.normalize("NFKD", name)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def extract_series_number(
    name: str, markers: Iterable[str] | None = None
) -> float | None:
    """Extract a series position from a folder name or file stem.

    Recognized, in order: marker tokens ("Book 2", "Vol. 3", "#4"),
    bracketed numbers ("[01]", "(2)"), a leading number ("01 - Title"),
    and a trailing number ("Foundation 02"). Four-digit years and
    part/disc indicators are never series positions. Bracketed notes and
    edition markers are ignored when looking for a bare number, so
    "Fahrenheit 451 (Unabridged)" reads the same as "Fahrenheit 451".
    """
    if not name:
        return None
    s = _PART_DISC.sub(" ", _fold(name)).replace("_", " ").strip()

    for pattern in (_pattern_for(markers), _BRACKETED_NUMBER):
        match = pattern.search(s)
        if match:
            return float(match.group(1))

    # "(Unabridged)" and friends must not hide a trailing number
    bare = _BRACKETED.sub(" ", s)
    for pattern in _EDITION_MARKERS:
        bare = pattern.sub(" ", bare)
    bare = _TRAILING_SEPARATORS.sub("", bare).strip()
    for pattern in (_LEADING_NUMBER, _TRAILING_NUMBER):
        match = pattern.search(bare)
        if match:
            return float(match.group(1))
    return None


def normalize_title(name: str, markers: Iterable[str] | None = None) -> str:
    """Normalize a folder name or file stem for comparison.

    Strips bracketed annotations, part/disc indicators, series markers,
    edition markers, and punctuation, then case-folds and collapses
    whitespace. "The Hobbit (Unabridged) [01]" -> "the hobbit".
    """
    if not name:
        return ""
    s = _fold(name)
    s = _BRACKETED.sub(" ", s)
    s = _PART_DISC.sub(" ", s)
    s = s.replace("_", " ")
    s = _pattern_for(markers).sub(" ", s)
    for pattern in _EDITION_MARKERS:
        s = pattern.sub(" ", s)
    s = _TRAILING_SEPARATORS.sub("", s)
    s = _LEADING_NUMBER.sub(" ", s)
    s = _TRAILING_NUMBER.sub(" ", s)
    s = re.sub(r"['’]", "", s)
    s = re.sub(r"[^\w\s]", " ", s)
    s = re.sub(r"\s+", " ", s).strip().casefold()

    words = s.split()
    while len(words) > 1 and words[-1] in _COLLECTION_SUFFIXES:
        words.pop()
    return " ".join(words)


def title_similarity(a: str, b: str) -> float:
    """Similarity of two normalized titles in [0, 1].

    Empty or whitespace-only input scores 0.0.
    """
    if not a or not b or not a.strip() or not b.strip():
        return 0.0
    return fuzz.token_sort_ratio(a, b) / 100.0


def display_title(stem: str) -> str:
    """Human-readable title from a file stem: underscores to spaces, tidy whitespace."""
    s = stem.replace("_", " ")
    s = re.sub(r"\s+", " ", s).strip()
    return s or stem


def audio_base_title(file_name: str) -> str:
    """Base title of an audio chapter file.

    "01 - The Hobbit Part 2.mp3" -> "the hobbit". Numbering, part/disc
    indicators, and the extension are removed.
    """
    stem = file_name.rsplit(".", 1)[0] if "." in file_name[1:] else file_name
    s = re.sub(r"^\d{1,3}(?:\.|\s*-)\s*", "", stem)
    s = _PART_DISC.sub("", s)
    s = re.sub(r"\s*\d+\s*$", "", s)
    return s.strip().lower()


def is_series_folder(file_names: Iterable[str]) -> bool:
    """True if audio files in one folder carry more than one distinct title.

    A series folder holds separate books; otherwise the files are chapters
    of a single audiobook.
    """
    titles = set()
    for name in file_names:
        title = audio_base_title(name)
        if title and title not in _GENERIC_AUDIO_TITLES:
            titles.add(title)
    log.debug(f"is_series_folder: distinct titles={sorted(titles)}")
    return len(titles) > 1
