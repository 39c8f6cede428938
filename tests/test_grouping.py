"""Tests for grouping.py -- BookPerFolder, AutoDetect, strategy selection."""

import random
from pathlib import Path

import pytest

from booklore_scan.config import ScanConfig
from booklore_scan.errors import UnknownOrganizationModeError
from booklore_scan.grouping import (
    AutoDetectStrategy,
    BookPerFolderStrategy,
    group_for_initial_scan,
    select_strategy,
    series_compatible,
)
from booklore_scan.models import LibraryFile, OrganizationMode
from booklore_scan.scanner import scan_library

ROOT = Path("/library")


def lf(path: str) -> LibraryFile:
    return LibraryFile.from_path(ROOT / path)


def names(group) -> list[str]:
    return [f.file_name for f in group.files]


def partition(groups) -> list[list[str]]:
    return [[str(f.full_path) for f in g.files] for g in groups]


@pytest.fixture
def american_gods():
    return [
        lf("American Gods/American Gods.epub"),
        lf("American Gods/American Gods.m4b"),
        lf("American Gods/American Gods - 10th Anniversary.pdf"),
    ]


@pytest.fixture
def foundation():
    return [
        lf("Foundation Series/Foundation 01.epub"),
        lf("Foundation Series/Foundation 02.epub"),
    ]


@pytest.fixture
def mixed_library(american_gods, foundation):
    return [
        *american_gods,
        *foundation,
        lf("Dune.pdf"),
        lf("Dune/Dune.epub"),
        lf("Mistborn/Mistborn Book 1 - The Final Empire.epub"),
        lf("Mistborn/Mistborn Book 2 - The Well of Ascension.epub"),
        lf("Saga Vol 1/Saga Vol 1.cbz"),
        lf("Saga Vol 1/Saga Vol 2.cbz"),
        lf("Audio/01.mp3"),
        lf("Audio/02.mp3"),
    ]


class TestBookPerFolder:
    def test_one_folder_one_group(self, american_gods):
        groups = BookPerFolderStrategy().group_files(american_gods)
        assert len(groups) == 1
        assert groups[0].representative_title == "American Gods"
        assert sorted(names(groups[0])) == [
            "American Gods - 10th Anniversary.pdf",
            "American Gods.epub",
            "American Gods.m4b",
        ]

    def test_each_folder_is_a_group(self, american_gods, foundation):
        groups = BookPerFolderStrategy().group_files(american_gods + foundation)
        assert [g.representative_title for g in groups] == [
            "American Gods",
            "Foundation Series",
        ]
        assert len(groups[1].files) == 2

    def test_empty_input(self):
        assert BookPerFolderStrategy().group_files([]) == []

    def test_series_index_from_folder(self):
        groups = BookPerFolderStrategy().group_files([lf("Mistborn Book 2/Well.epub")])
        assert groups[0].series_index == 2.0

    def test_root_files_form_one_group(self):
        groups = BookPerFolderStrategy().group_files([lf("Dune.pdf"), lf("Emma.epub")])
        assert len(groups) == 1
        assert groups[0].representative_title == "library"

    def test_files_sorted_within_group(self, american_gods):
        groups = BookPerFolderStrategy().group_files(list(reversed(american_gods)))
        assert names(groups[0]) == sorted(names(groups[0]))


class TestAutoDetect:
    def test_foundation_series_splits_by_number(self, foundation):
        groups = AutoDetectStrategy(library_root=ROOT).group_files(foundation)
        assert len(groups) == 2
        assert [names(g) for g in groups] == [["Foundation 01.epub"], ["Foundation 02.epub"]]
        assert [g.series_index for g in groups] == [1.0, 2.0]

    def test_foundation_series_without_root(self, foundation):
        assert len(AutoDetectStrategy().group_files(foundation)) == 2

    def test_editions_join_folder(self, american_gods):
        groups = AutoDetectStrategy(library_root=ROOT).group_files(american_gods)
        assert len(groups) == 1
        assert groups[0].representative_title == "American Gods"
        assert len(groups[0].files) == 3

    def test_below_threshold_forms_singleton(self):
        files = [lf("Dune/Dune.epub"), lf("Dune/Odd One.epub")]

        def scorer(ref: str, title: str) -> float:
            return 0.79 if title == "odd one" else 1.0

        strategy = AutoDetectStrategy(similarity_threshold=0.8, library_root=ROOT, scorer=scorer)
        groups = strategy.group_files(files)
        assert [names(g) for g in groups] == [["Dune.epub"], ["Odd One.epub"]]
        assert groups[1].representative_title == "Odd One"

    def test_at_threshold_joins_folder(self):
        files = [lf("Dune/Dune.epub"), lf("Dune/Odd One.epub")]
        strategy = AutoDetectStrategy(
            similarity_threshold=0.8, library_root=ROOT, scorer=lambda ref, title: 0.8
        )
        groups = strategy.group_files(files)
        assert len(groups) == 1
        assert groups[0].representative_title == "Dune"

    def test_root_file_joins_child_folder(self):
        files = [lf("Dune.pdf"), lf("Dune/Dune.epub")]
        groups = AutoDetectStrategy(library_root=ROOT).group_files(files)
        assert len(groups) == 1
        assert sorted(names(groups[0])) == ["Dune.epub", "Dune.pdf"]

    def test_library_root_never_a_reference(self):
        files = [LibraryFile.from_path(Path("/Dune/Dune.pdf")), LibraryFile.from_path(Path("/Dune/Emma.pdf"))]
        groups = AutoDetectStrategy(
            library_root=Path("/Dune"), scorer=lambda ref, title: 1.0
        ).group_files(files)
        assert len(groups) == 2

    def test_exact_tie_goes_to_first_folder_path(self):
        files = [lf("own/x.epub"), lf("own/zeta/z.epub"), lf("own/alpha/a.epub")]
        scores = {"alpha": 0.9, "zeta": 0.9}

        strategy = AutoDetectStrategy(
            library_root=ROOT, scorer=lambda ref, title: scores.get(ref, 0.1)
        )
        groups = strategy.group_files(files)
        by_title = {g.representative_title: sorted(names(g)) for g in groups}
        assert by_title == {"alpha": ["a.epub", "x.epub"], "zeta": ["z.epub"]}

    def test_highest_score_wins(self):
        files = [lf("own/x.epub"), lf("own/zeta/z.epub"), lf("own/alpha/a.epub")]
        scores = {"alpha": 0.86, "zeta": 0.95}

        strategy = AutoDetectStrategy(
            library_root=ROOT, scorer=lambda ref, title: scores.get(ref, 0.1)
        )
        by_title = {g.representative_title: sorted(names(g)) for g in strategy.group_files(files)}
        assert by_title == {"alpha": ["a.epub"], "zeta": ["x.epub", "z.epub"]}

    def test_different_series_numbers_split(self):
        files = [lf("Saga Vol 1/Saga Vol 1.cbz"), lf("Saga Vol 1/Saga Vol 2.cbz")]
        groups = AutoDetectStrategy(library_root=ROOT).group_files(files)
        assert [names(g) for g in groups] == [["Saga Vol 1.cbz"], ["Saga Vol 2.cbz"]]
        assert groups[0].representative_title == "Saga Vol 1"
        assert groups[0].series_index == 1.0
        assert groups[1].series_index == 2.0

    def test_series_on_one_side_only_splits(self):
        files = [lf("Dune/Dune.epub"), lf("Dune/Dune 2.epub")]
        groups = AutoDetectStrategy(library_root=ROOT).group_files(files)
        assert [names(g) for g in groups] == [["Dune 2.epub"], ["Dune.epub"]]

    def test_unmatched_same_title_group_together(self):
        files = [lf("Misc/Emma.epub"), lf("Misc/Emma.pdf")]
        groups = AutoDetectStrategy(library_root=ROOT).group_files(files)
        assert len(groups) == 1
        assert groups[0].representative_title == "Emma"

    def test_degenerate_titles_never_match(self):
        files = [lf("Audio/01.mp3"), lf("Audio/02.mp3")]
        groups = AutoDetectStrategy(library_root=ROOT).group_files(files)
        assert len(groups) == 2

    def test_empty_input(self):
        assert AutoDetectStrategy().group_files([]) == []

    def test_duplicate_files_counted_once(self, american_gods):
        groups = AutoDetectStrategy(library_root=ROOT).group_files(american_gods * 2)
        assert len(groups[0].files) == 3


class TestPartitionProperties:
    @pytest.mark.parametrize("mode", list(OrganizationMode))
    def test_every_file_in_exactly_one_group(self, mixed_library, mode):
        groups = group_for_initial_scan(mixed_library, mode, library_root=ROOT)
        grouped = [f for g in groups for f in g.files]
        assert len(grouped) == len(set(grouped))
        assert set(grouped) == set(mixed_library)

    @pytest.mark.parametrize("mode", list(OrganizationMode))
    def test_idempotent_regardless_of_input_order(self, mixed_library, mode):
        first = group_for_initial_scan(mixed_library, mode, library_root=ROOT)
        shuffled = list(mixed_library)
        random.Random(7).shuffle(shuffled)
        second = group_for_initial_scan(shuffled, mode, library_root=ROOT)
        assert partition(first) == partition(second)
        assert [g.representative_title for g in first] == [
            g.representative_title for g in second
        ]

    def test_book_per_folder_keeps_folders_together(self, mixed_library):
        groups = group_for_initial_scan(mixed_library, OrganizationMode.BOOK_PER_FOLDER)
        for g in groups:
            assert len({f.folder_path for f in g.files}) == 1
        assert len(groups) == len({f.folder_path for f in mixed_library})


class TestSelectStrategy:
    def test_book_per_folder(self):
        assert isinstance(select_strategy(OrganizationMode.BOOK_PER_FOLDER), BookPerFolderStrategy)

    def test_auto_detect_from_string(self):
        assert isinstance(select_strategy("auto_detect"), AutoDetectStrategy)

    def test_none_defaults_to_auto_detect(self):
        assert isinstance(select_strategy(None), AutoDetectStrategy)

    def test_unknown_mode_raises(self):
        with pytest.raises(UnknownOrganizationModeError):
            select_strategy("by_author")

    def test_config_propagates(self, monkeypatch):
        monkeypatch.delenv("SIMILARITY_THRESHOLD", raising=False)
        config = ScanConfig(_env_file=None, similarity_threshold=0.6, series_markers=["tome"])
        strategy = select_strategy(OrganizationMode.AUTO_DETECT, config, library_root=ROOT)
        assert strategy.similarity_threshold == 0.6
        assert strategy.series_markers == ["tome"]
        assert strategy.library_root == ROOT


class TestSeriesCompatible:
    @pytest.mark.parametrize(
        "a, b, expected",
        [(None, None, True), (1.0, 1.0, True), (1.0, 2.0, False), (None, 1.0, False), (1.0, None, False)],
    )
    def test_rules(self, a, b, expected):
        assert series_compatible(a, b) is expected


class TestCollapsedAudioFolders:
    @pytest.fixture
    def scanned(self, tmp_path):
        lib = tmp_path / "lib"
        for name in (
            "American Gods/American Gods.epub",
            "American Gods/American Gods Part 1.mp3",
            "American Gods/American Gods Part 2.mp3",
            "Loose Notes.pdf",
        ):
            path = lib / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(b"x")
        return lib, list(scan_library(lib, group_audio_folders=True))

    def test_book_per_folder_keeps_audiobook_with_its_folder(self, scanned):
        lib, files = scanned
        groups = BookPerFolderStrategy().group_files(files)
        assert [(g.representative_title, names(g)) for g in groups] == [
            ("American Gods", ["American Gods", "American Gods.epub"]),
            ("lib", ["Loose Notes.pdf"]),
        ]

    def test_auto_detect_keeps_audiobook_with_its_folder(self, scanned):
        lib, files = scanned
        groups = AutoDetectStrategy(library_root=lib).group_files(files)
        assert [(g.representative_title, names(g)) for g in groups] == [
            ("American Gods", ["American Gods", "American Gods.epub"]),
            ("Loose Notes", ["Loose Notes.pdf"]),
        ]


class TestTitlesEndingInNumbers:
    @pytest.mark.parametrize(
        "folder, files",
        [
            ("Fahrenheit 451", ["Fahrenheit 451.epub", "Fahrenheit 451 (Unabridged).m4b"]),
            ("Catch 22", ["Catch 22.epub", "Catch 22 - 50th Anniversary Edition.pdf"]),
        ],
    )
    def test_editions_stay_together(self, folder, files):
        library = [lf(f"{folder}/{name}") for name in files]
        groups = AutoDetectStrategy(library_root=ROOT).group_files(library)
        assert len(groups) == 1
        assert groups[0].representative_title == folder
        assert sorted(names(groups[0])) == sorted(files)
