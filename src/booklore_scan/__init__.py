"""Booklore library scanner -- group e-book and audiobook files into books.

Core modules:
    config      -- Scanner configuration via pydantic-settings (.env + env vars)
                   and loguru setup.
    cli         -- Click CLI entry point (booklore-scan). CLI flags passed as
                   kwargs to ScanConfig (no env pollution).
    models      -- OrganizationMode, BookFileType, LibraryFile, BookGroup and
                   the per-library report types.
    titles      -- Title normalization, series-number extraction, rapidfuzz
                   similarity scoring.
    scanner     -- Lazy depth-first folder walk; unreadable folders are skipped
                   with a warning. Optional audio-folder collapsing.
    grouping    -- BookPerFolder and AutoDetect strategies, strategy selection,
                   initial-scan and rescan grouping.
    concurrency -- Per-library file lock and cancellation token.
    coordinator -- Thread pool running one scan per library.
    writers     -- Metadata writer contract with explicit cover capabilities.
    errors      -- Exception hierarchy.
"""
