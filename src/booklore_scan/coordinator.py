"""Parallel library scans -- one worker task per library.

Libraries are independent, so each scan runs on its own thread with its own
group map. Within a library, grouping finishes before the report is handed
back; a cancelled scan hands back no groups at all.
"""

import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed

import click
from loguru import logger

from .concurrency import (
    CancellationToken,
    LockError,
    acquire_library_lock,
    release_library_lock,
)
from .config import ScanConfig
from .errors import ConfigError, ScanCancelledError
from .grouping import select_strategy
from .models import BookFileType, Library, ScanReport
from .scanner import scan_library

log = logger.bind(stage="coordinator")


class ScanCoordinator:
    """Runs library scans on a thread pool.

    Attributes:
        config: Scanner configuration (thresholds, lock dir, worker count)
        skip_lock: Skip the per-library file lock (tests, read-only previews)
    """

    def __init__(self, config: ScanConfig, skip_lock: bool = False) -> None:
        self.config = config
        self.skip_lock = skip_lock
        self._tokens: dict[str, CancellationToken] = {}
        self._tokens_lock = threading.Lock()

    def cancel(self, library_name: str) -> bool:
        """Request cancellation of a running or queued scan.

        Returns False if no scan with that name is known.
        """
        with self._tokens_lock:
            token = self._tokens.get(library_name)
        if token is None:
            return False
        log.info(f"Cancellation requested for library '{library_name}'")
        token.cancel()
        return True

    def run(self, libraries: list[Library]) -> list[ScanReport]:
        """Scan every library in parallel. Reports come back in input order."""
        if not libraries:
            log.warning("No libraries to scan")
            return []

        names = [lib.name for lib in libraries]
        if len(set(names)) != len(names):
            raise ConfigError(f"Duplicate library names: {names}")

        self.config.ensure_dirs()
        with self._tokens_lock:
            for lib in libraries:
                self._tokens[lib.name] = CancellationToken()

        max_workers = self._calculate_max_workers(len(libraries))
        log.info(f"Starting scan: {len(libraries)} libraries, max_workers={max_workers}")

        reports: dict[str, ScanReport] = {}
        try:
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                futures: dict[Future, Library] = {
                    executor.submit(self.scan_one, lib, self._tokens[lib.name]): lib
                    for lib in libraries
                }
                for future in as_completed(futures):
                    lib = futures[future]
                    report = future.result()
                    reports[lib.name] = report
                    if report.ok:
                        log.info(
                            f"Completed: {lib.name} ({report.file_count} files, "
                            f"{len(report.groups)} books)"
                        )
                    elif report.cancelled:
                        log.info(f"Cancelled: {lib.name}")
                    else:
                        log.error(f"Failed: {lib.name}: {report.error}")
        finally:
            with self._tokens_lock:
                for name in names:
                    self._tokens.pop(name, None)

        return [reports[lib.name] for lib in libraries]

    def scan_one(
        self, library: Library, token: CancellationToken | None = None
    ) -> ScanReport:
        """Scan and group one library. Never raises; failures land in the report."""
        report = ScanReport(library=library)
        token = token or CancellationToken()

        try:
            handle = acquire_library_lock(
                self.config.lock_dir, library.root, skip=self.skip_lock
            )
        except LockError as e:
            report.error = str(e)
            return report

        try:
            strategy = select_strategy(library.mode, self.config, library.root)
            files = list(
                scan_library(
                    library.root,
                    cancel=token,
                    group_audio_folders=self.config.group_audio_folders,
                    warnings=report.warnings,
                )
            )
            token.raise_if_cancelled(library.root)
            report.file_count = len(files)
            report.groups = strategy.group_files(files)
        except ScanCancelledError:
            report.groups = []
            report.cancelled = True
        except ConfigError as e:
            report.error = str(e)
        except Exception as e:
            log.error(f"Error scanning {library.name}: {e}")
            report.groups = []
            report.error = str(e)
        finally:
            release_library_lock(handle)

        return report

    def _calculate_max_workers(self, library_count: int) -> int:
        """Calculate maximum parallel scans based on config and CPU count."""
        if self.config.max_parallel_scans > 0:
            max_workers = self.config.max_parallel_scans
            log.debug(f"Using configured max_parallel_scans: {max_workers}")
        else:
            cpu_count = os.cpu_count() or 1
            # Scans are I/O bound; a few threads per core is fine
            max_workers = max(1, min(library_count, cpu_count * 2, 8))
            log.debug(f"Auto-calculated max_workers: {max_workers} (cpu_count={cpu_count})")
        return max_workers


def print_reports(
    reports: list[ScanReport], format_priority: list[BookFileType] | None = None
) -> None:
    """Human-readable summary of scan reports. The primary file is starred."""
    for report in reports:
        lib = report.library
        click.echo(f"\n{lib.name} ({lib.root}) [{lib.mode.value}]")
        if report.cancelled:
            click.echo("  cancelled")
            continue
        if report.error:
            click.echo(f"  error: {report.error}")
            continue
        for group in report.groups:
            series = ""
            if group.series_index is not None:
                series = f" #{group.series_index:g}"
            click.echo(f"  {group.representative_title}{series}")
            primary = group.primary_file(format_priority)
            for f in group.files:
                marker = "*" if f == primary else "-"
                click.echo(f"    {marker} {f.full_path}")
        for warning in report.warnings:
            click.echo(f"  warning: {warning}")
        click.echo(
            f"  {report.file_count} files -> {len(report.groups)} books"
        )
