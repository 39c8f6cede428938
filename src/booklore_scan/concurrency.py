"""Per-library scan locking and cancellation."""

import hashlib
import sys
import threading
from pathlib import Path

from loguru import logger

from .errors import ScanCancelledError

log = logger.bind(stage="concurrency")


class LockError(Exception):
    """Raised when lock cannot be acquired."""


def library_lock_name(library_root: Path) -> str:
    """Stable lock filename for a library root."""
    digest = hashlib.sha256(str(library_root.resolve()).encode()).hexdigest()[:16]
    return f"library-{digest}.lock"


def _try_lock(fh) -> None:
    """Non-blocking exclusive lock on an open file; OSError if already held."""
    if sys.platform == "win32":
        import msvcrt

        msvcrt.locking(fh.fileno(), msvcrt.LK_NBLCK, 1)
    else:
        import fcntl

        fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)


def acquire_library_lock(
    lock_dir: Path, library_root: Path, skip: bool = False
) -> object | None:
    """Acquire the exclusive scan lock for one library.

    Returns the open lock file (the lock lives as long as the handle), or
    None when skip is set. Raises LockError if another scan of the same
    library holds it.
    """
    if skip:
        log.debug(f"Skipping lock for {library_root}")
        return None

    lock_dir.mkdir(parents=True, exist_ok=True)
    lock_file = lock_dir / library_lock_name(library_root)
    fh = open(lock_file, "w")
    try:
        _try_lock(fh)
    except OSError as e:
        fh.close()
        log.warning(f"Library {library_root} is locked ({lock_file})")
        raise LockError(f"Another scan of {library_root} is running") from e
    log.debug(f"Locked {library_root} via {lock_file}")
    return fh


def release_library_lock(handle: object | None) -> None:
    """Release a handle returned by acquire_library_lock (None is a no-op)."""
    if handle is None:
        return
    handle.close()
    log.debug("Lock released")


class CancellationToken:
    """Thread-safe cancel flag checked by the scanner between folders."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, root: object) -> None:
        if self._event.is_set():
            raise ScanCancelledError(root)
