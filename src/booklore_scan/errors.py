"""Exception hierarchy for the library scanner."""


class BookloreScanError(Exception):
    """Base exception for all scanner errors."""


class ConfigError(BookloreScanError):
    """Invalid or missing configuration."""


class UnknownOrganizationModeError(ConfigError):
    """A library is configured with a mode no strategy handles."""

    def __init__(self, mode: object) -> None:
        super().__init__(f"Unknown organization mode: {mode!r}")
        self.mode = mode


class ScanCancelledError(BookloreScanError):
    """A library scan was cancelled before grouping finished."""

    def __init__(self, root: object) -> None:
        super().__init__(f"Scan cancelled: {root}")
        self.root = root


class WriterNotFoundError(BookloreScanError):
    """No metadata writer is registered for a book type."""

    def __init__(self, book_type: object) -> None:
        super().__init__(f"No metadata writer registered for {book_type}")
        self.book_type = book_type


class UnsupportedCapabilityError(BookloreScanError):
    """A metadata writer was asked for a capability it does not declare."""

    def __init__(self, writer: str, capability: str) -> None:
        super().__init__(f"{writer} does not support cover replacement from {capability}")
        self.writer = writer
        self.capability = capability
