"""Scanner configuration via pydantic-settings (.env + env vars)."""

import sys
from pathlib import Path

from loguru import logger
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import BookFileType, OrganizationMode

DEFAULT_SERIES_MARKERS: list[str] = ["book", "volume", "vol", "no", "#"]

_LOG_FORMAT = "{time:YYYY-MM-DDTHH:mm:ssZ} | {level:<8} | {extra[stage]:<12} | {message}"


def _with_stage(record) -> bool:
    # Records logged without bind(stage=...) still fill the stage column
    record["extra"].setdefault("stage", "")
    return True


class ScanConfig(BaseSettings):
    """All scanner configuration with layered resolution:
    .env file < environment variables < constructor kwargs.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # -- Directories --
    log_dir: Path = Path("/var/log/booklore-scan")
    lock_dir: Path = Path("/var/lib/booklore-scan/locks")

    # -- Grouping --
    organization_mode: OrganizationMode = OrganizationMode.AUTO_DETECT
    similarity_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    fileless_match_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    series_markers: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SERIES_MARKERS)
    )
    format_priority: list[BookFileType] = Field(default_factory=list)
    group_audio_folders: bool = False

    # -- Parallel scans --
    max_parallel_scans: int = 0  # 0 = auto (CPU-based)

    # -- Behavior --
    verbose: bool = False
    log_level: str = "INFO"

    @field_validator("organization_mode", mode="before")
    @classmethod
    def _parse_mode(cls, value):
        return OrganizationMode.parse(value)

    @field_validator("series_markers")
    @classmethod
    def _clean_markers(cls, value: list[str]) -> list[str]:
        return [m.strip().lower() for m in value if m and m.strip()]

    def ensure_dirs(self) -> None:
        """Create all required directories if they don't exist."""
        for d in (self.log_dir, self.lock_dir):
            d.mkdir(parents=True, exist_ok=True)

    def setup_logging(self) -> None:
        """Route loguru to stderr at log_level and to a rotating scan.log at DEBUG."""
        logger.remove()
        self.log_dir.mkdir(parents=True, exist_ok=True)
        sinks = [
            (sys.stderr, {"level": self.log_level.upper()}),
            (
                str(self.log_dir / "scan.log"),
                {"level": "DEBUG", "rotation": "10 MB", "retention": "30 days"},
            ),
        ]
        for sink, options in sinks:
            logger.add(sink, format=_LOG_FORMAT, filter=_with_stage, **options)
