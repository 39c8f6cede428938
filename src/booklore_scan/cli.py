"""CLI entry point for the library scanner."""

import json
import os
import sys
from pathlib import Path

import click
from loguru import logger
from pydantic import ValidationError

from .config import ScanConfig
from .coordinator import ScanCoordinator, print_reports
from .errors import ConfigError
from .models import Library, OrganizationMode

log = logger.bind(stage="cli")


def _find_config_file() -> Path | None:
    """First .env in the working directory, then in the source checkout."""
    candidates = (
        Path.cwd() / ".env",
        Path(__file__).resolve().parents[2] / ".env",  # src/../.env
    )
    return next((p for p in candidates if p.is_file()), None)


def _parse_env_line(line: str) -> tuple[str, str] | None:
    """KEY=value from one .env line, or None for comments and blanks.

    Matching outer quotes are dropped. Values using ${VAR} expansion are
    skipped since only a shell can resolve them.
    """
    line = line.strip()
    if not line or line.startswith("#") or "=" not in line:
        return None
    key, _, value = line.partition("=")
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        value = value[1:-1]
    if "${" in value:
        return None
    return key.strip(), value


def _load_env_file(env_file: Path) -> None:
    """Export .env entries into os.environ; real env vars win."""
    for line in env_file.read_text().splitlines():
        entry = _parse_env_line(line)
        if entry is not None:
            os.environ.setdefault(*entry)


@click.command()
@click.argument(
    "roots",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, file_okay=False),
)
@click.option(
    "-m",
    "--mode",
    type=click.Choice([m.value for m in OrganizationMode]),
    default=None,
    help="Organization mode for every library. Defaults to ORGANIZATION_MODE or auto_detect.",
)
@click.option(
    "-t",
    "--threshold",
    type=click.FloatRange(0.0, 1.0),
    default=None,
    help="Similarity threshold for auto_detect (0-1).",
)
@click.option(
    "--group-audio-folders",
    is_flag=True,
    help="Treat a folder of audio chapter files as one audiobook.",
)
@click.option("--json", "as_json", is_flag=True, help="Print groups as JSON.")
@click.option("--no-lock", is_flag=True, help="Skip per-library file locking.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True),
    default=None,
    help="Path to .env file.",
)
def main(
    roots: tuple[str, ...],
    mode: str | None,
    threshold: float | None,
    group_audio_folders: bool,
    as_json: bool,
    no_lock: bool,
    verbose: bool,
    config_file: str | None,
) -> None:
    """Scan library folders and group files into books."""
    # Load .env into environment before ScanConfig reads env vars
    env_file = Path(config_file) if config_file else _find_config_file()
    if env_file and env_file.is_file():
        _load_env_file(env_file)
        log.debug(f"Loaded env from {env_file}")
    else:
        log.debug("No .env found")

    # Pass CLI flags as kwargs to avoid env pollution
    config_kwargs: dict[str, object] = {"verbose": verbose}
    if verbose:
        config_kwargs["log_level"] = "DEBUG"
    if mode is not None:
        config_kwargs["organization_mode"] = mode
    if threshold is not None:
        config_kwargs["similarity_threshold"] = threshold
    if group_audio_folders:
        config_kwargs["group_audio_folders"] = True

    try:
        config = ScanConfig(**config_kwargs)  # type: ignore[arg-type]
    except (ConfigError, ValidationError) as e:
        # Bad values from .env or the environment are usage errors too
        raise click.UsageError(str(e)) from e
    config.setup_logging()

    paths = list(dict.fromkeys(Path(root).resolve() for root in roots))
    base_names = [p.name for p in paths]
    libraries = []
    for path in paths:
        # Fall back to the full path when two roots share a folder name
        name = path.name if path.name and base_names.count(path.name) == 1 else str(path)
        libraries.append(Library(name=name, root=path, mode=config.organization_mode))

    log.info(
        f"Starting scan: roots={[str(lib.root) for lib in libraries]} "
        f"mode={config.organization_mode} threshold={config.similarity_threshold}"
    )
    try:
        reports = ScanCoordinator(config, skip_lock=no_lock).run(libraries)
    except ConfigError as e:
        raise click.UsageError(str(e)) from e

    if as_json:
        payload = [
            {
                "library": r.library.name,
                "root": str(r.library.root),
                "mode": r.library.mode.value,
                "cancelled": r.cancelled,
                "error": r.error,
                "warnings": r.warnings,
                "groups": [g.to_dict(config.format_priority) for g in r.groups],
            }
            for r in reports
        ]
        click.echo(json.dumps(payload, indent=2))
    else:
        print_reports(reports, config.format_priority)

    if any(not r.ok for r in reports):
        sys.exit(1)
