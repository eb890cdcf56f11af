"""Command-line entry point for kvmtop."""

import os
import sys
from pathlib import Path

import click
import structlog

from kvmtop.__about__ import __version__

EXIT_INIT_FAILURE = 1

log = structlog.get_logger()


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--interval",
    "-i",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Refresh interval in seconds (default: 5.0).",
)
@click.option(
    "--pid",
    "-p",
    "pids",
    type=int,
    multiple=True,
    help="Monitor only this process ID (repeatable).",
)
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Configuration file (default: ~/.config/kvmtop/config.toml).",
)
@click.version_option(__version__, "-v", "--version", prog_name="kvmtop")
def main(interval: float | None, pids: tuple[int, ...], config_path: Path | None) -> None:
    """Live per-process, network and storage activity on a KVM host."""
    from kvmtop import logs
    from kvmtop.app import EXIT_OUT_OF_MEMORY, KvmtopApp
    from kvmtop.config import Config
    from kvmtop.source import ProcfsSource, SourceUnavailableError

    try:
        config = Config.load(config_path)
    except ValueError as e:
        logs.error(str(e))
        sys.exit(EXIT_INIT_FAILURE)

    logs.configure(config)
    log.info("kvmtop_starting", version=__version__, interval=interval, pids=list(pids))

    privileged = os.geteuid() == 0
    if not privileged:
        logs.warn("Not running as root. IO stats will be unavailable for other users' processes.")
        log.warning("not_privileged", euid=os.geteuid())

    source = ProcfsSource(pids=pids, disk_exclude=config.storage.exclude)
    try:
        source.check()
    except SourceUnavailableError as e:
        log.error("source_unavailable", error=str(e))
        logs.error(str(e))
        sys.exit(EXIT_INIT_FAILURE)

    app = KvmtopApp(source, config=config, interval=interval, privileged=privileged)
    try:
        app.run()
    except MemoryError:
        log.critical("out_of_memory")
        logs.error("out of memory")
        sys.exit(EXIT_OUT_OF_MEMORY)
    log.info("kvmtop_stopped", return_code=app.return_code)
    if app.return_code:
        sys.exit(app.return_code)


if __name__ == "__main__":
    main()
