"""Logging setup.

The TUI owns the terminal while it runs, so structured events go to a
rotating JSON Lines file through structlog. The few messages printed before
the TUI starts (or after it exits) go to a Rich console.
"""

import logging
import logging.handlers

import structlog
from rich.console import Console

from kvmtop.config import Config

_console = Console(stderr=True, highlight=False)


def warn(msg: str) -> None:
    """Print a warning on the console."""
    _console.print(f"[yellow]warning:[/] {msg}")


def error(msg: str) -> None:
    """Print an error on the console."""
    _console.print(f"[bold red]error:[/] {msg}")


def configure(config: Config) -> None:
    """Configure structlog to write JSON lines to the kvmtop log file."""
    config.state_dir.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.logging.max_bytes,
        backupCount=config.logging.backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=[
                structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
                structlog.processors.add_log_level,
                structlog.processors.format_exc_info,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(file_handler)
    root.setLevel(getattr(logging, config.logging.level.upper()))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
