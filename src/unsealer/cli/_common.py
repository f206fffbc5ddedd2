"""Shared utilities for all CLI command modules."""

from __future__ import annotations

import sys
from typing import NoReturn

from rich.console import Console

from ..config import UnsealerConfig
from ..errors import ConfigError

console = Console()
err_console = Console(stderr=True)


def fatal(message: str) -> NoReturn:
    """Print a fatal startup error and exit non-zero."""
    err_console.print(f"[bold red]FATAL:[/] {message}")
    sys.exit(1)


def load_config(**overrides) -> UnsealerConfig:
    """Load config from the environment or exit with a clear message."""
    try:
        return UnsealerConfig.from_env(**overrides)
    except ConfigError as exc:
        fatal(str(exc))
