"""One-shot commands: once, check-config."""

from __future__ import annotations

import json

import click
from rich.table import Table

from ._common import console, fatal, load_config


def register_unseal_commands(main: click.Group) -> None:
    """Register the one-shot commands."""

    @main.command("once")
    @click.option("--log-level", default="INFO", show_default=True, help="Logging level.")
    def once(log_level: str):
        """Unseal every target once, then exit.

        Exit code is 0 only if every target ends up unsealed.
        """
        from ..daemon import setup_logging, unseal_once
        from ..engine import Outcome
        from ..errors import UnsealerError

        setup_logging(log_level)
        config = load_config()

        try:
            outcomes = unseal_once(config)
        except (UnsealerError, RuntimeError) as exc:
            fatal(f"failed to get unseal keys: {exc}")

        table = Table(title="Unseal results")
        table.add_column("Target", style="cyan")
        table.add_column("Outcome")
        failed = 0
        for target in config.targets:
            outcome = outcomes.get(target, Outcome.FAILED.value)
            ok = Outcome(outcome).ok
            failed += 0 if ok else 1
            table.add_row(target, f"[{'green' if ok else 'red'}]{outcome}[/]")
        console.print(table)

        if failed:
            raise SystemExit(1)

    @main.command("check-config")
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    def check_config(json_out: bool):
        """Validate the environment without contacting anything."""
        config = load_config()
        data = config.describe()
        if json_out:
            click.echo(json.dumps(data, indent=2))
            return

        table = Table(title="Unsealer configuration")
        table.add_column("Setting", style="cyan")
        table.add_column("Value")
        for key, value in data.items():
            if isinstance(value, list):
                value = ", ".join(value)
            table.add_row(key, str(value))
        console.print(table)
