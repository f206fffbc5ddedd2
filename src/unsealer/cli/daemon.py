"""Daemon commands: run, status."""

from __future__ import annotations

import json
import os

import click
from rich.panel import Panel

from ._common import console, fatal, load_config


def register_daemon_commands(main: click.Group) -> None:
    """Register the daemon commands."""

    @main.command("run")
    @click.option("--port", type=int, default=None, help="API port (default: HTTP_PORT or 8080).")
    @click.option("--poll-interval", type=float, default=None, help="Seconds between sweeps.")
    @click.option("--log-level", default="INFO", show_default=True, help="Logging level.")
    def run(port, poll_interval, log_level: str):
        """Run the unseal daemon in the foreground.

        Exits non-zero if the configuration is invalid or the initial
        key fetch fails. SIGTERM/SIGINT drain in-flight runs and exit 0.
        """
        from ..daemon import DaemonService, setup_logging
        from ..errors import UnsealerError

        setup_logging(log_level)
        config = load_config(http_port=port, poll_interval=poll_interval)

        svc = DaemonService(config)
        try:
            svc.start()
        except (UnsealerError, RuntimeError) as exc:
            fatal(f"failed to get unseal keys: {exc}")

        console.print(
            f"\n  [green]Unsealer running[/] on port [cyan]{svc.port}[/] "
            f"(PID {os.getpid()}, {len(config.targets)} target(s))\n"
        )
        svc.run_forever()

    @main.command("status")
    @click.option("--host", default="127.0.0.1", help="API host to query.")
    @click.option("--port", default=8080, help="API port to query.")
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    def status(host: str, port: int, json_out: bool):
        """Show the status of a running daemon."""
        from ..daemon import get_daemon_status

        data = get_daemon_status(host, port)
        if data is None:
            if json_out:
                click.echo(json.dumps({"running": False}))
            else:
                console.print(f"\n  [yellow]No unsealer reachable at {host}:{port}.[/]\n")
            raise SystemExit(1)

        if json_out:
            click.echo(json.dumps(data, indent=2))
            return

        uptime = data.get("uptime_seconds", 0)
        h, remainder = divmod(int(uptime), 3600)
        m, s = divmod(remainder, 60)
        uptime_str = f"{h}h {m}m {s}s" if h else f"{m}m {s}s"
        counters = data.get("counters", {})
        ready = "[green]yes[/]" if data.get("ready") else "[red]no[/]"

        console.print()
        console.print(
            Panel(
                f"PID: [bold]{data.get('pid')}[/]\n"
                f"Uptime: [bold]{uptime_str}[/]\n"
                f"Ready: {ready} ({data.get('keys_cached', 0)} keys cached)\n"
                f"Last refresh: {data.get('last_refresh') or '[dim]never[/]'}\n"
                f"Sweeps: [bold]{data.get('sweeps_started', 0)}[/]"
                f" (last {data.get('last_sweep') or 'never'})\n"
                f"Attempts: [bold]{counters.get('unseal_attempts', 0)}[/]  "
                f"Successes: [bold green]{counters.get('unseal_successes', 0)}[/]  "
                f"Failures: [bold red]{counters.get('unseal_failures', 0)}[/]",
                title="[green]Unsealer Running[/]",
                border_style="green",
            )
        )

        outcomes = data.get("last_outcomes", {})
        in_flight = set(data.get("in_flight", []))
        if data.get("targets"):
            console.print("[bold]Targets:[/]")
            for target in data["targets"]:
                if target in in_flight:
                    console.print(f"  [cyan]{target}: IN FLIGHT[/]")
                    continue
                outcome = outcomes.get(target, "pending")
                color = {
                    "unsealed": "green",
                    "already_unsealed": "green",
                    "pending": "dim",
                }.get(outcome, "red")
                console.print(f"  [{color}]{target}: {outcome.upper()}[/]")

        errors = data.get("recent_errors", [])
        if errors:
            console.print(f"\n[yellow]Recent errors ({len(errors)}):[/]")
            for err in errors[-5:]:
                console.print(f"  [dim]{err}[/]")
        console.print()
