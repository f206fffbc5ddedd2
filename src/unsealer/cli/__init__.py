"""
Unsealer CLI.

Entry point: unsealer.cli:main
"""

from __future__ import annotations

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="unsealer")
def main():
    """Unsealer — keeps sealed Vault nodes unsealed.

    Keys come from Bitwarden Secrets Manager and never touch disk.
    """


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .daemon import register_daemon_commands
from .unseal import register_unseal_commands

register_daemon_commands(main)
register_unseal_commands(main)
