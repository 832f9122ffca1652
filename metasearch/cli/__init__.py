"""Metasearch CLI Package.

Usage:
    python -m metasearch.cli search "python asyncio" --language en
    python -m metasearch.cli health
    python -m metasearch.cli validate config/metasearch_config.yaml
"""

import typer

from metasearch.cli.health import health_command
from metasearch.cli.search import search_command
from metasearch.cli.validate import validate_command

app = typer.Typer(help="Metasearch: query several search providers at once")

app.command(name="search")(search_command)
app.command(name="health")(health_command)
app.command(name="validate")(validate_command)

__all__ = [
    "app",
    "search_command",
    "health_command",
    "validate_command",
]
