"""Health command: provider readiness report."""

from pathlib import Path
from typing import Optional

import typer

from metasearch.cli.utils import (
    display_success,
    display_warning,
    handle_errors,
    load_config,
    setup_logging,
)
from metasearch.providers.registry import build_registry


@handle_errors
def health_command(
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to metasearch config YAML"
    ),
):
    """Check availability and rate-limit readiness of every provider."""
    config = load_config(config_path)
    setup_logging(config)

    registry = build_registry(config.providers)
    report = registry.health_check()

    if not report:
        display_warning("No providers enabled")
        raise typer.Exit(code=1)

    for provider_id, health in report.items():
        line = f" - {provider_id}: {health.status}"
        if health.error:
            line += f" ({health.error})"
        typer.echo(line)

    if all(h.status == "healthy" for h in report.values()):
        display_success("All providers ready")
    else:
        display_warning("Some providers are not ready")
        raise typer.Exit(code=1)
