"""Validate command for configuration files."""

from pathlib import Path

import typer

from metasearch.cli.utils import display_error, display_success, handle_errors
from metasearch.services.config_manager import ConfigManager
from metasearch.utils.exceptions import ConfigValidationError


@handle_errors
def validate_command(
    config_path: Path = typer.Argument(..., help="Config file to validate"),
):
    """Validate configuration file syntax and semantics."""
    try:
        config = ConfigManager(config_path=str(config_path)).load_config()
    except (FileNotFoundError, ConfigValidationError) as e:
        display_error(f"Validation failed: {e}")
        raise typer.Exit(code=1)

    enabled = [p.provider_id for p in config.providers if p.enabled]
    display_success("Configuration is valid! ✅")
    typer.echo(f"Providers: {', '.join(enabled) or 'none'}")
