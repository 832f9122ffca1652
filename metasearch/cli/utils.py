"""Shared CLI utilities.

Provides common functionality for all CLI commands.
"""

import functools
from pathlib import Path
from typing import Callable, Optional, TypeVar

import structlog
import typer

from metasearch.models.config import MetasearchConfig
from metasearch.observability.logging import configure_logging
from metasearch.services.config_manager import DEFAULT_CONFIG_PATH, ConfigManager
from metasearch.utils.exceptions import ConfigValidationError

logger = structlog.get_logger()

# Type variable for decorator
F = TypeVar("F", bound=Callable)


def load_config(config_path: Optional[Path]) -> MetasearchConfig:
    """Load and validate configuration.

    Without an explicit path the default config file is used when present,
    otherwise built-in defaults apply.

    Raises:
        typer.Exit: If configuration is invalid.
    """
    if config_path is None:
        default = Path(DEFAULT_CONFIG_PATH)
        if not default.exists():
            return MetasearchConfig()
        config_path = default

    config_manager = ConfigManager(config_path=str(config_path))
    try:
        return config_manager.load_config()
    except (FileNotFoundError, ConfigValidationError) as e:
        typer.secho(f"Configuration Error: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


def setup_logging(config: MetasearchConfig, verbose: bool = False) -> None:
    """Apply the logging section of the configuration."""
    level = "DEBUG" if verbose else config.logging.level
    configure_logging(level=level, json_output=config.logging.json_output)


def handle_errors(func: F) -> F:
    """Decorator for consistent error handling.

    Catches exceptions and displays user-friendly error messages.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except Exception as e:
            logger.exception("command_failed")
            typer.secho(f"Error: {e}", fg=typer.colors.RED)
            raise typer.Exit(code=1)

    return wrapper  # type: ignore[return-value]


def display_success(message: str) -> None:
    typer.secho(message, fg=typer.colors.GREEN)


def display_warning(message: str) -> None:
    typer.secho(message, fg=typer.colors.YELLOW)


def display_error(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED)


def display_info(message: str) -> None:
    typer.secho(message, fg=typer.colors.CYAN)
