"""Search command: run one aggregated query from the terminal.

Provider outcomes are printed as they settle, followed by a summary.
"""

import asyncio
from pathlib import Path
from typing import Optional

import typer

from metasearch.cli.utils import (
    display_error,
    display_info,
    display_success,
    display_warning,
    handle_errors,
    load_config,
    setup_logging,
)
from metasearch.models.aggregation import AggregatedResult, ProviderOutcome
from metasearch.models.config import MetasearchConfig
from metasearch.models.query import ProviderStatus
from metasearch.services.aggregation_coordinator import AggregationCoordinator
from metasearch.utils.exceptions import InvalidInputError


@handle_errors
def search_command(
    query: str = typer.Argument(..., help="Search query"),
    language: Optional[str] = typer.Option(
        None, "--language", "-l", help="Language code (defaults to config)"
    ),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to metasearch config YAML"
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
    limit: int = typer.Option(5, "--limit", "-n", help="Items shown per provider"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Search every configured provider concurrently."""
    config = load_config(config_path)
    setup_logging(config, verbose=verbose)

    try:
        result = asyncio.run(
            _run_search(config, query, language or config.default_language, as_json)
        )
    except InvalidInputError as e:
        display_error(f"Invalid input: {e}")
        raise typer.Exit(code=1)

    if as_json:
        typer.echo(result.model_dump_json(indent=2))
    else:
        _display_result(result, limit)

    if result.summary.attempted and result.summary.succeeded == 0:
        raise typer.Exit(code=1)


async def _run_search(
    config: MetasearchConfig, query: str, language: str, quiet: bool
) -> AggregatedResult:
    def on_settled(provider_id: str, outcome: ProviderOutcome) -> None:
        if quiet:
            return
        if outcome.status == ProviderStatus.SUCCESS:
            source = " (cached)" if outcome.from_cache else ""
            display_success(f"✓ {provider_id}: {outcome.item_count} results{source}")
        elif outcome.error is not None:
            display_warning(f"✗ {provider_id}: {outcome.error.user_message}")
        else:
            display_warning(f"✗ {provider_id}: failed")

    async with AggregationCoordinator.from_config(
        config, on_provider_settled=on_settled
    ) as coordinator:
        result = await coordinator.aggregate(query, language)
        if not quiet:
            for provider_id, url in coordinator.get_direct_search_urls(
                query, language
            ).items():
                if provider_id in result.errors():
                    display_info(f"  Try directly: {url}")
        return result


def _display_result(result: AggregatedResult, limit: int) -> None:
    typer.echo("")
    for provider_id, outcome in result.per_provider.items():
        if outcome.data is None:
            continue
        typer.echo(f"[{provider_id}]")
        for item in outcome.data.items[:limit]:
            typer.echo(f"  {item.title}")
            typer.echo(f"    {item.display_url or item.url}")

    summary = result.summary
    display_info(
        f"\n{summary.succeeded}/{summary.attempted} providers succeeded, "
        f"{summary.total_items} items in {result.total_latency_ms} ms"
    )
