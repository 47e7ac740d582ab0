import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv

from autoupdate.application.update_service import UpdateService
from autoupdate.domain.exceptions import ConfigurationException
from autoupdate.domain.models import RunOptions
from autoupdate.infrastructure.config import find_config_file, load_config
from autoupdate.infrastructure.github_provider import GitHubProvider
from autoupdate.infrastructure.registry import ProviderRegistry, UpdaterRegistry
from autoupdate.infrastructure.terraform_updater import TerraformUpdater

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="Multi-provider dependency update engine: discovers repositories, "
         "detects outdated dependencies and opens pull requests to upgrade them.",
    no_args_is_help=True,
)


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ],
        force=True,
    )


def build_provider_registry() -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register("github", GitHubProvider)
    return registry


def build_updater_registry() -> UpdaterRegistry:
    registry = UpdaterRegistry()
    registry.register(TerraformUpdater())
    return registry


@app.command()
def run(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config file (default: auto-detect)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be done without making changes"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
    provider: str = typer.Option("", "--provider", help="Only process this provider (e.g. github)"),
    org: str = typer.Option("", "--org", help="Only process this organization/group"),
    updater: str = typer.Option("", "--updater", help="Only run this updater (e.g. terraform)"),
) -> None:
    """Discover repositories, scan for outdated dependencies and create pull requests."""
    configure_logging(verbose)
    # Load environment variables from .env file so ${VAR} tokens can resolve
    load_dotenv()

    try:
        config_path = config or find_config_file()
        logger.info(f"Using config file: {config_path}")
        resolved_config = load_config(config_path)
    except ConfigurationException as e:
        logger.error(f"Failed to load config: {e}")
        raise typer.Exit(code=1)

    service = UpdateService(
        provider_registry=build_provider_registry(),
        updater_registry=build_updater_registry(),
    )
    run_options = RunOptions(
        dry_run=dry_run,
        verbose=verbose,
        provider_name=provider,
        org_override=org,
        updater_name=updater,
    )

    logger.info("Starting autoupdate run...")
    try:
        report = asyncio.run(service.run(resolved_config, run_options))
    except KeyboardInterrupt:
        logger.info("Run interrupted by user. Exiting gracefully.")
        raise typer.Exit(code=130)

    for failure in report.failures:
        logger.debug(f"Failure ({failure.kind.value}): {failure.message}")


@app.command("list")
def list_plugins() -> None:
    """List the registered providers and updaters."""
    typer.echo("Providers:")
    for name in build_provider_registry().names():
        typer.echo(f"  {name}")
    typer.echo("Updaters:")
    for name in build_updater_registry().names():
        typer.echo(f"  {name}")


if __name__ == "__main__":
    app()
