import asyncio
import logging
from typing import List, Optional

from autoupdate.domain.exceptions import DiscoveryException
from autoupdate.domain.models import (
    FailureKind,
    PullRequest,
    Repository,
    RunFailure,
    RunOptions,
    RunReport,
    UpdateOptions,
)
from autoupdate.domain.provider import Provider
from autoupdate.domain.updater import Updater
from autoupdate.infrastructure.config import Config, ProviderConfig
from autoupdate.infrastructure.registry import ProviderRegistry, UpdaterRegistry


class UpdateService:
    """
    Service responsible for orchestrating one dependency update run:
    discover repositories -> detect ecosystems -> create update pull requests.

    Every provider, organization, repository and updater is visited in turn.
    A failure at any level is recorded and logged, and the run moves on to
    the next item; run() itself never fails because of them.

    The service never changes logger levels. How much of its output is shown
    is decided by the logging configuration of the caller.
    """

    def __init__(
            self,
            provider_registry: ProviderRegistry,
            updater_registry: UpdaterRegistry,
            logger: Optional[logging.Logger] = None,
    ):
        self.provider_registry = provider_registry
        self.updater_registry = updater_registry
        self.logger = logger or logging.getLogger(__name__)

    async def run(
            self,
            config: Config,
            run_options: RunOptions,
            cancel_event: Optional[asyncio.Event] = None,
    ) -> RunReport:
        """
        Executes the full update cycle for the given configuration.

        Args:
            config (Config): Resolved configuration.
            run_options (RunOptions): Filters and flags for this run.
            cancel_event (asyncio.Event): When set, no new work is started and
                the partial report is returned.

        Returns:
            RunReport: Counters, created pull requests and recorded failures.
        """
        report = RunReport()

        for provider_config in config.providers:
            if self._is_cancelled(cancel_event, report):
                break
            if run_options.provider_name and provider_config.type != run_options.provider_name:
                continue
            await self._process_provider(provider_config, config, run_options, report, cancel_event)

        self.logger.info(
            f"Run complete: {report.repositories_processed} repos processed, "
            f"{report.pull_requests_created} PRs created, {report.error_count} errors."
        )
        return report

    async def _process_provider(
            self,
            provider_config: ProviderConfig,
            config: Config,
            run_options: RunOptions,
            report: RunReport,
            cancel_event: Optional[asyncio.Event],
    ) -> None:
        try:
            provider = self.provider_registry.get(provider_config.type, provider_config.token)
        except Exception as e:
            self.logger.error(f"Failed to initialize provider '{provider_config.type}': {e}")
            report.failures.append(RunFailure(
                kind=FailureKind.PROVIDER_INITIALIZATION,
                provider=provider_config.type,
                message=str(e),
            ))
            return

        self.logger.info(f"Processing provider: {provider.name}")
        try:
            await self._process_organizations(provider, provider_config, config, run_options, report, cancel_event)
        finally:
            try:
                await provider.close()
            except Exception as e:
                self.logger.warning(f"Failed to close provider '{provider.name}': {e}")

    async def _process_organizations(
            self,
            provider: Provider,
            provider_config: ProviderConfig,
            config: Config,
            run_options: RunOptions,
            report: RunReport,
            cancel_event: Optional[asyncio.Event],
    ) -> None:
        for org in provider_config.organizations:
            if self._is_cancelled(cancel_event, report):
                return
            if run_options.org_override and org != run_options.org_override:
                continue

            self.logger.info(f"Discovering repositories in '{org}'...")
            try:
                repos = await provider.discover_repositories(org)
            except Exception as e:
                error = DiscoveryException(org, e)
                self.logger.error(str(error))
                report.failures.append(RunFailure(
                    kind=FailureKind.DISCOVERY,
                    provider=provider.name,
                    organization=org,
                    message=str(error),
                ))
                continue

            self.logger.info(f"Found {len(repos)} repositories in '{org}'.")

            for repo in repos:
                if self._is_cancelled(cancel_event, report):
                    return
                report.repositories_processed += 1
                await self._process_repository(provider, repo, config, run_options, report, cancel_event)

    async def _process_repository(
            self,
            provider: Provider,
            repo: Repository,
            config: Config,
            run_options: RunOptions,
            report: RunReport,
            cancel_event: Optional[asyncio.Event],
    ) -> None:
        """Runs every applicable updater against a single repository."""
        for updater in self.updater_registry.all():
            if self._is_cancelled(cancel_event, report):
                return
            if run_options.updater_name and updater.name != run_options.updater_name:
                continue

            updater_config = config.updaters.get(updater.name)
            if updater_config is not None and not updater_config.enabled:
                self.logger.debug(f"[{updater.name}] Disabled in config, skipping {repo.full_name}.")
                continue

            try:
                prs = await self._run_updater(updater, provider, repo, config, run_options)
            except Exception as e:
                self.logger.error(f"[{updater.name}] Failed to update {repo.full_name}: {e}")
                report.failures.append(RunFailure(
                    kind=FailureKind.UPDATER,
                    provider=provider.name,
                    organization=repo.organization,
                    repository=repo.name,
                    updater=updater.name,
                    message=str(e),
                ))
                continue

            for pr in prs:
                self.logger.info(f"  Created PR #{pr.id}: {pr.title} ({pr.url})")
            report.pull_requests.extend(prs)

    async def _run_updater(
            self,
            updater: Updater,
            provider: Provider,
            repo: Repository,
            config: Config,
            run_options: RunOptions,
    ) -> List[PullRequest]:
        if not await updater.detect(provider, repo):
            return []

        self.logger.info(f"[{updater.name}] Detected in {repo.full_name}")
        options = self._build_update_options(updater.name, config, run_options)
        return await updater.create_update_prs(provider, repo, options)

    @staticmethod
    def _build_update_options(updater_name: str, config: Config, run_options: RunOptions) -> UpdateOptions:
        values = {"dry_run": run_options.dry_run, "verbose": run_options.verbose}

        updater_config = config.updaters.get(updater_name)
        if updater_config is not None:
            values["auto_complete"] = updater_config.auto_complete
            if updater_config.target_branch:
                values["target_branch"] = updater_config.target_branch

        return UpdateOptions(**values)

    def _is_cancelled(self, cancel_event: Optional[asyncio.Event], report: RunReport) -> bool:
        if cancel_event is None or not cancel_event.is_set():
            return False
        if not report.cancelled:
            self.logger.warning("Cancellation requested. Stopping the run early.")
            report.cancelled = True
        return True
