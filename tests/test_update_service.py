import asyncio
import logging
import unittest

from autoupdate.application.update_service import UpdateService
from autoupdate.domain.models import FailureKind, PullRequest, Repository, RunOptions
from autoupdate.domain.provider import Provider
from autoupdate.domain.updater import Updater
from autoupdate.infrastructure.config import Config, ProviderConfig, UpdaterConfig
from autoupdate.infrastructure.registry import ProviderRegistry, UpdaterRegistry


def _repo(name: str, org: str = "org") -> Repository:
    return Repository(id=name, name=name, organization=org, provider_name="spy")


class _SpyProvider(Provider):
    def __init__(self, token: str, repos_by_org=None, failing_orgs=()) -> None:
        self.token = token
        self.repos_by_org = repos_by_org or {}
        self.failing_orgs = set(failing_orgs)
        self.discover_calls = []
        self.closed = False

    @property
    def name(self) -> str:
        return "spy"

    @property
    def auth_token(self) -> str:
        return self.token

    def matches_url(self, url: str) -> bool:
        return False

    async def discover_repositories(self, org):
        self.discover_calls.append(org)
        if org in self.failing_orgs:
            raise RuntimeError(f"{org} is unreachable")
        return list(self.repos_by_org.get(org, []))

    async def get_file_content(self, repo, path):
        return ""

    async def list_files(self, repo, pattern=""):
        return []

    async def get_tags(self, repo):
        return []

    async def has_file(self, repo, path):
        return False

    async def create_branch_with_changes(self, repo, branch_input):
        return None

    async def create_pull_request(self, repo, pr_input):
        return PullRequest(id=1, title=pr_input.title)

    async def pull_request_exists(self, repo, source_branch):
        return False

    def clone_url(self, repo):
        return repo.remote_url

    async def close(self) -> None:
        self.closed = True


class _SpyUpdater(Updater):
    def __init__(self, name: str, detects: bool = True, error: Exception = None, prs_per_repo: int = 1) -> None:
        self._name = name
        self.detects = detects
        self.error = error
        self.prs_per_repo = prs_per_repo
        self.detect_calls = []
        self.update_calls = []

    @property
    def name(self) -> str:
        return self._name

    async def detect(self, provider, repo):
        self.detect_calls.append(repo.name)
        return self.detects

    async def create_update_prs(self, provider, repo, options):
        self.update_calls.append((repo.name, options))
        if self.error is not None:
            raise self.error
        return [
            PullRequest(id=i + 1, title=f"{self._name} upgrade {repo.name}", url=f"https://example.com/{repo.name}/{i + 1}")
            for i in range(self.prs_per_repo)
        ]


class _ProviderFactory:
    """Counts instantiations and hands out a prepared provider."""

    def __init__(self, provider: _SpyProvider = None, error: Exception = None) -> None:
        self.provider = provider
        self.error = error
        self.tokens = []

    def __call__(self, token: str) -> Provider:
        self.tokens.append(token)
        if self.error is not None:
            raise self.error
        return self.provider


def _config(providers, updaters=None) -> Config:
    return Config(providers=providers, updaters=updaters or {})


class TestUpdateService(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.provider_registry = ProviderRegistry()
        self.updater_registry = UpdaterRegistry()
        self.service = UpdateService(self.provider_registry, self.updater_registry)

    async def test_provider_filter_skips_other_providers_entirely(self) -> None:
        github = _ProviderFactory(_SpyProvider("gh", {"org": [_repo("a")]}))
        gitlab = _ProviderFactory(_SpyProvider("gl", {"org": [_repo("b")]}))
        self.provider_registry.register("github", github)
        self.provider_registry.register("gitlab", gitlab)
        config = _config([
            ProviderConfig(type="gitlab", token="gl", organizations=["org"]),
            ProviderConfig(type="github", token="gh", organizations=["org"]),
        ])

        report = await self.service.run(config, RunOptions(provider_name="github"))

        self.assertEqual(gitlab.tokens, [])
        self.assertEqual(gitlab.provider.discover_calls, [])
        self.assertEqual(github.tokens, ["gh"])
        self.assertEqual(report.repositories_processed, 1)

    async def test_org_override_limits_discovery(self) -> None:
        provider = _SpyProvider("tok")
        self.provider_registry.register("spy", _ProviderFactory(provider))
        config = _config([ProviderConfig(type="spy", token="tok", organizations=["skip-org", "target-org"])])

        await self.service.run(config, RunOptions(org_override="target-org"))

        self.assertEqual(provider.discover_calls, ["target-org"])

    async def test_detect_once_per_pair_and_update_only_when_detected(self) -> None:
        provider = _SpyProvider("tok", {"org": [_repo("a"), _repo("b")]})
        self.provider_registry.register("spy", _ProviderFactory(provider))
        detecting = _SpyUpdater("terraform", detects=True)
        ignoring = _SpyUpdater("golang", detects=False)
        self.updater_registry.register(detecting)
        self.updater_registry.register(ignoring)
        config = _config([ProviderConfig(type="spy", token="tok", organizations=["org"])])

        report = await self.service.run(config, RunOptions())

        self.assertEqual(detecting.detect_calls, ["a", "b"])
        self.assertEqual(ignoring.detect_calls, ["a", "b"])
        self.assertEqual([call[0] for call in detecting.update_calls], ["a", "b"])
        self.assertEqual(ignoring.update_calls, [])
        self.assertEqual(report.pull_requests_created, 2)
        self.assertTrue(report.succeeded)

    async def test_three_repositories_with_one_detecting_updater(self) -> None:
        provider = _SpyProvider("tok", {"org": [_repo("r1"), _repo("r2"), _repo("r3")]})
        self.provider_registry.register("spy", _ProviderFactory(provider))
        updater = _SpyUpdater("terraform")
        self.updater_registry.register(updater)
        config = _config([ProviderConfig(type="spy", token="tok", organizations=["org"])])

        report = await self.service.run(config, RunOptions())

        self.assertEqual(len(updater.detect_calls), 3)
        self.assertEqual(len(updater.update_calls), 3)
        self.assertEqual(report.repositories_processed, 3)
        self.assertEqual(report.pull_requests_created, 3)

    async def test_explicitly_disabled_updater_is_never_called(self) -> None:
        provider = _SpyProvider("tok", {"org": [_repo("a")]})
        self.provider_registry.register("spy", _ProviderFactory(provider))
        disabled = _SpyUpdater("terraform")
        unconfigured = _SpyUpdater("golang")
        self.updater_registry.register(disabled)
        self.updater_registry.register(unconfigured)
        config = _config(
            [ProviderConfig(type="spy", token="tok", organizations=["org"])],
            {"terraform": UpdaterConfig(enabled=False)},
        )

        await self.service.run(config, RunOptions())

        self.assertEqual(disabled.detect_calls, [])
        self.assertEqual(disabled.update_calls, [])
        self.assertEqual(unconfigured.detect_calls, ["a"])

    async def test_updater_filter(self) -> None:
        provider = _SpyProvider("tok", {"org": [_repo("a")]})
        self.provider_registry.register("spy", _ProviderFactory(provider))
        terraform = _SpyUpdater("terraform")
        golang = _SpyUpdater("golang")
        self.updater_registry.register(terraform)
        self.updater_registry.register(golang)
        config = _config([ProviderConfig(type="spy", token="tok", organizations=["org"])])

        await self.service.run(config, RunOptions(updater_name="golang"))

        self.assertEqual(terraform.detect_calls, [])
        self.assertEqual(golang.detect_calls, ["a"])

    async def test_discovery_failure_does_not_stop_other_organizations(self) -> None:
        provider = _SpyProvider("tok", {"good-org": [_repo("a", "good-org")]}, failing_orgs=["bad-org"])
        self.provider_registry.register("spy", _ProviderFactory(provider))
        updater = _SpyUpdater("terraform")
        self.updater_registry.register(updater)
        config = _config([ProviderConfig(type="spy", token="tok", organizations=["bad-org", "good-org"])])

        with self.assertLogs("autoupdate.application.update_service", level="ERROR"):
            report = await self.service.run(config, RunOptions())

        self.assertEqual(provider.discover_calls, ["bad-org", "good-org"])
        self.assertEqual(updater.detect_calls, ["a"])
        self.assertEqual(report.error_count, 1)
        failure = report.failures[0]
        self.assertEqual(failure.kind, FailureKind.DISCOVERY)
        self.assertEqual(failure.organization, "bad-org")
        self.assertIn("bad-org is unreachable", failure.message)

    async def test_updater_error_does_not_stop_other_updaters_or_repositories(self) -> None:
        provider = _SpyProvider("tok", {"org": [_repo("a"), _repo("b")]})
        self.provider_registry.register("spy", _ProviderFactory(provider))
        broken = _SpyUpdater("broken", error=RuntimeError("boom"))
        healthy = _SpyUpdater("healthy")
        self.updater_registry.register(broken)
        self.updater_registry.register(healthy)
        config = _config([ProviderConfig(type="spy", token="tok", organizations=["org"])])

        report = await self.service.run(config, RunOptions())

        self.assertEqual([call[0] for call in broken.update_calls], ["a", "b"])
        self.assertEqual([call[0] for call in healthy.update_calls], ["a", "b"])
        self.assertEqual(report.error_count, 2)
        self.assertEqual(report.pull_requests_created, 2)
        self.assertEqual(
            [(f.kind, f.updater, f.organization, f.repository) for f in report.failures],
            [(FailureKind.UPDATER, "broken", "org", "a"), (FailureKind.UPDATER, "broken", "org", "b")],
        )

    async def test_detect_error_is_recorded_as_updater_failure(self) -> None:
        class _FailingDetectUpdater(_SpyUpdater):
            async def detect(self, provider, repo):
                self.detect_calls.append(repo.name)
                raise RuntimeError(f"cannot list files of {repo.name}")

        provider = _SpyProvider("tok", {"org": [_repo("a"), _repo("b")]})
        self.provider_registry.register("spy", _ProviderFactory(provider))
        failing = _FailingDetectUpdater("failing")
        healthy = _SpyUpdater("healthy")
        self.updater_registry.register(failing)
        self.updater_registry.register(healthy)
        config = _config([ProviderConfig(type="spy", token="tok", organizations=["org"])])

        report = await self.service.run(config, RunOptions())

        self.assertEqual(failing.detect_calls, ["a", "b"])
        self.assertEqual(failing.update_calls, [])
        self.assertEqual(healthy.detect_calls, ["a", "b"])
        self.assertEqual([call[0] for call in healthy.update_calls], ["a", "b"])
        self.assertEqual(report.repositories_processed, 2)
        self.assertEqual(report.pull_requests_created, 2)
        self.assertEqual(
            [(f.kind, f.provider, f.updater, f.organization, f.repository) for f in report.failures],
            [
                (FailureKind.UPDATER, "spy", "failing", "org", "a"),
                (FailureKind.UPDATER, "spy", "failing", "org", "b"),
            ],
        )
        self.assertIn("cannot list files of a", report.failures[0].message)

    async def test_provider_initialization_failure_skips_only_that_provider(self) -> None:
        healthy = _SpyProvider("tok", {"org": [_repo("a")]})
        self.provider_registry.register("broken", _ProviderFactory(error=ValueError("bad token")))
        self.provider_registry.register("spy", _ProviderFactory(healthy))
        config = _config([
            ProviderConfig(type="unknown", token="tok", organizations=["org"]),
            ProviderConfig(type="broken", token="tok", organizations=["org"]),
            ProviderConfig(type="spy", token="tok", organizations=["org"]),
        ])

        report = await self.service.run(config, RunOptions())

        self.assertEqual(report.repositories_processed, 1)
        self.assertEqual(
            [(f.kind, f.provider) for f in report.failures],
            [
                (FailureKind.PROVIDER_INITIALIZATION, "unknown"),
                (FailureKind.PROVIDER_INITIALIZATION, "broken"),
            ],
        )
        self.assertIn("unknown provider type", report.failures[0].message)

    async def test_run_options_and_updater_config_are_propagated(self) -> None:
        provider = _SpyProvider("tok", {"org": [_repo("a")]})
        self.provider_registry.register("spy", _ProviderFactory(provider))
        configured = _SpyUpdater("terraform")
        blank_branch = _SpyUpdater("golang")
        self.updater_registry.register(configured)
        self.updater_registry.register(blank_branch)
        config = _config(
            [ProviderConfig(type="spy", token="tok", organizations=["org"])],
            {
                "terraform": UpdaterConfig(enabled=True, auto_complete=True, target_branch="develop"),
                "golang": UpdaterConfig(enabled=True, target_branch=""),
            },
        )

        await self.service.run(config, RunOptions(dry_run=True, verbose=True))

        options = configured.update_calls[0][1]
        self.assertTrue(options.dry_run)
        self.assertTrue(options.verbose)
        self.assertTrue(options.auto_complete)
        self.assertEqual(options.target_branch, "develop")

        other = blank_branch.update_calls[0][1]
        self.assertTrue(other.dry_run)
        self.assertFalse(other.auto_complete)
        self.assertEqual(other.target_branch, "")

    async def test_updaters_run_in_registration_order(self) -> None:
        calls = []

        class _OrderedUpdater(_SpyUpdater):
            async def detect(self, provider, repo):
                calls.append(self.name)
                return False

        provider = _SpyProvider("tok", {"org": [_repo("a")]})
        self.provider_registry.register("spy", _ProviderFactory(provider))
        for name in ("zeta", "alpha", "mid"):
            self.updater_registry.register(_OrderedUpdater(name))
        config = _config([ProviderConfig(type="spy", token="tok", organizations=["org"])])

        await self.service.run(config, RunOptions())

        self.assertEqual(calls, ["zeta", "alpha", "mid"])

    async def test_cancel_event_stops_new_work(self) -> None:
        provider = _SpyProvider("tok", {"org": [_repo("a")]})
        self.provider_registry.register("spy", _ProviderFactory(provider))
        updater = _SpyUpdater("terraform")
        self.updater_registry.register(updater)
        config = _config([ProviderConfig(type="spy", token="tok", organizations=["org"])])
        cancel_event = asyncio.Event()
        cancel_event.set()

        report = await self.service.run(config, RunOptions(), cancel_event=cancel_event)

        self.assertTrue(report.cancelled)
        self.assertEqual(provider.discover_calls, [])
        self.assertEqual(updater.detect_calls, [])

    async def test_cancel_event_set_mid_run(self) -> None:
        cancel_event = asyncio.Event()

        class _CancellingUpdater(_SpyUpdater):
            async def create_update_prs(self, provider, repo, options):
                cancel_event.set()
                return await super().create_update_prs(provider, repo, options)

        provider = _SpyProvider("tok", {"org": [_repo("a"), _repo("b")]})
        self.provider_registry.register("spy", _ProviderFactory(provider))
        updater = _CancellingUpdater("terraform")
        self.updater_registry.register(updater)
        config = _config([ProviderConfig(type="spy", token="tok", organizations=["org"])])

        report = await self.service.run(config, RunOptions(), cancel_event=cancel_event)

        self.assertTrue(report.cancelled)
        self.assertEqual(updater.detect_calls, ["a"])
        self.assertEqual(report.pull_requests_created, 1)
        self.assertTrue(provider.closed)

    async def test_provider_is_closed_after_processing(self) -> None:
        provider = _SpyProvider("tok", {"org": []}, failing_orgs=["org"])
        self.provider_registry.register("spy", _ProviderFactory(provider))
        config = _config([ProviderConfig(type="spy", token="tok", organizations=["org"])])

        await self.service.run(config, RunOptions())

        self.assertTrue(provider.closed)

    async def test_verbose_run_leaves_logger_levels_untouched(self) -> None:
        class _LevelRecordingUpdater(_SpyUpdater):
            def __init__(self, name, logger) -> None:
                super().__init__(name, detects=False)
                self.logger = logger
                self.levels_seen = []

            async def detect(self, provider, repo):
                self.levels_seen.append(self.logger.level)
                return await super().detect(provider, repo)

        shared_logger = logging.getLogger("autoupdate.tests.shared")
        shared_logger.setLevel(logging.WARNING)
        self.addCleanup(shared_logger.setLevel, logging.NOTSET)
        service = UpdateService(self.provider_registry, self.updater_registry, logger=shared_logger)
        updater = _LevelRecordingUpdater("recording", shared_logger)
        self.updater_registry.register(updater)
        provider = _SpyProvider("tok", {"org": [_repo("a")]})
        self.provider_registry.register("spy", _ProviderFactory(provider))
        config = _config([ProviderConfig(type="spy", token="tok", organizations=["org"])])

        await service.run(config, RunOptions(verbose=True))

        self.assertEqual(updater.levels_seen, [logging.WARNING])
        self.assertEqual(shared_logger.level, logging.WARNING)
