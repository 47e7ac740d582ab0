import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

import hcl2

from autoupdate.domain.changelog import insert_changelog_entry
from autoupdate.domain.exceptions import ProviderException, UpdaterException
from autoupdate.domain.models import (
    BranchInput,
    ChangeType,
    Dependency,
    FileChange,
    PullRequest,
    PullRequestInput,
    Repository,
    UpdateOptions,
)
from autoupdate.domain.provider import Provider
from autoupdate.domain.updater import Updater
from autoupdate.domain.versions import is_newer_version, is_semver_like

logger = logging.getLogger(__name__)

UPDATER_NAME = "terraform"
CHANGELOG_PATH = "CHANGELOG.md"
MAX_DETAILED_UPGRADES = 5
BRANCH_SINGLE_FORMAT = "chore/upgrade-{name}-{version}"
BRANCH_BATCH_FORMAT = "chore/upgrade-{count}-dependencies"

MODULE_BODY = r'\{(?:[^{}]|\{[^{}]*\})*?'
MODULE_PATTERN = re.compile(r'module\s+"([^"]+)"\s*' + MODULE_BODY + r'source\s*=\s*"([^"]+)"', re.DOTALL)
IMAGE_PATTERN = re.compile(r'(\w+_image)\s*=\s*"([a-zA-Z0-9][a-zA-Z0-9._-]*):([^"]+)"')
REF_PATTERN = re.compile(r'[?&]ref=([^&\s"]+)')
REF_QUERY_PATTERN = re.compile(r'\?ref=[^&\s"]+')
GIT_HOST_MARKERS = ("github.com", "gitlab.com", "bitbucket.org", "dev.azure.com", "_git/")


class DependencyKind(Enum):
    MODULE = "module"
    IMAGE = "image"


@dataclass
class ScannedDependency:
    dependency: Dependency
    file_content: str
    kind: DependencyKind


@dataclass
class UpgradeTask:
    dependency: Dependency
    new_version: str
    file_content: str
    kind: DependencyKind

    @property
    def short_name(self) -> str:
        return extract_repo_name(self.dependency.source)


def is_git_module(source: str) -> bool:
    if source.startswith(("git::", "git@")):
        return True
    return any(marker in source for marker in GIT_HOST_MARKERS)


def extract_version(source: str) -> str:
    match = REF_PATTERN.search(source)
    return match.group(1) if match else ""


def remove_version_from_source(source: str) -> str:
    return REF_QUERY_PATTERN.sub("", source)


def extract_repo_name(source: str) -> str:
    name = source.rstrip("/").split("/")[-1]
    if name.endswith(".git"):
        return name[:-len(".git")]
    return name


def build_source_with_version(source: str, version: str) -> str:
    if "?ref=" in source:
        return REF_QUERY_PATTERN.sub(f"?ref={version}", source)
    if "?" in source:
        return f"{source}&ref={version}"
    return f"{source}?ref={version}"


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1]
    return value


def _module_line(content: str, module_name: str) -> int:
    match = re.search(r'module\s+"' + re.escape(module_name) + r'"\s*\{', content)
    return content.count("\n", 0, match.start()) + 1 if match else 0


def _module_dependency(module_name: str, source: str, content: str, file_path: str, line: int = 0) -> Optional[Dependency]:
    if not is_git_module(source):
        return None

    version = extract_version(source)
    if not version:
        return None

    return Dependency(
        name=module_name,
        source=remove_version_from_source(source),
        current_version=version,
        file_path=file_path,
        line=line or _module_line(content, module_name),
    )


def scan_terraform_file(content: str, file_path: str) -> List[Dependency]:
    """
    Finds git-sourced module blocks pinned with ?ref=<version>.

    The file is parsed as HCL. Files the parser rejects are scanned with
    MODULE_PATTERN instead.
    """
    try:
        document = hcl2.loads(content)
    except Exception as e:
        logger.debug(f"Failed to parse {file_path} as HCL, falling back to regex scan: {e}")
        return scan_terraform_file_with_regex(content, file_path)

    dependencies = []
    for module_group in document.get("module", []):
        for raw_name, body in module_group.items():
            source = body.get("source") if isinstance(body, dict) else None
            if not isinstance(source, str):
                continue

            dependency = _module_dependency(_unquote(raw_name), _unquote(source), content, file_path)
            if dependency is not None:
                dependencies.append(dependency)
    return dependencies


def scan_terraform_file_with_regex(content: str, file_path: str) -> List[Dependency]:
    dependencies = []
    for match in MODULE_PATTERN.finditer(content):
        dependency = _module_dependency(
            match.group(1), match.group(2), content, file_path,
            line=content.count("\n", 0, match.start()) + 1,
        )
        if dependency is not None:
            dependencies.append(dependency)
    return dependencies


def scan_hcl_file(content: str, file_path: str) -> List[Dependency]:
    """
    Finds Terragrunt container image references such as
    relayer_http_image = "relayer-http:0.7.0", where the image name matches a
    repository of the same organization and the tag is one of its Git tags.
    """
    dependencies = []
    for match in IMAGE_PATTERN.finditer(content):
        var_name, image_name, version = match.groups()
        if not is_semver_like(version):
            continue

        dependencies.append(Dependency(
            name=var_name,
            source=image_name,
            current_version=version,
            file_path=file_path,
            line=content.count("\n", 0, match.start()) + 1,
        ))
    return dependencies


def apply_module_upgrade(content: str, dependency: Dependency, new_version: str) -> str:
    old_source = build_source_with_version(dependency.source, dependency.current_version)
    if old_source in content:
        return content.replace(old_source, build_source_with_version(dependency.source, new_version), 1)

    pattern = re.compile(
        r'(module\s+"' + re.escape(dependency.name) + r'"\s*' + MODULE_BODY + r'source\s*=\s*"[^"]*[?&]ref=)'
        + re.escape(dependency.current_version) + r'([^"]*")',
        re.DOTALL,
    )
    return pattern.sub(lambda m: f"{m.group(1)}{new_version}{m.group(2)}", content, count=1)


def apply_image_upgrade(content: str, dependency: Dependency, new_version: str) -> str:
    old = f"{dependency.source}:{dependency.current_version}"
    if old in content:
        return content.replace(old, f"{dependency.source}:{new_version}", 1)

    pattern = re.compile(
        r'(' + re.escape(dependency.name) + r'\s*=\s*"' + re.escape(dependency.source) + r':)'
        + re.escape(dependency.current_version) + r'(")'
    )
    return pattern.sub(lambda m: f"{m.group(1)}{new_version}{m.group(2)}", content)


def apply_upgrades(tasks: List[UpgradeTask]) -> List[FileChange]:
    """Rewrites every touched file once, keeping the order files were first seen."""
    contents: Dict[str, str] = {}
    for task in tasks:
        contents.setdefault(task.dependency.file_path, task.file_content)

    for task in tasks:
        path = task.dependency.file_path
        if task.kind == DependencyKind.IMAGE:
            contents[path] = apply_image_upgrade(contents[path], task.dependency, task.new_version)
        else:
            contents[path] = apply_module_upgrade(contents[path], task.dependency, task.new_version)

    return [FileChange(path=path, content=content, change_type=ChangeType.EDIT) for path, content in contents.items()]


def generate_branch_name(tasks: List[UpgradeTask]) -> str:
    if len(tasks) == 1:
        return BRANCH_SINGLE_FORMAT.format(name=tasks[0].short_name, version=tasks[0].new_version)
    return BRANCH_BATCH_FORMAT.format(count=len(tasks))


def generate_commit_message(tasks: List[UpgradeTask]) -> str:
    if len(tasks) == 1:
        task = tasks[0]
        return (
            f"chore(deps): upgraded `{task.short_name}` from "
            f"`{task.dependency.current_version}` to `{task.new_version}`"
        )
    return f"chore(deps): upgraded {len(tasks)} Terraform dependencies"


def generate_pr_title(tasks: List[UpgradeTask]) -> str:
    if len(tasks) == 1:
        return f"chore(deps): upgraded `{tasks[0].short_name}` to `{tasks[0].new_version}`"
    return f"chore(deps): upgraded {len(tasks)} Terraform dependencies"


def generate_pr_description(tasks: List[UpgradeTask]) -> str:
    lines = ["## Summary", ""]

    if len(tasks) <= MAX_DETAILED_UPGRADES:
        lines += [
            "This PR upgrades the following Terraform dependencies:",
            "",
            "| Name | Type | Current Version | New Version | File |",
            "|------|------|-----------------|-------------|------|",
        ]
        for task in tasks:
            lines.append(
                f"| {task.short_name} | {task.kind.value} | {task.dependency.current_version} "
                f"| {task.new_version} | {task.dependency.file_path} |"
            )
    else:
        module_count = sum(1 for task in tasks if task.kind == DependencyKind.MODULE)
        image_count = len(tasks) - module_count
        lines += [f"This PR upgrades **{len(tasks)}** Terraform dependencies:", ""]
        if module_count:
            lines.append(f"- **{module_count}** module upgrades")
        if image_count:
            lines.append(f"- **{image_count}** container image upgrades")

    lines += ["", "---", "*This PR was automatically created by autoupdate*", ""]
    return "\n".join(lines)


def build_changelog_entries(tasks: List[UpgradeTask]) -> List[str]:
    entries = []
    for task in tasks:
        label = "container image" if task.kind == DependencyKind.IMAGE else "Terraform module"
        entries.append(
            f"- changed the {label} {task.short_name} from "
            f"{task.dependency.current_version} to {task.new_version}"
        )
    return entries


class TerraformUpdater(Updater):
    """
    Updater for Terraform module references (.tf) and Terragrunt container
    image tags (.hcl). Files are read and written through the provider API,
    so no local clone is required.
    """

    @property
    def name(self) -> str:
        return UPDATER_NAME

    async def detect(self, provider: Provider, repo: Repository) -> bool:
        for suffix in (".tf", ".hcl"):
            try:
                files = await provider.list_files(repo, suffix)
            except ProviderException as e:
                logger.debug(f"[terraform] Failed to list {suffix} files in {repo.full_name}: {e}")
                continue
            if files:
                return True
        return False

    async def create_update_prs(
        self,
        provider: Provider,
        repo: Repository,
        options: UpdateOptions,
    ) -> List[PullRequest]:
        logger.info(f"[terraform] Scanning {repo.full_name} for Terraform dependencies")

        scanned = await self._scan_all_dependencies(provider, repo)
        if not scanned:
            return []

        upgrades = await self._determine_upgrades(provider, repo, scanned)
        if not upgrades:
            logger.info(f"[terraform] {repo.full_name}: all Terraform dependencies up to date")
            return []

        logger.info(f"[terraform] {repo.full_name}: found {len(upgrades)} dependencies to upgrade")

        if options.dry_run:
            for task in upgrades:
                logger.info(
                    f"[terraform] [DRY RUN] Would upgrade {task.short_name}: "
                    f"{task.dependency.current_version} -> {task.new_version}"
                )
            return []

        pr = await self._create_upgrade_pr(provider, repo, options, upgrades)
        return [pr] if pr is not None else []

    async def _scan_all_dependencies(self, provider: Provider, repo: Repository) -> List[ScannedDependency]:
        scanned: List[ScannedDependency] = []
        scanners = (
            (".tf", scan_terraform_file, DependencyKind.MODULE),
            (".hcl", scan_hcl_file, DependencyKind.IMAGE),
        )

        for suffix, scanner, kind in scanners:
            try:
                files = await provider.list_files(repo, suffix)
            except ProviderException as e:
                logger.warning(f"[terraform] Failed to list {suffix} files: {e}")
                continue

            for file in files:
                if file.is_dir:
                    continue
                try:
                    content = await provider.get_file_content(repo, file.path)
                except ProviderException as e:
                    logger.warning(f"[terraform] Failed to read {file.path}: {e}")
                    continue

                for dependency in scanner(content, file.path):
                    scanned.append(ScannedDependency(dependency=dependency, file_content=content, kind=kind))

        return scanned

    async def _determine_upgrades(
        self,
        provider: Provider,
        repo: Repository,
        scanned: List[ScannedDependency],
    ) -> List[UpgradeTask]:
        try:
            siblings = await provider.discover_repositories(repo.organization)
        except ProviderException as e:
            logger.warning(f"[terraform] Failed to list repositories of '{repo.organization}': {e}")
            return []
        siblings_by_name = {sibling.name: sibling for sibling in siblings}

        tags_by_source: Dict[str, List[str]] = {}
        upgrades = []
        for item in scanned:
            source = item.dependency.source
            if source not in tags_by_source:
                tags_by_source[source] = await self._resolve_tags(provider, siblings_by_name.get(extract_repo_name(source)))

            tags = tags_by_source[source]
            if not tags:
                continue

            latest = tags[0]
            if not is_newer_version(item.dependency.current_version, latest):
                continue

            upgrades.append(UpgradeTask(
                dependency=item.dependency.model_copy(update={"latest_version": latest}),
                new_version=latest,
                file_content=item.file_content,
                kind=item.kind,
            ))
        return upgrades

    async def _resolve_tags(self, provider: Provider, source_repo: Optional[Repository]) -> List[str]:
        if source_repo is None:
            return []
        try:
            return await provider.get_tags(source_repo)
        except ProviderException as e:
            logger.warning(f"[terraform] Failed to list tags of {source_repo.full_name}: {e}")
            return []

    async def _create_upgrade_pr(
        self,
        provider: Provider,
        repo: Repository,
        options: UpdateOptions,
        upgrades: List[UpgradeTask],
    ) -> Optional[PullRequest]:
        branch_name = generate_branch_name(upgrades)

        try:
            exists = await provider.pull_request_exists(repo, branch_name)
        except ProviderException as e:
            logger.warning(f"[terraform] Failed to check existing PRs: {e}")
            exists = False
        if exists:
            logger.info(f"[terraform] PR already exists for branch '{branch_name}', skipping")
            return None

        changes = apply_upgrades(upgrades)
        changelog_change = await self._build_changelog_change(provider, repo, upgrades)
        if changelog_change is not None:
            changes.append(changelog_change)

        target_branch = repo.default_branch
        if options.target_branch:
            target_branch = f"refs/heads/{options.target_branch}"

        try:
            await provider.create_branch_with_changes(repo, BranchInput(
                branch_name=branch_name,
                base_branch=target_branch,
                changes=changes,
                commit_message=generate_commit_message(upgrades),
            ))
        except ProviderException as e:
            raise UpdaterException(f"failed to create branch '{branch_name}': {e}") from e

        try:
            pr = await provider.create_pull_request(repo, PullRequestInput(
                source_branch=f"refs/heads/{branch_name}",
                target_branch=target_branch,
                title=generate_pr_title(upgrades),
                description=generate_pr_description(upgrades),
                auto_complete=options.auto_complete,
            ))
        except ProviderException as e:
            raise UpdaterException(f"failed to create PR: {e}") from e

        logger.info(f"[terraform] Created PR #{pr.id} for {repo.full_name}: {pr.url}")
        return pr

    async def _build_changelog_change(
        self,
        provider: Provider,
        repo: Repository,
        upgrades: List[UpgradeTask],
    ) -> Optional[FileChange]:
        """Adds the upgrades to CHANGELOG.md when the repository keeps one."""
        try:
            if not await provider.has_file(repo, CHANGELOG_PATH):
                return None
            content = await provider.get_file_content(repo, CHANGELOG_PATH)
        except ProviderException as e:
            logger.warning(f"[terraform] Failed to read {CHANGELOG_PATH}: {e}")
            return None

        modified = insert_changelog_entry(content, build_changelog_entries(upgrades))
        if modified == content:
            return None
        return FileChange(path=CHANGELOG_PATH, content=modified, change_type=ChangeType.EDIT)
