from abc import ABC, abstractmethod
from typing import List

from autoupdate.domain.models import BranchInput, File, PullRequest, PullRequestInput, Repository


class Provider(ABC):
    """
    Abstraction over a Git hosting service (GitHub, GitLab, Azure DevOps, ...).

    Each implementation handles authentication, repository discovery, file
    access and pull request management for its platform. Every coroutine that
    touches the network raises a ProviderException subclass on failure and
    honours task cancellation.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier, e.g. "github"."""

    @property
    @abstractmethod
    def auth_token(self) -> str:
        """Authentication token configured for this provider."""

    @abstractmethod
    def matches_url(self, url: str) -> bool:
        """Return True if the remote URL belongs to this provider."""

    @abstractmethod
    async def discover_repositories(self, org: str) -> List[Repository]:
        """List all repositories in an organization or group."""

    @abstractmethod
    async def get_file_content(self, repo: Repository, path: str) -> str:
        """Read a file from the repository's default branch."""

    @abstractmethod
    async def list_files(self, repo: Repository, pattern: str = "") -> List[File]:
        """
        List the files of a repository. When pattern is empty the whole tree
        is returned, otherwise only paths ending with pattern.
        """

    @abstractmethod
    async def get_tags(self, repo: Repository) -> List[str]:
        """Return all tags sorted by semantic version, newest first."""

    @abstractmethod
    async def has_file(self, repo: Repository, path: str) -> bool:
        """Return True if a file exists at path on the default branch."""

    @abstractmethod
    async def create_branch_with_changes(self, repo: Repository, branch_input: BranchInput) -> None:
        """Create a branch carrying the given file changes on top of the base branch."""

    @abstractmethod
    async def create_pull_request(self, repo: Repository, pr_input: PullRequestInput) -> PullRequest:
        """Open a pull/merge request."""

    @abstractmethod
    async def pull_request_exists(self, repo: Repository, source_branch: str) -> bool:
        """Return True if an open pull request already exists for source_branch."""

    @abstractmethod
    def clone_url(self, repo: Repository) -> str:
        """HTTPS clone URL, with embedded credentials where the platform supports it."""

    async def close(self) -> None:
        """Releases network resources held by the provider. No-op by default."""
