from abc import ABC, abstractmethod
from typing import List

from autoupdate.domain.models import PullRequest, Repository, UpdateOptions
from autoupdate.domain.provider import Provider


class Updater(ABC):
    """
    Abstraction over a dependency ecosystem (Terraform modules, Go modules, ...).

    Each implementation owns the full cycle: detection, scanning, upgrading
    and pull request creation. Implementations must be safe to call
    repeatedly and for several repositories at once.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Updater identifier, e.g. "terraform"."""

    @abstractmethod
    async def detect(self, provider: Provider, repo: Repository) -> bool:
        """Read-only check: does the repository use this ecosystem?"""

    @abstractmethod
    async def create_update_prs(
        self,
        provider: Provider,
        repo: Repository,
        options: UpdateOptions,
    ) -> List[PullRequest]:
        """
        Scan for outdated dependencies, apply upgrades and open pull requests.

        Returns the pull requests created, which is an empty list when
        everything is already up to date.
        """
