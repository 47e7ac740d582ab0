from typing import Any, Dict
from autoupdate.domain.models import File, PullRequest, Repository

GITHUB_PROVIDER_NAME = "github"
DEFAULT_BRANCH = "main"


class GitHubTranslator:
    """
    Anti-corruption layer that translates raw GitHub REST API payloads into domain models.
    """

    @staticmethod
    def to_domain(raw_repo: Dict[str, Any], organization: str) -> Repository:
        """
        Transforms a raw GitHub repository payload into a Repository.

        Args:
            raw_repo (Dict[str, Any]): One element of a /orgs/{org}/repos or /users/{user}/repos response.
            organization (str): The organization or user the repository was discovered under.

        Returns:
            Repository: The domain model instance representing the repository.
        """
        if raw_repo.get('id') is None:
            raise ValueError("id is required to build Repository.")

        default_branch = raw_repo.get('default_branch') or DEFAULT_BRANCH

        return Repository(
            id=str(raw_repo['id']),
            name=raw_repo.get('name', ''),
            organization=organization,
            default_branch=f"refs/heads/{default_branch}",
            remote_url=raw_repo.get('clone_url', ''),
            ssh_url=raw_repo.get('ssh_url', ''),
            provider_name=GITHUB_PROVIDER_NAME,
        )

    @staticmethod
    def to_file(raw_entry: Dict[str, Any]) -> File:
        return File(
            path=raw_entry.get('path', ''),
            object_id=raw_entry.get('sha', ''),
            is_dir=raw_entry.get('type') == 'tree',
        )

    @staticmethod
    def to_pull_request(raw_pr: Dict[str, Any]) -> PullRequest:
        return PullRequest(
            id=raw_pr.get('number', 0),
            title=raw_pr.get('title', ''),
            url=raw_pr.get('html_url', ''),
            status=raw_pr.get('state', ''),
        )
