import aiohttp
import asyncio
import base64
import logging
import random
from typing import Any, Dict, List, Optional, Tuple

from autoupdate.domain.exceptions import (
    ProviderException,
    RateLimitExceededException,
    ResourceNotFoundException,
)
from autoupdate.domain.models import (
    BranchInput,
    ChangeType,
    File,
    PullRequest,
    PullRequestInput,
    Repository,
)
from autoupdate.domain.provider import Provider
from autoupdate.domain.versions import sort_versions_descending
from autoupdate.infrastructure.acl import GITHUB_PROVIDER_NAME, GitHubTranslator

logger = logging.getLogger(__name__)

API_URL = "https://api.github.com"
PER_PAGE = 100
BLOB_MODE = "100644"
BLOB_TYPE = "blob"
BRANCH_REF_PREFIX = "refs/heads/"
REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=60, connect=10)
MAX_RETRIES = 7
RETRYABLE_STATUSES = {500, 502, 503, 504}


def _strip_branch_prefix(ref: str) -> str:
    if ref.startswith(BRANCH_REF_PREFIX):
        return ref[len(BRANCH_REF_PREFIX):]
    return ref


class GitHubProvider(Provider):
    """
    Provider implementation for GitHub backed by the REST API.
    Handles authentication, pagination, retries and rate limit management.
    """

    def __init__(self, token: str, api_url: str = API_URL, session: Optional[aiohttp.ClientSession] = None):
        self._token = token
        self.api_url = api_url.rstrip("/")
        self.headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": "autoupdate",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        self._session = session
        self._owns_session = session is None

    @property
    def name(self) -> str:
        return GITHUB_PROVIDER_NAME

    @property
    def auth_token(self) -> str:
        return self._token

    def matches_url(self, url: str) -> bool:
        return "github.com" in url

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=REQUEST_TIMEOUT)
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        path_or_url: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Any, Optional[str]]:
        """
        Sends one API request, retrying on secondary rate limits, server errors
        and transport failures.

        Returns:
            Tuple of (decoded JSON body, URL of the next page or None).
        """
        url = path_or_url if path_or_url.startswith("http") else f"{self.api_url}{path_or_url}"
        session = self._get_session()

        for attempt in range(MAX_RETRIES):
            try:
                async with session.request(
                    method, url, params=params, json=payload, headers=self.headers, timeout=REQUEST_TIMEOUT,
                ) as response:
                    if response.status in (403, 429):
                        retry_after = response.headers.get('Retry-After')
                        if retry_after:
                            sleep_time = int(retry_after)
                            logger.warning(f"Secondary rate limit ({response.status}). Sleeping {sleep_time}s...")
                            await asyncio.sleep(sleep_time)
                            continue
                        if response.headers.get('X-RateLimit-Remaining') == "0":
                            raise RateLimitExceededException(
                                reset_at=response.headers.get('X-RateLimit-Reset', 'unknown'),
                            )
                        raise ProviderException(f"{method} {url} forbidden ({response.status}).")

                    if response.status == 404:
                        raise ResourceNotFoundException(f"{method} {url} not found.")

                    if response.status in RETRYABLE_STATUSES:
                        sleep_time = (2 ** attempt) + random.uniform(0, 2)
                        logger.warning(
                            f"Server error ({response.status}) on {method} {url}, "
                            f"retrying in {sleep_time:.1f}s (attempt {attempt + 1}/{MAX_RETRIES})..."
                        )
                        await asyncio.sleep(sleep_time)
                        continue

                    if response.status >= 400:
                        body = await response.text()
                        raise ProviderException(f"{method} {url} failed ({response.status}): {body}")

                    data = await response.json() if response.status != 204 else None
                    next_link = response.links.get("next") if response.links else None
                    next_url = str(next_link["url"]) if next_link else None
                    return data, next_url

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                sleep_time = (2 ** attempt) + random.uniform(0, 2)
                logger.warning(
                    f"Request {method} {url} failed (attempt {attempt + 1}/{MAX_RETRIES}): {e}. "
                    f"Retrying in {sleep_time:.1f}s..."
                )
                await asyncio.sleep(sleep_time)

        raise ProviderException(f"{method} {url} failed after {MAX_RETRIES} attempts.")

    async def _paginate(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        next_url: Optional[str] = path
        page_params = {"per_page": PER_PAGE, **(params or {})}

        while next_url:
            data, next_url = await self._request("GET", next_url, params=page_params)
            items.extend(data or [])
            # The next link already carries the query string
            page_params = None

        return items

    async def discover_repositories(self, org: str) -> List[Repository]:
        try:
            raw_repos = await self._paginate(f"/orgs/{org}/repos")
        except ProviderException as e:
            logger.debug(f"Listing '{org}' as an organization failed ({e}). Falling back to user repositories.")
            raw_repos = await self._paginate(f"/users/{org}/repos", params={"type": "owner"})

        return [GitHubTranslator.to_domain(raw, org) for raw in raw_repos]

    async def get_file_content(self, repo: Repository, path: str) -> str:
        data, _ = await self._request(
            "GET", f"/repos/{repo.organization}/{repo.name}/contents/{path.lstrip('/')}",
        )
        if isinstance(data, list) or data.get('type') != 'file':
            raise ProviderException(f"path '{path}' is a directory, not a file")

        try:
            return base64.b64decode(data.get('content', '')).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            raise ProviderException(f"failed to decode content of '{path}': {e}") from e

    async def list_files(self, repo: Repository, pattern: str = "") -> List[File]:
        branch = _strip_branch_prefix(repo.default_branch)
        data, _ = await self._request(
            "GET", f"/repos/{repo.organization}/{repo.name}/git/trees/{branch}", params={"recursive": "1"},
        )
        if data.get('truncated'):
            logger.warning(f"Tree of {repo.full_name} was truncated by GitHub. Some files are not listed.")

        files = []
        for entry in data.get('tree', []):
            if pattern and not entry.get('path', '').endswith(pattern):
                continue
            files.append(GitHubTranslator.to_file(entry))
        return files

    async def get_tags(self, repo: Repository) -> List[str]:
        raw_tags = await self._paginate(f"/repos/{repo.organization}/{repo.name}/tags")
        return sort_versions_descending([tag['name'] for tag in raw_tags if tag.get('name')])

    async def has_file(self, repo: Repository, path: str) -> bool:
        try:
            await self.get_file_content(repo, path)
        except ResourceNotFoundException:
            return False
        return True

    async def create_branch_with_changes(self, repo: Repository, branch_input: BranchInput) -> None:
        repo_path = f"/repos/{repo.organization}/{repo.name}"
        base_branch = _strip_branch_prefix(branch_input.base_branch)

        base_ref, _ = await self._request("GET", f"{repo_path}/git/ref/heads/{base_branch}")
        base_sha = base_ref['object']['sha']

        base_commit, _ = await self._request("GET", f"{repo_path}/git/commits/{base_sha}")

        tree_entries = []
        for change in branch_input.changes:
            entry = {"path": change.path.lstrip("/"), "mode": BLOB_MODE, "type": BLOB_TYPE}
            if change.change_type == ChangeType.DELETE:
                entry["sha"] = None
            else:
                entry["content"] = change.content
            tree_entries.append(entry)

        new_tree, _ = await self._request(
            "POST", f"{repo_path}/git/trees",
            payload={"base_tree": base_commit['tree']['sha'], "tree": tree_entries},
        )

        new_commit, _ = await self._request(
            "POST", f"{repo_path}/git/commits",
            payload={"message": branch_input.commit_message, "tree": new_tree['sha'], "parents": [base_sha]},
        )

        await self._request(
            "POST", f"{repo_path}/git/refs",
            payload={"ref": f"{BRANCH_REF_PREFIX}{branch_input.branch_name}", "sha": new_commit['sha']},
        )
        logger.debug(f"Created branch '{branch_input.branch_name}' in {repo.full_name} at {new_commit['sha']}.")

    async def create_pull_request(self, repo: Repository, pr_input: PullRequestInput) -> PullRequest:
        # GitHub only exposes auto-merge through GraphQL, so auto_complete is not applied here
        data, _ = await self._request(
            "POST", f"/repos/{repo.organization}/{repo.name}/pulls",
            payload={
                "title": pr_input.title,
                "head": _strip_branch_prefix(pr_input.source_branch),
                "base": _strip_branch_prefix(pr_input.target_branch),
                "body": pr_input.description,
                "maintainer_can_modify": True,
            },
        )
        return GitHubTranslator.to_pull_request(data)

    async def pull_request_exists(self, repo: Repository, source_branch: str) -> bool:
        data, _ = await self._request(
            "GET", f"/repos/{repo.organization}/{repo.name}/pulls",
            params={"head": f"{repo.organization}:{_strip_branch_prefix(source_branch)}", "state": "open"},
        )
        return bool(data)

    def clone_url(self, repo: Repository) -> str:
        remote_url = repo.remote_url or f"https://github.com/{repo.organization}/{repo.name}.git"
        return remote_url.replace("https://", f"https://x-access-token:{self._token}@", 1)
