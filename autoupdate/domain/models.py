from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict


class Repository(BaseModel):
    """
    Immutable domain model representing a Git repository on any hosting provider.
    Produced by provider discovery and owned by the run that discovered it.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Provider-specific repository identifier")
    name: str = Field(..., description="Name of the repository")
    organization: str = Field(..., description="Owning organization, group or user")
    project: str = Field(
        default="",
        description="Sub-project for providers that nest repositories under projects",
    )
    default_branch: str = Field(default="refs/heads/main", description="Full ref of the default branch")
    remote_url: str = Field(default="", description="HTTPS remote URL")
    ssh_url: str = Field(default="", description="SSH remote URL")
    provider_name: str = Field(default="", description="Identifier of the owning provider")

    @property
    def full_name(self) -> str:
        return f"{self.organization}/{self.name}"


class File(BaseModel):
    """A file or directory entry within a repository tree."""
    model_config = ConfigDict(frozen=True)

    path: str
    object_id: str = ""
    is_dir: bool = False


class Dependency(BaseModel):
    """A versioned dependency found in a repository."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Dependency name or module label")
    source: str = Field(..., description="Source URL/path without version ref")
    current_version: str
    latest_version: str = ""
    file_path: str = ""
    line: int = 0


class ChangeType(str, Enum):
    ADD = "add"
    EDIT = "edit"
    DELETE = "delete"


class FileChange(BaseModel):
    """A file modification to be included in a commit."""
    model_config = ConfigDict(frozen=True)

    path: str
    content: str = ""
    change_type: ChangeType = ChangeType.EDIT


class BranchInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    branch_name: str
    base_branch: str
    changes: List[FileChange] = Field(default_factory=list)
    commit_message: str


class PullRequestInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_branch: str
    target_branch: str
    title: str
    description: str = ""
    auto_complete: bool = False


class PullRequest(BaseModel):
    """A pull/merge request returned by a provider."""
    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    url: str = ""
    status: str = ""


class UpdateOptions(BaseModel):
    """Options handed to an updater for a single repository."""
    model_config = ConfigDict(frozen=True)

    dry_run: bool = False
    verbose: bool = False
    auto_complete: bool = False
    target_branch: str = Field(default="", description="Empty means the repository's default branch")


class RunOptions(BaseModel):
    """
    Run-scoped filters and flags. Empty filters and false flags mean
    "process everything".
    """
    model_config = ConfigDict(frozen=True)

    dry_run: bool = False
    verbose: bool = False
    provider_name: str = ""
    org_override: str = ""
    updater_name: str = ""


class FailureKind(str, Enum):
    PROVIDER_INITIALIZATION = "provider_initialization"
    DISCOVERY = "discovery"
    UPDATER = "updater"


class RunFailure(BaseModel):
    """A single non-fatal failure recorded during a run."""
    model_config = ConfigDict(frozen=True)

    kind: FailureKind
    provider: str
    organization: Optional[str] = None
    repository: Optional[str] = None
    updater: Optional[str] = None
    message: str


class RunReport(BaseModel):
    """
    Aggregate outcome of one run. Built fresh by every call to
    UpdateService.run and never shared between runs.
    """
    repositories_processed: int = 0
    pull_requests: List[PullRequest] = Field(default_factory=list)
    failures: List[RunFailure] = Field(default_factory=list)
    cancelled: bool = False

    @property
    def pull_requests_created(self) -> int:
        return len(self.pull_requests)

    @property
    def error_count(self) -> int:
        return len(self.failures)

    @property
    def succeeded(self) -> bool:
        return not self.failures
