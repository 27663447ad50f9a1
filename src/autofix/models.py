from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Literal
import uuid

if TYPE_CHECKING:
    from autofix.git_ops import RepoCheckout


JobStatus = Literal["completed", "failed"]
DeploymentStatus = Literal["ready", "error", "building", "queued", "canceled"]
BranchCategory = Literal["fix", "feat", "refactor", "chore"]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_job_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Job:
    """One fix/feature request taken from a chat message.

    Only ``retry_count`` changes after creation, and only the queue touches it.
    """

    text: str
    channel: str
    thread_ts: str
    message_ts: str
    user_id: str
    job_id: str = field(default_factory=_new_job_id)
    created_at: datetime = field(default_factory=_utc_now)
    retry_count: int = 0


@dataclass(frozen=True)
class FileChange:
    path: str
    content: str


@dataclass(frozen=True)
class FixResult:
    success: bool
    analysis: str = ""
    solution: str = ""
    files_changed: tuple[str, ...] = ()
    changes: tuple[FileChange, ...] = ()
    error: str | None = None

    def __post_init__(self) -> None:
        if not self.success:
            return
        if len(set(self.files_changed)) != len(self.files_changed):
            raise ValueError("files_changed must not contain duplicate paths")
        change_paths = [change.path for change in self.changes]
        if len(set(change_paths)) != len(change_paths):
            raise ValueError("changes must contain exactly one record per path")
        if set(change_paths) != set(self.files_changed):
            raise ValueError("files_changed and changes must describe the same paths")

    @classmethod
    def failure(cls, error: str, *, analysis: str = "") -> FixResult:
        return cls(success=False, analysis=analysis, error=error)

    @property
    def has_changes(self) -> bool:
        return bool(self.files_changed)


@dataclass(frozen=True)
class DeploymentResult:
    success: bool
    url: str | None = None
    deployment_id: str | None = None
    status: DeploymentStatus | None = None
    error: str | None = None


@dataclass(frozen=True)
class JobResult:
    job_id: str
    status: JobStatus
    branch_name: str | None = None
    pr_url: str | None = None
    preview_url: str | None = None
    fix: FixResult | None = None
    deployment: DeploymentResult | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        if self.status == "failed" and not self.error:
            raise ValueError("failed job results must carry an error")

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    def to_dict(self) -> dict[str, object]:
        return {
            "job_id": self.job_id,
            "status": self.status,
            "branch_name": self.branch_name,
            "pr_url": self.pr_url,
            "preview_url": self.preview_url,
            "files_changed": list(self.fix.files_changed) if self.fix else [],
            "deployment_status": self.deployment.status if self.deployment else None,
            "error": self.error,
        }


@dataclass(frozen=True)
class MessageHandle:
    channel: str
    ts: str


@dataclass(frozen=True)
class RepoSyncResult:
    success: bool
    checkout: RepoCheckout | None = None
    error: str | None = None


@dataclass(frozen=True)
class BranchResult:
    success: bool
    branch_name: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class CommitResult:
    success: bool
    commit_sha: str | None = None
    branch: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class PushResult:
    success: bool
    branch: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class PullRequestResult:
    success: bool
    number: int | None = None
    url: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class LabelResult:
    success: bool
    labels: tuple[str, ...] = ()
    error: str | None = None
