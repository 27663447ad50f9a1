from __future__ import annotations

from pathlib import Path, PurePosixPath
import logging

from autofix.config import RepoConfig
from autofix.models import (
    BranchResult,
    CommitResult,
    FileChange,
    PushResult,
    RepoSyncResult,
)
from autofix.observability import log_event
from autofix.shell import CommandError, run, summarize_command_error


LOGGER = logging.getLogger("autofix.git_ops")


class GitRepoManager:
    """Owns the single local working copy of the configured repository.

    Only ``sync`` is available here. Branch, commit and push live on the
    ``RepoCheckout`` that a successful sync hands back.
    """

    def __init__(self, repo: RepoConfig, checkout_path: Path) -> None:
        self.repo = repo
        self.checkout_path = checkout_path

    def sync(self) -> RepoSyncResult:
        log_event(
            LOGGER,
            "git_sync_started",
            checkout_path=str(self.checkout_path),
            default_branch=self.repo.default_branch,
        )
        try:
            self._ensure_clone()
            checkout = RepoCheckout(self.repo, self.checkout_path)
            checkout.reset_to_base()
        except (CommandError, OSError) as exc:
            log_event(
                LOGGER,
                "git_sync_failed",
                level=logging.ERROR,
                checkout_path=str(self.checkout_path),
                error_type=type(exc).__name__,
            )
            return RepoSyncResult(success=False, error=summarize_command_error(exc))
        log_event(LOGGER, "git_sync_completed", checkout_path=str(self.checkout_path))
        return RepoSyncResult(success=True, checkout=checkout)

    def _ensure_clone(self) -> None:
        remote_url = self.repo.effective_remote_url
        if not (self.checkout_path / ".git").exists():
            self.checkout_path.parent.mkdir(parents=True, exist_ok=True)
            log_event(LOGGER, "git_checkout_cloned", checkout_path=str(self.checkout_path))
            run(["git", "clone", remote_url, str(self.checkout_path)])
            return
        run(["git", "-C", str(self.checkout_path), "remote", "set-url", "origin", remote_url])


class RepoCheckout:
    def __init__(self, repo: RepoConfig, path: Path) -> None:
        self.repo = repo
        self.path = path

    def reset_to_base(self) -> None:
        base = self.repo.default_branch
        self._git("fetch", "origin", "--prune")
        self._git("checkout", "-B", base, f"origin/{base}")
        self._git("reset", "--hard", f"origin/{base}")
        self._git("clean", "-ffd")

    def create_branch(self, branch: str) -> BranchResult:
        log_event(LOGGER, "git_branch_create", checkout_path=str(self.path), branch=branch)
        try:
            self.reset_to_base()
            if self._local_branch_exists(branch):
                log_event(LOGGER, "git_stale_branch_deleted", branch=branch)
                self._git("branch", "-D", branch)
            self._git("checkout", "-b", branch)
        except CommandError as exc:
            log_event(
                LOGGER,
                "git_branch_create_failed",
                level=logging.ERROR,
                branch=branch,
                error_type=type(exc).__name__,
            )
            return BranchResult(success=False, error=summarize_command_error(exc))
        return BranchResult(success=True, branch_name=branch)

    def write_files(self, changes: tuple[FileChange, ...]) -> None:
        root = self.path.resolve()
        for change in changes:
            target = self._resolve_inside(root, change.path)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(change.content, encoding="utf-8")
        log_event(LOGGER, "git_files_written", file_count=len(changes))

    def commit_changes(self, message: str, files: tuple[str, ...] = ()) -> CommitResult:
        log_event(
            LOGGER,
            "git_commit",
            checkout_path=str(self.path),
            file_count=len(files),
            has_message=bool(message.strip()),
        )
        try:
            if files:
                self._git("add", "--", *files)
            else:
                self._git("add", "-A")
            staged = self._git("diff", "--cached", "--name-only").strip()
            if not staged:
                log_event(LOGGER, "git_commit_skipped", reason="no_staged_changes")
                return CommitResult(success=True, branch=self.current_branch())
            self._git("commit", "-m", message)
            sha = self._git("rev-parse", "HEAD").strip()
            branch = self.current_branch()
        except CommandError as exc:
            log_event(
                LOGGER,
                "git_commit_failed",
                level=logging.ERROR,
                error_type=type(exc).__name__,
            )
            return CommitResult(success=False, error=summarize_command_error(exc))
        return CommitResult(success=True, commit_sha=sha, branch=branch)

    def push_branch(self, branch: str) -> PushResult:
        log_event(LOGGER, "git_push", checkout_path=str(self.path), branch=branch)
        try:
            self._git("push", "--set-upstream", "origin", branch)
        except CommandError as exc:
            log_event(
                LOGGER,
                "git_push_failed",
                level=logging.ERROR,
                checkout_path=str(self.path),
                branch=branch,
                error_type=type(exc).__name__,
            )
            return PushResult(success=False, branch=branch, error=summarize_command_error(exc))
        return PushResult(success=True, branch=branch)

    def current_branch(self) -> str:
        return self._git("rev-parse", "--abbrev-ref", "HEAD").strip() or "unknown"

    def _local_branch_exists(self, branch: str) -> bool:
        listed = self._git("branch", "--list", branch)
        return bool(listed.strip())

    def _git(self, *args: str) -> str:
        return run(["git", "-C", str(self.path), *args])

    @staticmethod
    def _resolve_inside(root: Path, relpath: str) -> Path:
        pure = PurePosixPath(relpath)
        if not relpath.strip() or pure.is_absolute() or ".." in pure.parts:
            raise ValueError(f"Refusing to write outside the repository: {relpath!r}")
        target = (root / pure).resolve()
        if root != target and root not in target.parents:
            raise ValueError(f"Refusing to write outside the repository: {relpath!r}")
        return target
