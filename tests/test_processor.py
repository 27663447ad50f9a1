from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from hypothesis import given, settings, strategies as st
import pytest

from autofix.config import GenerationConfig, PipelineConfig
from autofix.job_queue import JobQueue
from autofix.models import (
    BranchResult,
    CommitResult,
    DeploymentResult,
    FileChange,
    FixResult,
    Job,
    LabelResult,
    MessageHandle,
    PullRequestResult,
    PushResult,
    RepoSyncResult,
)
from autofix.processor import IssueProcessor, StatusMessage


class FakeNotifier:
    def __init__(self, *, fail_post: bool = False, failing_updates: int = 0) -> None:
        self.fail_post = fail_post
        self.failing_updates = failing_updates
        self.posts: list[tuple[str, str, str | None]] = []
        self.updates: list[tuple[MessageHandle, str]] = []
        self.reactions: list[tuple[str, str, str]] = []
        self.closed = False

    def post_message(self, channel: str, text: str, thread_ts: str | None = None) -> MessageHandle:
        if self.fail_post:
            raise RuntimeError("chat.postMessage failed")
        self.posts.append((channel, text, thread_ts))
        return MessageHandle(channel=channel, ts=f"900.{len(self.posts)}")

    def update_message(self, handle: MessageHandle, text: str) -> None:
        if self.failing_updates != 0:
            self.failing_updates -= 1
            raise RuntimeError("chat.update failed")
        self.updates.append((handle, text))

    def add_reaction(self, channel: str, ts: str, emoji: str) -> None:
        self.reactions.append((channel, ts, emoji))

    def close(self) -> None:
        self.closed = True

    @property
    def emojis(self) -> list[str]:
        return [emoji for _, _, emoji in self.reactions]

    @property
    def last_text(self) -> str:
        return self.updates[-1][1]


class FakeGenerator:
    def __init__(self, result: FixResult | Exception) -> None:
        self.result = result
        self.calls: list[tuple[str, Path, GenerationConfig]] = []

    def analyze(self, request_text: str, repo_path: Path, config: GenerationConfig) -> FixResult:
        self.calls.append((request_text, repo_path, config))
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


@dataclass
class FakeCheckout:
    path: Path
    branch_result: BranchResult | None = None
    commit_result: CommitResult | None = None
    push_result: PushResult | None = None
    write_error: Exception | None = None
    calls: list[tuple[object, ...]] = field(default_factory=list)

    def create_branch(self, branch: str) -> BranchResult:
        self.calls.append(("create_branch", branch))
        return self.branch_result or BranchResult(success=True, branch_name=branch)

    def write_files(self, changes: tuple[FileChange, ...]) -> None:
        self.calls.append(("write_files", tuple(change.path for change in changes)))
        if self.write_error is not None:
            raise self.write_error

    def commit_changes(self, message: str, files: tuple[str, ...] = ()) -> CommitResult:
        self.calls.append(("commit_changes", message, files))
        return self.commit_result or CommitResult(
            success=True, commit_sha="abc1234def5678", branch="unused"
        )

    def push_branch(self, branch: str) -> PushResult:
        self.calls.append(("push_branch", branch))
        return self.push_result or PushResult(success=True, branch=branch)

    def current_branch(self) -> str:
        return "main"

    @property
    def call_names(self) -> list[object]:
        return [call[0] for call in self.calls]


class FakeRepo:
    def __init__(self, checkout: FakeCheckout, *, error: str | None = None) -> None:
        self.checkout = checkout
        self.error = error
        self.sync_calls = 0

    def sync(self) -> RepoSyncResult:
        self.sync_calls += 1
        if self.error is not None:
            return RepoSyncResult(success=False, error=self.error)
        return RepoSyncResult(success=True, checkout=self.checkout)  # type: ignore[arg-type]


class FakeHost:
    def __init__(
        self,
        pr_result: PullRequestResult | Exception | None = None,
        label_result: LabelResult | None = None,
    ) -> None:
        self.pr_result = pr_result or PullRequestResult(
            success=True, number=7, url="https://github.com/acme/webapp/pull/7"
        )
        self.label_result = label_result or LabelResult(success=True, labels=("automated",))
        self.pr_calls: list[dict[str, str]] = []
        self.label_calls: list[tuple[int, tuple[str, ...]]] = []

    def open_pull_request(self, *, head: str, base: str, title: str, body: str) -> PullRequestResult:
        self.pr_calls.append({"head": head, "base": base, "title": title, "body": body})
        if isinstance(self.pr_result, Exception):
            raise self.pr_result
        return self.pr_result

    def add_labels(self, pr_number: int, labels: tuple[str, ...]) -> LabelResult:
        self.label_calls.append((pr_number, labels))
        return self.label_result


class FakeDeployments:
    def __init__(self, result: DeploymentResult | Exception | None = None) -> None:
        self.result = result or DeploymentResult(
            success=True, url="https://app-fix.vercel.app", status="ready"
        )
        self.calls: list[tuple[str, int, str | None]] = []
        self.closed = False

    def wait_for_ready(
        self, branch: str, timeout_minutes: int, *, commit_sha: str | None = None
    ) -> DeploymentResult:
        self.calls.append((branch, timeout_minutes, commit_sha))
        if isinstance(self.result, Exception):
            raise self.result
        return self.result

    def close(self) -> None:
        self.closed = True


_PIPELINE = PipelineConfig(
    base_branch="main",
    pr_labels=("automated", "autofix"),
    deployment_timeout_minutes=5,
    generation=GenerationConfig(repo_full_name="acme/webapp", default_branch="main"),
)


def _fix(*paths: str) -> FixResult:
    return FixResult(
        success=True,
        analysis="README has a typo.",
        solution="Correct the spelling.",
        files_changed=paths,
        changes=tuple(FileChange(path, f"content of {path}") for path in paths),
    )


def _job(text: str = "Fix the typo in README.md") -> Job:
    return Job(
        text=text,
        channel="C1",
        thread_ts="100.000",
        message_ts="100.000",
        user_id="U42",
    )


@dataclass
class Harness:
    notifier: FakeNotifier
    generator: FakeGenerator
    checkout: FakeCheckout
    repo: FakeRepo
    host: FakeHost
    deployments: FakeDeployments
    processor: IssueProcessor


def _harness(
    tmp_path: Path,
    *,
    fix: FixResult | Exception | None = None,
    notifier: FakeNotifier | None = None,
    checkout: FakeCheckout | None = None,
    sync_error: str | None = None,
    host: FakeHost | None = None,
    deployments: FakeDeployments | None = None,
) -> Harness:
    notifier = notifier or FakeNotifier()
    generator = FakeGenerator(fix if fix is not None else _fix("README.md"))
    checkout = checkout or FakeCheckout(path=tmp_path)
    repo = FakeRepo(checkout, error=sync_error)
    host = host or FakeHost()
    deployments = deployments or FakeDeployments()
    processor = IssueProcessor(
        _PIPELINE,
        notifier=notifier,
        generator=generator,
        repo=repo,  # type: ignore[arg-type]
        host=host,  # type: ignore[arg-type]
        deployments=deployments,
    )
    return Harness(notifier, generator, checkout, repo, host, deployments, processor)


def test_scenario_a_full_success(tmp_path: Path) -> None:
    h = _harness(tmp_path)

    result = h.processor(_job())

    assert result.status == "completed"
    assert result.branch_name == "fix/fix-the-typo-in-readmemd"
    assert result.pr_url == "https://github.com/acme/webapp/pull/7"
    assert result.preview_url == "https://app-fix.vercel.app"
    assert result.error is None
    assert result.fix is not None and result.fix.files_changed == ("README.md",)
    assert result.deployment is not None and result.deployment.success is True

    assert h.checkout.call_names == ["create_branch", "write_files", "commit_changes", "push_branch"]
    commit_call = h.checkout.calls[2]
    assert str(commit_call[1]).startswith("autofix: Fix the typo in README.md")
    assert commit_call[2] == ("README.md",)
    assert h.host.pr_calls[0]["head"] == "fix/fix-the-typo-in-readmemd"
    assert h.host.pr_calls[0]["base"] == "main"
    assert h.host.pr_calls[0]["title"] == "fix: Fix the typo in README.md"
    assert h.host.label_calls == [(7, ("automated", "autofix"))]
    assert h.deployments.calls == [("fix/fix-the-typo-in-readmemd", 5, "abc1234def5678")]
    assert h.generator.calls[0][1] == tmp_path

    assert len(h.notifier.posts) == 1
    assert h.notifier.posts[0][2] == "100.000"
    assert all(handle.ts == "900.1" for handle, _ in h.notifier.updates)
    assert "https://app-fix.vercel.app" in h.notifier.last_text
    assert "<@U42>" in h.notifier.last_text
    assert h.notifier.emojis == ["eyes", "white_check_mark"]


def test_scenario_b_generation_failure(tmp_path: Path) -> None:
    h = _harness(tmp_path, fix=FixResult.failure("cannot determine intent"))

    result = h.processor(_job("asdkjasd"))

    assert result.status == "failed"
    assert result.error == "cannot determine intent"
    assert result.branch_name is None
    assert result.fix is not None and result.fix.success is False
    assert h.checkout.calls == []
    assert h.host.pr_calls == []
    assert "cannot determine intent" in h.notifier.last_text
    assert h.notifier.emojis == ["eyes", "warning"]


def test_scenario_c_push_failure_keeps_fix(tmp_path: Path) -> None:
    checkout = FakeCheckout(
        path=tmp_path,
        push_result=PushResult(success=False, branch="x", error="fatal: Authentication failed"),
    )
    h = _harness(tmp_path, fix=_fix("src/a.ts", "src/b.ts"), checkout=checkout)

    result = h.processor(_job("Fix the login error"))

    assert result.status == "failed"
    assert result.error is not None
    assert "push" in result.error.lower()
    assert "only locally" in result.error
    assert result.fix is not None
    assert result.fix.files_changed == ("src/a.ts", "src/b.ts")
    assert result.branch_name == "fix/fix-the-login-error"
    assert h.host.pr_calls == []
    assert h.deployments.calls == []
    assert h.notifier.emojis == ["eyes", "warning"]


def test_no_actionable_change_completes_without_branch(tmp_path: Path) -> None:
    h = _harness(tmp_path, fix=FixResult(success=True, analysis="Already spelled correctly."))

    result = h.processor(_job())

    assert result.status == "completed"
    assert result.branch_name is None
    assert result.pr_url is None
    assert result.error is None
    assert h.checkout.calls == []
    assert "Already spelled correctly." in h.notifier.last_text
    assert h.notifier.emojis == ["eyes", "white_check_mark"]


def test_pull_request_failure_is_soft_stop(tmp_path: Path) -> None:
    host = FakeHost(pr_result=PullRequestResult(success=False, error="HTTP 422"))
    h = _harness(tmp_path, host=host)

    result = h.processor(_job())

    assert result.status == "completed"
    assert result.pr_url is None
    assert result.branch_name == "fix/fix-the-typo-in-readmemd"
    assert result.error is not None
    assert "HTTP 422" in result.error
    assert h.host.label_calls == []
    assert h.deployments.calls == []
    assert "manually" in h.notifier.last_text
    assert h.notifier.emojis == ["eyes", "warning"]


def test_label_failure_does_not_change_outcome(tmp_path: Path) -> None:
    host = FakeHost(label_result=LabelResult(success=False, error="HTTP 403"))
    h = _harness(tmp_path, host=host)

    result = h.processor(_job())

    assert result.status == "completed"
    assert result.error is None
    assert result.preview_url is not None


def test_deployment_timeout_is_partial_success(tmp_path: Path) -> None:
    deployments = FakeDeployments(
        DeploymentResult(success=False, status="building", error="not ready within 5 minute(s)")
    )
    h = _harness(tmp_path, deployments=deployments)

    result = h.processor(_job())

    assert result.status == "completed"
    assert result.pr_url is not None
    assert result.preview_url is None
    assert result.deployment is not None
    assert result.deployment.success is False
    assert result.deployment.error
    assert result.error is not None
    assert "preview is still pending" in h.notifier.last_text
    assert h.notifier.emojis == ["eyes", "warning"]


def test_ready_deployment_without_url_is_worded_separately(tmp_path: Path) -> None:
    h = _harness(
        tmp_path,
        deployments=FakeDeployments(DeploymentResult(success=True, status="ready")),
    )

    result = h.processor(_job())

    assert result.status == "completed"
    assert result.preview_url is None
    assert result.error == "Preview deployment is ready but no preview URL was reported"
    assert "no preview URL was reported" in h.notifier.last_text
    assert h.notifier.emojis == ["eyes", "warning"]


def test_close_releases_notifier_and_tracker(tmp_path: Path) -> None:
    h = _harness(tmp_path)

    h.processor.close()

    assert h.notifier.closed is True
    assert h.deployments.closed is True


def test_deployment_tracker_exception_never_fails_job(tmp_path: Path) -> None:
    h = _harness(tmp_path, deployments=FakeDeployments(RuntimeError("vercel down")))

    result = h.processor(_job())

    assert result.status == "completed"
    assert result.deployment is not None
    assert result.deployment.success is False
    assert result.deployment.error is not None
    assert "vercel down" in result.deployment.error


def test_commit_with_nothing_staged_continues(tmp_path: Path) -> None:
    checkout = FakeCheckout(
        path=tmp_path, commit_result=CommitResult(success=True, branch="fix/x")
    )
    h = _harness(tmp_path, checkout=checkout)

    result = h.processor(_job())

    assert result.status == "completed"
    assert h.checkout.call_names[-1] == "push_branch"


def test_status_post_failure_aborts_job(tmp_path: Path) -> None:
    h = _harness(tmp_path, notifier=FakeNotifier(fail_post=True))

    result = h.processor(_job())

    assert result.status == "failed"
    assert result.error is not None
    assert "status message" in result.error
    assert h.repo.sync_calls == 0
    assert h.generator.calls == []


def test_sync_failure(tmp_path: Path) -> None:
    h = _harness(tmp_path, sync_error="fatal: could not read from remote")

    result = h.processor(_job())

    assert result.status == "failed"
    assert result.error is not None
    assert "could not read from remote" in result.error
    assert h.generator.calls == []
    assert h.notifier.emojis == ["eyes", "warning"]


def test_branch_failure_keeps_fix(tmp_path: Path) -> None:
    checkout = FakeCheckout(
        path=tmp_path, branch_result=BranchResult(success=False, error="invalid ref")
    )
    h = _harness(tmp_path, checkout=checkout)

    result = h.processor(_job())

    assert result.status == "failed"
    assert result.branch_name is None
    assert result.fix is not None and result.fix.success is True
    assert h.checkout.call_names == ["create_branch"]


def test_commit_failure(tmp_path: Path) -> None:
    checkout = FakeCheckout(
        path=tmp_path, commit_result=CommitResult(success=False, error="index.lock exists")
    )
    h = _harness(tmp_path, checkout=checkout)

    result = h.processor(_job())

    assert result.status == "failed"
    assert result.error is not None
    assert "index.lock exists" in result.error
    assert result.branch_name == "fix/fix-the-typo-in-readmemd"
    assert "push_branch" not in h.checkout.call_names


def test_write_failure_is_commit_failure(tmp_path: Path) -> None:
    checkout = FakeCheckout(path=tmp_path, write_error=ValueError("outside the repository"))
    h = _harness(tmp_path, checkout=checkout)

    result = h.processor(_job())

    assert result.status == "failed"
    assert result.error is not None
    assert "outside the repository" in result.error
    assert "commit_changes" not in h.checkout.call_names


def test_unexpected_exception_is_reported(tmp_path: Path) -> None:
    h = _harness(tmp_path, fix=RuntimeError("kaboom"))

    result = h.processor(_job())

    assert result.status == "failed"
    assert result.error is not None
    assert "kaboom" in result.error
    assert "Something went wrong" in h.notifier.last_text
    assert h.notifier.emojis == ["eyes", "warning"]


def test_unexpected_exception_after_branch_keeps_context(tmp_path: Path) -> None:
    h = _harness(tmp_path, host=FakeHost(pr_result=RuntimeError("gh exploded")))

    result = h.processor(_job())

    assert result.status == "failed"
    assert result.branch_name == "fix/fix-the-typo-in-readmemd"
    assert result.fix is not None and result.fix.files_changed == ("README.md",)
    assert "fix/fix-the-typo-in-readmemd" in h.notifier.last_text


def test_update_failure_posts_single_fallback(tmp_path: Path) -> None:
    h = _harness(tmp_path, notifier=FakeNotifier(failing_updates=-1))

    result = h.processor(_job())

    assert result.status == "completed"
    assert len(h.notifier.posts) == 2
    assert h.notifier.updates == []
    assert h.notifier.posts[1][2] == "100.000"


def test_fallback_message_becomes_edit_target(tmp_path: Path) -> None:
    h = _harness(tmp_path, notifier=FakeNotifier(failing_updates=1))

    h.processor(_job())

    assert len(h.notifier.posts) == 2
    assert h.notifier.updates
    assert all(handle.ts == "900.2" for handle, _ in h.notifier.updates)


def test_status_message_update_never_raises() -> None:
    notifier = FakeNotifier(failing_updates=-1)
    notifier.fail_post = True
    status = StatusMessage(notifier, MessageHandle("C1", "1.0"), thread_ts="1.0")

    assert status.update("first") is False
    assert status.fallback_posted is True
    assert status.update("second") is False


def test_same_request_reuses_branch_name(tmp_path: Path) -> None:
    h = _harness(tmp_path)

    first = h.processor(_job())
    second = h.processor(_job())

    assert first.branch_name == second.branch_name
    branch_calls = [call for call in h.checkout.calls if call[0] == "create_branch"]
    assert branch_calls == [("create_branch", first.branch_name)] * 2


_STAGE_FAILURES = st.sampled_from(
    ["none", "sync", "generate", "branch", "commit", "push", "pr", "deploy", "crash"]
)


@settings(max_examples=30, deadline=None)
@given(stage=_STAGE_FAILURES, failing_updates=st.integers(min_value=0, max_value=3))
def test_every_job_ends_with_one_status_message_and_one_final_reaction(
    stage: str, failing_updates: int
) -> None:
    checkout = FakeCheckout(path=Path("/tmp/autofix-test"))
    if stage == "branch":
        checkout.branch_result = BranchResult(success=False, error="e")
    if stage == "commit":
        checkout.commit_result = CommitResult(success=False, error="e")
    if stage == "push":
        checkout.push_result = PushResult(success=False, error="e")
    fix: FixResult | Exception = _fix("README.md")
    if stage == "generate":
        fix = FixResult.failure("e")
    if stage == "crash":
        fix = RuntimeError("e")
    host = FakeHost(PullRequestResult(success=False, error="e")) if stage == "pr" else None
    deployments = (
        FakeDeployments(DeploymentResult(success=False, error="timeout"))
        if stage == "deploy"
        else None
    )
    notifier = FakeNotifier(failing_updates=failing_updates)
    h = _harness(
        Path("/tmp/autofix-test"),
        fix=fix,
        notifier=notifier,
        checkout=checkout,
        sync_error="e" if stage == "sync" else None,
        host=host,
        deployments=deployments,
    )

    result = h.processor(_job())

    assert len(notifier.posts) == (2 if failing_updates else 1)
    assert notifier.emojis[0] == "eyes"
    assert len(notifier.emojis) == 2
    assert notifier.emojis[1] in {"white_check_mark", "warning"}
    if result.failed:
        assert result.error
        assert notifier.emojis[1] == "warning"
    if stage == "none":
        assert result.status == "completed"
        assert notifier.emojis[1] == "white_check_mark"


@pytest.mark.parametrize("stage_error", [RuntimeError("boom"), KeyError("missing")])
def test_processor_as_queue_handler_never_raises(tmp_path: Path, stage_error: Exception) -> None:
    h = _harness(tmp_path, fix=stage_error)
    queue = JobQueue()
    results = []

    def handler(job: Job) -> object:
        result = h.processor(job)
        results.append(result)
        return result

    queue.set_handler(handler)
    job = _job()
    queue.enqueue(job)

    while queue.process_next():
        pass

    assert len(results) == 1
    assert results[0].status == "failed"
    assert job.retry_count == 0
