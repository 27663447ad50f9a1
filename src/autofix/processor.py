from __future__ import annotations

from dataclasses import dataclass
import logging

from autofix import messages
from autofix.config import PipelineConfig
from autofix.git_ops import GitRepoManager
from autofix.github_gateway import GitHubGateway
from autofix.models import DeploymentResult, FixResult, Job, JobResult, MessageHandle
from autofix.naming import (
    branch_name_for,
    commit_message_for,
    infer_category,
    pull_request_body_for,
    pull_request_title_for,
)
from autofix.observability import log_event
from autofix.ports import CodeGenerator, DeploymentTracker, Notifier
from autofix.shell import summarize_command_error


LOGGER = logging.getLogger("autofix.processor")

ACK_REACTION = "eyes"
SUCCESS_REACTION = "white_check_mark"
WARNING_REACTION = "warning"


class StatusMessage:
    """The one progress message of a Job, edited in place.

    When an edit fails a single replacement message is posted in the thread and
    later edits target it. ``update`` never raises.
    """

    def __init__(self, notifier: Notifier, handle: MessageHandle, *, thread_ts: str) -> None:
        self._notifier = notifier
        self._handle = handle
        self._thread_ts = thread_ts
        self._fallback_posted = False

    @property
    def handle(self) -> MessageHandle:
        return self._handle

    @property
    def fallback_posted(self) -> bool:
        return self._fallback_posted

    def update(self, text: str) -> bool:
        try:
            self._notifier.update_message(self._handle, text)
            return True
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "status_update_failed",
                level=logging.WARNING,
                channel=self._handle.channel,
                ts=self._handle.ts,
                error_type=type(exc).__name__,
            )

        if self._fallback_posted:
            return False
        self._fallback_posted = True
        try:
            self._handle = self._notifier.post_message(
                self._handle.channel,
                text,
                thread_ts=self._thread_ts,
            )
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "status_fallback_failed",
                level=logging.ERROR,
                channel=self._handle.channel,
                error_type=type(exc).__name__,
            )
            return False
        log_event(LOGGER, "status_fallback_posted", channel=self._handle.channel, ts=self._handle.ts)
        return True


@dataclass
class _Progress:
    status: StatusMessage | None = None
    branch_name: str | None = None
    fix: FixResult | None = None


class IssueProcessor:
    """Drives one Job from the Slack request to a pull request and preview.

    Registered as the JobQueue handler. Every run returns a JobResult; unexpected
    exceptions are reported in the thread and turned into a failed result.
    """

    def __init__(
        self,
        pipeline: PipelineConfig,
        *,
        notifier: Notifier,
        generator: CodeGenerator,
        repo: GitRepoManager,
        host: GitHubGateway,
        deployments: DeploymentTracker,
    ) -> None:
        self._pipeline = pipeline
        self._notifier = notifier
        self._generator = generator
        self._repo = repo
        self._host = host
        self._deployments = deployments

    def __call__(self, job: Job) -> JobResult:
        return self.process(job)

    def close(self) -> None:
        self._notifier.close()
        self._deployments.close()

    def process(self, job: Job) -> JobResult:
        progress = _Progress()
        log_event(LOGGER, "job_processing_started", job_id=job.job_id, attempt=job.retry_count + 1)
        try:
            result = self._run_pipeline(job, progress)
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "job_crashed",
                level=logging.ERROR,
                exc_info=True,
                job_id=job.job_id,
                branch_name=progress.branch_name,
                error_type=type(exc).__name__,
            )
            error = f"Unexpected error: {summarize_command_error(exc)}"
            self._report_crash(job, progress, error)
            result = JobResult(
                job_id=job.job_id,
                status="failed",
                branch_name=progress.branch_name,
                fix=progress.fix,
                error=error,
            )
        log_event(
            LOGGER,
            "job_processing_finished",
            job_id=job.job_id,
            status=result.status,
            branch_name=result.branch_name,
            pr_url=result.pr_url,
            preview_url=result.preview_url,
        )
        return result

    def _run_pipeline(self, job: Job, progress: _Progress) -> JobResult:
        self._notifier.add_reaction(job.channel, job.message_ts, ACK_REACTION)
        try:
            handle = self._notifier.post_message(
                job.channel,
                messages.acknowledged(job.text),
                thread_ts=job.thread_ts,
            )
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "status_post_failed",
                level=logging.ERROR,
                job_id=job.job_id,
                error_type=type(exc).__name__,
            )
            return JobResult(
                job_id=job.job_id,
                status="failed",
                error=f"Could not post status message: {summarize_command_error(exc)}",
            )
        status = StatusMessage(self._notifier, handle, thread_ts=job.thread_ts)
        progress.status = status
        self._stage(job, "acknowledged")

        status.update(
            messages.syncing_repository(
                self._pipeline.generation.repo_full_name,
                self._pipeline.base_branch,
            )
        )
        sync = self._repo.sync()
        if not sync.success or sync.checkout is None:
            return self._fail(
                job,
                progress,
                stage="Repository sync",
                error=f"Repository sync failed: {sync.error or 'no checkout available'}",
            )
        checkout = sync.checkout
        self._stage(job, "repo_ready")

        status.update(messages.analyzing_request())
        fix = self._generator.analyze(job.text, checkout.path, self._pipeline.generation)
        progress.fix = fix
        if not fix.success:
            error = fix.error or "Code generation failed"
            status.update(messages.analysis_failed(error, fix.analysis))
            return self._finish_failed(job, progress, error=error)
        if not fix.has_changes:
            self._stage(job, "analyzed", file_count=0)
            status.update(messages.no_change_needed(fix))
            self._notifier.add_reaction(job.channel, job.message_ts, SUCCESS_REACTION)
            return JobResult(job_id=job.job_id, status="completed", fix=fix)
        self._stage(job, "analyzed", file_count=len(fix.files_changed))

        branch_name = branch_name_for(job.text)
        status.update(messages.creating_branch(branch_name))
        branch = checkout.create_branch(branch_name)
        if not branch.success:
            return self._fail(
                job,
                progress,
                stage="Branch creation",
                error=f"Failed to create branch {branch_name}: {branch.error}",
            )
        branch_name = branch.branch_name or branch_name
        progress.branch_name = branch_name
        self._stage(job, "branched", branch_name=branch_name)

        status.update(messages.committing(branch_name, fix.files_changed))
        try:
            checkout.write_files(fix.changes)
        except (ValueError, OSError) as exc:
            return self._fail(
                job,
                progress,
                stage="Commit",
                error=f"Failed to write generated files: {summarize_command_error(exc)}",
            )
        commit = checkout.commit_changes(
            commit_message_for(job.text, fix.solution, fix.files_changed),
            fix.files_changed,
        )
        if not commit.success:
            return self._fail(
                job,
                progress,
                stage="Commit",
                error=f"Failed to commit changes on {branch_name}: {commit.error}",
            )
        self._stage(job, "committed", commit_sha=commit.commit_sha, branch_name=commit.branch)

        status.update(messages.pushing(branch_name))
        push = checkout.push_branch(branch_name)
        if not push.success:
            return self._fail(
                job,
                progress,
                stage="Push",
                error=(
                    f"Failed to push branch {branch_name} to remote: {push.error}; "
                    "the commit exists only locally"
                ),
            )
        self._stage(job, "pushed", branch_name=branch_name)

        status.update(messages.opening_pull_request(branch_name))
        pull_request = self._host.open_pull_request(
            head=branch_name,
            base=self._pipeline.base_branch,
            title=pull_request_title_for(job.text, infer_category(job.text)),
            body=pull_request_body_for(job, fix),
        )
        if not pull_request.success or not pull_request.url:
            error = f"Pull request creation failed: {pull_request.error or 'no URL returned'}"
            status.update(
                messages.pull_request_failed(branch_name, self._pipeline.base_branch, error)
            )
            self._notifier.add_reaction(job.channel, job.message_ts, WARNING_REACTION)
            log_event(
                LOGGER,
                "job_soft_stopped",
                level=logging.WARNING,
                job_id=job.job_id,
                stage="pr_created",
            )
            return JobResult(
                job_id=job.job_id,
                status="completed",
                branch_name=branch_name,
                fix=fix,
                error=error,
            )
        if pull_request.number is not None and self._pipeline.pr_labels:
            labels = self._host.add_labels(pull_request.number, self._pipeline.pr_labels)
            if not labels.success:
                log_event(
                    LOGGER,
                    "pr_labels_failed",
                    level=logging.WARNING,
                    job_id=job.job_id,
                    pr_number=pull_request.number,
                )
        self._stage(job, "pr_created", pr_url=pull_request.url)

        timeout_minutes = self._pipeline.deployment_timeout_minutes
        status.update(messages.waiting_for_deployment(pull_request.url, timeout_minutes))
        deployment = self._wait_for_deployment(
            branch_name, timeout_minutes, commit_sha=commit.commit_sha
        )
        self._stage(job, "deploy_tracked", deployment_status=deployment.status)

        if deployment.success and deployment.url:
            status.update(
                messages.full_success(
                    user_id=job.user_id,
                    branch_name=branch_name,
                    pr_url=pull_request.url,
                    preview_url=deployment.url,
                    commit_sha=commit.commit_sha,
                    fix=fix,
                )
            )
            self._notifier.add_reaction(job.channel, job.message_ts, SUCCESS_REACTION)
            self._stage(job, "reported", outcome="full_success")
            return JobResult(
                job_id=job.job_id,
                status="completed",
                branch_name=branch_name,
                pr_url=pull_request.url,
                preview_url=deployment.url,
                fix=fix,
                deployment=deployment,
            )

        status.update(
            messages.partial_success(
                user_id=job.user_id,
                branch_name=branch_name,
                pr_url=pull_request.url,
                commit_sha=commit.commit_sha,
                fix=fix,
                deployment=deployment,
            )
        )
        self._notifier.add_reaction(job.channel, job.message_ts, WARNING_REACTION)
        self._stage(job, "reported", outcome="preview_pending")
        return JobResult(
            job_id=job.job_id,
            status="completed",
            branch_name=branch_name,
            pr_url=pull_request.url,
            fix=fix,
            deployment=deployment,
            error=_deployment_error(deployment),
        )

    def _wait_for_deployment(
        self, branch_name: str, timeout_minutes: int, *, commit_sha: str | None
    ) -> DeploymentResult:
        try:
            return self._deployments.wait_for_ready(
                branch_name, timeout_minutes, commit_sha=commit_sha
            )
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "deployment_tracker_crashed",
                level=logging.WARNING,
                exc_info=True,
                branch_name=branch_name,
                error_type=type(exc).__name__,
            )
            return DeploymentResult(
                success=False,
                error=f"Deployment tracking failed: {summarize_command_error(exc)}",
            )

    def _fail(self, job: Job, progress: _Progress, *, stage: str, error: str) -> JobResult:
        if progress.status is not None:
            progress.status.update(
                messages.stage_failed(stage, error, branch_name=progress.branch_name)
            )
        return self._finish_failed(job, progress, error=error)

    def _finish_failed(self, job: Job, progress: _Progress, *, error: str) -> JobResult:
        self._notifier.add_reaction(job.channel, job.message_ts, WARNING_REACTION)
        log_event(
            LOGGER,
            "job_failed",
            level=logging.WARNING,
            job_id=job.job_id,
            branch_name=progress.branch_name,
            error=error,
        )
        return JobResult(
            job_id=job.job_id,
            status="failed",
            branch_name=progress.branch_name,
            fix=progress.fix,
            error=error,
        )

    def _report_crash(self, job: Job, progress: _Progress, error: str) -> None:
        text = messages.unexpected_error(error, branch_name=progress.branch_name)
        try:
            if progress.status is not None:
                progress.status.update(text)
            else:
                self._notifier.post_message(job.channel, text, thread_ts=job.thread_ts)
            self._notifier.add_reaction(job.channel, job.message_ts, WARNING_REACTION)
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "crash_report_failed",
                level=logging.ERROR,
                job_id=job.job_id,
                error_type=type(exc).__name__,
            )

    @staticmethod
    def _stage(job: Job, stage: str, **fields: object) -> None:
        log_event(LOGGER, "job_stage", job_id=job.job_id, stage=stage, **fields)


def _deployment_error(deployment: DeploymentResult) -> str:
    if deployment.status == "ready":
        return "Preview deployment is ready but no preview URL was reported"
    return f"Preview deployment not ready: {deployment.error or deployment.status or 'unknown'}"
