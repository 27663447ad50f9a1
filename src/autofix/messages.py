"""Status texts posted into the Slack thread of a Job.

Texts use Slack mrkdwn only (bold, code spans, links) so every message reads
fine as plain text.
"""

from __future__ import annotations

from autofix.models import DeploymentResult, FixResult
from autofix.naming import truncate


_REQUEST_PREVIEW_LEN = 120
_DETAIL_LEN = 500
_MAX_LISTED_FILES = 15


def acknowledged(request_text: str) -> str:
    return (
        ":eyes: *Got it!* Working on your request:\n"
        f"> {truncate(request_text, _REQUEST_PREVIEW_LEN)}"
    )


def syncing_repository(repo_full_name: str, base_branch: str) -> str:
    return f":arrows_counterclockwise: Syncing `{repo_full_name}` with `{base_branch}`..."


def analyzing_request() -> str:
    return ":mag: Analyzing the request and generating a change..."


def creating_branch(branch_name: str) -> str:
    return f":seedling: Creating branch `{branch_name}`..."


def committing(branch_name: str, files_changed: tuple[str, ...]) -> str:
    return (
        f":pencil: Committing {len(files_changed)} file(s) to `{branch_name}`:\n"
        f"{_file_list(files_changed)}"
    )


def pushing(branch_name: str) -> str:
    return f":arrow_up: Pushing `{branch_name}`..."


def opening_pull_request(branch_name: str) -> str:
    return f":twisted_rightwards_arrows: Opening a pull request from `{branch_name}`..."


def waiting_for_deployment(pr_url: str, timeout_minutes: int) -> str:
    return (
        f":rocket: Pull request opened: <{pr_url}|view PR>\n"
        f"Waiting up to {timeout_minutes} minute(s) for the preview deployment..."
    )


def no_change_needed(fix: FixResult) -> str:
    return (
        ":information_source: *No code change needed.*\n"
        f"*Analysis:* {_detail(fix.analysis) or '_none provided_'}"
    )


def analysis_failed(error: str, analysis: str = "") -> str:
    text = f":x: *Could not generate a change.*\n*Reason:* {_detail(error)}"
    if analysis.strip():
        text += f"\n*Analysis:* {_detail(analysis)}"
    return text


def stage_failed(stage: str, error: str, *, branch_name: str | None = None) -> str:
    text = f":x: *{stage} failed.*\n*Error:* {_detail(error)}"
    if branch_name:
        text += f"\n*Branch:* `{branch_name}`"
    return text


def pull_request_failed(branch_name: str, base_branch: str, error: str) -> str:
    return (
        ":warning: *Code pushed, but the pull request could not be opened.*\n"
        f"*Branch:* `{branch_name}`\n"
        f"*Error:* {_detail(error)}\n"
        f"Open a pull request from `{branch_name}` into `{base_branch}` manually to review it."
    )


def full_success(
    *,
    user_id: str,
    branch_name: str,
    pr_url: str,
    preview_url: str,
    commit_sha: str | None,
    fix: FixResult,
) -> str:
    lines = [
        f":white_check_mark: *Done!* <@{user_id}> your change is ready for review.",
        f"*Preview:* <{preview_url}|open preview>",
        f"*Pull request:* <{pr_url}|view PR>",
        f"*Branch:* `{branch_name}`",
    ]
    if commit_sha:
        lines.append(f"*Commit:* `{commit_sha[:12]}`")
    lines.extend(_fix_summary(fix))
    return "\n".join(lines)


def partial_success(
    *,
    user_id: str,
    branch_name: str,
    pr_url: str,
    commit_sha: str | None,
    fix: FixResult,
    deployment: DeploymentResult,
) -> str:
    lines = [
        f":hourglass_flowing_sand: <@{user_id}> the pull request is open, "
        "but the preview is still pending.",
        f"*Pull request:* <{pr_url}|view PR>",
        f"*Branch:* `{branch_name}`",
    ]
    if commit_sha:
        lines.append(f"*Commit:* `{commit_sha[:12]}`")
    status = deployment.status or "unknown"
    if deployment.error:
        detail = deployment.error
    elif deployment.status == "ready":
        detail = "no preview URL was reported"
    else:
        detail = "no details"
    lines.append(f"*Deployment:* {status} ({_detail(detail)})")
    lines.extend(_fix_summary(fix))
    return "\n".join(lines)


def unexpected_error(error: str, *, branch_name: str | None = None) -> str:
    text = (
        ":rotating_light: *Something went wrong while processing this request.*\n"
        f"{_detail(error)}"
    )
    if branch_name:
        text += f"\nBranch `{branch_name}` may already exist and need cleanup."
    return text


def _fix_summary(fix: FixResult) -> list[str]:
    lines: list[str] = []
    if fix.analysis.strip():
        lines.append(f"*Analysis:* {_detail(fix.analysis)}")
    if fix.solution.strip():
        lines.append(f"*Solution:* {_detail(fix.solution)}")
    lines.append(f"*Files changed ({len(fix.files_changed)}):*")
    lines.append(_file_list(fix.files_changed))
    return lines


def _file_list(files: tuple[str, ...]) -> str:
    listed = [f"• `{path}`" for path in files[:_MAX_LISTED_FILES]]
    hidden = len(files) - len(listed)
    if hidden > 0:
        listed.append(f"• ...and {hidden} more")
    return "\n".join(listed)


def _detail(text: str) -> str:
    return truncate(text, _DETAIL_LEN)
