from __future__ import annotations

import argparse
import json
from pathlib import Path

import uvicorn

from autofix.codex_adapter import CodexCodeGenerator
from autofix.config import AppConfig, load_config
from autofix.deployment import build_deployment_tracker
from autofix.git_ops import GitRepoManager
from autofix.github_gateway import GitHubGateway
from autofix.job_queue import JobQueue, RetryPolicy
from autofix.models import Job, JobResult
from autofix.observability import configure_logging
from autofix.processor import IssueProcessor
from autofix.slack import SlackNotifier
from autofix.webhook import create_app


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="autofix")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser(
        "init", help="Create the base dir and clone or refresh the repository checkout"
    )
    _add_common_arguments(init_parser)

    serve_parser = subparsers.add_parser(
        "serve", help="Serve the Slack events webhook and process requests"
    )
    _add_common_arguments(serve_parser)
    serve_parser.add_argument("--host", type=str, help="Override [server].host")
    serve_parser.add_argument("--port", type=int, help="Override [server].port")

    fix_parser = subparsers.add_parser(
        "fix", help="Run one request through the pipeline and print the result as JSON"
    )
    _add_common_arguments(fix_parser)
    fix_parser.add_argument("--channel", required=True, help="Slack channel to report into")
    fix_parser.add_argument(
        "--thread-ts", required=True, help="Timestamp of the Slack message to reply under"
    )
    fix_parser.add_argument("--user", default="cli", help="Requester Slack user id")
    fix_parser.add_argument("text", help="Request text, for example 'Fix the typo in README.md'")

    return parser


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", type=Path, default=Path("autofix.toml"))
    parser.add_argument(
        "-v",
        "--verbose",
        nargs="?",
        const="low",
        choices=("low", "high"),
        help="Enable runtime logging to stderr and <base_dir>/logs (default: low)",
    )


def main() -> None:
    args = build_parser().parse_args()
    config = load_config(args.config)
    configure_logging(getattr(args, "verbose", None), state_dir=config.runtime.base_dir)

    if args.command == "init":
        _cmd_init(config)
        return
    if args.command == "serve":
        _cmd_serve(config, host=args.host, port=args.port)
        return
    if args.command == "fix":
        result = _cmd_fix(
            config,
            text=args.text,
            channel=args.channel,
            thread_ts=args.thread_ts,
            user_id=args.user,
        )
        print(json.dumps(result.to_dict(), indent=2))
        if result.failed:
            raise SystemExit(1)
        return

    raise RuntimeError(f"Unknown command: {args.command}")


def build_queue(config: AppConfig) -> JobQueue:
    return JobQueue(
        RetryPolicy(
            max_attempts=config.runtime.max_attempts,
            retry_failed_results=config.runtime.retry_failed_results,
        )
    )


def build_processor(config: AppConfig) -> IssueProcessor:
    return IssueProcessor(
        config.pipeline,
        notifier=SlackNotifier(config.slack.bot_token),
        generator=CodexCodeGenerator(config.codex),
        repo=GitRepoManager(config.repo, config.checkout_path),
        host=GitHubGateway(owner=config.repo.owner, name=config.repo.name),
        deployments=build_deployment_tracker(config.deployment),
    )


def _cmd_init(config: AppConfig) -> None:
    config.runtime.base_dir.mkdir(parents=True, exist_ok=True)
    result = GitRepoManager(config.repo, config.checkout_path).sync()
    if not result.success:
        raise RuntimeError(f"Repository sync failed: {result.error}")

    print(f"Initialized autofix base dir: {config.runtime.base_dir}")
    print(f"Repo: {config.repo.full_name}")
    print(f"Checkout: {config.checkout_path}")


def _cmd_serve(config: AppConfig, *, host: str | None, port: int | None) -> None:
    config.runtime.base_dir.mkdir(parents=True, exist_ok=True)
    queue = build_queue(config)
    processor = build_processor(config)
    queue.set_handler(processor)
    app = create_app(config.slack, queue)
    try:
        uvicorn.run(
            app,
            host=host or config.server.host,
            port=port or config.server.port,
        )
    finally:
        processor.close()


def _cmd_fix(
    config: AppConfig,
    *,
    text: str,
    channel: str,
    thread_ts: str,
    user_id: str,
) -> JobResult:
    config.runtime.base_dir.mkdir(parents=True, exist_ok=True)
    queue = build_queue(config)
    processor = build_processor(config)
    results: list[JobResult] = []

    def handle(job: Job) -> JobResult:
        result = processor(job)
        results.append(result)
        return result

    queue.set_handler(handle)
    job = Job(
        text=text,
        channel=channel,
        thread_ts=thread_ts,
        message_ts=thread_ts,
        user_id=user_id,
    )
    queue.enqueue(job)
    try:
        while queue.process_next():
            pass
    finally:
        processor.close()

    if not results:
        return JobResult(
            job_id=job.job_id,
            status="failed",
            error=f"Job was dropped after {job.retry_count} attempt(s) without a result",
        )
    return results[-1]
