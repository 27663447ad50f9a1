from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from autofix.config import GenerationConfig
from autofix.models import DeploymentResult, FixResult, MessageHandle


class Notifier(ABC):
    @abstractmethod
    def post_message(self, channel: str, text: str, thread_ts: str | None = None) -> MessageHandle:
        """Post a new message, optionally inside a thread. Raises on failure."""

    @abstractmethod
    def update_message(self, handle: MessageHandle, text: str) -> None:
        """Replace the text of a previously posted message. Raises on failure."""

    @abstractmethod
    def add_reaction(self, channel: str, ts: str, emoji: str) -> None:
        """Add an emoji reaction to a message. Failures are logged, never raised."""

    def close(self) -> None:
        return None


class CodeGenerator(ABC):
    @abstractmethod
    def analyze(self, request_text: str, repo_path: Path, config: GenerationConfig) -> FixResult:
        """Propose a fix for a natural-language request against a repository snapshot.

        Anticipated failures come back as ``FixResult(success=False, ...)``.
        """


class DeploymentTracker(ABC):
    @abstractmethod
    def wait_for_ready(
        self, branch: str, timeout_minutes: int, *, commit_sha: str | None = None
    ) -> DeploymentResult:
        """Block until the preview deployment of the branch is ready or the budget runs out.

        When ``commit_sha`` is given only a deployment built from that commit counts;
        otherwise only deployments created after the wait began do.

        Never raises; timeouts and errors are reported with ``success=False``.
        """

    def close(self) -> None:
        return None
