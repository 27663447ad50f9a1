from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import cast

from autofix.models import LabelResult, PullRequestResult
from autofix.observability import log_event
from autofix.shell import run, summarize_command_error


LOGGER = logging.getLogger("autofix.github_gateway")


@dataclass(frozen=True)
class GitHubGateway:
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def open_pull_request(self, *, head: str, base: str, title: str, body: str) -> PullRequestResult:
        path = f"/repos/{self.owner}/{self.name}/pulls"
        try:
            payload = self._api_json(
                "POST",
                path,
                payload={"title": title, "head": head, "base": base, "body": body},
            )
            payload_obj = _as_object_dict(payload)
            if payload_obj is None:
                raise RuntimeError("Unexpected GitHub response: expected object for PR")
            number = _as_int(payload_obj.get("number"), field="number")
            html_url = _as_string(payload_obj.get("html_url"))
            if not html_url:
                raise RuntimeError("Unexpected GitHub response: PR is missing html_url")
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "github_pr_create_failed",
                level=logging.ERROR,
                repo_full_name=self.full_name,
                base=base,
                head=head,
                error_type=type(exc).__name__,
            )
            return PullRequestResult(success=False, error=summarize_command_error(exc))
        log_event(
            LOGGER,
            "github_pr_created",
            repo_full_name=self.full_name,
            pr_number=number,
            pr_url=html_url,
            base=base,
            head=head,
        )
        return PullRequestResult(success=True, number=number, url=html_url)

    def add_labels(self, pr_number: int, labels: tuple[str, ...]) -> LabelResult:
        if not labels:
            return LabelResult(success=True)
        path = f"/repos/{self.owner}/{self.name}/issues/{pr_number}/labels"
        try:
            payload = self._api_json("POST", path, payload={"labels": list(labels)})
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "github_labels_failed",
                level=logging.WARNING,
                pr_number=pr_number,
                error_type=type(exc).__name__,
            )
            return LabelResult(success=False, error=summarize_command_error(exc))

        applied: list[str] = []
        if isinstance(payload, list):
            for entry in payload:
                entry_obj = _as_object_dict(entry)
                if entry_obj is None:
                    continue
                label_name = entry_obj.get("name")
                if isinstance(label_name, str):
                    applied.append(label_name)
        log_event(LOGGER, "github_labels_added", pr_number=pr_number, label_count=len(applied))
        return LabelResult(success=True, labels=tuple(applied))

    def _api_json(self, method: str, path: str, payload: dict[str, object] | None = None) -> object:
        cmd = ["gh", "api", "--method", method.upper(), path]
        stdin_payload: str | None = None
        if payload is not None:
            cmd.extend(["--input", "-"])
            stdin_payload = json.dumps(payload)
        raw = run(cmd, input_text=stdin_payload)
        return json.loads(raw)


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def _as_string(value: object) -> str:
    if isinstance(value, str):
        return value
    return ""


def _as_int(value: object, *, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise RuntimeError(f"Unexpected GitHub response: {field} must be an integer")
    return value
