from __future__ import annotations

from collections.abc import Callable
import logging
import time
from typing import Final, cast

import httpx

from autofix.config import DeploymentConfig
from autofix.models import DeploymentResult, DeploymentStatus
from autofix.observability import log_event
from autofix.ports import DeploymentTracker


LOGGER = logging.getLogger("autofix.deployment")
VERCEL_API_BASE: Final[str] = "https://api.vercel.com"
_READY_STATES: Final[dict[str, DeploymentStatus]] = {
    "READY": "ready",
    "ERROR": "error",
    "BUILDING": "building",
    "QUEUED": "queued",
    "INITIALIZING": "queued",
    "CANCELED": "canceled",
}
_TERMINAL_FAILURES: Final[frozenset[DeploymentStatus]] = frozenset({"error", "canceled"})


class DisabledDeploymentTracker(DeploymentTracker):
    def wait_for_ready(
        self, branch: str, timeout_minutes: int, *, commit_sha: str | None = None
    ) -> DeploymentResult:
        _ = timeout_minutes, commit_sha
        log_event(LOGGER, "deployment_tracking_skipped", branch=branch)
        return DeploymentResult(success=False, error="Deployment tracking is not configured")


class VercelDeploymentTracker(DeploymentTracker):
    def __init__(
        self,
        *,
        token: str,
        project_id: str,
        team_id: str | None = None,
        poll_interval_seconds: int = 10,
        client: httpx.Client | None = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client or httpx.Client(base_url=VERCEL_API_BASE, timeout=30.0)
        self._headers = {"Authorization": f"Bearer {token}"}
        self._project_id = project_id
        self._team_id = team_id
        self._poll_interval_seconds = poll_interval_seconds
        self._clock = clock
        self._wall_clock = wall_clock
        self._sleep = sleep

    def wait_for_ready(
        self, branch: str, timeout_minutes: int, *, commit_sha: str | None = None
    ) -> DeploymentResult:
        log_event(
            LOGGER,
            "deployment_wait_started",
            branch=branch,
            commit_sha=commit_sha,
            timeout_minutes=timeout_minutes,
        )
        created_after_ms = int(self._wall_clock() * 1000)
        deadline = self._clock() + timeout_minutes * 60
        last_status: DeploymentStatus | None = None
        last_id: str | None = None
        while True:
            deployment = self._latest_for_branch(
                branch, commit_sha=commit_sha, created_after_ms=created_after_ms
            )
            if deployment is not None:
                status = _map_state(deployment)
                last_status = status or last_status
                last_id = _as_optional_str(deployment.get("uid") or deployment.get("id"))
                if status == "ready":
                    url = _preview_url(deployment)
                    log_event(LOGGER, "deployment_ready", branch=branch, url=url)
                    return DeploymentResult(
                        success=True,
                        url=url,
                        deployment_id=last_id,
                        status="ready",
                    )
                if status in _TERMINAL_FAILURES:
                    log_event(
                        LOGGER,
                        "deployment_failed",
                        level=logging.WARNING,
                        branch=branch,
                        status=status,
                    )
                    return DeploymentResult(
                        success=False,
                        deployment_id=last_id,
                        status=status,
                        error=f"Deployment for {branch} finished with status {status}",
                    )

            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            self._sleep(min(float(self._poll_interval_seconds), remaining))

        log_event(
            LOGGER,
            "deployment_wait_timed_out",
            level=logging.WARNING,
            branch=branch,
            last_status=last_status,
        )
        return DeploymentResult(
            success=False,
            deployment_id=last_id,
            status=last_status,
            error=(
                f"Deployment for {branch} was not ready within {timeout_minutes} minute(s)"
                f" (last status: {last_status or 'not found'})"
            ),
        )

    def close(self) -> None:
        self._client.close()

    def _latest_for_branch(
        self, branch: str, *, commit_sha: str | None, created_after_ms: int
    ) -> dict[str, object] | None:
        params: dict[str, str] = {"projectId": self._project_id, "limit": "20"}
        if self._team_id:
            params["teamId"] = self._team_id
        try:
            response = self._client.get("/v6/deployments", params=params, headers=self._headers)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            log_event(
                LOGGER,
                "deployment_poll_failed",
                level=logging.WARNING,
                branch=branch,
                error_type=type(exc).__name__,
            )
            return None

        payload_obj = _as_object_dict(payload)
        items = payload_obj.get("deployments") if payload_obj is not None else None
        if not isinstance(items, list):
            return None
        matches: list[dict[str, object]] = []
        for item in items:
            item_obj = _as_object_dict(item)
            if item_obj is None:
                continue
            meta = _as_object_dict(item_obj.get("meta"))
            if meta is None or meta.get("githubCommitRef") != branch:
                continue
            if commit_sha is not None:
                if meta.get("githubCommitSha") != commit_sha:
                    continue
            elif _created_at(item_obj) < created_after_ms:
                continue
            matches.append(item_obj)
        if not matches:
            return None
        return max(matches, key=_created_at)


def _map_state(deployment: dict[str, object]) -> DeploymentStatus | None:
    raw = deployment.get("readyState") or deployment.get("state")
    if not isinstance(raw, str):
        return None
    return _READY_STATES.get(raw.strip().upper())


def _preview_url(deployment: dict[str, object]) -> str | None:
    url = _as_optional_str(deployment.get("url"))
    if url is None:
        return None
    if url.startswith("http://") or url.startswith("https://"):
        return url
    return f"https://{url}"


def _created_at(deployment: dict[str, object]) -> int:
    value = deployment.get("createdAt", deployment.get("created"))
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return 0


def _as_optional_str(value: object) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def build_deployment_tracker(config: DeploymentConfig) -> DeploymentTracker:
    if config.provider == "vercel" and config.token and config.project_id:
        return VercelDeploymentTracker(
            token=config.token,
            project_id=config.project_id,
            team_id=config.team_id,
            poll_interval_seconds=config.poll_interval_seconds,
        )
    return DisabledDeploymentTracker()
