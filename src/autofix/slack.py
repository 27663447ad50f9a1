from __future__ import annotations

import logging
from typing import Final

import httpx

from autofix.models import MessageHandle
from autofix.observability import log_event
from autofix.ports import Notifier


LOGGER = logging.getLogger("autofix.slack")
SLACK_API_BASE: Final[str] = "https://slack.com/api"
_IGNORED_REACTION_ERRORS: Final[frozenset[str]] = frozenset({"already_reacted"})


class SlackApiError(RuntimeError):
    def __init__(self, method: str, error: str) -> None:
        super().__init__(f"Slack API {method} failed: {error}")
        self.method = method
        self.error = error


class SlackNotifier(Notifier):
    def __init__(self, token: str, *, client: httpx.Client | None = None) -> None:
        self._client = client or httpx.Client(base_url=SLACK_API_BASE, timeout=30.0)
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json; charset=utf-8",
        }

    def post_message(self, channel: str, text: str, thread_ts: str | None = None) -> MessageHandle:
        payload: dict[str, object] = {
            "channel": channel,
            "text": text,
            "unfurl_links": False,
            "unfurl_media": False,
        }
        if thread_ts:
            payload["thread_ts"] = thread_ts
        data = self._call("chat.postMessage", payload)
        ts = data.get("ts")
        if not isinstance(ts, str) or not ts:
            raise SlackApiError("chat.postMessage", "missing_ts")
        posted_channel = data.get("channel")
        log_event(LOGGER, "slack_message_posted", channel=channel, ts=ts)
        return MessageHandle(
            channel=posted_channel if isinstance(posted_channel, str) else channel,
            ts=ts,
        )

    def update_message(self, handle: MessageHandle, text: str) -> None:
        self._call("chat.update", {"channel": handle.channel, "ts": handle.ts, "text": text})
        log_event(LOGGER, "slack_message_updated", channel=handle.channel, ts=handle.ts)

    def add_reaction(self, channel: str, ts: str, emoji: str) -> None:
        try:
            self._call("reactions.add", {"channel": channel, "timestamp": ts, "name": emoji})
        except SlackApiError as exc:
            if exc.error in _IGNORED_REACTION_ERRORS:
                return
            self._log_reaction_failure(exc, emoji=emoji)
        except Exception as exc:  # noqa: BLE001
            self._log_reaction_failure(exc, emoji=emoji)

    def close(self) -> None:
        self._client.close()

    def _call(self, method: str, payload: dict[str, object]) -> dict[str, object]:
        try:
            response = self._client.post(f"/{method}", json=payload, headers=self._headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            log_event(
                LOGGER,
                "slack_request_failed",
                level=logging.ERROR,
                method=method,
                error_type=type(exc).__name__,
            )
            raise
        data = response.json()
        if not isinstance(data, dict):
            raise SlackApiError(method, "unexpected_response")
        if not data.get("ok"):
            error = data.get("error")
            raise SlackApiError(method, error if isinstance(error, str) else "unknown_error")
        return data

    @staticmethod
    def _log_reaction_failure(exc: Exception, *, emoji: str) -> None:
        log_event(
            LOGGER,
            "slack_reaction_failed",
            level=logging.WARNING,
            emoji=emoji,
            error_type=type(exc).__name__,
            error=str(exc),
        )
