from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import hashlib
import hmac
import logging
import re
import time
from typing import Final

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, ValidationError

from autofix.config import SlackConfig
from autofix.job_queue import JobQueue
from autofix.models import Job
from autofix.observability import log_event


LOGGER = logging.getLogger("autofix.webhook")
SIGNATURE_VERSION: Final[str] = "v0"
MAX_REQUEST_AGE_SECONDS: Final[int] = 60 * 5
_SHUTDOWN_TIMEOUT_SECONDS: Final[float] = 10.0
_MENTION_RE: Final[re.Pattern[str]] = re.compile(r"<@[A-Z0-9]+(?:\|[^>]*)?>")


class SlackEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    text: str = ""
    user: str | None = None
    channel: str | None = None
    ts: str | None = None
    thread_ts: str | None = None
    bot_id: str | None = None
    subtype: str | None = None


class SlackEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    challenge: str | None = None
    event_id: str | None = None
    event: SlackEvent | None = None


def verify_slack_signature(
    signing_secret: str,
    timestamp: str | None,
    body: bytes,
    signature: str | None,
    *,
    now: float | None = None,
) -> bool:
    """Check a Slack request signature.

    Slack signs ``v0:<timestamp>:<raw body>`` with HMAC-SHA256 and the app's
    signing secret. Requests older than five minutes are rejected to block
    replays.
    """
    if not timestamp or not signature or not signature.startswith(f"{SIGNATURE_VERSION}="):
        return False
    try:
        sent_at = int(timestamp)
    except ValueError:
        return False
    current = time.time() if now is None else now
    if abs(current - sent_at) > MAX_REQUEST_AGE_SECONDS:
        return False

    base = f"{SIGNATURE_VERSION}:{timestamp}:".encode("utf-8") + body
    expected = hmac.new(
        signing_secret.encode("utf-8"),
        base,
        hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(f"{SIGNATURE_VERSION}={expected}", signature)


def strip_mentions(text: str) -> str:
    return " ".join(_MENTION_RE.sub(" ", text).split())


def job_from_event(event: SlackEvent, config: SlackConfig) -> Job | None:
    """Build a Job from a Slack event, or None when the event is not a request."""
    if event.type not in config.event_types:
        return None
    if event.bot_id or event.subtype:
        return None
    if not event.channel or not event.ts:
        return None
    if not config.accepts_channel(event.channel):
        return None
    text = strip_mentions(event.text)
    if not text:
        return None
    return Job(
        text=text,
        channel=event.channel,
        thread_ts=event.thread_ts or event.ts,
        message_ts=event.ts,
        user_id=event.user or "unknown",
    )


def create_app(slack_config: SlackConfig, job_queue: JobQueue) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        job_queue.start()
        log_event(LOGGER, "webhook_app_started", has_handler=job_queue.has_handler)
        yield
        await asyncio.to_thread(job_queue.stop, timeout=_SHUTDOWN_TIMEOUT_SECONDS)
        log_event(LOGGER, "webhook_app_stopped", pending_count=job_queue.pending_count)

    app = FastAPI(title="autofix", lifespan=lifespan)

    @app.post("/slack/events")
    async def slack_events(request: Request) -> JSONResponse:
        body = await request.body()
        if not verify_slack_signature(
            slack_config.signing_secret,
            request.headers.get("X-Slack-Request-Timestamp"),
            body,
            request.headers.get("X-Slack-Signature"),
        ):
            log_event(LOGGER, "webhook_signature_rejected", level=logging.WARNING)
            return JSONResponse(status_code=401, content={"error": "invalid_signature"})

        try:
            envelope = SlackEnvelope.model_validate_json(body)
        except ValidationError:
            log_event(LOGGER, "webhook_payload_invalid", level=logging.WARNING)
            return JSONResponse(status_code=400, content={"error": "invalid_payload"})

        if envelope.type == "url_verification":
            return JSONResponse(content={"challenge": envelope.challenge or ""})

        retry_num = request.headers.get("X-Slack-Retry-Num")
        if retry_num is not None:
            log_event(
                LOGGER,
                "webhook_retry_ignored",
                event_id=envelope.event_id,
                retry_num=retry_num,
                reason=request.headers.get("X-Slack-Retry-Reason"),
            )
            return JSONResponse(content={"ok": True})

        if envelope.type != "event_callback" or envelope.event is None:
            log_event(LOGGER, "webhook_event_ignored", envelope_type=envelope.type)
            return JSONResponse(content={"ok": True})

        job = job_from_event(envelope.event, slack_config)
        if job is None:
            log_event(
                LOGGER,
                "webhook_event_ignored",
                event_id=envelope.event_id,
                event_type=envelope.event.type,
            )
            return JSONResponse(content={"ok": True})

        job_queue.enqueue(job)
        log_event(
            LOGGER,
            "webhook_event_accepted",
            event_id=envelope.event_id,
            job_id=job.job_id,
            channel=job.channel,
        )
        return JSONResponse(content={"ok": True})

    @app.get("/health")
    async def health() -> JSONResponse:
        return JSONResponse(
            content={
                "status": "ok",
                "pending_jobs": job_queue.pending_count,
                "processing": job_queue.is_processing,
            }
        )

    return app
