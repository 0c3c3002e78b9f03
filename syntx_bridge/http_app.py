from __future__ import annotations

import asyncio
import uuid
from collections import OrderedDict
from typing import Dict, Optional

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .bridge import SyntxBridge
from .config_service import ConfigService
from .errors import ChannelUnavailable, DuplicateJob, JobTimeout, MediaUnavailable
from .logger_factory import get_logger
from .models import Job, MatchResult
from .utils.logfmt import fmt
from .utils.time_utils import format_ms


class JobIn(BaseModel):
    prompt: str
    job_id: str | None = None
    created_at: float | None = None  # epoch ms


class JobOut(BaseModel):
    job_id: str
    status: str  # pending | matched | failed
    marker: str | None = None
    sent_at: str | None = None
    deadline: str | None = None
    poll_count: int | None = None
    method: str | None = None
    message_id: int | None = None
    messages_scanned: int | None = None
    error: str | None = None


class JobStatusBook:
    """Bounded record of settled jobs so clients can poll for the outcome."""

    def __init__(self, limit: int = 500):
        self._limit = max(1, int(limit))
        self._entries: "OrderedDict[str, JobOut]" = OrderedDict()
        self._matches: Dict[str, MatchResult] = {}

    def record_match(self, job: Job, match: MatchResult) -> None:
        self._put(JobOut(
            job_id=job.job_id,
            status="matched",
            marker=job.request_marker,
            sent_at=format_ms(job.sent_at),
            deadline=format_ms(job.deadline),
            poll_count=match.poll_count,
            method=match.method.value,
            message_id=match.message.id,
            messages_scanned=match.total_messages_scanned,
        ))
        self._matches[job.job_id] = match

    def record_failure(self, job: Job, error: BaseException) -> None:
        self._put(JobOut(
            job_id=job.job_id,
            status="failed",
            marker=job.request_marker,
            sent_at=format_ms(job.sent_at),
            deadline=format_ms(job.deadline),
            poll_count=job.poll_count,
            error="timeout" if isinstance(error, JobTimeout) else str(error),
        ))

    def _put(self, entry: JobOut) -> None:
        self._entries[entry.job_id] = entry
        self._entries.move_to_end(entry.job_id)
        while len(self._entries) > self._limit:
            old_id, _ = self._entries.popitem(last=False)
            self._matches.pop(old_id, None)

    def get(self, job_id: str) -> Optional[JobOut]:
        return self._entries.get(job_id)

    def match(self, job_id: str) -> Optional[MatchResult]:
        return self._matches.get(job_id)


def _pending_out(job: Job) -> JobOut:
    return JobOut(
        job_id=job.job_id,
        status="pending",
        marker=job.request_marker,
        sent_at=format_ms(job.sent_at),
        deadline=format_ms(job.deadline),
        poll_count=job.poll_count,
    )


def _standalone_bridge(cfg: ConfigService):
    """Discord-backed bridge for running the HTTP app on its own (uvicorn factory mode)."""
    from .channel.discord_channel import DiscordChannel
    from .discord_client_adapter import ChannelClient
    from .reservations.factory import build_reservation_store

    channel_id = cfg.channel_id()
    if channel_id is None:
        raise RuntimeError("Missing discord.channel_id / SYNTX_CHANNEL_ID")
    client = ChannelClient(get_logger("Discord"), cfg.discord().get("intents"))
    channel = DiscordChannel(
        client,
        channel_id,
        generator_user_id=cfg.generator_user_id(),
        artifact_kind=cfg.artifact_kind(),
        media_timeout=cfg.media_timeout_seconds(),
    )
    store = build_reservation_store(cfg)
    return SyntxBridge.build(cfg, channel, channel, channel, store), client


def create_app(bridge: SyntxBridge | None = None, cfg: ConfigService | None = None) -> FastAPI:
    cfg = cfg or ConfigService("config.yaml")
    log = get_logger("http_app")
    client = None
    if bridge is None:
        bridge, client = _standalone_bridge(cfg)
    bearer = cfg.http_auth_bearer_token()
    book = JobStatusBook(cfg.http_status_history())
    watchers: set[asyncio.Task] = set()
    client_task: asyncio.Task | None = None

    app = FastAPI(title="Syntx Bridge")

    @app.on_event("startup")
    async def _startup():
        nonlocal client_task
        if client is not None:
            token = cfg.discord_token()
            if not token:
                raise RuntimeError("Missing DISCORD_TOKEN in environment")
            client_task = asyncio.create_task(client.start(token))
        await bridge.warm()

    @app.on_event("shutdown")
    async def _shutdown():
        for t in list(watchers):
            t.cancel()
        await bridge.shutdown()
        if client is not None:
            await client.close()
            if client_task is not None:
                try:
                    await client_task
                except asyncio.CancelledError:
                    pass

    def _unauthorized(request: Request) -> JSONResponse | None:
        if not bearer:
            return None
        auth = request.headers.get("Authorization", "")
        if not auth.startswith("Bearer ") or auth.split(" ", 1)[1].strip() != bearer:
            return JSONResponse({"error": "Unauthorized"}, status_code=401)
        return None

    async def _watch(job: Job) -> None:
        try:
            match = await job.wait()
        except JobTimeout as e:
            book.record_failure(job, e)
            return
        book.record_match(job, match)

    @app.get("/health")
    async def health():
        return {
            "ok": True,
            "poller_running": bridge.poller.running,
            "pending": len(bridge.registry),
            "reservations_cached": len(bridge.gate.reserved_ids),
            "messages_scanned": bridge.poller.total_messages_scanned,
        }

    @app.post("/jobs", response_model=JobOut, status_code=202)
    async def submit_job(inp: JobIn, request: Request):
        denied = _unauthorized(request)
        if denied is not None:
            return denied
        if not inp.prompt.strip():
            raise HTTPException(status_code=400, detail="prompt is required")
        job_id = (inp.job_id or "").strip() or uuid.uuid4().hex
        try:
            job = await bridge.submit(inp.prompt, job_id, inp.created_at)
        except DuplicateJob as e:
            raise HTTPException(status_code=409, detail=str(e))
        except ChannelUnavailable as e:
            log.error(f"job-submit-unavailable {fmt('job', job_id)} {fmt('err', e)}")
            raise HTTPException(status_code=503, detail="channel unavailable")
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        task = asyncio.create_task(_watch(job))
        watchers.add(task)
        task.add_done_callback(watchers.discard)
        return _pending_out(job)

    @app.get("/jobs")
    async def list_jobs(request: Request):
        denied = _unauthorized(request)
        if denied is not None:
            return denied
        return {"jobs": [_pending_out(j).model_dump() for j in bridge.registry.pending()]}

    @app.get("/jobs/{job_id}", response_model=JobOut)
    async def job_status(job_id: str, request: Request):
        denied = _unauthorized(request)
        if denied is not None:
            return denied
        job = bridge.registry.lookup(job_id)
        if job is not None:
            return _pending_out(job)
        entry = book.get(job_id)
        if entry is None:
            raise HTTPException(status_code=404, detail="Job not found")
        return entry

    @app.get("/jobs/{job_id}/media")
    async def job_media(job_id: str, request: Request):
        denied = _unauthorized(request)
        if denied is not None:
            return denied
        match = book.match(job_id)
        if match is None:
            if bridge.registry.lookup(job_id) is not None or book.get(job_id) is not None:
                raise HTTPException(status_code=409, detail="Job has no matched artifact")
            raise HTTPException(status_code=404, detail="Job not found")
        try:
            content = await bridge.download(match)
        except MediaUnavailable as e:
            log.error(f"job-media-error {fmt('job', job_id)} {fmt('err', e)}")
            raise HTTPException(status_code=502, detail="artifact download failed")
        media = match.message.media
        media_type = (media.mime_type if media and media.mime_type else None) or "video/mp4"
        return Response(content=content, media_type=media_type)

    return app
