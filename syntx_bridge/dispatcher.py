from __future__ import annotations

import asyncio
from typing import Callable, Optional

from .channel.base import OutboundChannel
from .errors import ChannelUnavailable, DuplicateJob
from .logger_factory import get_logger
from .models import Job
from .poller import Poller
from .prompt_template_engine import PromptTemplateEngine
from .registry import PendingJobRegistry
from .utils.logfmt import fields, fmt
from .utils.time_utils import now_ms


class Dispatcher:
    """Sends a marked request and hands back the Job whose future the poller settles."""

    def __init__(
        self,
        channel: OutboundChannel,
        registry: PendingJobRegistry,
        poller: Poller,
        *,
        job_timeout_ms: float | None = None,
        template: PromptTemplateEngine | None = None,
        clock: Callable[[], float] = now_ms,
    ):
        self._channel = channel
        self._registry = registry
        self._poller = poller
        self._timeout_ms = job_timeout_ms if job_timeout_ms is not None else poller.settings.job_timeout_ms
        self._template = template or PromptTemplateEngine()
        self._clock = clock
        self._in_flight: set[str] = set()
        self._log = get_logger("Dispatcher")

    async def dispatch(self, content: str, job_id: str, created_at: Optional[float] = None) -> Job:
        """Send ``content`` with the job marker and register the job.

        Raises DuplicateJob if ``job_id`` is still pending or is being sent by
        a concurrent call, and ChannelUnavailable if the send fails; in both
        cases nothing is registered.
        """
        job_id = str(job_id).strip()
        if not job_id or "]" in job_id:
            raise ValueError(f"job id must be non-empty and free of ']': {job_id!r}")
        if job_id in self._registry or job_id in self._in_flight:
            raise DuplicateJob(job_id)

        # Held from here until the job is registered: the send awaits
        self._in_flight.add(job_id)
        try:
            outbound = self._template.render(content, job_id)
            try:
                sent = await self._channel.send(outbound)
            except ChannelUnavailable as e:
                self._log.error(f"dispatch-send-failed {fmt('job', job_id)} {fmt('err', e)}")
                raise

            sent_at = self._clock()
            job = Job(
                job_id=job_id,
                sent_at=sent_at,
                created_at=created_at if created_at is not None else sent_at,
                deadline=sent_at + self._timeout_ms,
                outcome=asyncio.get_running_loop().create_future(),
                request_message_id=sent.id,
            )
            self._registry.register(job)
        finally:
            self._in_flight.discard(job_id)
        self._log.info(
            f"dispatch-sent {fields(job=job_id, request_msg=sent.id, prompt_len=len(content), pending=len(self._registry))}"
        )
        self._poller.ensure_running()
        return job
