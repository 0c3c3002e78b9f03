from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from .channel.base import InboundReader, MediaFetcher, OutboundChannel
from .config_service import ConfigService
from .dispatcher import Dispatcher
from .errors import MediaUnavailable
from .logger_factory import get_logger
from .models import Job, MatchingMethod, MatchResult
from .poller import Poller
from .prompt_template_engine import PromptTemplateEngine
from .registry import PendingJobRegistry
from .reservation_gate import ReservationGate
from .reservations.base import ReservationStore
from .utils.logfmt import fields
from .utils.time_utils import now_ms


@dataclass(frozen=True)
class GenerationResult:
    job_id: str
    request_message_id: Optional[int]
    video_message_id: int
    matching_method: MatchingMethod
    total_messages_scanned: int
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


class SyntxBridge:
    """End-to-end request -> artifact flow on top of the correlation engine."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        media: MediaFetcher,
        registry: PendingJobRegistry,
        poller: Poller,
        gate: ReservationGate,
    ):
        self.dispatcher = dispatcher
        self.media = media
        self.registry = registry
        self.poller = poller
        self.gate = gate
        self._log = get_logger("SyntxBridge")

    @classmethod
    def build(
        cls,
        cfg: ConfigService,
        outbound: OutboundChannel,
        inbound: InboundReader,
        media: MediaFetcher,
        store: ReservationStore,
        *,
        clock: Callable[[], float] = now_ms,
    ) -> "SyntxBridge":
        settings = cfg.poller_settings()
        registry = PendingJobRegistry()
        gate = ReservationGate(store)
        poller = Poller(registry, inbound, gate, settings, clock=clock)
        template = PromptTemplateEngine(cfg.outbound_template(), cfg.outbound_template_path())
        dispatcher = Dispatcher(outbound, registry, poller, template=template, clock=clock)
        return cls(dispatcher, media, registry, poller, gate)

    async def warm(self) -> bool:
        return await self.gate.ensure_warm()

    async def submit(self, prompt: str, job_id: str, created_at: Optional[float] = None) -> Job:
        return await self.dispatcher.dispatch(prompt, job_id, created_at)

    async def download(self, match: MatchResult) -> bytes:
        data = await self.media.fetch(match.message.id)
        if not data:
            raise MediaUnavailable(f"empty artifact for job_id={match.job_id} msg={match.message.id}")
        return data

    async def generate(self, prompt: str, job_id: str, created_at: Optional[float] = None) -> GenerationResult:
        """Send the prompt, wait for the matching reply and return its artifact bytes.

        Raises ChannelUnavailable / DuplicateJob from dispatch, JobTimeout when
        no reply is matched in time, MediaUnavailable when the bytes cannot be
        fetched.
        """
        job = await self.submit(prompt, job_id, created_at)
        match = await job.wait()
        content = await self.download(match)
        self._log.info(
            f"generation-complete {fields(job=job_id, msg=match.message.id, method=match.method.value, size=len(content), scanned=match.total_messages_scanned)}"
        )
        return GenerationResult(
            job_id=job_id,
            request_message_id=job.request_message_id,
            video_message_id=match.message.id,
            matching_method=match.method,
            total_messages_scanned=match.total_messages_scanned,
            content=content,
        )

    async def shutdown(self) -> None:
        await self.poller.stop()
