from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .utils.correlation import make_job_marker
from .utils.time_utils import now_ms


class MatchingMethod(str, Enum):
    MARKER = "marker"
    TIMESTAMP = "timestamp"


@dataclass(frozen=True)
class MediaDescriptor:
    kind: str  # "video" | "image" | "audio" | "document"
    mime_type: Optional[str] = None
    filename: Optional[str] = None
    url: Optional[str] = None


@dataclass(frozen=True)
class InboundMessage:
    """One raw message as returned by an InboundReader."""
    id: int
    text: str = ""
    timestamp: float = 0.0  # epoch ms
    caption: Optional[str] = None
    media: Optional[MediaDescriptor] = None
    author_id: Optional[int] = None

    def full_text(self) -> str:
        parts = [p for p in (self.text, self.caption) if isinstance(p, str)]
        return " ".join(parts).strip()


@dataclass(frozen=True)
class SentMessage:
    id: int
    timestamp: float


@dataclass(frozen=True)
class CandidateMessage:
    """Per-cycle view of an inbound message; rebuilt on every poll."""
    id: int
    text: str
    marker: Optional[str]
    timestamp: float
    is_artifact: bool
    source: InboundMessage


@dataclass(frozen=True)
class Reservation:
    message_id: int
    job_id: str
    method: MatchingMethod
    reserved_at: float = field(default_factory=now_ms)

    def to_dict(self) -> dict:
        return {
            "message_id": self.message_id,
            "job_id": self.job_id,
            "method": self.method.value,
            "reserved_at": self.reserved_at,
        }

    @classmethod
    def from_dict(cls, entry: dict) -> "Reservation":
        return cls(
            message_id=int(entry["message_id"]),
            job_id=str(entry["job_id"]),
            method=MatchingMethod(entry.get("method", MatchingMethod.MARKER.value)),
            reserved_at=float(entry.get("reserved_at") or 0.0),
        )


@dataclass(frozen=True)
class MatchResult:
    job_id: str
    message: InboundMessage
    method: MatchingMethod
    total_messages_scanned: int
    poll_count: int


@dataclass
class Job:
    job_id: str
    sent_at: float
    created_at: float
    deadline: float
    outcome: asyncio.Future
    poll_count: int = 0
    request_message_id: Optional[int] = None

    @property
    def request_marker(self) -> str:
        return make_job_marker(self.job_id)

    @property
    def reference_time(self) -> float:
        """Anchor for fallback matching: the later of dispatch and creation time."""
        return max(self.sent_at, self.created_at)

    @property
    def settled(self) -> bool:
        return self.outcome.done()

    def expired(self, now: float) -> bool:
        return now > self.deadline

    async def wait(self) -> MatchResult:
        """Await the match; raises JobTimeout when the deadline passes first."""
        return await asyncio.shield(self.outcome)


@dataclass(frozen=True)
class Binding:
    """A (job, candidate, method) pair proposed by the matcher, not yet claimed."""
    job: Job
    candidate: CandidateMessage
    method: MatchingMethod
    diff_ms: Optional[float] = None
