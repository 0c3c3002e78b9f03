from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

from ..models import InboundMessage, SentMessage


class OutboundChannel(ABC):
    @abstractmethod
    async def send(self, content: str) -> SentMessage:
        """Post ``content`` to the generator's channel; raises ChannelUnavailable."""
        ...


class InboundReader(ABC):
    @abstractmethod
    async def fetch_recent(self, limit: int) -> Sequence[InboundMessage]:
        """Return up to ``limit`` most recent messages, newest first; raises FetchFailure."""
        ...


class MediaFetcher(ABC):
    @abstractmethod
    async def fetch(self, message_id: int) -> bytes:
        """Return the artifact bytes attached to ``message_id``; raises MediaUnavailable."""
        ...
