from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Set

from ..models import MatchingMethod


class ReservationStore(ABC):
    """Durable first-writer-wins binding of inbound message ids to job ids.

    Implementations must be atomic across every process sharing the store and
    idempotent for the same (message_id, job_id) pair under retry. Transport
    failures are raised as ReservationUnavailable, never returned as False.
    """

    @abstractmethod
    async def try_reserve(self, message_id: int, job_id: str, method: MatchingMethod) -> bool:
        ...

    @abstractmethod
    async def list_reserved(self) -> Set[int]:
        ...

    async def aclose(self) -> None:
        return None
