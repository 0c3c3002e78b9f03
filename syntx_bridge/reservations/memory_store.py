from __future__ import annotations

from typing import Dict, Optional, Set

from ..models import MatchingMethod, Reservation
from .base import ReservationStore


class MemoryReservationStore(ReservationStore):
    """Process-local store. Check-and-set runs without an await, so it is atomic on one event loop."""

    def __init__(self) -> None:
        self._reservations: Dict[int, Reservation] = {}

    async def try_reserve(self, message_id: int, job_id: str, method: MatchingMethod) -> bool:
        existing = self._reservations.get(message_id)
        if existing is not None:
            return existing.job_id == job_id
        self._reservations[message_id] = Reservation(message_id=message_id, job_id=job_id, method=method)
        return True

    async def list_reserved(self) -> Set[int]:
        return set(self._reservations)

    def get(self, message_id: int) -> Optional[Reservation]:
        return self._reservations.get(message_id)
