from __future__ import annotations

from typing import AbstractSet, Set

from .errors import ReservationUnavailable
from .logger_factory import get_logger
from .models import MatchingMethod
from .reservations.base import ReservationStore
from .utils.logfmt import fields, fmt


class ReservationGate:
    """Local front for the shared reservation store.

    ``reserved_ids`` is a best-effort cache: warmed once from the store, then
    only grown by this process's own claim attempts. It is never refreshed,
    so ids reserved elsewhere after warm-up are discovered by losing a claim.
    Every proposal still goes through the store regardless of the cache.
    """

    def __init__(self, store: ReservationStore):
        self._store = store
        self._reserved: Set[int] = set()
        self._warm = False
        self._log = get_logger("ReservationGate")

    @property
    def reserved_ids(self) -> AbstractSet[int]:
        return self._reserved

    @property
    def is_warm(self) -> bool:
        return self._warm

    async def ensure_warm(self) -> bool:
        """Load the store's reserved ids once; returns False if the store is unreachable."""
        if self._warm:
            return True
        try:
            ids = await self._store.list_reserved()
        except ReservationUnavailable as e:
            self._log.warning(f"reservation-warmup-failed {fmt('err', e)}")
            return False
        self._reserved.update(ids)
        self._warm = True
        self._log.info(f"reservation-cache-warm {fmt('count', len(ids))}")
        return True

    async def try_claim(self, message_id: int, job_id: str, method: MatchingMethod) -> bool:
        """Claim ``message_id`` for ``job_id``.

        Won or lost, the id is cached afterwards. Raises ReservationUnavailable
        when the store cannot decide; the id is not cached in that case.
        """
        won = await self._store.try_reserve(message_id, job_id, method)
        self._reserved.add(message_id)
        if not won:
            self._log.info(f"claim-lost {fields(job=job_id, msg=message_id, method=method.value)}")
        return won
