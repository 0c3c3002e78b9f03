"""Redis-backed reservation store.

Each reservation is a plain string key ``<prefix><message_id>`` holding the
JSON-serialised Reservation. Claims use ``SET ... NX`` so the first writer
wins across every process and host pointed at the same Redis. Keys never
expire: a binding is permanent once accepted.
"""
from __future__ import annotations

import json
from typing import Optional, Set

import redis
import redis.asyncio as aioredis

from ..errors import ReservationUnavailable
from ..logger_factory import get_logger
from ..models import MatchingMethod, Reservation
from ..utils.logfmt import fmt
from .base import ReservationStore


class RedisReservationStore(ReservationStore):
    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        *,
        key_prefix: str = "syntx:reservation:",
        client: Optional[aioredis.Redis] = None,
    ):
        self._redis_url = redis_url
        self._prefix = key_prefix
        self._client = client if client is not None else aioredis.from_url(redis_url)
        self.log = get_logger("RedisReservationStore")

    def _key(self, message_id: int) -> str:
        return f"{self._prefix}{int(message_id)}"

    @staticmethod
    def _decode(value) -> str:
        return value.decode("utf-8") if isinstance(value, bytes) else str(value)

    async def try_reserve(self, message_id: int, job_id: str, method: MatchingMethod) -> bool:
        record = Reservation(message_id=int(message_id), job_id=job_id, method=method)
        key = self._key(message_id)
        try:
            created = await self._client.set(key, json.dumps(record.to_dict()), nx=True)
            if created:
                return True
            # Lost the race or a retry of our own earlier claim
            existing = await self._client.get(key)
        except redis.RedisError as e:
            self.log.error(f"redis-reserve-error {fmt('msg', message_id)} {fmt('err', e)}")
            raise ReservationUnavailable(f"redis unavailable: {e}") from e
        if existing is None:
            return False
        try:
            owner = json.loads(self._decode(existing)).get("job_id")
        except ValueError:
            return False
        return owner == job_id

    async def list_reserved(self) -> Set[int]:
        out: Set[int] = set()
        try:
            async for key in self._client.scan_iter(match=f"{self._prefix}*"):
                suffix = self._decode(key)[len(self._prefix):]
                try:
                    out.add(int(suffix))
                except ValueError:
                    continue
        except redis.RedisError as e:
            raise ReservationUnavailable(f"redis unavailable: {e}") from e
        return out

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except redis.RedisError as e:
            self.log.warning(f"redis-close-error {fmt('err', e)}")
