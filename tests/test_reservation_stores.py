import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
import redis

from syntx_bridge.config_service import ConfigService
from syntx_bridge.errors import ReservationUnavailable
from syntx_bridge.models import MatchingMethod
from syntx_bridge.reservations.factory import build_reservation_store
from syntx_bridge.reservations.file_store import FileReservationStore
from syntx_bridge.reservations.memory_store import MemoryReservationStore
from syntx_bridge.reservations.redis_store import RedisReservationStore


def test_memory_store_first_writer_wins():
    async def scenario():
        store = MemoryReservationStore()
        assert await store.try_reserve(1, "a", MatchingMethod.MARKER) is True
        assert await store.try_reserve(1, "b", MatchingMethod.TIMESTAMP) is False
        assert await store.try_reserve(1, "a", MatchingMethod.MARKER) is True
        assert await store.list_reserved() == {1}
        assert store.get(1).job_id == "a"

    asyncio.run(scenario())


def test_file_store_first_writer_wins_and_persists(tmp_path):
    async def scenario():
        store = FileReservationStore(tmp_path / "res")
        assert await store.try_reserve(42, "a", MatchingMethod.TIMESTAMP) is True
        assert await store.try_reserve(42, "b", MatchingMethod.MARKER) is False
        assert await store.try_reserve(42, "a", MatchingMethod.TIMESTAMP) is True
        assert await store.try_reserve(43, "b", MatchingMethod.MARKER) is True

        # a second process pointed at the same directory sees the same bindings
        other = FileReservationStore(tmp_path / "res")
        assert await other.list_reserved() == {42, 43}
        assert await other.try_reserve(43, "c", MatchingMethod.MARKER) is False
        rec = other.get(42)
        assert rec.job_id == "a" and rec.method is MatchingMethod.TIMESTAMP

    asyncio.run(scenario())
    files = sorted(p.name for p in (tmp_path / "res").iterdir())
    assert files == ["42.json", "43.json"]
    data = json.loads((tmp_path / "res" / "42.json").read_text(encoding="utf-8"))
    assert data["job_id"] == "a" and data["method"] == "timestamp"


def test_file_store_concurrent_claims_have_one_winner(tmp_path):
    async def scenario():
        stores = [FileReservationStore(tmp_path) for _ in range(5)]
        results = await asyncio.gather(*[
            s.try_reserve(7, f"job-{i}", MatchingMethod.MARKER) for i, s in enumerate(stores)
        ])
        assert results.count(True) == 1

    asyncio.run(scenario())


def test_file_store_ignores_foreign_files(tmp_path):
    (tmp_path / "notes.json").write_text("{}", encoding="utf-8")

    async def scenario():
        store = FileReservationStore(tmp_path)
        await store.try_reserve(1, "a", MatchingMethod.MARKER)
        assert await store.list_reserved() == {1}

    asyncio.run(scenario())


async def _keys(*keys):
    for k in keys:
        yield k


def make_redis_client():
    client = MagicMock()
    client.set = AsyncMock(return_value=True)
    client.get = AsyncMock(return_value=None)
    client.aclose = AsyncMock()
    client.scan_iter = MagicMock(side_effect=lambda match: _keys(b"syntx:reservation:5", b"syntx:reservation:6"))
    return client


def test_redis_store_claims_with_set_nx():
    async def scenario():
        client = make_redis_client()
        store = RedisReservationStore(client=client)
        assert await store.try_reserve(5, "a", MatchingMethod.MARKER) is True
        args, kwargs = client.set.call_args
        assert args[0] == "syntx:reservation:5"
        assert kwargs == {"nx": True}
        assert json.loads(args[1])["job_id"] == "a"
        client.get.assert_not_called()

    asyncio.run(scenario())


def test_redis_store_lost_race_and_owner_retry():
    async def scenario():
        client = make_redis_client()
        client.set = AsyncMock(return_value=None)
        client.get = AsyncMock(return_value=json.dumps({"message_id": 5, "job_id": "a", "method": "marker"}).encode())
        store = RedisReservationStore(client=client)
        assert await store.try_reserve(5, "a", MatchingMethod.MARKER) is True
        assert await store.try_reserve(5, "b", MatchingMethod.MARKER) is False

    asyncio.run(scenario())


def test_redis_store_lists_ids_and_maps_errors():
    async def scenario():
        client = make_redis_client()
        store = RedisReservationStore(client=client)
        assert await store.list_reserved() == {5, 6}
        client.set = AsyncMock(side_effect=redis.ConnectionError("down"))
        with pytest.raises(ReservationUnavailable):
            await store.try_reserve(5, "a", MatchingMethod.MARKER)
        await store.aclose()
        client.aclose.assert_awaited_once()

    asyncio.run(scenario())


def test_factory_selects_backend(tmp_path):
    cfg = ConfigService(None, env={"SYNTX_RESERVATIONS": "memory"})
    assert isinstance(build_reservation_store(cfg), MemoryReservationStore)

    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(f"reservations:\n  backend: file\n  path: {tmp_path / 'r'}\n", encoding="utf-8")
    store = build_reservation_store(ConfigService(cfg_path, env={}))
    assert isinstance(store, FileReservationStore)
    assert store.base_path == tmp_path / "r"
