import asyncio

import pytest

from fakes import DummyChannel, DummyMedia, DummyReader, video
from syntx_bridge.bridge import SyntxBridge
from syntx_bridge.config_service import ConfigService
from syntx_bridge.errors import JobTimeout, MediaUnavailable
from syntx_bridge.models import MatchingMethod
from syntx_bridge.reservations.memory_store import MemoryReservationStore
from syntx_bridge.utils.time_utils import now_ms


def make_bridge(messages, blobs, env=None):
    cfg = ConfigService(None, env=env or {"SYNTX_POLL_INTERVAL_MS": "10"})
    reader = DummyReader(messages)
    media = DummyMedia(blobs)
    channel = DummyChannel(now_ms)
    bridge = SyntxBridge.build(cfg, channel, reader, media, MemoryReservationStore())
    return bridge, channel, reader, media


def test_generate_returns_artifact_bytes():
    async def scenario():
        bridge, channel, _, media = make_bridge(
            [video(900, now_ms(), text="ready [JOB_ID: gen-1]")],
            {900: b"\x00\x01mp4"},
        )
        assert await bridge.warm() is True
        result = await asyncio.wait_for(bridge.generate("sunset timelapse", "gen-1"), timeout=5)
        assert result.job_id == "gen-1"
        assert result.video_message_id == 900
        assert result.request_message_id == 501
        assert result.matching_method is MatchingMethod.MARKER
        assert result.content == b"\x00\x01mp4" and result.size == 5
        assert result.total_messages_scanned >= 1
        assert channel.sent[0].endswith("[JOB_ID: gen-1]")
        assert media.requested == [900]
        await bridge.shutdown()

    asyncio.run(scenario())


def test_generate_rejects_empty_payload():
    async def scenario():
        bridge, _, _, _ = make_bridge([video(901, now_ms(), text="[JOB_ID: g]")], {901: b""})
        with pytest.raises(MediaUnavailable):
            await asyncio.wait_for(bridge.generate("p", "g"), timeout=5)
        await bridge.shutdown()

    asyncio.run(scenario())


def test_generate_times_out():
    async def scenario():
        bridge, _, _, _ = make_bridge([], {}, env={"SYNTX_POLL_INTERVAL_MS": "5", "SYNTX_JOB_TIMEOUT_MS": "20"})
        with pytest.raises(JobTimeout):
            await asyncio.wait_for(bridge.generate("p", "slow"), timeout=5)
        assert bridge.registry.is_empty()

    asyncio.run(scenario())
