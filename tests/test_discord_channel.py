import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace

import discord
import httpx
import pytest

from syntx_bridge.channel.discord_channel import DiscordChannel, media_kind, to_inbound
from syntx_bridge.errors import ChannelUnavailable, FetchFailure, MediaUnavailable
from syntx_bridge.matcher import Matcher

CREATED = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class DummyAttachment:
    def __init__(self, data=b"", fail=False, content_type="video/mp4", filename="clip.mp4", description=None):
        self.content_type = content_type
        self.filename = filename
        self.description = description
        self.url = f"https://cdn.example/{filename}"
        self.proxy_url = f"https://media.example/{filename}"
        self._data = data
        self._fail = fail

    async def read(self):
        if self._fail:
            raise discord.DiscordException("cdn refused")
        return self._data


def dummy_message(msg_id, content="", attachments=(), embeds=(), author_id=42):
    return SimpleNamespace(
        id=msg_id,
        content=content,
        attachments=list(attachments),
        embeds=list(embeds),
        created_at=CREATED,
        author=SimpleNamespace(id=author_id),
    )


class DummyTextChannel:
    def __init__(self, messages=(), fail=False):
        self.messages = {m.id: m for m in messages}
        self.fail = fail
        self.sent = []

    async def send(self, content):
        if self.fail:
            raise discord.DiscordException("missing access")
        self.sent.append(content)
        return SimpleNamespace(id=1000 + len(self.sent), created_at=CREATED)

    async def history(self, limit):
        if self.fail:
            raise discord.DiscordException("missing access")
        for m in list(self.messages.values())[:limit]:
            yield m

    async def fetch_message(self, message_id):
        if message_id not in self.messages:
            raise discord.DiscordException("unknown message")
        return self.messages[message_id]


class DummyClient:
    def __init__(self, channel):
        self.channel = channel
        self.resolved = 0

    async def resolve_channel(self, channel_id):
        self.resolved += 1
        return self.channel


def make_channel(text_channel, handler=None, **kw):
    transport = httpx.MockTransport(handler or (lambda request: httpx.Response(404)))
    http = httpx.AsyncClient(transport=transport)
    return DiscordChannel(DummyClient(text_channel), 123, http_client=http, **kw)


def test_media_kind():
    assert media_kind("video/mp4") == "video"
    assert media_kind("image/png; charset=binary") == "image"
    assert media_kind(None, "clip.mp4") == "video"
    assert media_kind("application/pdf") == "document"
    assert media_kind(None, None) == "document"


def test_to_inbound_collects_caption_and_media():
    embed = SimpleNamespace(description="[JOB_ID: j1]", video=SimpleNamespace(url=None))
    msg = dummy_message(5, content="your video", attachments=[DummyAttachment(description="clip")], embeds=[embed])
    inbound = to_inbound(msg)
    assert inbound.id == 5 and inbound.author_id == 42
    assert inbound.caption == "clip [JOB_ID: j1]"
    assert inbound.full_text() == "your video clip [JOB_ID: j1]"
    assert inbound.media.kind == "video" and inbound.media.filename == "clip.mp4"
    assert inbound.timestamp == CREATED.timestamp() * 1000.0


def test_to_inbound_uses_embed_video_without_attachments():
    embed = SimpleNamespace(description=None, video=SimpleNamespace(url="https://cdn.example/v.mp4"))
    inbound = to_inbound(dummy_message(6, embeds=[embed]))
    assert inbound.media.kind == "video" and inbound.media.url == "https://cdn.example/v.mp4"
    assert inbound.caption is None


def test_preview_image_before_clip_is_still_an_artifact():
    png = DummyAttachment(content_type="image/png", filename="preview.png")
    mp4 = DummyAttachment(content_type="video/mp4", filename="clip.mp4")
    inbound = to_inbound(dummy_message(7, content="Done [JOB_ID: a1]", attachments=[png, mp4]))
    assert inbound.media.kind == "video" and inbound.media.filename == "clip.mp4"
    cand = Matcher().build_candidates([inbound])[0]
    assert cand.is_artifact and cand.marker == "a1"


def test_off_kind_media_is_kept_when_nothing_matches():
    png = DummyAttachment(content_type="image/png", filename="preview.png")
    inbound = to_inbound(dummy_message(8, attachments=[png]))
    assert inbound.media.kind == "image"
    assert not Matcher().build_candidates([inbound])[0].is_artifact


def test_fetch_downloads_the_clip_not_the_preview():
    async def scenario():
        png = DummyAttachment(data=b"png", content_type="image/png", filename="preview.png")
        mp4 = DummyAttachment(data=b"clip", content_type="video/mp4", filename="clip.mp4")
        ch = make_channel(DummyTextChannel([dummy_message(7, attachments=[png, mp4])]))
        assert await ch.fetch(7) == b"clip"
        await ch.aclose()

    asyncio.run(scenario())


def test_fetch_prefers_embed_video_over_preview_attachment():
    seen = []

    def handler(request):
        seen.append(str(request.url))
        return httpx.Response(200, content=b"embedded")

    async def scenario():
        png = DummyAttachment(data=b"png", content_type="image/png", filename="preview.png")
        embed = SimpleNamespace(description=None, video=SimpleNamespace(url="https://cdn.example/v.mp4"))
        ch = make_channel(DummyTextChannel([dummy_message(12, attachments=[png], embeds=[embed])]), handler)
        assert await ch.fetch(12) == b"embedded"
        await ch.aclose()

    asyncio.run(scenario())
    assert seen == ["https://cdn.example/v.mp4"]


def test_send_and_history_map_errors():
    async def scenario():
        ok = DummyTextChannel([dummy_message(1, author_id=7), dummy_message(2, author_id=8)])
        ch = make_channel(ok, generator_user_id=7)
        sent = await ch.send("hello [JOB_ID: a]")
        assert sent.id == 1001 and ok.sent == ["hello [JOB_ID: a]"]
        assert [m.id for m in await ch.fetch_recent(10)] == [1]

        broken = make_channel(DummyTextChannel(fail=True))
        with pytest.raises(ChannelUnavailable):
            await broken.send("x")
        with pytest.raises(FetchFailure):
            await broken.fetch_recent(10)
        await ch.aclose()
        await broken.aclose()

    asyncio.run(scenario())


def test_fetch_prefers_attachment_read():
    async def scenario():
        msg = dummy_message(9, attachments=[DummyAttachment(data=b"primary")])
        ch = make_channel(DummyTextChannel([msg]))
        assert await ch.fetch(9) == b"primary"
        await ch.aclose()

    asyncio.run(scenario())


def test_fetch_falls_back_to_streamed_download():
    seen = []

    def handler(request):
        seen.append(str(request.url))
        return httpx.Response(200, content=b"streamed")

    async def scenario():
        failing = dummy_message(9, attachments=[DummyAttachment(fail=True)])
        empty = dummy_message(10, attachments=[DummyAttachment(data=b"")])
        ch = make_channel(DummyTextChannel([failing, empty]), handler)
        assert await ch.fetch(9) == b"streamed"
        assert await ch.fetch(10) == b"streamed"
        await ch.aclose()

    asyncio.run(scenario())
    assert seen == ["https://media.example/clip.mp4", "https://media.example/clip.mp4"]


def test_fetch_raises_media_unavailable():
    async def scenario():
        failing = dummy_message(9, attachments=[DummyAttachment(fail=True)])
        bare = dummy_message(11, content="no media")
        ch = make_channel(DummyTextChannel([failing, bare]))
        with pytest.raises(MediaUnavailable):
            await ch.fetch(9)
        with pytest.raises(MediaUnavailable):
            await ch.fetch(11)
        with pytest.raises(MediaUnavailable):
            await ch.fetch(404)
        await ch.aclose()

    asyncio.run(scenario())
