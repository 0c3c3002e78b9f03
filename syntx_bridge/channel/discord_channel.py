from __future__ import annotations

import asyncio
import mimetypes
from typing import List, Optional, Sequence

import discord
import httpx

from ..discord_client_adapter import ChannelClient
from ..errors import ChannelUnavailable, FetchFailure, MediaUnavailable
from ..logger_factory import get_logger
from ..models import InboundMessage, MediaDescriptor, SentMessage
from ..utils.logfmt import fields, fmt
from ..utils.time_utils import to_epoch_ms
from .base import InboundReader, MediaFetcher, OutboundChannel

_TRANSPORT_ERRORS = (discord.DiscordException, OSError, asyncio.TimeoutError)


def media_kind(content_type: Optional[str], filename: Optional[str] = None) -> str:
    ctype = (content_type or "").split(";")[0].strip().lower()
    if not ctype and filename:
        ctype = mimetypes.guess_type(filename)[0] or ""
    major = ctype.split("/")[0] if ctype else ""
    if major in ("video", "image", "audio"):
        return major
    return "document"


def to_inbound(message: discord.Message, artifact_kind: str = "video") -> InboundMessage:
    """Flatten a Discord message: content is the body, attachment/embed descriptions are the caption.

    ``media`` describes the first attachment or embed video of ``artifact_kind``,
    else the first media found at all (a preview image posted before the clip
    must not hide the clip).
    """
    captions: List[str] = []
    found: List[MediaDescriptor] = []
    for att in message.attachments:
        if att.description:
            captions.append(att.description)
        found.append(MediaDescriptor(
            kind=media_kind(att.content_type, att.filename),
            mime_type=att.content_type,
            filename=att.filename,
            url=att.url,
        ))
    for embed in message.embeds:
        if embed.description:
            captions.append(embed.description)
        if embed.video and embed.video.url:
            found.append(MediaDescriptor(kind="video", url=embed.video.url))
    media = next((m for m in found if m.kind == artifact_kind), found[0] if found else None)
    author = getattr(message, "author", None)
    return InboundMessage(
        id=message.id,
        text=message.content or "",
        caption=" ".join(captions) or None,
        timestamp=to_epoch_ms(message.created_at),
        media=media,
        author_id=getattr(author, "id", None),
    )


class DiscordChannel(OutboundChannel, InboundReader, MediaFetcher):
    """The generator bot's Discord channel, seen through the three correlation interfaces."""

    def __init__(
        self,
        client: ChannelClient,
        channel_id: int,
        *,
        generator_user_id: Optional[int] = None,
        artifact_kind: str = "video",
        media_timeout: float = 60.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._client = client
        self._channel_id = int(channel_id)
        self._generator_id = generator_user_id
        self._artifact_kind = artifact_kind
        self._http = http_client or httpx.AsyncClient(timeout=media_timeout, follow_redirects=True)
        self._resolved: Optional[discord.abc.Messageable] = None
        self.log = get_logger("DiscordChannel")

    async def _channel(self) -> discord.abc.Messageable:
        if self._resolved is None:
            self._resolved = await self._client.resolve_channel(self._channel_id)
        return self._resolved

    # ------------------------------------------------------------------
    # OutboundChannel
    # ------------------------------------------------------------------
    async def send(self, content: str) -> SentMessage:
        try:
            channel = await self._channel()
            sent = await channel.send(content)
        except _TRANSPORT_ERRORS as e:
            raise ChannelUnavailable(f"send to channel {self._channel_id} failed: {e}") from e
        return SentMessage(id=sent.id, timestamp=to_epoch_ms(sent.created_at))

    # ------------------------------------------------------------------
    # InboundReader
    # ------------------------------------------------------------------
    async def fetch_recent(self, limit: int) -> Sequence[InboundMessage]:
        try:
            channel = await self._channel()
            raw = [m async for m in channel.history(limit=limit)]
        except _TRANSPORT_ERRORS as e:
            raise FetchFailure(f"history of channel {self._channel_id} unavailable: {e}") from e
        out: List[InboundMessage] = []
        for m in raw:
            if self._generator_id is not None and getattr(m.author, "id", None) != self._generator_id:
                continue
            out.append(to_inbound(m, self._artifact_kind))
        return out

    # ------------------------------------------------------------------
    # MediaFetcher
    # ------------------------------------------------------------------
    def _pick_attachment(self, message: discord.Message) -> Optional[discord.Attachment]:
        for att in message.attachments:
            if media_kind(att.content_type, att.filename) == self._artifact_kind:
                return att
        media = to_inbound(message, self._artifact_kind).media
        if media is not None and media.kind == self._artifact_kind:
            # embed video beats an attachment of the wrong kind
            return None
        return message.attachments[0] if message.attachments else None

    async def _download_url(self, url: str) -> bytes:
        chunks: List[bytes] = []
        async with self._http.stream("GET", url) as r:
            r.raise_for_status()
            async for chunk in r.aiter_bytes():
                chunks.append(chunk)
        return b"".join(chunks)

    async def fetch(self, message_id: int) -> bytes:
        try:
            channel = await self._channel()
            message = await channel.fetch_message(message_id)
        except _TRANSPORT_ERRORS as e:
            raise MediaUnavailable(f"message {message_id} unavailable: {e}") from e

        att = self._pick_attachment(message)
        url: Optional[str] = None
        data = b""
        if att is not None:
            url = att.proxy_url or att.url
            try:
                data = await att.read()
            except _TRANSPORT_ERRORS as e:
                self.log.error(f"media-primary-failed {fields(msg=message_id, file=att.filename)} {fmt('err', e)}")
            if data:
                return data
            self.log.warning(f"media-primary-empty {fields(msg=message_id, file=att.filename)} fallback=stream")
        else:
            inbound = to_inbound(message, self._artifact_kind)
            url = inbound.media.url if inbound.media else None

        if not url:
            raise MediaUnavailable(f"message {message_id} carries no downloadable media")
        try:
            data = await self._download_url(url)
        except httpx.HTTPError as e:
            self.log.error(f"media-fallback-failed {fmt('msg', message_id)} {fmt('err', e)}")
            raise MediaUnavailable(f"download of message {message_id} failed: {e}") from e
        if not data:
            raise MediaUnavailable(f"download of message {message_id} returned no bytes")
        self.log.info(f"media-fallback-ok {fields(msg=message_id, size=len(data))}")
        return data

    async def aclose(self) -> None:
        await self._http.aclose()
