from __future__ import annotations

import logging

import discord
from discord import Intents


class ChannelClient(discord.Client):
    """Logged-in Discord session shared by the outbound and inbound sides.

    Only needs to read history in one channel, so no gateway event handling
    beyond readiness.
    """

    def __init__(self, logger: logging.Logger, intents_cfg: dict | None = None):
        intents_cfg = intents_cfg or {}
        intents = Intents.default()
        # Reading the generator's replies requires message content
        intents.message_content = bool(intents_cfg.get("message_content", True))
        intents.members = bool(intents_cfg.get("members", False))
        intents.presences = False
        super().__init__(intents=intents)
        self.log = logger

    async def on_ready(self):
        if self.user is not None:
            self.log.info(f"Logged in as {self.user} (ID: {self.user.id})")
        else:
            self.log.info("Logged in (user not available yet)")

    async def resolve_channel(self, channel_id: int) -> discord.abc.Messageable:
        await self.wait_until_ready()
        channel = self.get_channel(channel_id)
        if channel is None:
            channel = await self.fetch_channel(channel_id)
        if not isinstance(channel, discord.abc.Messageable):
            raise discord.ClientException(f"channel {channel_id} does not accept messages ({type(channel).__name__})")
        return channel
