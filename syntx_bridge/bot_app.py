import asyncio
import os
import shutil

from dotenv import load_dotenv

from .bridge import SyntxBridge
from .channel.discord_channel import DiscordChannel
from .config_service import ConfigService
from .discord_client_adapter import ChannelClient
from .logger_factory import configure_logging, get_logger
from .reservations.factory import build_reservation_store
from .utils.logfmt import fields


def _ensure_file(target: str, template: str) -> None:
    if not os.path.exists(target) and os.path.exists(template):
        shutil.copyfile(template, target)


async def main() -> None:
    # Ensure env + config
    try:
        _ensure_file(".env", ".env.example")
        _ensure_file("config.yaml", "config.example.yaml")
    except OSError:
        pass
    load_dotenv()

    config = ConfigService("config.yaml")
    configure_logging(
        level=config.log_level(),
        tz=config.log_timezone(),
        lib_log_level=config.lib_log_level(),
        console_to_file=config.log_console(),
        error_file=config.log_errors(),
    )
    logger = get_logger("bot_app")

    token = config.discord_token()
    if not token:
        raise RuntimeError("Missing DISCORD_TOKEN in environment")
    channel_id = config.channel_id()
    if channel_id is None:
        raise RuntimeError("Missing discord.channel_id / SYNTX_CHANNEL_ID")

    client = ChannelClient(get_logger("Discord"), config.discord().get("intents"))
    channel = DiscordChannel(
        client,
        channel_id,
        generator_user_id=config.generator_user_id(),
        artifact_kind=config.artifact_kind(),
        media_timeout=config.media_timeout_seconds(),
    )
    store = build_reservation_store(config)
    bridge = SyntxBridge.build(config, channel, channel, channel, store)
    settings = config.poller_settings()
    logger.info(
        f"bridge-configured {fields(channel=channel_id, backend=config.reservation_backend(), interval_ms=settings.poll_interval_ms, fallback_polls=settings.fallback_poll_threshold, window_ms=settings.fallback_window_ms, timeout_ms=settings.job_timeout_ms)}"
    )

    tasks: list = [client.start(token)]
    if config.http_enabled():
        from .http_app import create_app
        import uvicorn

        host, port = config.http_host(), config.http_port()
        app = create_app(bridge=bridge, cfg=config)
        server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="info"))
        tasks.append(server.serve())
        logger.info(f"Web server: http://{host}:{port}")
    else:
        # Without the HTTP app nothing else warms the reservation cache
        tasks.append(bridge.warm())
    logger.info("Discord client starting")

    try:
        await asyncio.gather(*tasks)
    finally:
        await bridge.shutdown()
        await store.aclose()
        await channel.aclose()
        if not client.is_closed():
            await client.close()


if __name__ == "__main__":
    asyncio.run(main())
