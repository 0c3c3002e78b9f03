import logging
from logging.handlers import RotatingFileHandler
import os
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

_CONFIGURED = False
_TRACE_ENABLED = False

# Third-party loggers that flood DEBUG output during polling
NOISY_LIBRARIES = (
    "discord",
    "discord.http",
    "discord.gateway",
    "discord.client",
    "httpx",
    "httpcore",
    "redis",
    "uvicorn.access",
)

_PATTERN = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S%z"


class _TzFormatter(logging.Formatter):
    def __init__(self, *args, tz: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        # tz == "UTC" forces UTC, None/"system" uses the host zone, anything else is an IANA name
        import datetime as _dt
        if tz == "UTC":
            self._tz = _dt.timezone.utc
        elif tz is None or tz == "system":
            self._tz = _dt.datetime.now().astimezone().tzinfo
        else:
            try:
                self._tz = ZoneInfo(tz)
            except ZoneInfoNotFoundError:
                self._tz = _dt.datetime.now().astimezone().tzinfo

    def formatTime(self, record, datefmt=None):
        import datetime as _dt
        dt = _dt.datetime.fromtimestamp(record.created, tz=self._tz or _dt.datetime.now().astimezone().tzinfo)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.isoformat()


def _truthy(value) -> bool:
    return str(value).lower() in ("1", "true", "yes", "on")


def _level_from_name(level: Optional[str]) -> tuple[int, bool]:
    lvl = (level or "INFO").upper()
    if lvl not in ("INFO", "DEBUG", "TRACE", "WARNING", "ERROR"):
        lvl = "INFO"
    if lvl in ("DEBUG", "TRACE"):
        return logging.DEBUG, lvl == "TRACE"
    return getattr(logging, lvl), False


def _rotating(path: str, level: int, tz: Optional[str]) -> RotatingFileHandler:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    handler = RotatingFileHandler(
        filename=path,
        mode="a",
        maxBytes=1_000_000,
        backupCount=5,
        encoding="utf-8",
        delay=False,
    )
    handler.setLevel(level)
    handler.setFormatter(_TzFormatter(_PATTERN, tz=tz, datefmt=_DATEFMT))
    return handler


def configure_logging(level: Optional[str] = None, tz: Optional[str] = None, lib_log_level: Optional[str] = None, console_to_file: bool | None = None, error_file: bool | None = None) -> None:
    global _CONFIGURED, _TRACE_ENABLED
    if _CONFIGURED:
        return
    py_level, _TRACE_ENABLED = _level_from_name(level)

    root = logging.getLogger()
    root.setLevel(py_level)
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler()
    handler.setLevel(py_level)
    handler.setFormatter(_TzFormatter(_PATTERN, tz=tz, datefmt=_DATEFMT))
    root.addHandler(handler)

    # Mirror console output to logs/log.log when LOG_CONSOLE=true
    mirror_enabled = bool(console_to_file)
    env_console = os.getenv("LOG_CONSOLE")
    if env_console is not None:
        mirror_enabled = _truthy(env_console)
    if mirror_enabled:
        try:
            root.addHandler(_rotating("logs/log.log", py_level, tz))
        except OSError:
            root.warning("log-mirror-disabled reason=unwritable path=logs/log.log")

    # ERROR+ always lands in logs/errors.log when LOG_ERRORS=true
    errors_enabled = _truthy(os.getenv("LOG_ERRORS", ""))
    if error_file is not None:
        errors_enabled = bool(error_file)
    if errors_enabled:
        try:
            root.addHandler(_rotating("logs/errors.log", logging.ERROR, tz))
        except OSError:
            root.warning("error-log-disabled reason=unwritable path=logs/errors.log")

    lib_level_name = lib_log_level or os.getenv("LIB_LOG_LEVEL")
    lib_level = getattr(logging, lib_level_name.upper(), logging.WARNING) if lib_level_name else logging.WARNING
    for name in NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(lib_level)

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    if not _CONFIGURED:
        configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))
    return logging.getLogger(name)


def is_trace_enabled() -> bool:
    """TRACE behaves like DEBUG and additionally logs every scanned message."""
    return _TRACE_ENABLED
