from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml

from .poller import PollerSettings


@dataclass
class Config:
    raw: dict


def _as_number(value: Any, default: float, cast: Callable[[Any], float] = float, minimum: float | None = None) -> Any:
    try:
        out = cast(value)
    except (TypeError, ValueError):
        return default
    if minimum is not None and out < minimum:
        return default
    return out


class ConfigService:
    """YAML config with environment overrides.

    Environment variables (usually loaded from .env) win over the YAML file.
    A missing file yields an empty config, so defaults apply everywhere.
    """

    def __init__(self, path: str | Path | None = "config.yaml", env: Mapping[str, str] | None = None):
        self._path = Path(path) if path else None
        self._env = env if env is not None else os.environ
        self._cfg = Config(raw=self._load())
        self._mtime_ns = self._stat()

    def _stat(self) -> int:
        if self._path is None:
            return 0
        try:
            return self._path.stat().st_mtime_ns
        except OSError:
            return 0

    def _load(self) -> dict:
        if self._path is None or not self._path.exists():
            return {}
        with self._path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return data if isinstance(data, dict) else {}

    def _maybe_reload(self) -> None:
        m = self._stat()
        if m and m != self._mtime_ns:
            try:
                self._cfg = Config(raw=self._load())
                self._mtime_ns = m
            except (OSError, yaml.YAMLError):
                # Keep the previous config on a bad edit
                pass

    def _section(self, name: str) -> dict:
        v = self._cfg.raw.get(name) or {}
        return v if isinstance(v, dict) else {}

    def _env_or(self, env_name: str, value: Any) -> Any:
        ev = self._env.get(env_name)
        if ev is not None and str(ev).strip() != "":
            return ev
        return value

    # ---------- Correlation engine ----------
    def correlation(self) -> dict:
        return self._section("correlation")

    def poll_interval_ms(self) -> float:
        v = self._env_or("SYNTX_POLL_INTERVAL_MS", self.correlation().get("poll_interval_ms"))
        return _as_number(v, 7000.0, minimum=0)

    def fallback_polls(self) -> int:
        v = self._env_or("SYNTX_FALLBACK_POLLS", self.correlation().get("fallback_polls"))
        return _as_number(v, 3, int, minimum=1)

    def fallback_window_ms(self) -> float:
        v = self._env_or("SYNTX_FALLBACK_WINDOW_MS", self.correlation().get("fallback_window_ms"))
        return _as_number(v, 120_000.0, minimum=0)

    def job_timeout_ms(self) -> float:
        v = self._env_or("SYNTX_JOB_TIMEOUT_MS", self.correlation().get("job_timeout_ms"))
        return _as_number(v, 1_800_000.0, minimum=1)

    def batch_size(self) -> int:
        v = self._env_or("SYNTX_BATCH_SIZE", self.correlation().get("batch_size"))
        return _as_number(v, 100, int, minimum=1)

    def artifact_kind(self) -> str:
        v = self.correlation().get("artifact_kind")
        return str(v).strip().lower() if v else "video"

    def poller_settings(self) -> PollerSettings:
        return PollerSettings(
            poll_interval_ms=self.poll_interval_ms(),
            fallback_poll_threshold=self.fallback_polls(),
            fallback_window_ms=self.fallback_window_ms(),
            job_timeout_ms=self.job_timeout_ms(),
            batch_size=self.batch_size(),
            artifact_kind=self.artifact_kind(),
        )

    # ---------- Outbound ----------
    def outbound_template(self) -> str | None:
        self._maybe_reload()
        v = self._section("outbound").get("template")
        return str(v) if v else None

    def outbound_template_path(self) -> str | None:
        v = self._section("outbound").get("template_path")
        return str(v) if v else None

    # ---------- Discord ----------
    def discord(self) -> dict:
        return self._section("discord")

    def discord_token(self) -> str | None:
        v = self._env.get("DISCORD_TOKEN")
        return v.strip() if v and v.strip() else None

    def channel_id(self) -> int | None:
        v = self._env_or("SYNTX_CHANNEL_ID", self.discord().get("channel_id"))
        try:
            return int(v) if v is not None else None
        except (TypeError, ValueError):
            return None

    def generator_user_id(self) -> int | None:
        """Optional author filter: only messages from the generator bot become candidates."""
        v = self.discord().get("generator_user_id")
        try:
            return int(v) if v else None
        except (TypeError, ValueError):
            return None

    # ---------- Reservations ----------
    def reservations(self) -> dict:
        return self._section("reservations")

    def reservation_backend(self) -> str:
        v = str(self._env_or("SYNTX_RESERVATIONS", self.reservations().get("backend", "file"))).strip().lower()
        return v if v in ("memory", "file", "redis") else "file"

    def reservation_path(self) -> str:
        return str(self.reservations().get("path") or "data/reservations")

    def redis_url(self) -> str:
        return str(self._env_or("REDIS_URL", self.reservations().get("redis_url") or "redis://localhost:6379/0"))

    def redis_key_prefix(self) -> str:
        return str(self.reservations().get("key_prefix") or "syntx:reservation:")

    # ---------- Media ----------
    def media_timeout_seconds(self) -> float:
        return _as_number(self._section("media").get("timeout_seconds"), 60.0, minimum=1)

    # ---------- HTTP ----------
    def http_host(self) -> str:
        """Host interface for the HTTP server. Default to 127.0.0.1 (safe)."""
        v = self._section("http").get("host")
        return str(v) if v else "127.0.0.1"

    def http_port(self) -> int:
        return _as_number(self._section("http").get("port"), 8010, int, minimum=1)

    def http_enabled(self) -> bool:
        return bool(self._section("http").get("enabled", True))

    def http_auth_bearer_token(self) -> str | None:
        """Optional bearer token; when set, required on the /jobs routes."""
        self._maybe_reload()
        v = self._section("http").get("bearer_token")
        v = str(v).strip() if v else None
        return v or None

    def http_status_history(self) -> int:
        return _as_number(self._section("http").get("status_history"), 500, int, minimum=1)

    # ---------- Logging ----------
    def log_level(self) -> str:
        return str(self._env_or("LOG_LEVEL", self._cfg.raw.get("LOG_LEVEL", "INFO"))).upper()

    def lib_log_level(self) -> str | None:
        v = self._env_or("LIB_LOG_LEVEL", self._cfg.raw.get("LIB_LOG_LEVEL"))
        return str(v).upper() if v else None

    def log_console(self) -> bool:
        """Mirror console output into logs/log.log."""
        return bool(self._cfg.raw.get("LOG_CONSOLE", False))

    def log_errors(self) -> bool:
        """Always write ERROR-and-above to logs/errors.log, independent of LOG_LEVEL."""
        return bool(self._cfg.raw.get("LOG_ERRORS", False))

    def log_timezone(self) -> str | None:
        v = self._cfg.raw.get("LOG_TZ")
        return str(v) if v else None
