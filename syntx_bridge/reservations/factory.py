from __future__ import annotations

from ..config_service import ConfigService
from ..logger_factory import get_logger
from ..utils.logfmt import fmt
from .base import ReservationStore
from .file_store import FileReservationStore
from .memory_store import MemoryReservationStore


def build_reservation_store(cfg: ConfigService) -> ReservationStore:
    backend = cfg.reservation_backend()
    log = get_logger("reservations")
    if backend == "redis":
        # Imported lazily so file/memory deployments do not need a reachable redis
        from .redis_store import RedisReservationStore
        log.info(f"reservation-store backend=redis {fmt('prefix', cfg.redis_key_prefix())}")
        return RedisReservationStore(cfg.redis_url(), key_prefix=cfg.redis_key_prefix())
    if backend == "memory":
        log.warning("reservation-store backend=memory (claims are not shared across processes)")
        return MemoryReservationStore()
    log.info(f"reservation-store backend=file {fmt('path', cfg.reservation_path())}")
    return FileReservationStore(cfg.reservation_path())
