from __future__ import annotations

import asyncio
import json
import os
import secrets
from pathlib import Path
from threading import RLock
from typing import Optional, Set

from ..errors import ReservationUnavailable
from ..logger_factory import get_logger
from ..models import MatchingMethod, Reservation
from ..utils.logfmt import fmt
from .base import ReservationStore


class FileReservationStore(ReservationStore):
    """One JSON file per reserved message id under ``base_path``.

    A claim writes a temp file and hard-links it to ``<message_id>.json``;
    ``os.link`` fails when the target exists, which makes the first writer win
    for every process on the host that shares the directory, and readers
    never see a half-written record.
    """

    def __init__(self, base_path: Path | str):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self._lock = RLock()
        self.log = get_logger("FileReservationStore")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _record_path(self, message_id: int) -> Path:
        return self.base_path / f"{int(message_id)}.json"

    def _read(self, message_id: int) -> Optional[Reservation]:
        path = self._record_path(message_id)
        try:
            with path.open("r", encoding="utf-8") as f:
                return Reservation.from_dict(json.load(f))
        except FileNotFoundError:
            return None
        except (ValueError, KeyError) as e:
            self.log.error(f"reservation-corrupt {fmt('msg', message_id)} {fmt('err', e)}")
            return None

    def _reserve_sync(self, message_id: int, job_id: str, method: MatchingMethod) -> bool:
        record = Reservation(message_id=int(message_id), job_id=job_id, method=method)
        final = self._record_path(message_id)
        tmp = self.base_path / f".{int(message_id)}.{secrets.token_hex(4)}.tmp"
        with self._lock:
            try:
                with tmp.open("w", encoding="utf-8") as f:
                    json.dump(record.to_dict(), f)
                    f.flush()
                    os.fsync(f.fileno())
                try:
                    os.link(tmp, final)
                except FileExistsError:
                    existing = self._read(message_id)
                    return existing is not None and existing.job_id == job_id
                return True
            except OSError as e:
                raise ReservationUnavailable(f"file store write failed: {e}") from e
            finally:
                try:
                    tmp.unlink()
                except FileNotFoundError:
                    pass

    def _list_sync(self) -> Set[int]:
        out: Set[int] = set()
        with self._lock:
            try:
                for p in self.base_path.glob("*.json"):
                    try:
                        out.add(int(p.stem))
                    except ValueError:
                        continue
            except OSError as e:
                raise ReservationUnavailable(f"file store scan failed: {e}") from e
        return out

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def try_reserve(self, message_id: int, job_id: str, method: MatchingMethod) -> bool:
        return await asyncio.to_thread(self._reserve_sync, message_id, job_id, method)

    async def list_reserved(self) -> Set[int]:
        return await asyncio.to_thread(self._list_sync)

    def get(self, message_id: int) -> Optional[Reservation]:
        return self._read(message_id)
