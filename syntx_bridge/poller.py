from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from .channel.base import InboundReader
from .errors import FetchFailure, InvariantViolation, JobTimeout, ReservationUnavailable
from .logger_factory import get_logger
from .matcher import Matcher, MatcherSettings
from .models import Binding, Job, MatchResult
from .registry import PendingJobRegistry
from .reservation_gate import ReservationGate
from .utils.logfmt import fields, fmt
from .utils.time_utils import now_ms


@dataclass(frozen=True)
class PollerSettings:
    poll_interval_ms: float = 7000.0
    fallback_poll_threshold: int = 3
    fallback_window_ms: float = 120_000.0
    job_timeout_ms: float = 1_800_000.0
    batch_size: int = 100
    artifact_kind: str = "video"

    def matcher_settings(self) -> MatcherSettings:
        return MatcherSettings(
            fallback_poll_threshold=self.fallback_poll_threshold,
            fallback_window_ms=self.fallback_window_ms,
            artifact_kind=self.artifact_kind,
        )


@dataclass
class CycleReport:
    fetched: int = 0
    marker_matches: List[str] = field(default_factory=list)
    fallback_matches: List[str] = field(default_factory=list)
    timed_out: List[str] = field(default_factory=list)
    aborted: bool = False


class Poller:
    """Single shared poll loop for one registry.

    Idle while the registry is empty. ``start`` is idempotent and spawns at
    most one loop task; the task returns on its own once the last job
    settles, and the next registration starts a fresh one. A cycle fetches a
    batch, binds by marker, bumps poll counts, binds by fallback, claims
    every binding through the gate and finally sweeps expired jobs.
    """

    def __init__(
        self,
        registry: PendingJobRegistry,
        reader: InboundReader,
        gate: ReservationGate,
        settings: PollerSettings | None = None,
        *,
        matcher: Matcher | None = None,
        clock: Callable[[], float] = now_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings or PollerSettings()
        self._registry = registry
        self._reader = reader
        self._gate = gate
        self._matcher = matcher or Matcher(self.settings.matcher_settings())
        self._clock = clock
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._total_scanned = 0
        self._cycles = 0
        self._log = get_logger("SyntxPoller")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def total_messages_scanned(self) -> int:
        return self._total_scanned

    @property
    def cycles(self) -> int:
        return self._cycles

    def start(self) -> bool:
        """Spawn the loop task unless one is already running. Returns True when a task was created."""
        if self.running:
            return False
        self._task = asyncio.get_running_loop().create_task(self._run(), name="syntx-poller")
        self._task.add_done_callback(self._on_task_done)
        return True

    def ensure_running(self) -> bool:
        if self._registry.is_empty():
            return False
        return self.start()

    async def stop(self) -> None:
        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self._log.info(f"poller-stopped {fmt('pending', len(self._registry))}")

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._log.error(
                f"poller-fatal {fmt('err', repr(exc))} {fmt('pending', len(self._registry))}",
                exc_info=exc,
            )

    async def _run(self) -> None:
        self._log.info(f"poller-start {fmt('pending', len(self._registry))}")
        interval = max(0.0, self.settings.poll_interval_ms / 1000.0)
        while not self._registry.is_empty():
            try:
                await self.poll_once()
            except InvariantViolation:
                raise
            except Exception as e:
                self._log.error(f"poller-cycle-error {fmt('err', repr(e))}", exc_info=e)
            if self._registry.is_empty():
                break
            await self._sleep(interval)
        # No await between the emptiness check and returning: a registration
        # racing with shutdown either sees this task done or is picked up above.
        self._log.info(f"poller-idle {fmt('cycles', self._cycles)} {fmt('scanned', self._total_scanned)}")

    # ------------------------------------------------------------------
    # One cycle
    # ------------------------------------------------------------------
    async def poll_once(self) -> CycleReport:
        report = CycleReport()
        self._cycles += 1
        cycle_start = self._clock()
        await self._gate.ensure_warm()

        try:
            messages = await self._reader.fetch_recent(self.settings.batch_size)
        except FetchFailure as e:
            self._log.warning(f"poll-fetch-failed {fmt('err', e)} {fmt('pending', len(self._registry))}")
            report.aborted = True
            return report

        report.fetched = len(messages)
        self._total_scanned += len(messages)
        self._log.info(
            f"poll-batch {fields(batch=len(messages), pending=len(self._registry), scanned=self._total_scanned)}"
        )
        candidates = self._matcher.build_candidates(messages)

        def _live(job_id: str) -> Optional[Job]:
            job = self._registry.lookup(job_id)
            if job is None or job.expired(cycle_start):
                return None
            return job

        by_marker = self._matcher.match_by_marker(candidates, _live, self._gate.reserved_ids)
        self._check_proposals(by_marker)
        for binding in by_marker:
            if await self._claim(binding):
                report.marker_matches.append(binding.job.job_id)

        self._registry.bump_poll_counts()
        live_jobs = [j for j in self._registry.pending() if not j.expired(cycle_start)]
        by_time = self._matcher.match_by_fallback(candidates, live_jobs, self._gate.reserved_ids)
        self._check_proposals(by_time)
        for binding in by_time:
            if await self._claim(binding):
                report.fallback_matches.append(binding.job.job_id)

        report.timed_out = self._sweep(self._clock())
        return report

    def _check_proposals(self, proposals: List[Binding]) -> None:
        seen_msgs: set[int] = set()
        seen_jobs: set[str] = set()
        for b in proposals:
            if b.candidate.id in seen_msgs or b.job.job_id in seen_jobs:
                raise InvariantViolation(
                    f"matcher proposed a duplicate binding msg={b.candidate.id} job={b.job.job_id}"
                )
            seen_msgs.add(b.candidate.id)
            seen_jobs.add(b.job.job_id)

    async def _claim(self, binding: Binding) -> bool:
        job = binding.job
        msg_id = binding.candidate.id
        if self._registry.lookup(job.job_id) is not job:
            return False
        try:
            won = await self._gate.try_claim(msg_id, job.job_id, binding.method)
        except ReservationUnavailable as e:
            self._log.warning(f"claim-unavailable {fields(job=job.job_id, msg=msg_id)} {fmt('err', e)}")
            return False
        if not won:
            return False
        result = MatchResult(
            job_id=job.job_id,
            message=binding.candidate.source,
            method=binding.method,
            total_messages_scanned=self._total_scanned,
            poll_count=job.poll_count,
        )
        if not self._registry.settle(job.job_id, result):
            # Caller cancelled the future while the claim was in flight
            self._log.warning(f"match-orphaned {fields(job=job.job_id, msg=msg_id)}")
            return False
        self._log.info(
            f"match-found {fields(job=job.job_id, msg=msg_id, method=binding.method.value, polls=job.poll_count, diff_ms=int(binding.diff_ms) if binding.diff_ms is not None else None)}"
        )
        return True

    def _sweep(self, now: float) -> List[str]:
        timed_out: List[str] = []

        def _check(job: Job) -> None:
            if job.outcome.done():
                self._registry.settle(job.job_id, JobTimeout(job.job_id, job.deadline))
                self._log.info(f"job-abandoned {fmt('job', job.job_id)}")
                return
            if job.expired(now):
                self._registry.settle(job.job_id, JobTimeout(job.job_id, job.deadline))
                timed_out.append(job.job_id)
                self._log.error(f"job-timeout {fields(job=job.job_id, polls=job.poll_count)}")

        self._registry.for_each_pending(_check)
        return timed_out
