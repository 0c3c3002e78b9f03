from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet, Callable, Iterable, List, Optional, Sequence

from .logger_factory import get_logger, is_trace_enabled
from .models import Binding, CandidateMessage, InboundMessage, Job, MatchingMethod
from .utils.correlation import extract_job_marker
from .utils.logfmt import fields, fmt, preview

MarkerParser = Callable[[Optional[str]], Optional[str]]


@dataclass(frozen=True)
class MatcherSettings:
    fallback_poll_threshold: int = 3
    fallback_window_ms: float = 120_000.0
    artifact_kind: str = "video"


class Matcher:
    """Decides which (job, message) pairs to bind in one poll cycle.

    Nothing here touches the registry, the reservation store or the clock:
    the poller feeds in the batch, the pending jobs and the reserved-id cache
    and claims whatever comes back.

    Phase A trusts the echoed marker. Phase B is a heuristic for replies that
    lost the marker: after ``fallback_poll_threshold`` unmatched cycles a job
    takes the unmarked artifact closest in time to its reference timestamp,
    within ``fallback_window_ms``. There is no confidence scoring beyond that
    window, so a wrong pairing is possible when two generations finish close
    together; that risk is accepted in exchange for liveness.
    """

    def __init__(self, settings: MatcherSettings | None = None, marker_parser: MarkerParser = extract_job_marker):
        self.settings = settings or MatcherSettings()
        self._parse_marker = marker_parser
        self._log = get_logger("Matcher")

    # ------------------------------------------------------------------
    # Candidates
    # ------------------------------------------------------------------
    def build_candidates(self, messages: Iterable[InboundMessage]) -> List[CandidateMessage]:
        out: List[CandidateMessage] = []
        trace = is_trace_enabled()
        for msg in messages:
            text = msg.full_text()
            is_artifact = msg.media is not None and msg.media.kind == self.settings.artifact_kind
            cand = CandidateMessage(
                id=msg.id,
                text=text,
                marker=self._parse_marker(text),
                timestamp=msg.timestamp,
                is_artifact=is_artifact,
                source=msg,
            )
            if trace:
                self._log.debug(
                    f"scan-message {fields(msg=cand.id, artifact=cand.is_artifact, marker=cand.marker or 'none')} "
                    f"{fmt('preview', preview(text))}"
                )
            out.append(cand)
        return out

    # ------------------------------------------------------------------
    # Phase A
    # ------------------------------------------------------------------
    def match_by_marker(
        self,
        candidates: Sequence[CandidateMessage],
        lookup: Callable[[str], Optional[Job]],
        reserved_ids: AbstractSet[int],
    ) -> List[Binding]:
        proposals: List[Binding] = []
        bound_jobs: set[str] = set()
        for cand in candidates:
            if not cand.is_artifact or not cand.marker:
                continue
            job = lookup(cand.marker)
            if job is None:
                self._log.debug(f"marker-orphan {fmt('msg', cand.id)} {fmt('job', cand.marker)}")
                continue
            if job.job_id in bound_jobs:
                continue
            if cand.id in reserved_ids:
                self._log.debug(f"marker-already-reserved {fmt('msg', cand.id)} {fmt('job', job.job_id)}")
                continue
            bound_jobs.add(job.job_id)
            proposals.append(Binding(job=job, candidate=cand, method=MatchingMethod.MARKER))
        return proposals

    # ------------------------------------------------------------------
    # Phase B
    # ------------------------------------------------------------------
    def is_fallback_eligible(self, job: Job) -> bool:
        return job.poll_count >= self.settings.fallback_poll_threshold

    def fallback_pool(self, candidates: Sequence[CandidateMessage], reserved_ids: AbstractSet[int]) -> List[CandidateMessage]:
        return [c for c in candidates if c.is_artifact and not c.marker and c.id not in reserved_ids]

    def closest_candidate(self, job: Job, pool: Sequence[CandidateMessage]) -> tuple[Optional[CandidateMessage], float]:
        target = job.reference_time
        window = self.settings.fallback_window_ms
        selected: Optional[CandidateMessage] = None
        best = float("inf")
        for cand in pool:
            diff = abs(cand.timestamp - target)
            # strict "<" keeps the first-seen candidate on exact ties
            if diff <= window and diff < best:
                selected = cand
                best = diff
        return selected, best

    def match_by_fallback(
        self,
        candidates: Sequence[CandidateMessage],
        jobs: Iterable[Job],
        reserved_ids: AbstractSet[int],
    ) -> List[Binding]:
        eligible = [j for j in jobs if self.is_fallback_eligible(j)]
        if not eligible:
            return []
        pool = self.fallback_pool(candidates, reserved_ids)
        proposals: List[Binding] = []
        for job in eligible:
            if not pool:
                self._log.info(f"fallback-none {fmt('job', job.job_id)} reason=no-candidates")
                continue
            selected, diff = self.closest_candidate(job, pool)
            if selected is None:
                self._log.info(f"fallback-none {fmt('job', job.job_id)} reason=outside-window")
                continue
            pool = [c for c in pool if c is not selected]
            self._log.info(f"fallback-proposed {fields(job=job.job_id, msg=selected.id, diff_ms=int(diff), polls=job.poll_count)}")
            proposals.append(Binding(job=job, candidate=selected, method=MatchingMethod.TIMESTAMP, diff_ms=diff))
        return proposals
