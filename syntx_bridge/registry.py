from __future__ import annotations

from typing import Callable, Dict, Iterator, List, Optional, Union

from .errors import DuplicateJob, JobTimeout
from .logger_factory import get_logger
from .models import Job, MatchResult
from .utils.logfmt import fmt

Outcome = Union[MatchResult, JobTimeout]


class PendingJobRegistry:
    """Outstanding correlation requests keyed by job id.

    Owned by one poller; every job leaves the registry the moment its future
    is settled, so ``lookup`` only ever returns unresolved jobs.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._log = get_logger("PendingJobRegistry")

    def register(self, job: Job) -> None:
        if job.job_id in self._jobs:
            raise DuplicateJob(job.job_id)
        self._jobs[job.job_id] = job
        self._log.info(f"job-registered {fmt('job', job.job_id)} {fmt('pending', len(self._jobs))}")

    def lookup(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def settle(self, job_id: str, outcome: Outcome) -> bool:
        """Remove the job and complete its future once; False when absent or already done."""
        job = self._jobs.pop(job_id, None)
        if job is None or job.outcome.done():
            return False
        if isinstance(outcome, BaseException):
            job.outcome.set_exception(outcome)
        else:
            job.outcome.set_result(outcome)
        return True

    def for_each_pending(self, fn: Callable[[Job], None]) -> None:
        # Snapshot so fn may settle the job it is handed
        for job in list(self._jobs.values()):
            if job.job_id in self._jobs:
                fn(job)

    def bump_poll_counts(self) -> None:
        def _bump(job: Job) -> None:
            job.poll_count += 1
        self.for_each_pending(_bump)

    def pending(self) -> List[Job]:
        return list(self._jobs.values())

    def is_empty(self) -> bool:
        return not self._jobs

    def __len__(self) -> int:
        return len(self._jobs)

    def __iter__(self) -> Iterator[Job]:
        return iter(self.pending())

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs
