from __future__ import annotations


class BridgeError(Exception):
    """Base class for everything the correlation engine raises on purpose."""


class ChannelUnavailable(BridgeError):
    """Outbound send failed; the job was never registered."""


class FetchFailure(BridgeError):
    """Inbound read failed; the poll cycle is aborted without touching job state."""


class ReservationUnavailable(BridgeError):
    """The reservation store could not be reached, so no claim was decided."""


class MediaUnavailable(BridgeError):
    """Neither transfer mode produced the artifact bytes for a matched message."""


class DuplicateJob(BridgeError):
    def __init__(self, job_id: str):
        super().__init__(f"job already pending: {job_id}")
        self.job_id = job_id


class JobTimeout(BridgeError):
    def __init__(self, job_id: str, deadline: float):
        super().__init__(f"timed out waiting for artifact for job_id={job_id}")
        self.job_id = job_id
        self.deadline = deadline


class InvariantViolation(BridgeError):
    """Programming error inside a poll cycle; stops the current poller instance."""
