from __future__ import annotations

import re

# Wire convention shared with the generator bot: "[JOB_ID: <id>]", id = any run of non-"]" chars.
MARKER_PATTERN = re.compile(r"\[JOB_ID:\s*([^\]]+)\]")


def make_job_marker(job_id: str) -> str:
    """Return the correlation marker embedded in outbound requests.

    Keep the format stable: replies are matched by echoing it back.
    """
    return f"[JOB_ID: {job_id}]"


def extract_job_marker(text: str | None) -> str | None:
    """Return the first job id marker found in ``text`` (trimmed), or None."""
    if not text:
        return None
    match = MARKER_PATTERN.search(text)
    if not match:
        return None
    job_id = match.group(1).strip()
    return job_id or None


def embed_marker(content: str, job_id: str) -> str:
    """Append the marker after a blank line unless the content already carries it."""
    marker = make_job_marker(job_id)
    if extract_job_marker(content) == job_id:
        return content
    return f"{content}\n\n{marker}"
