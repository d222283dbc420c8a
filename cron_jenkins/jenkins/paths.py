from __future__ import annotations

from typing import List
from urllib.parse import quote, unquote


JOB_DELIMITER = "/job/"


def split_target(target: str) -> List[str]:
    """Split a folder-qualified target into job name segments.

    Accepts both the plain form ("folder/sub/app") and the Jenkins URL form
    ("folder/job/sub/job/app", optionally with a leading "job/"). Paths that
    contain a folder literally named "job" are read in the URL form.
    """

    raw = (target or "").strip().strip("/")
    if raw.startswith("job/"):
        raw = raw[len("job/"):]
    if JOB_DELIMITER in raw:
        parts = raw.split(JOB_DELIMITER)
    else:
        parts = raw.split("/")
    segments = [p.strip("/") for p in parts if p.strip("/")]
    if not segments:
        raise ValueError(f"Empty Jenkins job path: {target!r}")
    return segments


def encode_segment(segment: str) -> str:
    # Decode first so an already-encoded name is not encoded twice.
    return quote(unquote(segment), safe="")


def job_url_path(target: str) -> str:
    """Return the URL path of a job, e.g. "job/folder/job/my%20app"."""

    return "job/" + JOB_DELIMITER.join(encode_segment(s) for s in split_target(target))


def display_path(target: str) -> str:
    """Return the canonical slash-joined form of a target ("folder/app")."""

    return "/".join(unquote(s) for s in split_target(target))
