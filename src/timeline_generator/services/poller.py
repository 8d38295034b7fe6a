from __future__ import annotations

import logging
import time
from threading import Event
from typing import Callable, Protocol

from timeline_generator.errors import (
    JobCancelled,
    TranscriptionFailed,
    TranscriptionTimeout,
    UpstreamUnavailable,
)
from timeline_generator.types import TranscriptionJob

logger = logging.getLogger(__name__)


class JobReader(Protocol):
    def fetch(self, job_id: str, *, timeout: float | None = None) -> TranscriptionJob: ...


class JobPoller:
    """Fixed-interval polling of a transcription job, bounded by a deadline.

    The deadline runs from ``started_at`` when the caller passes the time the
    job was submitted (on this poller's clock), and no single status read is
    allowed a longer HTTP timeout than what is left of it. The cancel event
    doubles as the sleep primitive, so a caller that sets it wakes the loop
    immediately instead of waiting out the interval.
    """

    def __init__(
        self,
        reader: JobReader,
        *,
        interval_seconds: float = 3.0,
        deadline_seconds: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.reader = reader
        self.interval_seconds = interval_seconds
        self.deadline_seconds = deadline_seconds
        self.clock = clock

    def wait(
        self,
        job_id: str,
        *,
        cancel: Event | None = None,
        started_at: float | None = None,
    ) -> TranscriptionJob:
        cancel = cancel if cancel is not None else Event()
        started = started_at if started_at is not None else self.clock()
        attempts = 0

        while True:
            if cancel.is_set():
                raise JobCancelled(f"Polling for transcript {job_id} cancelled")

            remaining = self._remaining(started)
            if remaining <= 0:
                raise self._timeout(job_id)

            attempts += 1
            try:
                job = self.reader.fetch(job_id, timeout=remaining)
            except UpstreamUnavailable as exc:
                if self._remaining(started) <= 0:
                    raise self._timeout(job_id) from exc
                raise
            logger.debug("Transcript %s status %s (attempt %d)", job_id, job.status, attempts)

            if job.status == "completed":
                logger.info("Transcript %s completed after %d polls", job_id, attempts)
                return job
            if job.status == "error":
                raise TranscriptionFailed(job.error or "AssemblyAI reported error status")

            remaining = self._remaining(started)
            if remaining <= 0:
                raise self._timeout(job_id)

            if cancel.wait(min(self.interval_seconds, remaining)):
                raise JobCancelled(f"Polling for transcript {job_id} cancelled")

    def _remaining(self, started: float) -> float:
        return self.deadline_seconds - (self.clock() - started)

    def _timeout(self, job_id: str) -> TranscriptionTimeout:
        return TranscriptionTimeout(f"Transcript {job_id} not ready after {self.deadline_seconds:g}s")
