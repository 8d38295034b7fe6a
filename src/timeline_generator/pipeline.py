from __future__ import annotations

import logging
import secrets
import time
from pathlib import Path
from threading import Event
from typing import Protocol

from timeline_generator.errors import TimelineError
from timeline_generator.services.acquirer import MediaAcquirer
from timeline_generator.services.poller import JobPoller
from timeline_generator.services.storage import TempAudioStore
from timeline_generator.services.timeline import build_timeline
from timeline_generator.types import AcquiredAudio, JobInput, Timeline, UploadedSource

logger = logging.getLogger(__name__)


class JobSubmitter(Protocol):
    def submit(self, audio: AcquiredAudio) -> str: ...


class TimelinePipeline:
    """Runs one job: acquire, submit, poll, format; temp audio never outlives the call."""

    def __init__(
        self,
        *,
        acquirer: MediaAcquirer,
        transcriber: JobSubmitter,
        poller: JobPoller,
        store: TempAudioStore,
        numbered_chapters: bool = False,
    ) -> None:
        self.acquirer = acquirer
        self.transcriber = transcriber
        self.poller = poller
        self.store = store
        self.numbered_chapters = numbered_chapters

    def process(self, source: JobInput, *, cancel: Event | None = None) -> Timeline:
        cancel = cancel if cancel is not None else Event()
        run_id = secrets.token_hex(4)
        started = time.monotonic()
        audio: AcquiredAudio | None = None

        try:
            logger.info("[%s] Processing %s", run_id, type(source).__name__)
            audio = self.acquirer.acquire(source, cancel=cancel)

            # The transcription deadline covers the upload as well as the polling.
            submitted_at = self.poller.clock()
            job_id = self.transcriber.submit(audio)
            logger.info("[%s] Waiting for transcript %s", run_id, job_id)
            job = self.poller.wait(job_id, cancel=cancel, started_at=submitted_at)

            timeline = build_timeline(job.chapters, numbered=self.numbered_chapters)
            logger.info(
                "[%s] Built %d timeline entries in %.1fs",
                run_id,
                len(timeline),
                time.monotonic() - started,
            )
            return timeline
        except TimelineError as exc:
            logger.warning("[%s] Job failed (%s): %s", run_id, exc.code, exc.details)
            raise
        except Exception:
            logger.exception("[%s] Job crashed", run_id)
            raise
        finally:
            self._cleanup(run_id, source, audio)

    def _cleanup(self, run_id: str, source: JobInput, audio: AcquiredAudio | None) -> None:
        paths: list[Path] = []
        if audio is not None:
            paths.append(audio.path)
        if isinstance(source, UploadedSource):
            paths.append(source.path)

        # Caller-provided files outside the work dir are left alone.
        for path in dict.fromkeys(paths):
            if self.store.owns(path) and self.store.discard(path):
                logger.debug("[%s] Removed %s", run_id, path.name)
