from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from threading import BoundedSemaphore, Event

from timeline_generator.errors import ServerBusy
from timeline_generator.pipeline import TimelinePipeline
from timeline_generator.types import JobInput, Timeline

logger = logging.getLogger(__name__)


class JobRunner:
    """Runs pipeline jobs on a dedicated thread pool with a fixed number of slots.

    A job either gets a worker thread immediately or is refused with
    ``ServerBusy``; nothing waits in the executor queue. A slot is released
    when the worker thread finishes, not when the caller stops waiting.
    """

    def __init__(self, pipeline: TimelinePipeline, *, max_jobs: int) -> None:
        if max_jobs < 1:
            raise ValueError("max_jobs must be at least 1")
        self.pipeline = pipeline
        self.max_jobs = max_jobs
        self._slots = BoundedSemaphore(max_jobs)
        self._executor = ThreadPoolExecutor(max_workers=max_jobs, thread_name_prefix="timeline-job")

    def submit(self, source: JobInput, *, cancel: Event) -> Future[Timeline]:
        if not self._slots.acquire(blocking=False):
            logger.warning("Rejecting job: all %d job slots are busy", self.max_jobs)
            raise ServerBusy(f"All {self.max_jobs} job slots are busy; try again later")
        try:
            future = self._executor.submit(self.pipeline.process, source, cancel=cancel)
        except BaseException:
            self._slots.release()
            raise
        future.add_done_callback(lambda _: self._slots.release())
        return future

    async def run(self, source: JobInput, *, cancel: Event) -> Timeline:
        return await asyncio.wrap_future(self.submit(source, cancel=cancel))

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
