from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from threading import Barrier, Event, Lock

import pytest

from timeline_generator.errors import (
    AcquisitionFailed,
    InvalidSource,
    JobCancelled,
    NoChapters,
    TranscriptionFailed,
    TranscriptionTimeout,
    UpstreamUnavailable,
)
from timeline_generator.pipeline import TimelinePipeline
from timeline_generator.services.acquirer import MediaAcquirer
from timeline_generator.services.poller import JobPoller
from timeline_generator.services.storage import TempAudioStore
from timeline_generator.types import (
    AcquiredAudio,
    Chapter,
    RemoteSource,
    TimelineEntry,
    TranscriptionJob,
    UploadedSource,
)

URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
CHAPTERS = (Chapter(0, "Intro"), Chapter(65000, "Body"))


class FakeDownloader:
    def __init__(self, store: TempAudioStore, *, fail: bool = False) -> None:
        self.store = store
        self.fail = fail
        self.calls: list[str] = []
        self.created: list[Path] = []

    def download(self, url: str, *, cancel: Event | None = None) -> AcquiredAudio:
        self.calls.append(url)
        if self.fail:
            raise AcquisitionFailed("network unreachable")
        path = self.store.allocate(".audio")
        path.write_bytes(b"downloaded-audio")
        self.created.append(path)
        return AcquiredAudio(path=path, size=16)


class FakeTranscriber:
    """Scripted stand-in for the AssemblyAI client."""

    def __init__(
        self,
        statuses: tuple[str, ...] = ("queued", "processing", "completed"),
        *,
        chapters: tuple[Chapter, ...] | None = CHAPTERS,
        submit_error: Exception | None = None,
        error: str | None = None,
    ) -> None:
        self.statuses = statuses
        self.chapters = chapters
        self.submit_error = submit_error
        self.error = error
        self.submitted: list[AcquiredAudio] = []
        self.fetches = 0

    def submit(self, audio: AcquiredAudio) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        assert audio.path.exists()
        self.submitted.append(audio)
        return f"tx-{len(self.submitted)}"

    def fetch(self, job_id: str, *, timeout: float | None = None) -> TranscriptionJob:
        status = self.statuses[min(self.fetches, len(self.statuses) - 1)]
        self.fetches += 1
        chapters = self.chapters if status == "completed" else None
        return TranscriptionJob(id=job_id, status=status, chapters=chapters, error=self.error)  # type: ignore[arg-type]


class TickingClock:
    def __init__(self, step: float) -> None:
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


def _pipeline(
    tmp_path: Path,
    transcriber: FakeTranscriber,
    *,
    download_fails: bool = False,
    deadline_seconds: float = 60,
    clock: TickingClock | None = None,
) -> tuple[TimelinePipeline, FakeDownloader, TempAudioStore]:
    store = TempAudioStore(tmp_path / "work")
    downloader = FakeDownloader(store, fail=download_fails)
    poller_kwargs = {"clock": clock} if clock is not None else {}
    pipeline = TimelinePipeline(
        acquirer=MediaAcquirer(downloader, max_bytes=1024),  # type: ignore[arg-type]
        transcriber=transcriber,
        poller=JobPoller(
            transcriber, interval_seconds=0.001, deadline_seconds=deadline_seconds, **poller_kwargs
        ),
        store=store,
    )
    return pipeline, downloader, store


def _upload(store: TempAudioStore, payload: bytes = b"uploaded-video") -> UploadedSource:
    path = store.allocate(".mp4")
    path.write_bytes(payload)
    return UploadedSource(path=path, size=len(payload))


def _work_files(store: TempAudioStore) -> list[Path]:
    return list(store.work_dir.iterdir())


def test_remote_source_produces_timeline_and_cleans_up(tmp_path: Path) -> None:
    transcriber = FakeTranscriber()
    pipeline, downloader, store = _pipeline(tmp_path, transcriber)

    timeline = pipeline.process(RemoteSource(URL))

    assert timeline == (TimelineEntry("0:00", "Intro"), TimelineEntry("1:05", "Body"))
    assert transcriber.fetches == 3
    assert downloader.created and not downloader.created[0].exists()
    assert _work_files(store) == []


def test_upload_produces_timeline_and_cleans_up(tmp_path: Path) -> None:
    transcriber = FakeTranscriber()
    pipeline, downloader, store = _pipeline(tmp_path, transcriber)
    source = _upload(store)

    timeline = pipeline.process(source)

    assert len(timeline) == 2
    assert downloader.calls == []
    assert transcriber.submitted[0].path == source.path
    assert not source.path.exists()


def test_numbered_chapters(tmp_path: Path) -> None:
    pipeline, _, _ = _pipeline(tmp_path, FakeTranscriber(("completed",)))
    pipeline.numbered_chapters = True

    timeline = pipeline.process(RemoteSource(URL))

    assert [entry.text for entry in timeline] == ["Chapter 01: Intro", "Chapter 02: Body"]


def test_invalid_url_fails_without_io(tmp_path: Path) -> None:
    transcriber = FakeTranscriber()
    pipeline, downloader, store = _pipeline(tmp_path, transcriber)

    with pytest.raises(InvalidSource):
        pipeline.process(RemoteSource("https://example.com/not-a-video"))

    assert downloader.calls == []
    assert transcriber.submitted == []
    assert transcriber.fetches == 0
    assert _work_files(store) == []


def test_empty_upload_is_rejected_and_removed(tmp_path: Path) -> None:
    transcriber = FakeTranscriber()
    pipeline, _, store = _pipeline(tmp_path, transcriber)
    source = _upload(store, payload=b"")

    with pytest.raises(InvalidSource):
        pipeline.process(source)

    assert transcriber.submitted == []
    assert _work_files(store) == []


def test_upload_outside_work_dir_is_left_alone(tmp_path: Path) -> None:
    pipeline, _, _ = _pipeline(tmp_path, FakeTranscriber(("completed",)))
    path = tmp_path / "caller-owned.mp4"
    path.write_bytes(b"video")

    pipeline.process(UploadedSource(path=path, size=5))

    assert path.exists()


@pytest.mark.parametrize(
    ("transcriber", "expected"),
    [
        (FakeTranscriber(submit_error=UpstreamUnavailable("AssemblyAI upload failed (500)", 500)), UpstreamUnavailable),
        (FakeTranscriber(("processing", "error"), error="Audio too short"), TranscriptionFailed),
        (FakeTranscriber(("completed",), chapters=()), NoChapters),
        (FakeTranscriber(("completed",), chapters=None), NoChapters),
        (FakeTranscriber(submit_error=RuntimeError("boom")), RuntimeError),
    ],
)
def test_failures_pass_through_and_clean_up(
    tmp_path: Path, transcriber: FakeTranscriber, expected: type[Exception]
) -> None:
    pipeline, downloader, store = _pipeline(tmp_path, transcriber)

    with pytest.raises(expected):
        pipeline.process(RemoteSource(URL))

    assert len(downloader.created) == 1
    assert _work_files(store) == []


def test_acquisition_failure_passes_through(tmp_path: Path) -> None:
    transcriber = FakeTranscriber()
    pipeline, _, store = _pipeline(tmp_path, transcriber, download_fails=True)

    with pytest.raises(AcquisitionFailed):
        pipeline.process(RemoteSource(URL))
    assert transcriber.submitted == []
    assert _work_files(store) == []


def test_never_finishing_job_times_out(tmp_path: Path) -> None:
    transcriber = FakeTranscriber(("processing",))
    pipeline, _, store = _pipeline(
        tmp_path, transcriber, deadline_seconds=30, clock=TickingClock(step=5)
    )

    with pytest.raises(TranscriptionTimeout):
        pipeline.process(RemoteSource(URL))
    assert _work_files(store) == []


def test_slow_upload_counts_against_transcription_deadline(tmp_path: Path) -> None:
    clock = TickingClock(step=0)

    class SlowUploadTranscriber(FakeTranscriber):
        def submit(self, audio: AcquiredAudio) -> str:
            clock.now += 45
            return super().submit(audio)

    transcriber = SlowUploadTranscriber(("processing",))
    pipeline, _, store = _pipeline(tmp_path, transcriber, deadline_seconds=30, clock=clock)

    with pytest.raises(TranscriptionTimeout):
        pipeline.process(RemoteSource(URL))
    assert transcriber.fetches == 0
    assert _work_files(store) == []


def test_cancellation_stops_polling_and_cleans_up(tmp_path: Path) -> None:
    cancel = Event()

    class CancellingTranscriber(FakeTranscriber):
        def fetch(self, job_id: str, *, timeout: float | None = None) -> TranscriptionJob:
            cancel.set()
            return super().fetch(job_id)

    transcriber = CancellingTranscriber(("processing",))
    pipeline, _, store = _pipeline(tmp_path, transcriber)
    pipeline.poller.interval_seconds = 3600

    with pytest.raises(JobCancelled):
        pipeline.process(RemoteSource(URL), cancel=cancel)
    assert transcriber.fetches == 1
    assert _work_files(store) == []


def test_concurrent_jobs_are_independent(tmp_path: Path) -> None:
    barrier = Barrier(2, timeout=5)
    seen: dict[str, bytes] = {}
    lock = Lock()

    class PerJobTranscriber(FakeTranscriber):
        def submit(self, audio: AcquiredAudio) -> str:
            payload = audio.path.read_bytes()
            job_id = payload.decode()
            with lock:
                seen[job_id] = payload
            # Both jobs hold their files at this point.
            barrier.wait()
            assert audio.path.exists()
            return job_id

        def fetch(self, job_id: str, *, timeout: float | None = None) -> TranscriptionJob:
            return TranscriptionJob(
                id=job_id, status="completed", chapters=(Chapter(1000, f"label {job_id}"),)
            )

    pipeline, _, store = _pipeline(tmp_path, PerJobTranscriber())
    first = _upload(store, b"alpha")
    second = _upload(store, b"beta")

    with ThreadPoolExecutor(max_workers=2) as pool:
        futures = [pool.submit(pipeline.process, first), pool.submit(pipeline.process, second)]
        results = [future.result(timeout=10) for future in futures]

    assert results[0] == (TimelineEntry("0:01", "label alpha"),)
    assert results[1] == (TimelineEntry("0:01", "label beta"),)
    assert seen == {"alpha": b"alpha", "beta": b"beta"}
    assert _work_files(store) == []
