from __future__ import annotations


class TimelineError(Exception):
    """Base class for failures that end a timeline job."""

    code = "timeline_error"

    def __init__(self, details: str) -> None:
        super().__init__(details)
        self.details = details


class InvalidSource(TimelineError):
    """Raised when a URL or upload is rejected before any work starts."""

    code = "invalid_source"


class AcquisitionFailed(TimelineError):
    """Raised when audio could not be fetched from the media provider."""

    code = "acquisition_failed"

    def __init__(self, cause: str) -> None:
        super().__init__(f"Audio acquisition failed: {cause}")
        self.cause = cause


class UpstreamUnavailable(TimelineError):
    """Raised on transport errors or non-2xx responses from AssemblyAI."""

    code = "upstream_unavailable"

    def __init__(self, details: str, status_code: int | None = None) -> None:
        super().__init__(details)
        self.status_code = status_code


class TranscriptionTimeout(TimelineError):
    code = "transcription_timeout"


class TranscriptionFailed(TimelineError):
    """Raised when AssemblyAI reports the job as errored."""

    code = "transcription_failed"

    def __init__(self, upstream_message: str) -> None:
        super().__init__(f"Transcription failed: {upstream_message}")
        self.upstream_message = upstream_message


class NoChapters(TimelineError):
    code = "no_chapters"

    def __init__(self, details: str = "No chapters were generated for this video") -> None:
        super().__init__(details)


class JobCancelled(TimelineError):
    """Raised when the caller abandons a job before it finishes."""

    code = "job_cancelled"


class ServerBusy(TimelineError):
    """Raised when every job slot is taken and a new job would have to queue."""

    code = "server_busy"
