from __future__ import annotations

import logging
from threading import Event

from timeline_generator.errors import InvalidSource
from timeline_generator.services.downloader import YtDlpDownloader
from timeline_generator.types import AcquiredAudio, JobInput, RemoteSource, UploadedSource
from timeline_generator.utils.url import canonical_watch_url, is_supported_url

logger = logging.getLogger(__name__)


class MediaAcquirer:
    """Turns a job input into a local audio file the transcriber can read."""

    def __init__(self, downloader: YtDlpDownloader, *, max_bytes: int) -> None:
        self.downloader = downloader
        self.max_bytes = max_bytes

    def validate(self, source: JobInput) -> None:
        if isinstance(source, RemoteSource):
            if not is_supported_url(source.url):
                raise InvalidSource(f"Unsupported video URL: {source.url[:200]}")
            return

        if isinstance(source, UploadedSource):
            path = source.path
            if not path.is_file():
                raise InvalidSource("Uploaded file is missing")
            size = path.stat().st_size
            if size == 0 or source.size == 0:
                raise InvalidSource("Uploaded file is empty")
            if size > self.max_bytes or source.size > self.max_bytes:
                raise InvalidSource(f"Uploaded file exceeds the {self.max_bytes} byte limit")
            return

        raise InvalidSource(f"Unsupported job input: {type(source).__name__}")

    def acquire(self, source: JobInput, *, cancel: Event | None = None) -> AcquiredAudio:
        self.validate(source)

        if isinstance(source, UploadedSource):
            size = source.path.stat().st_size
            logger.info("Using uploaded file %s (%d bytes)", source.path.name, size)
            return AcquiredAudio(path=source.path, size=size)

        url = canonical_watch_url(source.url)
        logger.info("Downloading audio for %s", url)
        return self.downloader.download(url, cancel=cancel)
