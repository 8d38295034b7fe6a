from __future__ import annotations

import logging
import subprocess
import time
from pathlib import Path
from threading import Event
from typing import Any, Callable

from timeline_generator.errors import AcquisitionFailed, JobCancelled
from timeline_generator.services.storage import TempAudioStore
from timeline_generator.types import AcquiredAudio

logger = logging.getLogger(__name__)

# Smallest audio-only rendition first; bestaudio only when no worstaudio exists.
AUDIO_FORMAT = "worstaudio[acodec!=none]/worstaudio/bestaudio"

PopenFactory = Callable[..., Any]


class YtDlpDownloader:
    """Streams the audio track of a remote video into a temp file via yt-dlp."""

    def __init__(
        self,
        store: TempAudioStore,
        *,
        binary: str = "yt-dlp",
        timeout_seconds: float = 300.0,
        max_bytes: int | None = None,
        check_interval_seconds: float = 0.5,
        popen: PopenFactory = subprocess.Popen,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.binary = binary
        self.timeout_seconds = timeout_seconds
        self.max_bytes = max_bytes
        self.check_interval_seconds = check_interval_seconds
        self._popen = popen
        self._clock = clock

    def build_command(self, url: str, output_path: Path) -> list[str]:
        cmd = [
            self.binary,
            "--no-playlist",
            "--no-warnings",
            "--quiet",
            "--no-progress",
            "--no-part",
            "--no-cache-dir",
            "--force-overwrites",
            "--socket-timeout",
            "30",
            "-f",
            AUDIO_FORMAT,
            "-o",
            str(output_path),
        ]
        if self.max_bytes is not None:
            cmd.extend(["--max-filesize", str(self.max_bytes)])
        cmd.append(url)
        return cmd

    def download(self, url: str, *, cancel: Event | None = None) -> AcquiredAudio:
        output_path = self.store.allocate(".audio")
        try:
            self._run(self.build_command(url, output_path), cancel)
            size = output_path.stat().st_size if output_path.exists() else 0
            if size == 0:
                raise AcquisitionFailed("yt-dlp produced no audio")
            if self.max_bytes is not None and size > self.max_bytes:
                raise AcquisitionFailed(f"audio exceeds {self.max_bytes} bytes")
        except BaseException:
            self.store.discard(output_path)
            raise

        logger.info("Downloaded %d bytes of audio to %s", size, output_path.name)
        return AcquiredAudio(path=output_path, size=size)

    def _run(self, cmd: list[str], cancel: Event | None) -> None:
        try:
            process = self._popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as exc:
            raise AcquisitionFailed(f"could not start {self.binary}: {exc}") from exc

        deadline = self._clock() + self.timeout_seconds
        while True:
            try:
                _, stderr = process.communicate(timeout=self.check_interval_seconds)
                break
            except subprocess.TimeoutExpired:
                if cancel is not None and cancel.is_set():
                    self._abort(process)
                    raise JobCancelled("Download cancelled") from None
                if self._clock() >= deadline:
                    self._abort(process)
                    raise AcquisitionFailed(
                        f"download timed out after {self.timeout_seconds:g}s"
                    ) from None
            except BaseException:
                self._abort(process)
                raise

        if process.returncode != 0:
            message = (stderr or "").strip() or "yt-dlp failed"
            logger.warning("yt-dlp exited with %s: %s", process.returncode, message[:2000])
            raise AcquisitionFailed(message.splitlines()[-1][:400])

    @staticmethod
    def _abort(process: Any) -> None:
        process.kill()
        try:
            process.communicate(timeout=5)
        except subprocess.TimeoutExpired:
            logger.warning("yt-dlp did not exit after kill")
