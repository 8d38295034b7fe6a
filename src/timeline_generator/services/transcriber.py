from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterator

import httpx

from timeline_generator.config import DEFAULT_ASSEMBLYAI_BASE_URL, UploadMode
from timeline_generator.errors import UpstreamUnavailable
from timeline_generator.types import AcquiredAudio, Chapter, JobStatus, TranscriptionJob

logger = logging.getLogger(__name__)

UPLOAD_CHUNK_BYTES = 64 * 1024
_KNOWN_STATUSES: tuple[JobStatus, ...] = ("queued", "processing", "completed", "error")


def _iter_file(path: Path) -> Iterator[bytes]:
    with path.open("rb") as audio_stream:
        while True:
            chunk = audio_stream.read(UPLOAD_CHUNK_BYTES)
            if not chunk:
                return
            yield chunk


class AssemblyAITranscriber:
    """AssemblyAI REST client: one upload+create call and single status reads."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_ASSEMBLYAI_BASE_URL,
        timeout_seconds: float = 60.0,
        upload_mode: UploadMode = "stream",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.upload_mode = upload_mode
        self._transport = transport

    def submit(self, audio: AcquiredAudio) -> str:
        if not audio.path.exists():
            raise UpstreamUnavailable(f"Audio file not found: {audio.path.name}")

        with self._client() as client:
            audio_url = self._upload_audio(client, audio.path)
            transcript_id = self._start_transcript(client, audio_url)

        logger.info("Submitted %d bytes as transcript %s", audio.size, transcript_id)
        return transcript_id

    def fetch(self, job_id: str, *, timeout: float | None = None) -> TranscriptionJob:
        """Read the job once. ``timeout`` can only shorten the configured HTTP timeout."""
        timeout_seconds = self.timeout_seconds if timeout is None else min(self.timeout_seconds, timeout)
        with self._client(timeout_seconds) as client:
            payload = self._request(
                client,
                "GET",
                f"{self.base_url}/transcript/{job_id}",
                action="transcript poll",
            )
        return self.parse_job(payload, fallback_id=job_id)

    def _client(self, timeout_seconds: float | None = None) -> httpx.Client:
        return httpx.Client(
            timeout=self.timeout_seconds if timeout_seconds is None else timeout_seconds,
            headers={"authorization": self.api_key},
            transport=self._transport,
        )

    def _upload_audio(self, client: httpx.Client, audio_path: Path) -> str:
        content: bytes | Iterator[bytes]
        if self.upload_mode == "buffer":
            content = audio_path.read_bytes()
        else:
            content = _iter_file(audio_path)

        payload = self._request(
            client,
            "POST",
            f"{self.base_url}/upload",
            action="upload",
            content=content,
            headers={"content-type": "application/octet-stream"},
        )
        uploaded = payload.get("upload_url")
        if not uploaded:
            raise UpstreamUnavailable("AssemblyAI upload response missing upload_url")
        return str(uploaded)

    def _start_transcript(self, client: httpx.Client, audio_url: str) -> str:
        request_payload = {
            "audio_url": audio_url,
            "auto_chapters": True,
        }
        payload = self._request(
            client,
            "POST",
            f"{self.base_url}/transcript",
            action="transcript create",
            json=request_payload,
        )
        transcript_id = payload.get("id")
        if not transcript_id:
            raise UpstreamUnavailable("AssemblyAI transcript response missing id")
        return str(transcript_id)

    @staticmethod
    def _request(
        client: httpx.Client,
        method: str,
        url: str,
        *,
        action: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        try:
            response = client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("AssemblyAI %s transport error: %s", action, exc)
            raise UpstreamUnavailable(f"AssemblyAI {action} failed: {exc.__class__.__name__}") from exc

        if response.status_code >= 400:
            logger.warning(
                "AssemblyAI %s failed (%s): %s", action, response.status_code, response.text[:400]
            )
            raise UpstreamUnavailable(
                f"AssemblyAI {action} failed ({response.status_code}): {_error_summary(response)}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamUnavailable(f"AssemblyAI {action} returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise UpstreamUnavailable(f"AssemblyAI {action} returned an unexpected payload")
        return payload

    @classmethod
    def parse_job(cls, payload: dict[str, Any], fallback_id: str = "") -> TranscriptionJob:
        raw_status = str(payload.get("status") or "").lower()
        status: JobStatus = raw_status if raw_status in _KNOWN_STATUSES else "processing"  # type: ignore[assignment]
        error = payload.get("error")
        return TranscriptionJob(
            id=str(payload.get("id") or fallback_id),
            status=status,
            chapters=cls._extract_chapters(payload.get("chapters")),
            error=str(error) if error else None,
        )

    @staticmethod
    def _extract_chapters(raw: object) -> tuple[Chapter, ...] | None:
        if raw is None:
            return None
        if not isinstance(raw, list):
            return ()

        chapters: list[Chapter] = []
        for index, item in enumerate(raw):
            if not isinstance(item, dict):
                logger.warning("Dropping chapter %d: not an object", index)
                continue
            label = ""
            for key in ("headline", "gist", "summary"):
                label = str(item.get(key) or "").strip()
                if label:
                    break
            if not label:
                logger.warning("Dropping chapter %d: no headline, gist or summary", index)
                continue
            try:
                start = int(float(str(item.get("start"))))
            except (TypeError, ValueError, OverflowError):
                logger.warning("Dropping chapter %d: unusable start %r", index, item.get("start"))
                continue
            chapters.append(Chapter(start_offset_ms=max(start, 0), label=label))
        return tuple(chapters)


def _error_summary(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or "error"
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])[:200]
    return response.reason_phrase or "error"
