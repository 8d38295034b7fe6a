from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from threading import Event
from typing import Any

from fastmcp import FastMCP
from mcp.types import ToolAnnotations
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException
from starlette.formparsers import MultiPartException
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import Message, Receive

from timeline_generator.errors import (
    InvalidSource,
    JobCancelled,
    ServerBusy,
    TimelineError,
)
from timeline_generator.runner import JobRunner
from timeline_generator.services.storage import TempAudioStore
from timeline_generator.services.timeline import timeline_payload
from timeline_generator.types import JobInput, RemoteSource, UploadedSource

logger = logging.getLogger(__name__)

UPLOAD_FIELD = "video"
UPLOAD_CHUNK_BYTES = 1024 * 1024
# Room for multipart boundaries, part headers and small form fields.
MULTIPART_OVERHEAD_BYTES = 64 * 1024
# Non-standard, but the usual status for a request the client walked away from.
CLIENT_CLOSED_REQUEST = 499


def error_body(exc: TimelineError) -> tuple[dict[str, Any], int]:
    if isinstance(exc, InvalidSource):
        return {"error": "Invalid source", "code": exc.code, "details": exc.details}, 400
    if isinstance(exc, JobCancelled):
        return {"error": "Request cancelled", "code": exc.code, "details": exc.details}, CLIENT_CLOSED_REQUEST
    if isinstance(exc, ServerBusy):
        return {"error": "Server busy", "code": exc.code, "details": exc.details}, 503
    return {"error": "Failed to process video", "code": exc.code, "details": exc.details}, 500


def error_response(exc: TimelineError) -> JSONResponse:
    body, status_code = error_body(exc)
    return JSONResponse(body, status_code=status_code)


class UploadTooLarge(MultiPartException):
    pass


class BodyLimit:
    """Wraps an ASGI receive callable and stops reading once ``limit`` body bytes have arrived."""

    def __init__(self, receive: Receive, limit: int) -> None:
        self._receive = receive
        self.limit = limit
        self.received = 0
        self.exceeded = False

    async def receive(self) -> Message:
        message = await self._receive()
        if message["type"] == "http.request":
            self.received += len(message.get("body", b""))
            if self.received > self.limit:
                self.exceeded = True
                raise UploadTooLarge(f"Request body exceeds {self.limit} bytes")
        return message


def declared_length(request: Request) -> int | None:
    value = request.headers.get("content-length")
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class RouteRegistry:
    """HTTP routes and the MCP tool that front the timeline pipeline."""

    def __init__(
        self,
        runner: JobRunner,
        store: TempAudioStore,
        *,
        max_upload_bytes: int,
        prefix: str = "",
        disconnect_check_seconds: float = 1.0,
    ) -> None:
        self.runner = runner
        self.store = store
        self.max_upload_bytes = max_upload_bytes
        self.prefix = prefix
        self.disconnect_check_seconds = disconnect_check_seconds

    @property
    def max_request_bytes(self) -> int:
        return self.max_upload_bytes + MULTIPART_OVERHEAD_BYTES

    def register(self, mcp: FastMCP) -> None:
        @mcp.custom_route(f"{self.prefix}/health", methods=["GET"])
        async def health(_: Request) -> JSONResponse:
            return JSONResponse({"status": "ok"})

        @mcp.custom_route(f"{self.prefix}/transcribe", methods=["POST"])
        async def transcribe(request: Request) -> JSONResponse:
            try:
                body = await request.json()
            except ValueError:
                return JSONResponse({"error": "Request body must be JSON"}, status_code=400)

            url = body.get("url") if isinstance(body, dict) else None
            if not isinstance(url, str) or not url.strip():
                return JSONResponse({"error": "URL is required"}, status_code=400)

            return await self._respond(request, RemoteSource(url=url.strip()))

        @mcp.custom_route(f"{self.prefix}/upload", methods=["POST"])
        async def upload(request: Request) -> JSONResponse:
            length = declared_length(request)
            if length is not None and length > self.max_request_bytes:
                logger.info("Rejecting upload with declared length %d before reading it", length)
                return self._too_large()

            limit = BodyLimit(request.receive, self.max_request_bytes)
            try:
                form = await Request(request.scope, limit.receive).form(max_files=1)
            except (HTTPException, MultiPartException) as exc:
                if limit.exceeded:
                    logger.info("Rejecting upload after %d bytes", limit.received)
                    return self._too_large()
                detail = getattr(exc, "detail", None) or getattr(exc, "message", None) or str(exc)
                return JSONResponse({"error": "Invalid upload", "details": str(detail)}, status_code=400)

            try:
                video = form.get(UPLOAD_FIELD)
                if not isinstance(video, UploadFile):
                    return JSONResponse({"error": "No file uploaded"}, status_code=400)
                try:
                    source = await self.materialize_upload(video)
                except InvalidSource as exc:
                    return error_response(exc)
            finally:
                await form.close()

            return await self._respond(request, source)

        @mcp.tool(annotations=ToolAnnotations(readOnlyHint=True, openWorldHint=True))
        async def generate_timeline(url: str) -> dict[str, Any]:
            """Generate a chapter timeline for a YouTube video.

            Args:
                url: The YouTube video URL

            Returns:
                The timeline as a list of {timestamp, text} entries, or error details.
            """
            cancel = Event()
            try:
                timeline = await self.runner.run(RemoteSource(url=url), cancel=cancel)
            except TimelineError as exc:
                body, _ = error_body(exc)
                return body
            finally:
                cancel.set()
            return {"timeline": timeline_payload(timeline)}

    async def materialize_upload(self, upload: UploadFile) -> UploadedSource:
        """Copy an upload into the work dir, enforcing the size limit as it streams."""
        suffix = Path(upload.filename or "").suffix or ".upload"
        path = self.store.allocate(suffix)
        size = 0
        try:
            with path.open("wb") as out:
                while True:
                    chunk = await upload.read(UPLOAD_CHUNK_BYTES)
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > self.max_upload_bytes:
                        raise InvalidSource(self._limit_message())
                    out.write(chunk)
        except BaseException:
            self.store.discard(path)
            raise
        return UploadedSource(path=path, size=size)

    def _limit_message(self) -> str:
        return f"Uploaded file exceeds the {self.max_upload_bytes} byte limit"

    def _too_large(self) -> JSONResponse:
        return error_response(InvalidSource(self._limit_message()))

    async def _respond(self, request: Request, source: JobInput) -> JSONResponse:
        cancel = Event()
        watcher = asyncio.ensure_future(self._watch_disconnect(request, cancel))
        try:
            timeline = await self.runner.run(source, cancel=cancel)
        except ServerBusy as exc:
            # The pipeline never saw this upload, so nothing else will delete it.
            if isinstance(source, UploadedSource):
                self.store.discard(source.path)
            return error_response(exc)
        except TimelineError as exc:
            return error_response(exc)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Unexpected failure handling %s", request.url.path)
            return JSONResponse(
                {"error": "Failed to process video", "details": "Internal server error"},
                status_code=500,
            )
        finally:
            # Also stops the worker thread if this handler itself was cancelled.
            cancel.set()
            watcher.cancel()

        return JSONResponse({"timeline": timeline_payload(timeline)})

    async def _watch_disconnect(self, request: Request, cancel: Event) -> None:
        while not cancel.is_set():
            if await request.is_disconnected():
                logger.info("Client disconnected from %s; cancelling job", request.url.path)
                cancel.set()
                return
            await asyncio.sleep(self.disconnect_check_seconds)
