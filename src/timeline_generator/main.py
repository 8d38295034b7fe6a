from __future__ import annotations

import atexit
import logging

import uvicorn
from fastmcp import FastMCP
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.types import ASGIApp

from timeline_generator.api import RouteRegistry
from timeline_generator.config import Settings, load_settings
from timeline_generator.middleware import RequestLogMiddleware
from timeline_generator.pipeline import TimelinePipeline
from timeline_generator.runner import JobRunner
from timeline_generator.services.acquirer import MediaAcquirer
from timeline_generator.services.downloader import YtDlpDownloader
from timeline_generator.services.poller import JobPoller
from timeline_generator.services.storage import TempAudioStore
from timeline_generator.services.transcriber import AssemblyAITranscriber

logger = logging.getLogger(__name__)


class AppRuntime:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.store = TempAudioStore(settings.work_dir)
        self.downloader = YtDlpDownloader(
            self.store,
            binary=settings.yt_dlp_binary,
            timeout_seconds=settings.download_timeout_seconds,
            max_bytes=settings.max_upload_bytes,
        )
        self.acquirer = MediaAcquirer(self.downloader, max_bytes=settings.max_upload_bytes)
        self.transcriber = AssemblyAITranscriber(
            api_key=settings.assemblyai_api_key,
            base_url=settings.assemblyai_base_url,
            timeout_seconds=settings.http_timeout_seconds,
            upload_mode=settings.assemblyai_upload_mode,
        )
        self.poller = JobPoller(
            self.transcriber,
            interval_seconds=settings.poll_interval_seconds,
            deadline_seconds=settings.transcription_deadline_seconds,
        )
        self.pipeline = TimelinePipeline(
            acquirer=self.acquirer,
            transcriber=self.transcriber,
            poller=self.poller,
            store=self.store,
            numbered_chapters=settings.chapter_numbers,
        )
        self.runner = JobRunner(self.pipeline, max_jobs=settings.max_concurrent_jobs)

    def close(self) -> None:
        self.runner.close()


def create_app(runtime: AppRuntime) -> FastMCP:
    mcp = FastMCP(name="yt-timeline")
    routes = RouteRegistry(
        runtime.runner,
        runtime.store,
        max_upload_bytes=runtime.settings.max_upload_bytes,
        prefix=runtime.settings.api_prefix,
    )
    routes.register(mcp)
    return mcp


def build_http_app(runtime: AppRuntime, mcp: FastMCP) -> ASGIApp:
    settings = runtime.settings
    allow_all = settings.cors_origins == ["*"]
    middleware = [
        Middleware(RequestLogMiddleware),
        Middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=not allow_all,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization"],
        ),
    ]
    return mcp.http_app(path=settings.mcp_path, middleware=middleware)


def cli() -> None:
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    runtime = AppRuntime(settings)
    atexit.register(runtime.close)
    mcp = create_app(runtime)
    app = build_http_app(runtime, mcp)

    logger.info(
        "Starting timeline server on %s:%s (api prefix %r, mcp %s, work dir %s, %d job slots)",
        settings.host,
        settings.port,
        settings.api_prefix or "/",
        settings.mcp_path,
        settings.work_dir,
        settings.max_concurrent_jobs,
    )
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    cli()
