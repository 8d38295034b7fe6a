from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv

UploadMode = Literal["stream", "buffer"]

DEFAULT_MAX_UPLOAD_BYTES = 100 * 1024 * 1024
DEFAULT_MAX_CONCURRENT_JOBS = 8
DEFAULT_ASSEMBLYAI_BASE_URL = "https://api.assemblyai.com/v2"


@dataclass(slots=True)
class Settings:
    host: str
    port: int
    api_prefix: str
    mcp_path: str
    work_dir: Path
    max_upload_bytes: int
    max_concurrent_jobs: int
    download_timeout_seconds: float
    poll_interval_seconds: float
    transcription_deadline_seconds: float
    http_timeout_seconds: float
    assemblyai_api_key: str
    assemblyai_base_url: str
    assemblyai_upload_mode: UploadMode
    chapter_numbers: bool
    cors_origins: list[str]
    log_level: str
    yt_dlp_binary: str


def _as_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    return int(raw)


def _as_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    return float(raw)


def _as_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _normalized_path(path: str) -> str:
    if not path.startswith("/"):
        path = f"/{path}"
    return path


def _normalized_prefix(prefix: str) -> str:
    prefix = prefix.strip().rstrip("/")
    if not prefix:
        return ""
    return _normalized_path(prefix)


def _upload_mode(raw: str) -> UploadMode:
    value = raw.strip().lower()
    if value not in ("stream", "buffer"):
        raise RuntimeError(f"ASSEMBLYAI_UPLOAD_MODE must be 'stream' or 'buffer', got {raw!r}")
    return value  # type: ignore[return-value]


def load_settings() -> Settings:
    load_dotenv()
    default_work_dir = Path(tempfile.gettempdir()) / "yt-timeline"
    work_dir = Path(os.getenv("WORK_DIR", str(default_work_dir))).resolve()

    assemblyai_api_key = os.getenv("ASSEMBLYAI_API_KEY", "").strip()
    if not assemblyai_api_key:
        raise RuntimeError("ASSEMBLYAI_API_KEY is required")

    cors_origins = [
        origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()
    ]

    return Settings(
        host=os.getenv("HOST", "0.0.0.0"),
        port=_as_int("PORT", 3000),
        api_prefix=_normalized_prefix(os.getenv("API_PREFIX", "")),
        mcp_path=_normalized_path(os.getenv("MCP_PATH", "/mcp")),
        work_dir=work_dir,
        max_upload_bytes=_as_int("MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES),
        max_concurrent_jobs=max(1, _as_int("MAX_CONCURRENT_JOBS", DEFAULT_MAX_CONCURRENT_JOBS)),
        download_timeout_seconds=_as_float("DOWNLOAD_TIMEOUT_SECONDS", 300.0),
        poll_interval_seconds=_as_float("POLL_INTERVAL_SECONDS", 3.0),
        transcription_deadline_seconds=_as_float("TRANSCRIPTION_DEADLINE_SECONDS", 600.0),
        http_timeout_seconds=_as_float("HTTP_TIMEOUT_SECONDS", 60.0),
        assemblyai_api_key=assemblyai_api_key,
        assemblyai_base_url=os.getenv("ASSEMBLYAI_BASE_URL", DEFAULT_ASSEMBLYAI_BASE_URL).rstrip("/"),
        assemblyai_upload_mode=_upload_mode(os.getenv("ASSEMBLYAI_UPLOAD_MODE", "stream")),
        chapter_numbers=_as_bool("TIMELINE_CHAPTER_NUMBERS", False),
        cors_origins=cors_origins or ["*"],
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        yt_dlp_binary=os.getenv("YT_DLP_BINARY", "yt-dlp"),
    )
