from __future__ import annotations

import re
from urllib.parse import parse_qs, urlparse

_VIDEO_ID = re.compile(r"^[A-Za-z0-9_-]{11}$")
_YOUTUBE_HOSTS = ("youtube.com", "m.youtube.com", "music.youtube.com")
_PATH_PREFIXES = ("/shorts/", "/live/", "/embed/")


def youtube_video_id(url: str) -> str | None:
    """Return the 11-character video id of a YouTube URL, or None if it is not one."""
    raw = url.strip()
    if not raw or any(ch.isspace() for ch in raw):
        return None

    parsed = urlparse(raw)
    if parsed.scheme not in ("http", "https"):
        return None

    netloc = parsed.netloc.lower()
    if netloc.startswith("www."):
        netloc = netloc[4:]

    candidate: str | None = None
    if netloc == "youtu.be":
        candidate = parsed.path.lstrip("/").split("/", 1)[0]
    elif netloc in _YOUTUBE_HOSTS:
        if parsed.path.rstrip("/") == "/watch":
            values = parse_qs(parsed.query).get("v")
            candidate = values[0] if values else None
        else:
            for prefix in _PATH_PREFIXES:
                if parsed.path.startswith(prefix):
                    candidate = parsed.path[len(prefix):].split("/", 1)[0]
                    break

    if candidate and _VIDEO_ID.match(candidate):
        return candidate
    return None


def is_supported_url(url: str) -> bool:
    return youtube_video_id(url) is not None


def canonical_watch_url(url: str) -> str:
    video_id = youtube_video_id(url)
    if video_id is None:
        raise ValueError(f"Not a YouTube video URL: {url!r}")
    return f"https://www.youtube.com/watch?v={video_id}"
