from __future__ import annotations

from typing import Iterable

from timeline_generator.errors import NoChapters
from timeline_generator.types import Chapter, Timeline, TimelineEntry


def format_timestamp(offset_ms: int) -> str:
    """Render a millisecond offset as M:SS; minutes are never rolled into hours."""
    whole = max(int(offset_ms), 0) // 1000
    minutes, secs = divmod(whole, 60)
    return f"{minutes}:{secs:02d}"


def build_timeline(chapters: Iterable[Chapter] | None, *, numbered: bool = False) -> Timeline:
    items = list(chapters or ())
    if not items:
        raise NoChapters()

    entries: list[TimelineEntry] = []
    for index, chapter in enumerate(items, start=1):
        text = chapter.label
        if numbered:
            text = f"Chapter {index:02d}: {chapter.label}"
        entries.append(TimelineEntry(timestamp=format_timestamp(chapter.start_offset_ms), text=text))
    return tuple(entries)


def timeline_payload(timeline: Timeline) -> list[dict[str, str]]:
    return [entry.as_dict() for entry in timeline]
