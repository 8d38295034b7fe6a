from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Union

JobStatus = Literal["queued", "processing", "completed", "error"]
TERMINAL_STATUSES: tuple[JobStatus, ...] = ("completed", "error")


@dataclass(frozen=True, slots=True)
class RemoteSource:
    url: str


@dataclass(frozen=True, slots=True)
class UploadedSource:
    path: Path
    size: int


JobInput = Union[RemoteSource, UploadedSource]


@dataclass(frozen=True, slots=True)
class AcquiredAudio:
    path: Path
    size: int


@dataclass(frozen=True, slots=True)
class Chapter:
    start_offset_ms: int
    label: str


@dataclass(frozen=True, slots=True)
class TranscriptionJob:
    id: str
    status: JobStatus
    chapters: tuple[Chapter, ...] | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True, slots=True)
class TimelineEntry:
    timestamp: str
    text: str

    def as_dict(self) -> dict[str, str]:
        return {"timestamp": self.timestamp, "text": self.text}


Timeline = tuple[TimelineEntry, ...]
