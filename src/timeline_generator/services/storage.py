from __future__ import annotations

import logging
import re
import secrets
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


def _sanitize_suffix(value: str, fallback: str) -> str:
    clean = re.sub(r"[^a-zA-Z0-9]+", "", value.strip().lstrip("."))
    return f".{clean[:10].lower()}" if clean else fallback


class TempAudioStore:
    """Process-wide temp namespace; every file belongs to the invocation that allocated it."""

    def __init__(self, work_dir: Path) -> None:
        self.work_dir = work_dir
        self.work_dir.mkdir(parents=True, exist_ok=True)

    def allocate(self, suffix: str = ".bin") -> Path:
        """Create an empty, uniquely named file and return its path.

        Names combine a UTC timestamp with random hex; the file is opened in
        exclusive mode and a new name is drawn on collision.
        """
        ext = _sanitize_suffix(suffix, ".bin")
        while True:
            stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
            path = self.work_dir / f"{stamp}-{secrets.token_hex(8)}{ext}"
            try:
                with path.open("xb"):
                    pass
            except FileExistsError:
                continue
            return path

    def owns(self, path: Path) -> bool:
        return path.resolve().parent == self.work_dir.resolve()

    def discard(self, path: Path | None) -> bool:
        if path is None:
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError:
            logger.exception("Could not delete temporary file %s", path)
            return False
        logger.debug("Deleted temporary file %s", path)
        return True
