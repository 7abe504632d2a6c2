"""
Training context — notes and files the trainer feeds to Dad from Slack.

Everything lives under one directory:

    training/
        TRAINING.md     appended to every system prompt, verbatim
        files/          attachments the trainer uploaded

Only the configured trainer can add to it (enforced by the Slack channel);
the orchestrator only ever reads it.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path

import aiohttp
import structlog

logger = structlog.get_logger(__name__)

TRAINING_HEADER = "# Dad Training Context\n\n"
_TRAINING_PREFIX_RE = re.compile(r"^training:\s*", re.IGNORECASE)
_UNSAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9._-]+")
_MAX_REDIRECTS = 5


def is_training_message(text: str) -> bool:
    return bool(_TRAINING_PREFIX_RE.match((text or "").strip()))


def extract_training_content(text: str) -> str:
    return _TRAINING_PREFIX_RE.sub("", (text or "").strip(), count=1).strip()


def safe_filename(name: str) -> str:
    """Reduce *name* to a plain basename that cannot escape the files directory."""
    base = Path(name or "").name
    cleaned = _UNSAFE_FILENAME_RE.sub("_", base).strip("._")
    return cleaned or "upload"


class TrainingStore:
    """Reads and appends the trainer's context file."""

    def __init__(self, training_dir: Path):
        self._dir = training_dir
        self._file = training_dir / "TRAINING.md"
        self._files_dir = training_dir / "files"

    @property
    def path(self) -> Path:
        return self._file

    @property
    def files_dir(self) -> Path:
        return self._files_dir

    def initialize(self) -> None:
        self._files_dir.mkdir(parents=True, exist_ok=True)
        if not self._file.exists():
            self._file.write_text(TRAINING_HEADER, encoding="utf-8")
        logger.info("training.initialized", path=str(self._file))

    def get_context(self) -> str:
        """Return the whole training file, or an empty string if it can't be read."""
        try:
            return self._file.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning("training.read_failed", path=str(self._file), error=str(e))
            return ""

    def append(self, content: str) -> None:
        timestamp = datetime.now(timezone.utc).isoformat()
        entry = f"\n---\n_Added: {timestamp}_\n\n{content}\n"
        self._dir.mkdir(parents=True, exist_ok=True)
        with self._file.open("a", encoding="utf-8") as fh:
            fh.write(entry)
        logger.info("training.appended", length=len(content))

    async def download_file(self, url: str, token: str, filename: str) -> Path:
        """Fetch a Slack-hosted file with bearer auth and save it under files/."""
        target = self._files_dir / safe_filename(filename)
        self._files_dir.mkdir(parents=True, exist_ok=True)
        headers = {"Authorization": f"Bearer {token}"}
        async with aiohttp.ClientSession() as session:
            async with session.get(url, headers=headers, max_redirects=_MAX_REDIRECTS) as resp:
                resp.raise_for_status()
                data = await resp.read()
        target.write_bytes(data)
        logger.info("training.file_saved", path=str(target), size=len(data))
        return target
