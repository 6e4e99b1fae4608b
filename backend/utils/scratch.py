"""Scratch-file bookkeeping for render jobs.

Every file a job writes to the scratch directory is registered in the job's
manifest before it is created, and ``release_all`` removes everything in the
manifest. Paths are prefixed with a job token so concurrent jobs can share
one scratch directory.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from uuid import uuid4

logger = logging.getLogger(__name__)

GIF_SCRATCH_DIR = os.getenv(
    "GIF_SCRATCH_DIR", os.path.join(tempfile.gettempdir(), "gif-render")
)


class ArtifactRole(str, Enum):
    SOURCE_VIDEO = "source_video"
    OVERLAY_TEXT = "overlay_text"
    ITERATION_OUTPUT = "iteration_output"


@dataclass(frozen=True)
class JobContext:
    """Identity and scratch location of one render job."""

    job_id: str
    scratch_root: Path
    created_at_ms: int

    @classmethod
    def create(cls, scratch_root: str | Path | None = None) -> JobContext:
        root = Path(scratch_root or GIF_SCRATCH_DIR)
        root.mkdir(parents=True, exist_ok=True)
        return cls(
            job_id=uuid4().hex,
            scratch_root=root,
            created_at_ms=int(time.time() * 1000),
        )

    @property
    def token(self) -> str:
        return f"{self.created_at_ms}-{self.job_id[:12]}"

    def source_video_path(self, extension: str = ".mp4") -> Path:
        return self.scratch_root / f"input-{self.token}{extension}"

    def text_path(self, iteration: int, variable_index: int) -> Path:
        return self.scratch_root / f"text-{self.token}-{iteration}-{variable_index}.txt"

    def output_path(self, iteration: int, extension: str = ".gif") -> Path:
        return self.scratch_root / f"output-{self.token}-{iteration}{extension}"


@dataclass
class ArtifactEntry:
    path: Path
    role: ArtifactRole


@dataclass
class JobArtifacts:
    """Manifest of scratch files owned by one job.

    Usable as a context manager; leaving the block releases the manifest.
    """

    context: JobContext
    _entries: dict[Path, ArtifactEntry] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)
    _released: bool = False

    def reserve(self, path: Path, role: ArtifactRole) -> Path:
        path = Path(path)
        with self._lock:
            if self._released:
                raise RuntimeError(
                    f"Artifacts for job {self.context.job_id} were already released"
                )
            self._entries.setdefault(path, ArtifactEntry(path=path, role=role))
        return path

    @property
    def entries(self) -> list[ArtifactEntry]:
        with self._lock:
            return list(self._entries.values())

    @property
    def released(self) -> bool:
        return self._released

    def paths(self, role: ArtifactRole | None = None) -> list[Path]:
        return [e.path for e in self.entries if role is None or e.role == role]

    def release_all(self) -> int:
        """Delete every registered path once. Never raises.

        Returns the number of files actually removed.
        """
        with self._lock:
            if self._released:
                return 0
            self._released = True
            entries = list(self._entries.values())
            self._entries.clear()

        removed = 0
        for entry in entries:
            try:
                entry.path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.warning(
                    "artifact_cleanup_failed job_id=%s role=%s error=%s",
                    self.context.job_id,
                    entry.role.value,
                    exc,
                )
        logger.info(
            "artifacts_released job_id=%s registered=%d removed=%d",
            self.context.job_id,
            len(entries),
            removed,
        )
        return removed

    def __enter__(self) -> JobArtifacts:
        return self

    def __exit__(self, *exc_info) -> None:
        self.release_all()


def new_job(scratch_root: str | Path | None = None) -> JobArtifacts:
    return JobArtifacts(context=JobContext.create(scratch_root))
