from __future__ import annotations

import io
import logging
import zipfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Mapping, Protocol, Sequence
from urllib.parse import urlparse

from models.gif_models import InvalidSpecError, OverlayVariable, parse_overlay_variables
from utils.drawtext_builder import build_filter, validate_variables
from utils.gcs_utils import SourceDownloadError, download_source
from utils.gif_renderer import GifRenderer, RenderFailureError
from utils.overlay_values import (
    filter_line_sources,
    iteration_count,
    output_filename,
    resolve_iteration,
    sanitize_filename,
)
from utils.scratch import ArtifactRole, JobArtifacts, new_job

logger = logging.getLogger(__name__)

GIF_EXTENSION = ".gif"
GIF_MEDIA_TYPE = "image/gif"
ZIP_MEDIA_TYPE = "application/zip"
VIDEO_EXTENSIONS = {".mp4", ".mov", ".webm", ".mkv", ".avi", ".m4v", ".mpg", ".mpeg", ".gif"}

__all__ = [
    "DownloadFailureError",
    "EmptyInputError",
    "GifJobState",
    "GifRenderError",
    "GifRenderResult",
    "InputError",
    "InvalidSpecError",
    "RenderFailureError",
    "RenderedOutput",
    "build_archive",
    "render_bulk",
    "render_single",
]


class GifRenderError(Exception):
    pass


class InputError(GifRenderError):
    pass


class EmptyInputError(InputError):
    def __init__(self):
        super().__init__("All uploaded text files are empty")


class DownloadFailureError(GifRenderError):
    pass


class GifJobState(str, Enum):
    INIT = "init"
    DOWNLOADING = "downloading"
    RESOLVING = "resolving"
    FILTERING = "filtering"
    RENDERING = "rendering"
    COLLECTING = "collecting"
    ARCHIVING = "archiving"
    CLEANING_UP = "cleaning_up"
    DONE = "done"
    FAILED = "failed"


class Renderer(Protocol):
    def render(self, source_path: Path, filter_expression: str, output_path: Path) -> None: ...


Downloader = Callable[[str, Path], Any]


@dataclass
class RenderedOutput:
    filename: str
    content: bytes


@dataclass
class GifRenderResult:
    """Bytes returned to the caller plus the handle that releases scratch files.

    When a render was started with ``defer_cleanup=True`` the caller owns
    ``cleanup()`` and must call it; calling it more than once is harmless.
    """

    content: bytes
    filename: str
    media_type: str
    artifacts: JobArtifacts
    outputs: list[str] = field(default_factory=list)
    states: list[GifJobState] = field(default_factory=list)

    @property
    def job_id(self) -> str:
        return self.artifacts.context.job_id

    def cleanup(self) -> None:
        self.artifacts.release_all()


class _JobTracker:
    def __init__(self, artifacts: JobArtifacts, kind: str):
        self.artifacts = artifacts
        self.kind = kind
        self.states: list[GifJobState] = [GifJobState.INIT]

    @property
    def state(self) -> GifJobState:
        return self.states[-1]

    def advance(self, state: GifJobState) -> None:
        self.states.append(state)
        logger.debug(
            "gif_job_state job_id=%s kind=%s state=%s",
            self.artifacts.context.job_id,
            self.kind,
            state.value,
        )


def _validate_inputs(
    video_url: str | None,
    variables: Mapping[str, Any] | None,
) -> dict[str, OverlayVariable]:
    if not video_url or not str(video_url).strip():
        raise InputError("A source video URL is required")
    if not variables:
        raise InputError("At least one overlay variable is required")
    parsed = parse_overlay_variables(variables)
    validate_variables(parsed)
    return parsed


def _source_extension(video_url: str) -> str:
    suffix = Path(urlparse(video_url).path).suffix.lower()
    return suffix if suffix in VIDEO_EXTENSIONS else ".mp4"


def _scrub(text: str, artifacts: JobArtifacts) -> str:
    root = str(artifacts.context.scratch_root)
    return text.replace(root, "<scratch>") if text else text


def _download(
    video_url: str,
    artifacts: JobArtifacts,
    downloader: Downloader,
) -> Path:
    source_path = artifacts.reserve(
        artifacts.context.source_video_path(_source_extension(video_url)),
        ArtifactRole.SOURCE_VIDEO,
    )
    logger.info("gif_source_download job_id=%s", artifacts.context.job_id)
    try:
        downloader(video_url, source_path)
    except SourceDownloadError as exc:
        raise DownloadFailureError(_scrub(str(exc), artifacts)) from exc
    except OSError as exc:
        raise DownloadFailureError(f"Failed to store source video: {exc.strerror}") from exc
    if not source_path.exists() or source_path.stat().st_size == 0:
        raise DownloadFailureError("Source video download returned no data")
    return source_path


def _render_iteration(
    index: int,
    total: int,
    source_path: Path,
    variables: dict[str, OverlayVariable],
    line_sources: Mapping[str, Sequence[str]],
    filename: str,
    artifacts: JobArtifacts,
    renderer: Renderer,
    tracker: _JobTracker,
    font_file: str | None,
) -> RenderedOutput:
    tracker.advance(GifJobState.RESOLVING)
    resolved = resolve_iteration(variables, line_sources, index)

    tracker.advance(GifJobState.FILTERING)
    output_path = artifacts.reserve(
        artifacts.context.output_path(index, GIF_EXTENSION),
        ArtifactRole.ITERATION_OUTPUT,
    )
    try:
        instruction = build_filter(
            resolved, variables, artifacts, iteration=index, font_file=font_file
        )
    except OSError as exc:
        raise RenderFailureError(
            f"Failed to prepare overlay text for GIF {index + 1}/{total}",
            _scrub(str(exc), artifacts),
        ) from exc

    tracker.advance(GifJobState.RENDERING)
    try:
        renderer.render(source_path, instruction.expression, output_path)
    except RenderFailureError as exc:
        raise RenderFailureError(
            f"Failed to render GIF {index + 1}/{total}: {_scrub(str(exc), artifacts)}",
            _scrub(exc.diagnostic, artifacts),
        ) from exc

    tracker.advance(GifJobState.COLLECTING)
    try:
        content = output_path.read_bytes()
    except OSError as exc:
        raise RenderFailureError(
            f"Rendered GIF {index + 1}/{total} could not be read", exc.strerror or ""
        ) from exc
    return RenderedOutput(filename=filename, content=content)


def build_archive(outputs: Sequence[RenderedOutput]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as archive:
        for output in outputs:
            archive.writestr(output.filename, output.content)
    return buf.getvalue()


def _finish(
    tracker: _JobTracker,
    succeeded: bool,
    defer_cleanup: bool,
) -> None:
    if not succeeded or not defer_cleanup:
        tracker.advance(GifJobState.CLEANING_UP)
        tracker.artifacts.release_all()
    tracker.advance(GifJobState.DONE if succeeded else GifJobState.FAILED)


def render_single(
    video_url: str | None,
    variables: Mapping[str, Any] | None,
    line_sources: Mapping[str, Sequence[str]] | None = None,
    gif_name: str | None = None,
    *,
    renderer: Renderer | None = None,
    downloader: Downloader | None = None,
    scratch_root: str | Path | None = None,
    font_file: str | None = None,
    defer_cleanup: bool = False,
) -> GifRenderResult:
    """Render one GIF with every variable at iteration 0."""
    parsed = _validate_inputs(video_url, variables)
    sources = filter_line_sources(parsed, line_sources)

    artifacts = new_job(scratch_root)
    tracker = _JobTracker(artifacts, "single")
    renderer = renderer or GifRenderer()
    downloader = downloader or download_source

    if gif_name:
        filename = f"{sanitize_filename(gif_name)}{GIF_EXTENSION}"
    else:
        filename = f"generated-{artifacts.context.created_at_ms}{GIF_EXTENSION}"

    logger.info(
        "gif_single_start job_id=%s variables=%d", artifacts.context.job_id, len(parsed)
    )
    succeeded = False
    try:
        tracker.advance(GifJobState.DOWNLOADING)
        source_path = _download(str(video_url), artifacts, downloader)
        output = _render_iteration(
            0, 1, source_path, parsed, sources, filename,
            artifacts, renderer, tracker, font_file,
        )
        succeeded = True
    except Exception:
        logger.exception("gif_single_failed job_id=%s", artifacts.context.job_id)
        raise
    finally:
        _finish(tracker, succeeded, defer_cleanup)

    logger.info(
        "gif_single_done job_id=%s bytes=%d", artifacts.context.job_id, len(output.content)
    )
    return GifRenderResult(
        content=output.content,
        filename=output.filename,
        media_type=GIF_MEDIA_TYPE,
        artifacts=artifacts,
        outputs=[output.filename],
        states=list(tracker.states),
    )


def render_bulk(
    video_url: str | None,
    variables: Mapping[str, Any] | None,
    line_sources: Mapping[str, Sequence[str]] | None,
    job_name: str,
    *,
    renderer: Renderer | None = None,
    downloader: Downloader | None = None,
    scratch_root: str | Path | None = None,
    font_file: str | None = None,
    defer_cleanup: bool = False,
) -> GifRenderResult:
    """Render one GIF per line and pack them into a single zip archive.

    The iteration count is the length of the longest line source; variables
    without a line source, or whose source is shorter, keep their static
    value. The first failing iteration aborts the whole batch.
    """
    parsed = _validate_inputs(video_url, variables)
    sources = filter_line_sources(parsed, line_sources)
    total = iteration_count(sources)
    if sources and total == 0:
        raise EmptyInputError()

    job_name = job_name or "gif"
    artifacts = new_job(scratch_root)
    tracker = _JobTracker(artifacts, "bulk")
    renderer = renderer or GifRenderer()
    downloader = downloader or download_source

    logger.info(
        "gif_bulk_start job_id=%s iterations=%d variables=%d line_sources=%d",
        artifacts.context.job_id,
        total,
        len(parsed),
        len(sources),
    )
    outputs: dict[str, RenderedOutput] = {}
    succeeded = False
    try:
        tracker.advance(GifJobState.DOWNLOADING)
        source_path = _download(str(video_url), artifacts, downloader)

        for index in range(total):
            logger.info(
                "gif_bulk_iteration job_id=%s index=%d total=%d",
                artifacts.context.job_id,
                index + 1,
                total,
            )
            filename = output_filename(parsed, sources, index, job_name, GIF_EXTENSION)
            output = _render_iteration(
                index, total, source_path, parsed, sources, filename,
                artifacts, renderer, tracker, font_file,
            )
            if output.filename in outputs:
                logger.warning(
                    "gif_bulk_name_collision job_id=%s filename=%s index=%d",
                    artifacts.context.job_id,
                    output.filename,
                    index + 1,
                )
                outputs.pop(output.filename)
            outputs[output.filename] = output

        tracker.advance(GifJobState.ARCHIVING)
        archive = build_archive(list(outputs.values()))
        succeeded = True
    except Exception:
        logger.exception("gif_bulk_failed job_id=%s", artifacts.context.job_id)
        raise
    finally:
        _finish(tracker, succeeded, defer_cleanup)

    logger.info(
        "gif_bulk_done job_id=%s entries=%d bytes=%d",
        artifacts.context.job_id,
        len(outputs),
        len(archive),
    )
    return GifRenderResult(
        content=archive,
        filename=f"{sanitize_filename(job_name)}_bulk.zip",
        media_type=ZIP_MEDIA_TYPE,
        artifacts=artifacts,
        outputs=list(outputs),
        states=list(tracker.states),
    )
