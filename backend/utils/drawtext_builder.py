"""
FFmpeg drawtext filter construction for overlay variables.

Each variable becomes two drawtext passes on a single filter chain: a black
shadow offset by two pixels, then the foreground text in the configured
color. Text always travels through a scratch file (``textfile=``), never
inline, so arbitrary user text cannot alter the filter graph.
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from models.gif_models import InvalidSpecError, OverlayVariable, is_valid_color
from utils.scratch import ArtifactRole, JobArtifacts

logger = logging.getLogger(__name__)

DEFAULT_FONT_FILE = Path(__file__).resolve().parents[1] / "assets" / "fonts" / "Roboto-Regular.ttf"
GIF_FONT_FILE = os.getenv("GIF_FONT_FILE", str(DEFAULT_FONT_FILE))

SHADOW_OFFSET_PX = 2
SHADOW_COLOR = "black"


@dataclass(frozen=True)
class FilterInstruction:
    """Filter graph for one renderer invocation plus the text files it reads."""

    expression: str
    text_files: tuple[Path, ...]


def resolve_font_file(font_file: str | None = None) -> str | None:
    candidate = font_file if font_file is not None else GIF_FONT_FILE
    if candidate and Path(candidate).is_file():
        return candidate
    return None


def escape_filter_value(value: str) -> str:
    """Escape ``value`` for use between single quotes in a filter option.

    Option-level escaping comes first. The filtergraph parser then sees the
    result inside quotes, where an apostrophe can only be written by closing
    the quote, emitting ``\\'`` and reopening it.
    """
    escaped = (
        value.replace("\\", "\\\\")
        .replace(":", "\\:")
        .replace("'", "\\'")
    )
    return escaped.replace("'", "'\\''")


def _format_number(value: float) -> str:
    return f"{value:g}"


def validate_variable(variable: OverlayVariable) -> None:
    position = variable.position
    if position is None:
        raise InvalidSpecError("missing position", variable.name)
    for label, value in (("top", position.top), ("left", position.left)):
        if value is None or not math.isfinite(value):
            raise InvalidSpecError(f"{label} must be a finite number", variable.name)
    if position.font_size is None or not position.font_size > 0:
        raise InvalidSpecError("fontSize must be a positive number", variable.name)
    if position.font_size_px() <= 0:
        raise InvalidSpecError("fontSize rounds to zero pixels", variable.name)
    if not is_valid_color(position.color):
        raise InvalidSpecError(f"unsupported color {position.color!r}", variable.name)


def validate_variables(variables: Mapping[str, OverlayVariable]) -> None:
    for variable in variables.values():
        validate_variable(variable)


def anchor_expressions(variable: OverlayVariable) -> tuple[str, str, str, str]:
    """Return ``(x, y, shadow_x, shadow_y)`` drawtext expressions."""
    position = variable.position
    if position.horizontal_center:
        x = "(w-text_w)/2"
    else:
        x = f"(w*{_format_number(position.left)}/100)"
    y = f"(h*{_format_number(position.top)}/100)"
    return x, y, f"{x}+{SHADOW_OFFSET_PX}", f"{y}+{SHADOW_OFFSET_PX}"


def drawtext_passes(
    variable: OverlayVariable,
    text_file: Path,
    font_file: str | None = None,
) -> list[str]:
    x, y, shadow_x, shadow_y = anchor_expressions(variable)
    fontsize = variable.position.font_size_px()
    # text is drawn literally; %{...} sequences are not expanded
    common = [f"textfile='{escape_filter_value(str(text_file))}'", "expansion=none"]
    font_part = (
        f"fontfile='{escape_filter_value(font_file)}'" if font_file else None
    )

    def _pass(px: str, py: str, color: str) -> str:
        parts = [*common, f"x={px}", f"y={py}", f"fontsize={fontsize}", f"fontcolor={color}"]
        if font_part:
            parts.append(font_part)
        return "drawtext=" + ":".join(parts)

    return [
        _pass(shadow_x, shadow_y, SHADOW_COLOR),
        _pass(x, y, variable.position.color),
    ]


def build_filter(
    resolved: Mapping[str, str],
    variables: Mapping[str, OverlayVariable],
    artifacts: JobArtifacts,
    iteration: int = 0,
    font_file: str | None = None,
) -> FilterInstruction:
    """Write each resolved value to a scratch file and chain the drawtext passes.

    Variables are drawn in the insertion order of ``variables``.
    """
    validate_variables(variables)
    missing = [name for name in variables if name not in resolved]
    if missing:
        raise InvalidSpecError(f"no resolved value for {', '.join(missing)}")

    font = resolve_font_file(font_file)
    passes: list[str] = []
    text_files: list[Path] = []
    for variable_index, (name, variable) in enumerate(variables.items()):
        text_path = artifacts.reserve(
            artifacts.context.text_path(iteration, variable_index),
            ArtifactRole.OVERLAY_TEXT,
        )
        text_path.write_text(resolved[name], encoding="utf-8")
        text_files.append(text_path)
        passes.extend(drawtext_passes(variable, text_path, font))

    expression = ",".join(passes)
    logger.debug(
        "filter_built job_id=%s iteration=%d variables=%d",
        artifacts.context.job_id,
        iteration,
        len(text_files),
    )
    return FilterInstruction(expression=expression, text_files=tuple(text_files))
