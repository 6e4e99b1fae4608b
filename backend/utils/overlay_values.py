"""Per-iteration value resolution for overlay variables."""

from __future__ import annotations

import logging
import re
from typing import Mapping, Sequence

from models.gif_models import OverlayVariable

logger = logging.getLogger(__name__)

BLANK_VALUE = " "
_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def parse_line_source(text: str) -> list[str]:
    """Split uploaded text into trimmed, non-empty lines."""
    lines = [line.strip() for line in text.splitlines()]
    return [line for line in lines if line]


def normalize_value(value: str | None) -> str:
    # drawtext centering divides by text width, so it must never be empty
    if value is None or not value.strip():
        return BLANK_VALUE
    return value


def resolve_iteration(
    variables: Mapping[str, OverlayVariable],
    line_sources: Mapping[str, Sequence[str]] | None,
    index: int,
) -> dict[str, str]:
    """Effective value of every variable for iteration ``index``.

    A variable uses line ``index`` of its line source when that line exists,
    otherwise its static value. Blank results become a single space.
    """
    sources = line_sources or {}
    resolved: dict[str, str] = {}
    for name, variable in variables.items():
        lines = sources.get(name)
        if lines is not None and 0 <= index < len(lines):
            value = lines[index]
        else:
            value = variable.value
        resolved[name] = normalize_value(value)
    return resolved


def iteration_count(line_sources: Mapping[str, Sequence[str]] | None) -> int:
    """Longest line source, or 1 when no line source is supplied."""
    if not line_sources:
        return 1
    return max(len(lines) for lines in line_sources.values())


def driving_value(
    variables: Mapping[str, OverlayVariable],
    line_sources: Mapping[str, Sequence[str]] | None,
    index: int,
) -> str | None:
    """Raw line of the last variable whose source has a non-empty line at ``index``.

    Whitespace-only lines count; they still name the file once sanitized.
    """
    sources = line_sources or {}
    value = None
    for name in variables:
        lines = sources.get(name)
        if lines is None or index >= len(lines):
            continue
        if lines[index]:
            value = lines[index]
    return value


def sanitize_filename(value: str) -> str:
    """Replace every character outside ``[A-Za-z0-9_-]`` with ``_``."""
    return _UNSAFE_FILENAME_CHARS.sub("_", value)


def output_filename(
    variables: Mapping[str, OverlayVariable],
    line_sources: Mapping[str, Sequence[str]] | None,
    index: int,
    job_name: str,
    extension: str = ".gif",
) -> str:
    value = driving_value(variables, line_sources, index)
    if value is not None:
        stem = sanitize_filename(value)
    else:
        stem = f"{sanitize_filename(job_name or 'gif')}_{index + 1}"
    return f"{stem}{extension}"


def filter_line_sources(
    variables: Mapping[str, OverlayVariable],
    line_sources: Mapping[str, Sequence[str]] | None,
) -> dict[str, list[str]]:
    """Drop line sources that do not belong to a known variable."""
    kept: dict[str, list[str]] = {}
    for name, lines in (line_sources or {}).items():
        if name not in variables:
            logger.warning("line_source_ignored variable=%s reason=unknown_variable", name)
            continue
        kept[name] = list(lines)
    return kept
