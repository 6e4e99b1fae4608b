"""
Tests for the single and bulk GIF render pipelines.

The renderer and downloader are replaced with fakes; the fake renderer reads
the overlay text files referenced by each filter so tests can assert the
values that would have been drawn.
"""

from __future__ import annotations

import io
import re
import zipfile
from pathlib import Path

import pytest

from operators.gif_operator import (
    DownloadFailureError,
    EmptyInputError,
    GifJobState,
    InputError,
    InvalidSpecError,
    RenderFailureError,
    build_archive,
    RenderedOutput,
    render_bulk,
    render_single,
)
from utils.gcs_utils import SourceDownloadError


VIDEO_URL = "https://cdn.example.com/videos/source.mp4"
TEXTFILE_RE = re.compile(r"textfile='([^']*)'")


class FakeRenderer:
    def __init__(self, fail_on: int | None = None):
        self.fail_on = fail_on
        self.calls: list[dict] = []

    def render(self, source_path: Path, filter_expression: str, output_path: Path) -> None:
        text_files = list(dict.fromkeys(TEXTFILE_RE.findall(filter_expression)))
        values = [Path(p).read_text(encoding="utf-8") for p in text_files]
        self.calls.append(
            {
                "source": Path(source_path),
                "filter": filter_expression,
                "output": Path(output_path),
                "values": values,
            }
        )
        if self.fail_on is not None and len(self.calls) == self.fail_on:
            Path(output_path).write_bytes(b"partial")
            Path(output_path).unlink()
            raise RenderFailureError("FFmpeg failed (code 1)", f"error reading {output_path}")
        Path(output_path).write_bytes(b"GIF89a" + "|".join(values).encode("utf-8"))


def fake_downloader(url: str, destination: Path) -> None:
    Path(destination).write_bytes(b"fake-video")


def _position(**overrides):
    position = {
        "top": "45",
        "left": "45",
        "fontSize": "68px",
        "color": "#ffffff",
        "horizontalCenter": False,
    }
    position.update(overrides)
    return position


def _variables(**values):
    return {name: {"value": value, "position": _position()} for name, value in values.items()}


def _scratch_files(root: Path) -> list[Path]:
    return [p for p in root.iterdir() if p.is_file()]


def _archive_entries(content: bytes) -> dict[str, bytes]:
    with zipfile.ZipFile(io.BytesIO(content)) as archive:
        return {name: archive.read(name) for name in archive.namelist()}


# =============================================================================
# BULK
# =============================================================================


def test_bulk_one_output_per_line_named_by_value(tmp_path: Path):
    renderer = FakeRenderer()

    result = render_bulk(
        VIDEO_URL,
        _variables(name="Alice"),
        {"name": ["Bob", "Carol"]},
        "promo",
        renderer=renderer,
        downloader=fake_downloader,
        scratch_root=tmp_path,
        font_file="",
    )

    entries = _archive_entries(result.content)
    assert sorted(entries) == ["Bob.gif", "Carol.gif"]
    assert result.filename == "promo_bulk.zip"
    assert result.media_type == "application/zip"
    assert [c["values"] for c in renderer.calls] == [["Bob"], ["Carol"]]
    assert len({c["source"] for c in renderer.calls}) == 1
    assert _scratch_files(tmp_path) == []
    assert result.artifacts.entries == []


def test_bulk_blank_lines_resolve_to_single_space(tmp_path: Path):
    renderer = FakeRenderer()

    render_bulk(
        VIDEO_URL,
        _variables(name="Alice"),
        {"name": ["", "  ", "Dana"]},
        "promo",
        renderer=renderer,
        downloader=fake_downloader,
        scratch_root=tmp_path,
        font_file="",
    )

    assert [c["values"] for c in renderer.calls] == [[" "], [" "], ["Dana"]]


def test_bulk_blank_lines_fall_back_to_numbered_names(tmp_path: Path):
    result = render_bulk(
        VIDEO_URL,
        _variables(name="Alice"),
        {"name": ["", "Dana"]},
        "promo",
        renderer=FakeRenderer(),
        downloader=fake_downloader,
        scratch_root=tmp_path,
        font_file="",
    )

    assert result.outputs == ["promo_1.gif", "Dana.gif"]


def test_bulk_last_variable_with_a_line_names_output(tmp_path: Path):
    result = render_bulk(
        VIDEO_URL,
        _variables(first="A", second="B"),
        {"first": ["Bob", "Cy"], "second": ["Zed"]},
        "promo",
        renderer=FakeRenderer(),
        downloader=fake_downloader,
        scratch_root=tmp_path,
        font_file="",
    )

    assert result.outputs == ["Zed.gif", "Cy.gif"]


def test_bulk_percent_text_reaches_renderer_unchanged(tmp_path: Path):
    renderer = FakeRenderer()

    result = render_bulk(
        VIDEO_URL,
        _variables(name="Alice"),
        {"name": ["50% off"]},
        "promo",
        renderer=renderer,
        downloader=fake_downloader,
        scratch_root=tmp_path,
        font_file="",
    )

    assert renderer.calls[0]["values"] == ["50% off"]
    assert "expansion=none" in renderer.calls[0]["filter"]
    assert result.outputs == ["50__off.gif"]


def test_bulk_shorter_source_falls_back_to_static_value(tmp_path: Path):
    renderer = FakeRenderer()

    render_bulk(
        VIDEO_URL,
        _variables(first="F", second="S"),
        {"first": ["a1", "a2", "a3"], "second": ["b1", "b2", "b3", "b4", "b5"]},
        "promo",
        renderer=renderer,
        downloader=fake_downloader,
        scratch_root=tmp_path,
        font_file="",
    )

    assert len(renderer.calls) == 5
    assert renderer.calls[3]["values"] == ["F", "b4"]
    assert renderer.calls[4]["values"] == ["F", "b5"]


def test_bulk_without_line_sources_matches_single_render(tmp_path: Path):
    variables = _variables(title="Hello", subtitle="   ")
    bulk_renderer = FakeRenderer()
    single_renderer = FakeRenderer()

    bulk = render_bulk(
        VIDEO_URL,
        variables,
        {},
        "promo",
        renderer=bulk_renderer,
        downloader=fake_downloader,
        scratch_root=tmp_path,
        font_file="",
    )
    single = render_single(
        VIDEO_URL,
        variables,
        renderer=single_renderer,
        downloader=fake_downloader,
        scratch_root=tmp_path,
        font_file="",
    )

    entries = _archive_entries(bulk.content)
    assert list(entries) == ["promo_1.gif"]
    assert entries["promo_1.gif"] == single.content
    assert bulk_renderer.calls[0]["values"] == ["Hello", " "]
    assert single_renderer.calls[0]["values"] == ["Hello", " "]


def test_bulk_render_failure_aborts_and_cleans_up(tmp_path: Path):
    renderer = FakeRenderer(fail_on=2)

    with pytest.raises(RenderFailureError) as exc_info:
        render_bulk(
            VIDEO_URL,
            _variables(name="Alice"),
            {"name": ["Bob", "Carol", "Dana"]},
            "promo",
            renderer=renderer,
            downloader=fake_downloader,
            scratch_root=tmp_path,
            font_file="",
        )

    assert len(renderer.calls) == 2
    assert "2/3" in str(exc_info.value)
    assert str(tmp_path) not in exc_info.value.diagnostic
    assert _scratch_files(tmp_path) == []


def test_bulk_all_empty_line_sources_is_an_input_error(tmp_path: Path):
    with pytest.raises(EmptyInputError):
        render_bulk(
            VIDEO_URL,
            _variables(name="Alice"),
            {"name": []},
            "promo",
            renderer=FakeRenderer(),
            downloader=fake_downloader,
            scratch_root=tmp_path,
        )


def test_bulk_name_collision_keeps_last_render(tmp_path: Path):
    result = render_bulk(
        VIDEO_URL,
        _variables(name="Alice"),
        {"name": ["a!", "a?"]},
        "promo",
        renderer=FakeRenderer(),
        downloader=fake_downloader,
        scratch_root=tmp_path,
        font_file="",
    )

    entries = _archive_entries(result.content)
    assert list(entries) == ["a_.gif"]
    assert entries["a_.gif"].endswith(b"a?")


def test_bulk_ignores_line_sources_for_unknown_variables(tmp_path: Path):
    renderer = FakeRenderer()

    result = render_bulk(
        VIDEO_URL,
        _variables(name="Alice"),
        {"other": ["x", "y"]},
        "promo",
        renderer=renderer,
        downloader=fake_downloader,
        scratch_root=tmp_path,
        font_file="",
    )

    assert result.outputs == ["promo_1.gif"]
    assert renderer.calls[0]["values"] == ["Alice"]


def test_bulk_records_state_transitions(tmp_path: Path):
    result = render_bulk(
        VIDEO_URL,
        _variables(name="Alice"),
        {"name": ["Bob"]},
        "promo",
        renderer=FakeRenderer(),
        downloader=fake_downloader,
        scratch_root=tmp_path,
        font_file="",
    )

    assert result.states == [
        GifJobState.INIT,
        GifJobState.DOWNLOADING,
        GifJobState.RESOLVING,
        GifJobState.FILTERING,
        GifJobState.RENDERING,
        GifJobState.COLLECTING,
        GifJobState.ARCHIVING,
        GifJobState.CLEANING_UP,
        GifJobState.DONE,
    ]


# =============================================================================
# SINGLE
# =============================================================================


def test_single_returns_gif_bytes_and_cleans_up(tmp_path: Path):
    renderer = FakeRenderer()

    result = render_single(
        VIDEO_URL,
        _variables(name="Alice"),
        gif_name="My Promo",
        renderer=renderer,
        downloader=fake_downloader,
        scratch_root=tmp_path,
        font_file="",
    )

    assert result.content.startswith(b"GIF89a")
    assert result.filename == "My_Promo.gif"
    assert result.media_type == "image/gif"
    assert _scratch_files(tmp_path) == []


def test_single_deferred_cleanup_runs_once(tmp_path: Path):
    result = render_single(
        VIDEO_URL,
        _variables(name="Alice"),
        renderer=FakeRenderer(),
        downloader=fake_downloader,
        scratch_root=tmp_path,
        font_file="",
        defer_cleanup=True,
    )

    assert len(_scratch_files(tmp_path)) == 3
    result.cleanup()
    result.cleanup()
    assert _scratch_files(tmp_path) == []
    assert result.artifacts.released is True


def test_single_download_failure_cleans_up(tmp_path: Path):
    def failing_downloader(url: str, destination: Path) -> None:
        Path(destination).write_bytes(b"half")
        raise SourceDownloadError("404 Client Error")

    renderer = FakeRenderer()
    with pytest.raises(DownloadFailureError):
        render_single(
            VIDEO_URL,
            _variables(name="Alice"),
            renderer=renderer,
            downloader=failing_downloader,
            scratch_root=tmp_path,
        )

    assert renderer.calls == []
    assert _scratch_files(tmp_path) == []


def test_single_requires_video_url(tmp_path: Path):
    with pytest.raises(InputError):
        render_single("", _variables(name="Alice"), scratch_root=tmp_path)


def test_single_requires_variables(tmp_path: Path):
    with pytest.raises(InputError):
        render_single(VIDEO_URL, {}, scratch_root=tmp_path)


def test_invalid_font_size_fails_before_download(tmp_path: Path):
    downloads = []

    def recording_downloader(url: str, destination: Path) -> None:
        downloads.append(url)
        fake_downloader(url, destination)

    variables = {"name": {"value": "Alice", "position": _position(fontSize="0px")}}
    with pytest.raises(InvalidSpecError):
        render_bulk(
            VIDEO_URL,
            variables,
            {"name": ["Bob"]},
            "promo",
            renderer=FakeRenderer(),
            downloader=recording_downloader,
            scratch_root=tmp_path,
        )

    assert downloads == []
    assert _scratch_files(tmp_path) == []


def test_build_archive_preserves_entry_names():
    content = build_archive(
        [RenderedOutput("a.gif", b"1"), RenderedOutput("b.gif", b"2")]
    )

    assert _archive_entries(content) == {"a.gif": b"1", "b.gif": b"2"}
