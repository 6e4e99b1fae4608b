import threading
from pathlib import Path

import pytest

from utils import gif_renderer
from utils.gif_renderer import GifRenderer, RenderCommand, RenderFailureError


class FakeProcess:
    def __init__(self, args, lines, returncode, write_output):
        self.args = args
        self.stdout = iter(lines)
        self.returncode = returncode
        if write_output:
            Path(args[-1]).write_bytes(b"GIF89a")

    def wait(self):
        return self.returncode

    def kill(self):
        self.returncode = -9


def _patch_popen(monkeypatch, lines=(), returncode=0, write_output=True):
    calls = []

    def fake_popen(args, **kwargs):
        calls.append({"args": args, "kwargs": kwargs})
        return FakeProcess(args, list(lines), returncode, write_output)

    monkeypatch.setattr(gif_renderer.subprocess, "Popen", fake_popen)
    return calls


def test_command_arguments_are_a_list():
    command = RenderCommand(
        source_path=Path("/scratch/in.mp4"),
        filter_expression="drawtext=textfile='/scratch/t.txt':x=1:y=1",
        output_path=Path("/scratch/out.gif"),
        frame_rate="12",
        binary="/usr/bin/ffmpeg",
    )

    assert command.to_args() == [
        "/usr/bin/ffmpeg",
        "-y",
        "-hide_banner",
        "-i",
        "/scratch/in.mp4",
        "-vf",
        "drawtext=textfile='/scratch/t.txt':x=1:y=1",
        "-f",
        "gif",
        "-loop",
        "0",
        "-r",
        "12",
        "/scratch/out.gif",
    ]


def test_render_success(tmp_path: Path, monkeypatch):
    calls = _patch_popen(monkeypatch, lines=["frame=1\n"])
    output = tmp_path / "out.gif"

    GifRenderer(ffmpeg_bin="ffmpeg", frame_rate="10", timeout_seconds=30).render(
        tmp_path / "in.mp4", "drawtext=textfile='t.txt'", output
    )

    assert output.read_bytes() == b"GIF89a"
    assert calls[0]["args"][0] == "ffmpeg"
    assert "shell" not in calls[0]["kwargs"]


def test_render_failure_removes_partial_output(tmp_path: Path, monkeypatch):
    lines = [f"line {i}\n" for i in range(60)] + ["Invalid data found\n"]
    _patch_popen(monkeypatch, lines=lines, returncode=1)
    output = tmp_path / "out.gif"

    with pytest.raises(RenderFailureError) as exc_info:
        GifRenderer(timeout_seconds=30).render(tmp_path / "in.mp4", "null", output)

    assert "code 1" in str(exc_info.value)
    diagnostic_lines = exc_info.value.diagnostic.splitlines()
    assert len(diagnostic_lines) == gif_renderer.OUTPUT_TAIL_LINES
    assert diagnostic_lines[-1] == "Invalid data found"
    assert not output.exists()


def test_render_without_output_file_fails(tmp_path: Path, monkeypatch):
    _patch_popen(monkeypatch, write_output=False)

    with pytest.raises(RenderFailureError):
        GifRenderer(timeout_seconds=30).render(
            tmp_path / "in.mp4", "null", tmp_path / "out.gif"
        )


class HangingProcess:
    """Writes partial output, then blocks on stdout until killed."""

    def __init__(self, args):
        self.returncode = None
        self.killed = threading.Event()
        Path(args[-1]).write_bytes(b"GIF89a-partial")

    @property
    def stdout(self):
        if self.killed.wait(timeout=5):
            return iter([])
        return iter(["still running\n"])

    def wait(self):
        return self.returncode

    def kill(self):
        self.returncode = -9
        self.killed.set()


class ImmediateTimer:
    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.cancelled = False

    def start(self):
        self.function()

    def cancel(self):
        self.cancelled = True


def test_render_timeout_kills_process_and_removes_output(tmp_path: Path, monkeypatch):
    processes = []

    def hanging_popen(args, **kwargs):
        processes.append(HangingProcess(args))
        return processes[-1]

    monkeypatch.setattr(gif_renderer.subprocess, "Popen", hanging_popen)
    monkeypatch.setattr(gif_renderer.threading, "Timer", ImmediateTimer)
    output = tmp_path / "out.gif"

    with pytest.raises(RenderFailureError) as exc_info:
        GifRenderer(timeout_seconds=15).render(tmp_path / "in.mp4", "null", output)

    assert str(exc_info.value) == "FFmpeg timed out after 15s"
    assert processes[0].killed.is_set()
    assert not output.exists()


def test_missing_binary(tmp_path: Path, monkeypatch):
    def raising_popen(args, **kwargs):
        raise FileNotFoundError(2, "No such file or directory", args[0])

    monkeypatch.setattr(gif_renderer.subprocess, "Popen", raising_popen)

    with pytest.raises(RenderFailureError) as exc_info:
        GifRenderer(ffmpeg_bin="missing-ffmpeg", timeout_seconds=30).render(
            tmp_path / "in.mp4", "null", tmp_path / "out.gif"
        )

    assert "Failed to execute FFmpeg" in str(exc_info.value)
