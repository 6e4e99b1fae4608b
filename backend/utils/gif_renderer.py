from __future__ import annotations

import logging
import os
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

FFMPEG_BIN = os.getenv("FFMPEG_BIN", "ffmpeg")
GIF_FRAME_RATE = os.getenv("GIF_FRAME_RATE", "10")
FFMPEG_TIMEOUT_SECONDS = os.getenv("FFMPEG_TIMEOUT_SECONDS", "600")

OUTPUT_TAIL_LINES = 40


class RenderFailureError(Exception):
    """The renderer exited non-zero, timed out, or could not be started."""

    def __init__(self, message: str, diagnostic: str = ""):
        self.diagnostic = diagnostic
        super().__init__(message)


def _timeout_seconds() -> int:
    try:
        return max(10, int(FFMPEG_TIMEOUT_SECONDS))
    except ValueError:
        return 600


def _frame_rate() -> str:
    try:
        rate = float(GIF_FRAME_RATE)
    except ValueError:
        return "10"
    return f"{rate:g}" if rate > 0 else "10"


@dataclass(frozen=True)
class RenderCommand:
    """Structured renderer invocation; always executed without a shell."""

    source_path: Path
    filter_expression: str
    output_path: Path
    frame_rate: str = "10"
    output_format: str = "gif"
    binary: str = "ffmpeg"

    def to_args(self) -> list[str]:
        return [
            self.binary,
            "-y",
            "-hide_banner",
            "-i",
            str(self.source_path),
            "-vf",
            self.filter_expression,
            "-f",
            self.output_format,
            "-loop",
            "0",
            "-r",
            self.frame_rate,
            str(self.output_path),
        ]


class GifRenderer:
    """Runs ffmpeg to burn a drawtext filter into a looping GIF."""

    def __init__(
        self,
        ffmpeg_bin: str | None = None,
        frame_rate: str | None = None,
        timeout_seconds: int | None = None,
    ):
        self._ffmpeg_bin = ffmpeg_bin or FFMPEG_BIN
        self._frame_rate = frame_rate or _frame_rate()
        self._timeout_seconds = timeout_seconds or _timeout_seconds()

    def build_command(
        self, source_path: Path, filter_expression: str, output_path: Path
    ) -> RenderCommand:
        return RenderCommand(
            source_path=Path(source_path),
            filter_expression=filter_expression,
            output_path=Path(output_path),
            frame_rate=self._frame_rate,
            binary=self._ffmpeg_bin,
        )

    def render(self, source_path: Path, filter_expression: str, output_path: Path) -> None:
        """Render ``source_path`` to ``output_path``.

        On failure no partial file is left at ``output_path``.
        """
        command = self.build_command(source_path, filter_expression, output_path)
        try:
            self._execute(command)
        except RenderFailureError:
            Path(output_path).unlink(missing_ok=True)
            raise
        if not Path(output_path).exists():
            raise RenderFailureError("FFmpeg reported success but wrote no output")

    def _execute(self, command: RenderCommand) -> None:
        args = command.to_args()
        logger.info("ffmpeg_start output=%s", command.output_path.name)
        logger.debug("Command: %s", args)

        try:
            process = subprocess.Popen(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise RenderFailureError(f"Failed to execute FFmpeg: {e}", str(e))

        output_tail: list[str] = []
        timed_out = False

        def _kill_process_on_timeout() -> None:
            nonlocal timed_out
            timed_out = True
            process.kill()

        timer = threading.Timer(self._timeout_seconds, _kill_process_on_timeout)
        timer.daemon = True
        timer.start()

        try:
            if process.stdout is not None:
                for line in process.stdout:
                    line = line.strip()
                    if line:
                        output_tail.append(line)
                        if len(output_tail) > 200:
                            output_tail = output_tail[-200:]
            process.wait()
        finally:
            timer.cancel()

        tail_text = "\n".join(output_tail[-OUTPUT_TAIL_LINES:])
        if timed_out:
            raise RenderFailureError(
                f"FFmpeg timed out after {self._timeout_seconds}s", tail_text
            )
        if process.returncode != 0:
            raise RenderFailureError(
                f"FFmpeg failed (code {process.returncode})", tail_text
            )
        logger.info("ffmpeg_done output=%s", command.output_path.name)
