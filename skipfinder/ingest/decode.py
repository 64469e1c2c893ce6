from __future__ import annotations

import logging
import subprocess
from pathlib import Path

import numpy as np

from skipfinder.errors import MediaIOError

logger = logging.getLogger(__name__)


def decode_audio(
    video_path: str | Path,
    sample_rate: int,
    *,
    duration_seconds: float | None = None,
    threaded: bool = False,
) -> np.ndarray:
    """Decode the best audio stream of a video to mono float32 PCM at ``sample_rate``."""

    source_path = Path(video_path)
    command = _build_ffmpeg_command(
        source_path=source_path,
        sample_rate=sample_rate,
        duration_seconds=duration_seconds,
        threaded=threaded,
    )
    logger.debug("Decoding audio: %s", " ".join(command))

    try:
        completed = subprocess.run(command, check=True, capture_output=True)
    except FileNotFoundError as exc:
        raise MediaIOError(
            "ffmpeg executable was not found. Install FFmpeg so ffmpeg is available on PATH."
        ) from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or b"").decode("utf-8", errors="replace").strip()
        details = f" ffmpeg stderr: {stderr}" if stderr else ""
        raise MediaIOError(f"ffmpeg failed to decode audio from {source_path}.{details}") from exc

    raw = completed.stdout
    usable = len(raw) - (len(raw) % 2)
    samples = np.frombuffer(raw[:usable], dtype=np.int16)
    if len(samples) == 0:
        raise MediaIOError(f"ffmpeg produced no audio samples for {source_path}.")
    return samples.astype(np.float32) / 32768.0


def _build_ffmpeg_command(
    *,
    source_path: Path,
    sample_rate: int,
    duration_seconds: float | None,
    threaded: bool,
) -> list[str]:
    command = [
        "ffmpeg",
        "-v",
        "error",
        "-nostdin",
        "-threads",
        "0" if threaded else "1",
        "-i",
        str(source_path),
    ]
    if duration_seconds is not None:
        command.extend(["-t", f"{duration_seconds:.3f}"])
    command.extend(
        [
            "-map",
            "0:a:0",
            "-vn",
            "-ac",
            "1",
            "-ar",
            str(sample_rate),
            "-f",
            "s16le",
            "-c:a",
            "pcm_s16le",
            "pipe:1",
        ]
    )
    return command
