from __future__ import annotations

import hashlib
import json
import subprocess
from pathlib import Path
from typing import Any

from skipfinder.errors import MediaIOError

HEADER_DIGEST_BYTES = 8192


def probe_media(video_path: str | Path) -> dict[str, Any]:
    """Probe media metadata via ffprobe and return a normalized summary."""

    source_path = Path(video_path).expanduser().resolve()
    if not source_path.exists():
        raise MediaIOError(f"Video file not found: {source_path}")

    payload = _run_ffprobe(source_path)
    return _normalize_probe_payload(source_path, payload)


def media_duration_seconds(metadata: dict[str, Any]) -> float:
    """Prefer the first audio stream duration, falling back to the container duration.

    Matroska, for example, only records a duration at the format level.
    """

    for stream in metadata.get("streams", []):
        if stream["codec_type"] == "audio" and stream.get("duration_seconds"):
            return float(stream["duration_seconds"])
    duration = metadata.get("format", {}).get("duration_seconds")
    if not duration:
        raise MediaIOError(f"No duration found in stream or format metadata for {metadata.get('video_path')}")
    return float(duration)


def header_md5(video_path: str | Path) -> str:
    """Digest of the first 8 KiB of a file, used to notice replaced videos cheaply."""

    try:
        with Path(video_path).open("rb") as handle:
            header = handle.read(HEADER_DIGEST_BYTES)
    except OSError as exc:
        raise MediaIOError(f"Failed to read video header: {video_path} ({exc})") from exc
    return hashlib.md5(header).hexdigest()


def ffmpeg_version() -> str:
    command = ["ffmpeg", "-hide_banner", "-version"]
    try:
        completed = subprocess.run(command, check=True, capture_output=True, text=True)
    except FileNotFoundError as exc:
        raise MediaIOError(
            "ffmpeg executable was not found. Install FFmpeg so ffmpeg is available on PATH."
        ) from exc
    except subprocess.CalledProcessError as exc:
        raise MediaIOError(f"ffmpeg -version failed: {(exc.stderr or '').strip()}") from exc

    first_line = completed.stdout.splitlines()[0] if completed.stdout else ""
    parts = first_line.split()
    return parts[2] if len(parts) > 2 and parts[:2] == ["ffmpeg", "version"] else first_line


def _run_ffprobe(video_path: Path) -> dict[str, Any]:
    command = [
        "ffprobe",
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        str(video_path),
    ]

    try:
        completed = subprocess.run(
            command,
            check=True,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError as exc:
        raise MediaIOError(
            "ffprobe executable was not found. Install FFmpeg so ffprobe is available on PATH."
        ) from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        details = f" ffprobe stderr: {stderr}" if stderr else ""
        raise MediaIOError(
            f"ffprobe failed to read media file: {video_path}.{details}"
        ) from exc

    try:
        return json.loads(completed.stdout)
    except json.JSONDecodeError as exc:
        raise MediaIOError("ffprobe returned invalid JSON output.") from exc


def _normalize_probe_payload(video_path: Path, payload: dict[str, Any]) -> dict[str, Any]:
    stream_entries = payload.get("streams", [])
    format_entry = payload.get("format", {})

    streams = [_normalize_stream(stream) for stream in stream_entries]

    return {
        "video_path": str(video_path),
        "format": {
            "format_name": format_entry.get("format_name"),
            "duration_seconds": _to_float(format_entry.get("duration")),
        },
        "streams": streams,
        "audio_stream_count": sum(1 for stream in streams if stream["codec_type"] == "audio"),
        "video_stream_count": sum(1 for stream in streams if stream["codec_type"] == "video"),
    }


def _normalize_stream(stream: dict[str, Any]) -> dict[str, Any]:
    return {
        "index": stream.get("index"),
        "codec_type": stream.get("codec_type"),
        "codec_name": stream.get("codec_name"),
        "sample_rate": _to_int(stream.get("sample_rate")),
        "channels": _to_int(stream.get("channels")),
        "duration_seconds": _to_float(stream.get("duration")),
    }


def _to_float(raw_value: Any) -> float | None:
    if raw_value in (None, "N/A", ""):
        return None
    return float(raw_value)


def _to_int(raw_value: Any) -> int | None:
    if raw_value in (None, "N/A", ""):
        return None
    return int(raw_value)
