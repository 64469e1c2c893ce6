from __future__ import annotations

import logging
import mimetypes
from pathlib import Path

from skipfinder.errors import MediaIOError
from skipfinder.ingest.probe import probe_media

logger = logging.getLogger(__name__)

CACHE_SUFFIXES = {".json", ".csv"}
VIDEO_SUFFIXES = {".avi", ".flv", ".m4v", ".mkv", ".mov", ".mp4", ".mpeg", ".mpg", ".ts", ".webm", ".wmv"}


def find_candidate_videos(
    paths: list[str | Path],
    *,
    recursive: bool = True,
    require_audio: bool = True,
    full_check: bool = True,
) -> list[Path]:
    """Expand files and directories into validated video paths, in argument order.

    With ``full_check`` every candidate is probed with ffprobe, which is accurate but
    slow; otherwise only the file extension is consulted.
    """

    videos: list[Path] = []
    seen: set[Path] = set()
    for raw_path in paths:
        path = Path(raw_path).expanduser().resolve()
        if not path.exists():
            raise MediaIOError(f"path does not exist: {path}")

        if path.is_dir():
            pattern = "**/*" if recursive else "*"
            candidates = sorted(entry for entry in path.glob(pattern) if entry.is_file())
        else:
            candidates = [path]

        for candidate in candidates:
            if candidate in seen:
                continue
            if is_valid_video_file(candidate, full_check=full_check, require_audio=require_audio):
                seen.add(candidate)
                videos.append(candidate)
            else:
                logger.debug("Ignoring non-video path %s", candidate)

    return videos


def is_valid_video_file(path: Path, *, full_check: bool, require_audio: bool) -> bool:
    if path.suffix.lower() in CACHE_SUFFIXES:
        return False

    if not full_check:
        if path.suffix.lower() in VIDEO_SUFFIXES:
            return True
        mime_type, _ = mimetypes.guess_type(path.name)
        return bool(mime_type and mime_type.startswith("video/"))

    try:
        metadata = probe_media(path)
    except MediaIOError as exc:
        logger.debug("ffprobe rejected %s: %s", path, exc)
        return False
    if metadata["video_stream_count"] == 0:
        return False
    return not require_audio or metadata["audio_stream_count"] > 0
