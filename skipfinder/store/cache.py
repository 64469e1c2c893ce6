from __future__ import annotations

import hashlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any

from skipfinder.errors import (
    FrameHashDataInvalidVersionError,
    FrameHashDataNotFoundError,
    InvalidFrameHashDataError,
    MediaIOError,
)


def cache_key(video_id: str) -> str:
    """Stable, filesystem-safe key derived from a video path."""

    stem = "".join(ch.lower() if ch.isalnum() else "_" for ch in Path(video_id).stem).strip("_")
    digest = hashlib.sha1(video_id.encode("utf-8")).hexdigest()[:16]
    return f"{stem or 'video'}-{digest}"


def read_entry(path: Path, kind: str, supported_versions: set[int]) -> tuple[int, dict[str, Any]]:
    """Read a versioned cache entry and return ``(version, payload)``.

    The version tag is checked before the payload is looked at; unknown versions
    are rejected rather than parsed on a best-effort basis.
    """

    if not path.exists():
        raise FrameHashDataNotFoundError(f"{kind} data not found at: {path}")

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise MediaIOError(f"Failed to read {kind} data at {path}: {exc}") from exc

    try:
        envelope = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidFrameHashDataError(f"{kind} data at {path} is not valid JSON: {exc}") from exc

    if not isinstance(envelope, dict) or "version" not in envelope:
        raise InvalidFrameHashDataError(f"{kind} data at {path} has no version tag.")
    if envelope.get("kind") != kind:
        raise InvalidFrameHashDataError(
            f"{path} holds {envelope.get('kind')!r} data, expected {kind!r}."
        )

    version = envelope["version"]
    if isinstance(version, bool) or not isinstance(version, int) or version not in supported_versions:
        raise FrameHashDataInvalidVersionError(
            f"{kind} data at {path} has unsupported version {version!r}."
        )

    payload = envelope.get("payload")
    if not isinstance(payload, dict):
        raise InvalidFrameHashDataError(f"{kind} data at {path} has no payload object.")
    return version, payload


def write_entry(path: Path, kind: str, version: int, payload: dict[str, Any]) -> Path:
    """Atomically write a versioned cache entry.

    The entry is written to a temporary file in the same directory and renamed into
    place, so readers see either the previous entry or the complete new one.
    """

    envelope = {"kind": kind, "version": version, "payload": payload}
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(envelope, handle, sort_keys=True)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as exc:
        raise MediaIOError(f"Failed to write {kind} data to {path}: {exc}") from exc
    return path


def delete_entry(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise MediaIOError(f"Failed to delete cache entry {path}: {exc}") from exc
    return True
