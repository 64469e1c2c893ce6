from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, ValidationError, field_validator

from skipfinder.errors import InvalidFrameHashDataError
from skipfinder.models import SearchResult, SegmentKind, SkipRange
from skipfinder.store.cache import cache_key, delete_entry, read_entry, write_entry

logger = logging.getLogger(__name__)

SKIP_KIND = "skip_ranges"
SKIP_VERSION = 1
SUPPORTED_VERSIONS = {SKIP_VERSION}


class SkipPayloadV1(BaseModel):
    video_id: str
    md5: str
    opening: tuple[float, float] | None = None
    ending: tuple[float, float] | None = None

    @field_validator("opening", "ending")
    @classmethod
    def _check_range(cls, value: tuple[float, float] | None) -> tuple[float, float] | None:
        if value is not None and not 0 <= value[0] < value[1]:
            raise ValueError(f"skip range {value} must satisfy 0 <= start < end")
        return value


class SkipRangeStore:
    """Previously detected skip ranges, one versioned JSON entry per video."""

    def __init__(self, cache_dir: str | Path) -> None:
        self.root = Path(cache_dir).expanduser() / "skips"

    def path_for(self, video_id: str) -> Path:
        return self.root / f"{cache_key(video_id)}.json"

    def load(self, video_id: str, md5: str | None = None) -> SearchResult:
        """Load cached ranges; when ``md5`` is given, entries for a different file are rejected."""

        path = self.path_for(video_id)
        _, payload = read_entry(path, SKIP_KIND, SUPPORTED_VERSIONS)
        try:
            parsed = SkipPayloadV1.model_validate(payload)
        except ValidationError as exc:
            raise InvalidFrameHashDataError(f"Invalid skip data at {path}: {exc}") from exc

        if parsed.video_id != video_id:
            raise InvalidFrameHashDataError(f"Skip data at {path} belongs to {parsed.video_id}.")
        if md5 is not None and parsed.md5 != md5:
            raise InvalidFrameHashDataError(f"Skip data at {path} is stale (video header changed).")

        return SearchResult(
            opening=_to_range(SegmentKind.OPENING, parsed.opening),
            ending=_to_range(SegmentKind.ENDING, parsed.ending),
            cached=True,
        )

    def save(self, video_id: str, md5: str, result: SearchResult) -> Path:
        payload = {
            "video_id": video_id,
            "md5": md5,
            "opening": _from_range(result.opening),
            "ending": _from_range(result.ending),
        }
        path = write_entry(self.path_for(video_id), SKIP_KIND, SKIP_VERSION, payload)
        logger.debug("Wrote skip ranges for %s to %s", video_id, path)
        return path

    def delete(self, video_id: str) -> bool:
        return delete_entry(self.path_for(video_id))


def _to_range(kind: SegmentKind, value: tuple[float, float] | None) -> SkipRange | None:
    if value is None:
        return None
    return SkipRange(kind=kind, start_seconds=float(value[0]), end_seconds=float(value[1]))


def _from_range(skip_range: SkipRange | None) -> list[float] | None:
    if skip_range is None:
        return None
    return [skip_range.start_seconds, skip_range.end_seconds]
