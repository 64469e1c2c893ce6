from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, model_validator

from skipfinder.errors import InvalidFrameHashDataError
from skipfinder.models import AudioFingerprint
from skipfinder.store.cache import cache_key, delete_entry, read_entry, write_entry

logger = logging.getLogger(__name__)

FINGERPRINT_KIND = "fingerprint"
FINGERPRINT_VERSION = 1
# Removing or changing the meaning of a listed version is a breaking change.
SUPPORTED_VERSIONS = {FINGERPRINT_VERSION}


class FingerprintPayloadV1(BaseModel):
    video_id: str
    sample_rate: int = Field(gt=0)
    hash_period: float = Field(gt=0)
    hash_duration: float = Field(gt=0)
    duration_seconds: float = Field(ge=0)
    md5: str
    frames: list[tuple[float, int]]

    @model_validator(mode="after")
    def _check_frames(self) -> FingerprintPayloadV1:
        previous = None
        for timestamp, value in self.frames:
            if not 0 <= value <= 0xFFFFFFFF:
                raise ValueError(f"hash {value} does not fit in 32 bits")
            if previous is not None and timestamp <= previous:
                raise ValueError("frame timestamps must be strictly increasing")
            previous = timestamp
        return self


class FingerprintStore:
    """One versioned JSON entry per video under ``<cache_dir>/fingerprints``."""

    def __init__(self, cache_dir: str | Path) -> None:
        self.root = Path(cache_dir).expanduser() / "fingerprints"

    def path_for(self, video_id: str) -> Path:
        return self.root / f"{cache_key(video_id)}.json"

    def exists(self, video_id: str) -> bool:
        return self.path_for(video_id).exists()

    def load(self, video_id: str) -> AudioFingerprint:
        path = self.path_for(video_id)
        _, payload = read_entry(path, FINGERPRINT_KIND, SUPPORTED_VERSIONS)
        try:
            parsed = FingerprintPayloadV1.model_validate(payload)
        except ValidationError as exc:
            raise InvalidFrameHashDataError(f"Invalid frame hash data at {path}: {exc}") from exc

        if parsed.video_id != video_id:
            raise InvalidFrameHashDataError(
                f"Frame hash data at {path} belongs to {parsed.video_id}, not {video_id}."
            )

        return AudioFingerprint(
            video_id=parsed.video_id,
            sample_rate=parsed.sample_rate,
            hash_period=parsed.hash_period,
            hash_duration=parsed.hash_duration,
            duration_seconds=parsed.duration_seconds,
            md5=parsed.md5,
            frames=tuple((float(ts), int(value)) for ts, value in parsed.frames),
        )

    def save(self, fingerprint: AudioFingerprint) -> Path:
        payload = {
            "video_id": fingerprint.video_id,
            "sample_rate": fingerprint.sample_rate,
            "hash_period": fingerprint.hash_period,
            "hash_duration": fingerprint.hash_duration,
            "duration_seconds": fingerprint.duration_seconds,
            "md5": fingerprint.md5,
            "frames": [[ts, value] for ts, value in fingerprint.frames],
        }
        path = write_entry(self.path_for(fingerprint.video_id), FINGERPRINT_KIND, FINGERPRINT_VERSION, payload)
        logger.debug("Wrote %d frame hashes for %s to %s", len(fingerprint), fingerprint.video_id, path)
        return path

    def delete(self, video_id: str) -> bool:
        return delete_entry(self.path_for(video_id))
