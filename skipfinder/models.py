from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import numpy as np

from skipfinder.errors import SkipFinderError


class SegmentKind(str, Enum):
    OPENING = "opening"
    ENDING = "ending"


@dataclass(slots=True, frozen=True)
class AudioFingerprint:
    """Time-ordered perceptual hashes summarizing one video's audio track."""

    video_id: str
    sample_rate: int
    hash_period: float
    hash_duration: float
    duration_seconds: float
    md5: str
    frames: tuple[tuple[float, int], ...]

    def __len__(self) -> int:
        return len(self.frames)

    @property
    def timestamps(self) -> np.ndarray:
        return np.fromiter((ts for ts, _ in self.frames), dtype=np.float64, count=len(self.frames))

    @property
    def hashes(self) -> np.ndarray:
        return np.fromiter((value for _, value in self.frames), dtype=np.uint32, count=len(self.frames))


@dataclass(slots=True, frozen=True)
class MatchWindow:
    """Bounded region of a video inside which alignment is searched."""

    kind: SegmentKind
    start_seconds: float
    end_seconds: float

    def contains(self, timestamp: float) -> bool:
        return self.start_seconds <= timestamp <= self.end_seconds


@dataclass(slots=True, frozen=True)
class SkipRange:
    kind: SegmentKind
    start_seconds: float
    end_seconds: float

    @property
    def duration_seconds(self) -> float:
        return self.end_seconds - self.start_seconds


@dataclass(slots=True)
class SearchResult:
    """Best detected opening and ending for one video."""

    opening: SkipRange | None = None
    ending: SkipRange | None = None
    cached: bool = False

    def is_empty(self) -> bool:
        return self.opening is None and self.ending is None


@dataclass(slots=True, frozen=True)
class Alignment:
    """Winning matched run between a source and a target fingerprint."""

    kind: SegmentKind
    source: SkipRange
    target: SkipRange
    run_length: int
    total_distance: int
    source_signature: int
    target_signature: int


@dataclass(slots=True, frozen=True)
class VideoHandle:
    index: int
    path: Path

    @property
    def video_id(self) -> str:
        return str(self.path)


@dataclass(slots=True, frozen=True)
class UnitFailure:
    unit: str
    error: SkipFinderError
