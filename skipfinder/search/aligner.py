from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np

from skipfinder.config import ComparatorSettings
from skipfinder.errors import InvalidArgumentError
from skipfinder.features.analyzer import (
    DEFAULT_ENDING_SEARCH_PERCENTAGE,
    DEFAULT_OPENING_SEARCH_PERCENTAGE,
    validate_search_percentage,
)
from skipfinder.features.hasher import HASH_BITS, hamming_matrix, simhash32
from skipfinder.models import Alignment, AudioFingerprint, MatchWindow, SegmentKind, SkipRange

logger = logging.getLogger(__name__)

DEFAULT_HASH_MATCH_THRESHOLD = 15
DEFAULT_MIN_OPENING_DURATION = 20.0
DEFAULT_MIN_ENDING_DURATION = 20.0
DEFAULT_TIME_PADDING = 0.0


@dataclass(slots=True, frozen=True)
class MatchRun:
    """A diagonal run of matching hashes, in window-relative indices."""

    source_start: int
    target_start: int
    length: int
    total_distance: int

    def sort_key(self) -> tuple[int, int, int, int]:
        return (-self.length, self.total_distance, self.source_start, self.target_start)


class Aligner:
    """Find the longest constant-offset run of matching hashes between two fingerprints.

    Only hashes inside each video's match window are considered. Among runs of equal
    length the one with the smaller summed Hamming distance wins, then the earliest
    start in the source, then in the target, so results never depend on scheduling.
    """

    def __init__(
        self,
        hash_match_threshold: int = DEFAULT_HASH_MATCH_THRESHOLD,
        min_opening_duration: float = DEFAULT_MIN_OPENING_DURATION,
        min_ending_duration: float = DEFAULT_MIN_ENDING_DURATION,
        time_padding: float = DEFAULT_TIME_PADDING,
        opening_search_percentage: float = DEFAULT_OPENING_SEARCH_PERCENTAGE,
        ending_search_percentage: float = DEFAULT_ENDING_SEARCH_PERCENTAGE,
    ) -> None:
        if isinstance(hash_match_threshold, bool) or not isinstance(hash_match_threshold, int):
            raise InvalidArgumentError(f"hash_match_threshold must be an integer, got {hash_match_threshold!r}")
        if not 0 <= hash_match_threshold <= HASH_BITS:
            raise InvalidArgumentError(
                f"hash_match_threshold must be between 0 and {HASH_BITS}, got {hash_match_threshold}"
            )
        for name, value in (
            ("min_opening_duration", min_opening_duration),
            ("min_ending_duration", min_ending_duration),
            ("time_padding", time_padding),
        ):
            if not math.isfinite(value) or value < 0:
                raise InvalidArgumentError(f"{name} must be a non-negative number, got {value!r}")

        self.hash_match_threshold = hash_match_threshold
        self.min_opening_duration = float(min_opening_duration)
        self.min_ending_duration = float(min_ending_duration)
        self.time_padding = float(time_padding)
        self.opening_search_percentage = validate_search_percentage(
            "opening_search_percentage", opening_search_percentage
        )
        self.ending_search_percentage = validate_search_percentage(
            "ending_search_percentage", ending_search_percentage
        )

    @classmethod
    def from_settings(
        cls,
        settings: ComparatorSettings,
        *,
        opening_search_percentage: float = DEFAULT_OPENING_SEARCH_PERCENTAGE,
        ending_search_percentage: float = DEFAULT_ENDING_SEARCH_PERCENTAGE,
    ) -> Aligner:
        return cls(
            hash_match_threshold=settings.hash_match_threshold,
            min_opening_duration=settings.min_opening_duration,
            min_ending_duration=settings.min_ending_duration,
            time_padding=settings.time_padding,
            opening_search_percentage=opening_search_percentage,
            ending_search_percentage=ending_search_percentage,
        )

    def min_duration(self, kind: SegmentKind) -> float:
        return self.min_opening_duration if kind is SegmentKind.OPENING else self.min_ending_duration

    def match_window(self, fingerprint: AudioFingerprint, kind: SegmentKind) -> MatchWindow:
        duration = fingerprint.duration_seconds
        if kind is SegmentKind.OPENING:
            return MatchWindow(kind=kind, start_seconds=0.0, end_seconds=duration * self.opening_search_percentage)
        return MatchWindow(
            kind=kind,
            start_seconds=duration * (1.0 - self.ending_search_percentage),
            end_seconds=duration,
        )

    def matches(self, source: AudioFingerprint, target: AudioFingerprint, kind: SegmentKind) -> set[tuple[int, int]]:
        """All ``(i, j)`` index pairs (into the full sequences) whose hashes match inside the windows."""

        self._check_compatible(source, target)
        source_slice = self._window_slice(source, kind)
        target_slice = self._window_slice(target, kind)
        distances = self._distances(source, target, source_slice, target_slice)
        pairs = np.argwhere(distances <= self.hash_match_threshold)
        return {(int(i) + source_slice.start, int(j) + target_slice.start) for i, j in pairs}

    def align(self, source: AudioFingerprint, target: AudioFingerprint, kind: SegmentKind) -> Alignment | None:
        """Return the winning run as skip ranges on both videos, or ``None`` if nothing qualifies."""

        self._check_compatible(source, target)
        source_slice = self._window_slice(source, kind)
        target_slice = self._window_slice(target, kind)
        if source_slice.start >= source_slice.stop or target_slice.start >= target_slice.stop:
            return None

        distances = self._distances(source, target, source_slice, target_slice)
        run = longest_diagonal_run(distances, self.hash_match_threshold)
        if run is None:
            return None

        source_index = source_slice.start + run.source_start
        target_index = target_slice.start + run.target_start
        source_range = self._to_skip_range(source, kind, source_index, run.length)
        target_range = self._to_skip_range(target, kind, target_index, run.length)
        if source_range is None or target_range is None:
            return None

        minimum = self.min_duration(kind)
        if source_range.duration_seconds < minimum or target_range.duration_seconds < minimum:
            logger.debug(
                "Longest %s run (%d hashes) between %s and %s is below %.1fs",
                kind.value,
                run.length,
                source.video_id,
                target.video_id,
                minimum,
            )
            return None

        return Alignment(
            kind=kind,
            source=source_range,
            target=target_range,
            run_length=run.length,
            total_distance=run.total_distance,
            source_signature=simhash32(source.hashes[source_index : source_index + run.length]),
            target_signature=simhash32(target.hashes[target_index : target_index + run.length]),
        )

    def _check_compatible(self, source: AudioFingerprint, target: AudioFingerprint) -> None:
        if not math.isclose(source.hash_period, target.hash_period):
            raise InvalidArgumentError(
                f"cannot align fingerprints with different hash periods "
                f"({source.hash_period} vs {target.hash_period})"
            )

    def _window_slice(self, fingerprint: AudioFingerprint, kind: SegmentKind) -> slice:
        window = self.match_window(fingerprint, kind)
        timestamps = fingerprint.timestamps
        start = int(np.searchsorted(timestamps, window.start_seconds, side="left"))
        stop = int(np.searchsorted(timestamps, window.end_seconds, side="right"))
        return slice(start, stop)

    def _distances(
        self,
        source: AudioFingerprint,
        target: AudioFingerprint,
        source_slice: slice,
        target_slice: slice,
    ) -> np.ndarray:
        return hamming_matrix(source.hashes[source_slice], target.hashes[target_slice])

    def _to_skip_range(
        self,
        fingerprint: AudioFingerprint,
        kind: SegmentKind,
        index: int,
        length: int,
    ) -> SkipRange | None:
        start = fingerprint.frames[index][0]
        end = start + length * fingerprint.hash_period
        padded_start = max(0.0, start - self.time_padding)
        padded_end = min(fingerprint.duration_seconds, end + self.time_padding)
        if padded_start >= padded_end:
            return None
        return SkipRange(kind=kind, start_seconds=round(padded_start, 6), end_seconds=round(padded_end, 6))


def longest_diagonal_run(distances: np.ndarray, threshold: int) -> MatchRun | None:
    """Scan every diagonal of a distance matrix for the best run of matches.

    A diagonal holds pairs with a constant offset ``j - i``, so consecutive matches on
    it advance both sequences by exactly one hash period.
    """

    if distances.size == 0:
        return None

    matches = distances <= threshold
    if not matches.any():
        return None

    row_count, column_count = matches.shape
    best: MatchRun | None = None
    for offset in range(-(row_count - 1), column_count):
        diagonal_matches = np.diagonal(matches, offset)
        if not diagonal_matches.any():
            continue
        if best is not None and len(diagonal_matches) < best.length:
            continue

        diagonal_distances = np.diagonal(distances, offset).astype(np.int64)
        padded = np.concatenate(([False], diagonal_matches, [False]))
        edges = np.flatnonzero(padded[1:] != padded[:-1])
        starts, stops = edges[0::2], edges[1::2]
        lengths = stops - starts
        cumulative = np.concatenate(([0], np.cumsum(np.where(diagonal_matches, diagonal_distances, 0))))
        totals = cumulative[stops] - cumulative[starts]

        longest = int(lengths.max())
        if best is not None and longest < best.length:
            continue

        row_base, column_base = max(0, -offset), max(0, offset)
        # Within one diagonal, the earliest run wins ties because starts are ascending.
        candidates = np.flatnonzero(lengths == longest)
        winner = candidates[np.argmin(totals[candidates])]
        run = MatchRun(
            source_start=row_base + int(starts[winner]),
            target_start=column_base + int(starts[winner]),
            length=longest,
            total_distance=int(totals[winner]),
        )
        if best is None or run.sort_key() < best.sort_key():
            best = run

    return best
