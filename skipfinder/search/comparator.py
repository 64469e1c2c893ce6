from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

import typer

from skipfinder.concurrency import fan_out
from skipfinder.config import AnalyzerSettings, Settings
from skipfinder.errors import (
    BatchFailedError,
    ComparatorMinimumPathsError,
    FrameHashDataInvalidVersionError,
    FrameHashDataNotFoundError,
    InvalidArgumentError,
    InvalidFrameHashDataError,
    MediaIOError,
)
from skipfinder.features.analyzer import (
    DEFAULT_CACHE_DIR,
    DEFAULT_ENDING_SEARCH_PERCENTAGE,
    DEFAULT_OPENING_SEARCH_PERCENTAGE,
    Analyzer,
    resolve_video_handles,
)
from skipfinder.features.hasher import hamming
from skipfinder.models import (
    Alignment,
    AudioFingerprint,
    SearchResult,
    SegmentKind,
    SkipRange,
    UnitFailure,
    VideoHandle,
)
from skipfinder.propose.exporter import format_report
from skipfinder.search.aligner import (
    DEFAULT_HASH_MATCH_THRESHOLD,
    DEFAULT_MIN_ENDING_DURATION,
    DEFAULT_MIN_OPENING_DURATION,
    DEFAULT_TIME_PADDING,
    Aligner,
)
from skipfinder.store.fingerprint_store import FingerprintStore
from skipfinder.store.skip_store import SkipRangeStore

logger = logging.getLogger(__name__)

COUNT_WEIGHT = 0.3
DURATION_WEIGHT = 0.7


@dataclass(slots=True, frozen=True)
class Candidate:
    """One detected range for a video, tagged with the simhash of its matched run."""

    skip_range: SkipRange
    signature: int


class Comparator:
    """Search for shared openings and endings across two or more videos.

    Every unordered pair of videos is aligned. Each video then picks, per segment
    kind, the candidate range that is both long and corroborated by the most other
    candidates with a similar run signature.
    """

    def __init__(
        self,
        paths: Sequence[str | Path | bytes],
        *,
        include_endings: bool = False,
        hash_match_threshold: int = DEFAULT_HASH_MATCH_THRESHOLD,
        min_opening_duration: float = DEFAULT_MIN_OPENING_DURATION,
        min_ending_duration: float = DEFAULT_MIN_ENDING_DURATION,
        time_padding: float = DEFAULT_TIME_PADDING,
        opening_search_percentage: float = DEFAULT_OPENING_SEARCH_PERCENTAGE,
        ending_search_percentage: float = DEFAULT_ENDING_SEARCH_PERCENTAGE,
        fingerprint_store: FingerprintStore | None = None,
        skip_store: SkipRangeStore | None = None,
        analyzer_settings: AnalyzerSettings | None = None,
        fail_fast: bool = True,
        max_workers: int | None = None,
        reporter: Callable[[str], None] | None = None,
    ) -> None:
        self.videos = resolve_video_handles(paths)
        if len(self.videos) < 2:
            raise ComparatorMinimumPathsError(
                f"Comparator requires at least 2 video paths, got {len(self.videos)}"
            )

        self.include_endings = include_endings
        self.aligner = Aligner(
            hash_match_threshold=hash_match_threshold,
            min_opening_duration=min_opening_duration,
            min_ending_duration=min_ending_duration,
            time_padding=time_padding,
            opening_search_percentage=opening_search_percentage,
            ending_search_percentage=ending_search_percentage,
        )
        self.fingerprint_store = fingerprint_store or FingerprintStore(DEFAULT_CACHE_DIR)
        self.skip_store = skip_store or SkipRangeStore(DEFAULT_CACHE_DIR)
        self.analyzer_settings = (analyzer_settings or AnalyzerSettings()).model_copy(
            update={
                "opening_search_percentage": opening_search_percentage,
                "ending_search_percentage": ending_search_percentage,
                "include_endings": include_endings,
            }
        )
        self.fail_fast = fail_fast
        self.max_workers = max_workers
        self.reporter = reporter or typer.echo
        self.failures: list[UnitFailure] = []

    @classmethod
    def from_settings(
        cls,
        paths: Sequence[str | Path],
        settings: Settings,
        *,
        include_endings: bool | None = None,
        reporter: Callable[[str], None] | None = None,
    ) -> Comparator:
        analyzer = settings.analyzer
        return cls(
            paths,
            include_endings=analyzer.include_endings if include_endings is None else include_endings,
            hash_match_threshold=settings.comparator.hash_match_threshold,
            min_opening_duration=settings.comparator.min_opening_duration,
            min_ending_duration=settings.comparator.min_ending_duration,
            time_padding=settings.comparator.time_padding,
            opening_search_percentage=analyzer.opening_search_percentage,
            ending_search_percentage=analyzer.ending_search_percentage,
            fingerprint_store=FingerprintStore(settings.cache.cache_dir),
            skip_store=SkipRangeStore(settings.cache.cache_dir),
            analyzer_settings=analyzer,
            fail_fast=settings.runtime.fail_fast,
            max_workers=settings.runtime.max_workers,
            reporter=reporter,
        )

    @property
    def hash_match_threshold(self) -> int:
        return self.aligner.hash_match_threshold

    def run(
        self,
        analyze: bool = False,
        display: bool = True,
        use_skip_files: bool = False,
        write_skip_files: bool = False,
        threading: bool = True,
    ) -> dict[str, SearchResult]:
        """Run the search and return one :class:`SearchResult` per video, keyed by path.

        * ``analyze`` fingerprints the videos first (reusing valid cached data);
          otherwise fingerprints must already be in the fingerprint store.
        * ``use_skip_files`` reuses stored skip ranges for unchanged videos.
        * ``write_skip_files`` stores newly detected ranges.
        * ``display`` sends a human-readable report to the reporter.
        """

        fingerprints, failures = self._collect_fingerprints(analyze, threading)
        return self.run_with_fingerprints(
            fingerprints,
            display=display,
            use_skip_files=use_skip_files,
            write_skip_files=write_skip_files,
            threading=threading,
            prior_failures=failures,
        )

    def run_with_fingerprints(
        self,
        fingerprints: Sequence[AudioFingerprint | None],
        display: bool = True,
        use_skip_files: bool = False,
        write_skip_files: bool = False,
        threading: bool = True,
        prior_failures: Sequence[UnitFailure] = (),
    ) -> dict[str, SearchResult]:
        if len(fingerprints) != len(self.videos):
            raise InvalidArgumentError(
                f"expected {len(self.videos)} fingerprints, got {len(fingerprints)}"
            )

        cached: dict[int, SearchResult] = {}
        if use_skip_files:
            for handle, fingerprint in zip(self.videos, fingerprints):
                if fingerprint is None:
                    continue
                result = self._load_skip_result(handle, fingerprint.md5)
                if result is not None:
                    cached[handle.index] = result

        # Pairs appear once: N videos yield N * (N - 1) / 2 pairs.
        pairs = [
            (i, j)
            for i in range(len(self.videos))
            for j in range(i + 1, len(self.videos))
            if fingerprints[i] is not None
            and fingerprints[j] is not None
            and not (i in cached and j in cached)
        ]
        logger.debug("Comparing %d video pairs (%d videos cached)", len(pairs), len(cached))

        alignments, failures = fan_out(
            pairs,
            lambda pair: self._search_pair(fingerprints[pair[0]], fingerprints[pair[1]]),
            label=lambda pair: f"{self.videos[pair[0]].path} <-> {self.videos[pair[1]].path}",
            threading=threading,
            max_workers=self.max_workers,
        )
        self.failures = [*prior_failures, *failures]
        if self.failures and self.fail_fast:
            raise BatchFailedError(self.failures)

        candidates: list[list[Candidate]] = [[] for _ in self.videos]
        for (src_idx, dst_idx), pair_alignments in zip(pairs, alignments):
            for alignment in pair_alignments or []:
                candidates[src_idx].append(Candidate(alignment.source, alignment.source_signature))
                candidates[dst_idx].append(Candidate(alignment.target, alignment.target_signature))

        results: dict[str, SearchResult] = {}
        for handle, fingerprint in zip(self.videos, fingerprints):
            if fingerprint is None:
                continue
            if handle.index in cached:
                results[handle.video_id] = cached[handle.index]
                continue

            result = self.find_best_match(candidates[handle.index])
            if write_skip_files and not result.is_empty():
                self.skip_store.save(handle.video_id, fingerprint.md5, result)
            results[handle.video_id] = result

        if display:
            self.reporter(format_report(results))

        return results

    def find_best_match(self, candidates: Sequence[Candidate]) -> SearchResult:
        """Pick the best opening and ending among one video's candidates.

        Candidates whose run signatures are within 1.5x the hash match threshold
        corroborate each other; the score weights corroboration count and duration.
        """

        return SearchResult(
            opening=self._best_of_kind(candidates, SegmentKind.OPENING),
            ending=self._best_of_kind(candidates, SegmentKind.ENDING),
        )

    def _best_of_kind(self, candidates: Sequence[Candidate], kind: SegmentKind) -> SkipRange | None:
        pool = [candidate for candidate in candidates if candidate.skip_range.kind is kind]
        if not pool:
            return None

        tolerance = self.hash_match_threshold + self.hash_match_threshold // 2
        scored: list[tuple[float, float, float, SkipRange]] = []
        for candidate in pool:
            support = sum(1 for other in pool if hamming(candidate.signature, other.signature) < tolerance)
            skip_range = candidate.skip_range
            score = support * COUNT_WEIGHT + skip_range.duration_seconds * DURATION_WEIGHT
            scored.append((-score, skip_range.start_seconds, skip_range.end_seconds, skip_range))

        scored.sort(key=lambda row: row[:3])
        return scored[0][3]

    def _search_pair(self, source: AudioFingerprint, target: AudioFingerprint) -> list[Alignment]:
        kinds = [SegmentKind.OPENING]
        if self.include_endings:
            kinds.append(SegmentKind.ENDING)

        found: list[Alignment] = []
        for kind in kinds:
            alignment = self.aligner.align(source, target, kind)
            if alignment is not None:
                found.append(alignment)
        return found

    def _collect_fingerprints(
        self, analyze: bool, threading: bool
    ) -> tuple[list[AudioFingerprint | None], list[UnitFailure]]:
        if analyze:
            analyzer = Analyzer(
                [handle.path for handle in self.videos],
                opening_search_percentage=self.analyzer_settings.opening_search_percentage,
                ending_search_percentage=self.analyzer_settings.ending_search_percentage,
                include_endings=self.analyzer_settings.include_endings,
                threaded_decoding=self.analyzer_settings.threaded_decoding,
                store=self.fingerprint_store,
                sample_rate=self.analyzer_settings.sample_rate,
                fail_fast=self.fail_fast,
                max_workers=self.max_workers,
            )
            analyzer.run(
                self.analyzer_settings.hash_period,
                self.analyzer_settings.hash_duration,
                persist=True,
                threading=threading,
            )
            return [self._fingerprint_or_none(analyzer, handle) for handle in analyzer.videos], analyzer.failures

        fingerprints, failures = fan_out(
            self.videos,
            lambda handle: self.fingerprint_store.load(handle.video_id),
            label=lambda handle: str(handle.path),
            threading=threading,
            max_workers=self.max_workers,
        )
        return fingerprints, failures

    def _fingerprint_or_none(self, analyzer: Analyzer, handle: VideoHandle) -> AudioFingerprint | None:
        try:
            return analyzer.get_frame_hashes(handle)
        except FrameHashDataNotFoundError:
            return None

    def _load_skip_result(self, handle: VideoHandle, md5: str) -> SearchResult | None:
        try:
            return self.skip_store.load(handle.video_id, md5=md5)
        except FrameHashDataNotFoundError:
            return None
        except (FrameHashDataInvalidVersionError, InvalidFrameHashDataError, MediaIOError) as exc:
            logger.warning("Ignoring skip data for %s (%s); recomputing.", handle.path, exc)
            return None
