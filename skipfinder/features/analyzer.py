from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Sequence

from skipfinder.concurrency import fan_out
from skipfinder.config import AnalyzerSettings, RuntimeSettings
from skipfinder.errors import (
    BatchFailedError,
    FrameHashDataInvalidVersionError,
    FrameHashDataNotFoundError,
    InvalidArgumentError,
    InvalidFrameHashDataError,
    InvalidHashDurationError,
    InvalidHashPeriodError,
    InvalidPathEncodingError,
    MediaIOError,
    NullArgumentError,
)
from skipfinder.features.hasher import MIN_HASH_SAMPLES, hash_signal
from skipfinder.ingest.decode import decode_audio
from skipfinder.ingest.probe import header_md5, media_duration_seconds, probe_media
from skipfinder.models import AudioFingerprint, UnitFailure, VideoHandle
from skipfinder.store.fingerprint_store import FingerprintStore

logger = logging.getLogger(__name__)

DEFAULT_HASH_PERIOD = 0.3
DEFAULT_HASH_DURATION = 3.0
DEFAULT_SAMPLE_RATE = 11025
DEFAULT_OPENING_SEARCH_PERCENTAGE = 0.33
DEFAULT_ENDING_SEARCH_PERCENTAGE = 0.25
DEFAULT_CACHE_DIR = Path("data/cache")
# Decoded audio often ends slightly before the container-reported duration.
COVERAGE_SLACK_SECONDS = 1.0
# Fingerprint timestamps are rounded to microseconds.
TIMESTAMP_RESOLUTION = 1e-6


def resolve_video_handles(paths: Sequence[str | Path | bytes] | None) -> tuple[VideoHandle, ...]:
    """Validate caller paths and pin each one to its index in the original ordering."""

    if paths is None:
        raise NullArgumentError("paths argument is required")

    handles: list[VideoHandle] = []
    for index, raw_path in enumerate(paths):
        if raw_path is None:
            raise NullArgumentError(f"path at index {index} is missing")
        if isinstance(raw_path, bytes):
            try:
                raw_path = raw_path.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise InvalidPathEncodingError(f"path at index {index} is not valid UTF-8") from exc
        text = str(raw_path)
        try:
            text.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise InvalidPathEncodingError(f"path at index {index} is not valid UTF-8: {text!r}") from exc
        handles.append(VideoHandle(index=index, path=Path(text).expanduser().resolve()))
    return tuple(handles)


def validate_search_percentage(name: str, value: float) -> float:
    if not isinstance(value, int | float) or not 0 < value <= 1:
        raise InvalidArgumentError(f"{name} must be within (0, 1], got {value!r}")
    return float(value)


class Analyzer:
    """Decode videos and convert their audio into persisted :class:`AudioFingerprint` data.

    With ``include_endings`` disabled only the opening search window (plus one hash
    duration) is decoded. ``threaded_decoding`` lets FFmpeg use multiple decode
    threads per video, while ``run(threading=True)`` processes videos concurrently.
    ``force`` ignores any cached fingerprint.

    Failure policy: every video is processed even if a sibling fails. Failures are
    kept in :attr:`failures`; with ``fail_fast`` (the default) :meth:`run` then
    raises :class:`BatchFailedError` naming each failing path.
    """

    def __init__(
        self,
        paths: Sequence[str | Path | bytes],
        *,
        opening_search_percentage: float = DEFAULT_OPENING_SEARCH_PERCENTAGE,
        ending_search_percentage: float = DEFAULT_ENDING_SEARCH_PERCENTAGE,
        include_endings: bool = False,
        threaded_decoding: bool = False,
        force: bool = False,
        store: FingerprintStore | None = None,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        fail_fast: bool = True,
        max_workers: int | None = None,
    ) -> None:
        self.videos = resolve_video_handles(paths)
        if not self.videos:
            raise InvalidArgumentError("Analyzer requires at least one video path")
        if sample_rate <= 0:
            raise InvalidArgumentError(f"sample_rate must be positive, got {sample_rate}")

        self.opening_search_percentage = validate_search_percentage(
            "opening_search_percentage", opening_search_percentage
        )
        self.ending_search_percentage = validate_search_percentage(
            "ending_search_percentage", ending_search_percentage
        )
        self.include_endings = include_endings
        self.threaded_decoding = threaded_decoding
        self.force = force
        self.store = store or FingerprintStore(DEFAULT_CACHE_DIR)
        self.sample_rate = sample_rate
        self.fail_fast = fail_fast
        self.max_workers = max_workers
        self.failures: list[UnitFailure] = []
        self._fingerprints: list[AudioFingerprint | None] = [None] * len(self.videos)

    @classmethod
    def from_settings(
        cls,
        paths: Sequence[str | Path],
        settings: AnalyzerSettings,
        *,
        runtime: RuntimeSettings | None = None,
        store: FingerprintStore | None = None,
        force: bool = False,
    ) -> Analyzer:
        runtime = runtime or RuntimeSettings()
        return cls(
            paths,
            opening_search_percentage=settings.opening_search_percentage,
            ending_search_percentage=settings.ending_search_percentage,
            include_endings=settings.include_endings,
            threaded_decoding=settings.threaded_decoding,
            force=force,
            store=store,
            sample_rate=settings.sample_rate,
            fail_fast=runtime.fail_fast,
            max_workers=runtime.max_workers,
        )

    def run(
        self,
        hash_period: float = DEFAULT_HASH_PERIOD,
        hash_duration: float = DEFAULT_HASH_DURATION,
        persist: bool = True,
        threading: bool = True,
    ) -> list[AudioFingerprint]:
        """Fingerprint every video and return the results in path order."""

        self._validate_hash_config(hash_period, hash_duration)

        results, failures = fan_out(
            self.videos,
            lambda handle: self.run_single(handle, hash_period, hash_duration, persist),
            label=lambda handle: str(handle.path),
            threading=threading,
            max_workers=self.max_workers,
        )
        self._fingerprints = results
        self.failures = failures

        if failures and self.fail_fast:
            raise BatchFailedError(failures)

        return [fingerprint for fingerprint in results if fingerprint is not None]

    def run_single(
        self,
        handle: VideoHandle,
        hash_period: float,
        hash_duration: float,
        persist: bool,
    ) -> AudioFingerprint:
        path = handle.path
        md5 = header_md5(path)

        if not self.force:
            cached = self._load_cached(handle, md5, hash_period, hash_duration)
            if cached is not None:
                logger.info("Skipping analysis for %s (cached)", path)
                return cached

        metadata = probe_media(path)
        if metadata["audio_stream_count"] == 0:
            raise MediaIOError(f"No audio stream found in {path}")
        duration = media_duration_seconds(metadata)
        if hash_duration > duration:
            raise InvalidHashDurationError(
                f"hash_duration {hash_duration}s is longer than {path} ({duration:.3f}s)"
            )

        decode_span = None
        if not self.include_endings:
            decode_span = min(duration, duration * self.opening_search_percentage + hash_duration)

        logger.debug("Starting frame processing for %s", path)
        samples = decode_audio(
            path,
            self.sample_rate,
            duration_seconds=decode_span,
            threaded=self.threaded_decoding,
        )
        frames = hash_signal(samples, self.sample_rate, hash_period, hash_duration)
        logger.debug("Completed frame processing for %s: %d hashes", path, len(frames))

        fingerprint = AudioFingerprint(
            video_id=handle.video_id,
            sample_rate=self.sample_rate,
            hash_period=hash_period,
            hash_duration=hash_duration,
            duration_seconds=duration,
            md5=md5,
            frames=tuple(frames),
        )

        if persist:
            self.store.save(fingerprint)

        return fingerprint

    def get_frame_hashes(self, index: int | VideoHandle) -> AudioFingerprint:
        """Return the fingerprint computed for the video at ``index`` in the original ordering."""

        position = index.index if isinstance(index, VideoHandle) else index
        if not isinstance(position, int) or not 0 <= position < len(self.videos):
            raise NullArgumentError(f"no video at index {index!r}")

        fingerprint = self._fingerprints[position]
        if fingerprint is None:
            raise FrameHashDataNotFoundError(f"frame hashes not computed for {self.videos[position].path}")
        return fingerprint

    def _validate_hash_config(self, hash_period: float, hash_duration: float) -> None:
        if not math.isfinite(hash_period) or hash_period <= 0:
            raise InvalidHashPeriodError(f"hash_period must be greater than 0, got {hash_period}")
        min_period = max(1.0 / self.sample_rate, TIMESTAMP_RESOLUTION)
        if hash_period < min_period:
            raise InvalidHashPeriodError(
                f"hash_period must be at least one sample ({min_period:.6f}s at {self.sample_rate} Hz), "
                f"got {hash_period}"
            )

        min_duration = MIN_HASH_SAMPLES / self.sample_rate
        if not math.isfinite(hash_duration) or hash_duration < min_duration:
            raise InvalidHashDurationError(
                f"hash_duration must be at least {min_duration:.3f}s at {self.sample_rate} Hz, got {hash_duration}"
            )

    def _load_cached(
        self,
        handle: VideoHandle,
        md5: str,
        hash_period: float,
        hash_duration: float,
    ) -> AudioFingerprint | None:
        try:
            cached = self.store.load(handle.video_id)
        except FrameHashDataNotFoundError:
            return None
        except (FrameHashDataInvalidVersionError, InvalidFrameHashDataError, MediaIOError) as exc:
            logger.warning("Failed to load cached frame hashes for %s (%s); recomputing.", handle.path, exc)
            return None

        if cached.md5 != md5:
            logger.info("Video header changed for %s; recomputing frame hashes.", handle.path)
            return None
        if (
            cached.sample_rate != self.sample_rate
            or not math.isclose(cached.hash_period, hash_period)
            or not math.isclose(cached.hash_duration, hash_duration)
        ):
            logger.info("Analysis settings changed for %s; recomputing frame hashes.", handle.path)
            return None

        covered = cached.frames[-1][0] + hash_duration if cached.frames else 0.0
        required = cached.duration_seconds * (1.0 if self.include_endings else self.opening_search_percentage)
        if covered + hash_period + COVERAGE_SLACK_SECONDS < required:
            logger.info("Cached frame hashes for %s stop at %.1fs; recomputing.", handle.path, covered)
            return None
        return cached
