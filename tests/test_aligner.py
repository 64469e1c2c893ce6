from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from skipfinder.config import ComparatorSettings
from skipfinder.errors import InvalidArgumentError
from skipfinder.models import SegmentKind, SkipRange
from skipfinder.search.aligner import Aligner, longest_diagonal_run
from tests.synthetic import distinct_hashes, make_fingerprint


def _aligner(**overrides: object) -> Aligner:
    options = {
        "hash_match_threshold": 2,
        "min_opening_duration": 4.0,
        "min_ending_duration": 4.0,
        "time_padding": 0.0,
        "opening_search_percentage": 1.0,
        "ending_search_percentage": 0.5,
    }
    options.update(overrides)
    return Aligner(**options)


def _pair_with_shared_run(
    source_offset: int,
    target_offset: int,
    run_length: int,
    size: int = 40,
) -> tuple[list[int], list[int]]:
    source = distinct_hashes(size, seed=1)
    target = distinct_hashes(size, seed=2)
    shared = distinct_hashes(run_length, seed=3)
    source[source_offset : source_offset + run_length] = shared
    target[target_offset : target_offset + run_length] = shared
    return source, target


def test_shared_run_maps_to_ranges_on_both_videos() -> None:
    source_hashes, target_hashes = _pair_with_shared_run(5, 0, 10)
    source = make_fingerprint("a.mkv", source_hashes)
    target = make_fingerprint("b.mkv", target_hashes)

    alignment = _aligner().align(source, target, SegmentKind.OPENING)

    assert alignment is not None
    assert alignment.source == SkipRange(SegmentKind.OPENING, 2.5, 7.5)
    assert alignment.target == SkipRange(SegmentKind.OPENING, 0.0, 5.0)
    assert alignment.run_length == 10
    assert alignment.total_distance == 0
    assert alignment.source_signature == alignment.target_signature


def test_run_shorter_than_minimum_duration_is_discarded() -> None:
    source_hashes, target_hashes = _pair_with_shared_run(5, 0, 5)

    alignment = _aligner().align(
        make_fingerprint("a.mkv", source_hashes),
        make_fingerprint("b.mkv", target_hashes),
        SegmentKind.OPENING,
    )

    assert alignment is None


def test_no_matching_hashes_yields_none() -> None:
    source = make_fingerprint("a.mkv", distinct_hashes(30, seed=10))
    target = make_fingerprint("b.mkv", distinct_hashes(30, seed=11))

    assert _aligner(hash_match_threshold=0).align(source, target, SegmentKind.OPENING) is None


def test_padding_extends_ranges_and_clamps_to_video_bounds() -> None:
    source_hashes, target_hashes = _pair_with_shared_run(5, 0, 10)

    alignment = _aligner(time_padding=1.0).align(
        make_fingerprint("a.mkv", source_hashes),
        make_fingerprint("b.mkv", target_hashes),
        SegmentKind.OPENING,
    )

    assert alignment is not None
    assert alignment.source == SkipRange(SegmentKind.OPENING, 1.5, 8.5)
    assert alignment.target == SkipRange(SegmentKind.OPENING, 0.0, 6.0)


def test_ending_search_uses_tail_window_and_clamps_end() -> None:
    source_hashes, target_hashes = _pair_with_shared_run(30, 25, 10)
    source = make_fingerprint("a.mkv", source_hashes)
    target = make_fingerprint("b.mkv", target_hashes)

    plain = _aligner().align(source, target, SegmentKind.ENDING)
    padded = _aligner(time_padding=1.0).align(source, target, SegmentKind.ENDING)

    assert plain is not None and padded is not None
    assert plain.source == SkipRange(SegmentKind.ENDING, 15.0, 20.0)
    assert plain.target == SkipRange(SegmentKind.ENDING, 12.5, 17.5)
    assert padded.source == SkipRange(SegmentKind.ENDING, 14.0, 20.0)
    assert padded.target == SkipRange(SegmentKind.ENDING, 11.5, 18.5)


def test_run_outside_match_window_is_ignored() -> None:
    source_hashes, target_hashes = _pair_with_shared_run(20, 20, 10)

    alignment = _aligner(opening_search_percentage=0.25).align(
        make_fingerprint("a.mkv", source_hashes),
        make_fingerprint("b.mkv", target_hashes),
        SegmentKind.OPENING,
    )

    assert alignment is None


def test_run_is_truncated_at_match_window_edge() -> None:
    source_hashes, target_hashes = _pair_with_shared_run(5, 0, 10)

    alignment = _aligner(opening_search_percentage=0.25, min_opening_duration=2.0).align(
        make_fingerprint("a.mkv", source_hashes),
        make_fingerprint("b.mkv", target_hashes),
        SegmentKind.OPENING,
    )

    assert alignment is not None
    assert alignment.run_length == 6
    assert alignment.source == SkipRange(SegmentKind.OPENING, 2.5, 5.5)


def test_equal_runs_prefer_earliest_source_start() -> None:
    source = distinct_hashes(40, seed=20)
    target = distinct_hashes(40, seed=21)
    first = distinct_hashes(10, seed=22)
    second = distinct_hashes(10, seed=23)
    source[2:12], target[20:30] = first, first
    source[20:30], target[2:12] = second, second

    alignment = _aligner().align(
        make_fingerprint("a.mkv", source), make_fingerprint("b.mkv", target), SegmentKind.OPENING
    )

    assert alignment is not None
    assert alignment.source.start_seconds == 1.0
    assert alignment.target.start_seconds == 10.0


def test_equal_runs_prefer_smaller_total_distance() -> None:
    source = distinct_hashes(40, seed=20)
    target = distinct_hashes(40, seed=21)
    noisy = distinct_hashes(10, seed=22)
    exact = distinct_hashes(10, seed=23)
    source[2:12] = noisy
    target[20:30] = [value ^ 0b1 for value in noisy]
    source[20:30], target[2:12] = exact, exact

    alignment = _aligner().align(
        make_fingerprint("a.mkv", source), make_fingerprint("b.mkv", target), SegmentKind.OPENING
    )

    assert alignment is not None
    assert alignment.total_distance == 0
    assert alignment.source.start_seconds == 10.0


def test_alignment_is_deterministic_across_threads() -> None:
    source_hashes, target_hashes = _pair_with_shared_run(7, 3, 12)
    source = make_fingerprint("a.mkv", source_hashes)
    target = make_fingerprint("b.mkv", target_hashes)
    aligner = _aligner()
    expected = aligner.align(source, target, SegmentKind.OPENING)

    with ThreadPoolExecutor(max_workers=4) as executor:
        results = list(executor.map(lambda _: aligner.align(source, target, SegmentKind.OPENING), range(16)))

    assert expected is not None
    assert all(result == expected for result in results)


def test_raising_threshold_never_removes_matches() -> None:
    rng = np.random.default_rng(30)
    source_hashes = distinct_hashes(30, seed=31)
    target_hashes = []
    for value in source_hashes:
        for bit in rng.choice(32, size=int(rng.integers(0, 12)), replace=False):
            value ^= 1 << int(bit)
        target_hashes.append(value)
    source = make_fingerprint("a.mkv", source_hashes)
    target = make_fingerprint("b.mkv", target_hashes)

    previous: set[tuple[int, int]] = set()
    for threshold in (0, 2, 4, 8, 16, 32):
        current = _aligner(hash_match_threshold=threshold).matches(source, target, SegmentKind.OPENING)
        assert previous <= current
        previous = current

    assert len(previous) == 30 * 30


def test_fingerprints_with_different_hash_periods_are_rejected() -> None:
    source = make_fingerprint("a.mkv", distinct_hashes(10, seed=1), hash_period=0.5)
    target = make_fingerprint("b.mkv", distinct_hashes(10, seed=2), hash_period=0.3)

    with pytest.raises(InvalidArgumentError, match="different hash periods"):
        _aligner().align(source, target, SegmentKind.OPENING)


@pytest.mark.parametrize("threshold", [-1, 33, True, 2.5])
def test_invalid_threshold_is_rejected(threshold: object) -> None:
    with pytest.raises(InvalidArgumentError):
        _aligner(hash_match_threshold=threshold)


def test_negative_padding_is_rejected() -> None:
    with pytest.raises(InvalidArgumentError, match="time_padding"):
        _aligner(time_padding=-1.0)


def test_from_settings_uses_comparator_section() -> None:
    aligner = Aligner.from_settings(
        ComparatorSettings(hash_match_threshold=10, min_opening_duration=5.0), opening_search_percentage=0.5
    )

    assert aligner.hash_match_threshold == 10
    assert aligner.min_duration(SegmentKind.OPENING) == 5.0
    assert aligner.min_duration(SegmentKind.ENDING) == 20.0
    assert aligner.opening_search_percentage == 0.5


def test_match_windows_cover_head_and_tail() -> None:
    fingerprint = make_fingerprint("a.mkv", distinct_hashes(10, seed=1), duration_seconds=100.0)
    aligner = _aligner(opening_search_percentage=0.3, ending_search_percentage=0.25)

    opening = aligner.match_window(fingerprint, SegmentKind.OPENING)
    ending = aligner.match_window(fingerprint, SegmentKind.ENDING)

    assert (opening.start_seconds, opening.end_seconds) == pytest.approx((0.0, 30.0))
    assert (ending.start_seconds, ending.end_seconds) == pytest.approx((75.0, 100.0))
    assert opening.contains(29.5) and not opening.contains(30.5)


def test_longest_diagonal_run_prefers_length_then_distance() -> None:
    distances = np.full((5, 6), 32, dtype=np.int32)
    for step in range(3):
        distances[step, step + 1] = 0
        distances[step + 1, step] = 1
    distances[4, 0] = 0

    run = longest_diagonal_run(distances, threshold=2)

    assert run is not None
    assert (run.source_start, run.target_start, run.length, run.total_distance) == (0, 1, 3, 0)


def test_longest_diagonal_run_handles_empty_and_unmatched_input() -> None:
    assert longest_diagonal_run(np.zeros((0, 4), dtype=np.int32), threshold=4) is None
    assert longest_diagonal_run(np.full((3, 3), 20, dtype=np.int32), threshold=4) is None
