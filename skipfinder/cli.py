from __future__ import annotations

import json
import logging
from pathlib import Path
from time import perf_counter
from typing import Any, Callable, TypeVar

import typer
from pydantic import BaseModel

from skipfinder.config import Settings, load_settings
from skipfinder.errors import SkipFinderError
from skipfinder.features.analyzer import Analyzer
from skipfinder.ingest.discover import find_candidate_videos
from skipfinder.ingest.probe import ffmpeg_version
from skipfinder.logging_config import configure_logging
from skipfinder.propose.exporter import export_results
from skipfinder.search.comparator import Comparator
from skipfinder.store.fingerprint_store import FINGERPRINT_VERSION, FingerprintStore
from skipfinder.store.skip_store import SKIP_VERSION

app = typer.Typer(help="Detect shared openings and endings across episodes of a series.")
config_app = typer.Typer(help="Configuration commands.")

app.add_typer(config_app, name="config")

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

CONFIG_OPTION_HELP = "Path to YAML configuration file."


def _run_with_progress(step_index: int, total_steps: int, label: str, work: Callable[[], T]) -> T:
    typer.echo(f"[{step_index}/{total_steps}] {label}...", err=True)
    started_at = perf_counter()
    try:
        result = work()
    except Exception:
        elapsed = perf_counter() - started_at
        typer.echo(f"[{step_index}/{total_steps}] {label} failed after {elapsed:.1f}s", err=True)
        raise
    elapsed = perf_counter() - started_at
    typer.echo(f"[{step_index}/{total_steps}] {label} done in {elapsed:.1f}s", err=True)
    return result


def _bootstrap(config_path: Path | None, verbose: bool = False) -> Settings:
    settings = load_settings(config_path)
    configure_logging(settings.logging, verbose=verbose)
    logger.debug("Loaded runtime settings from %s", config_path or "defaults")
    return settings


def _override(section: M, **values: Any) -> M:
    """Apply CLI overrides to a settings section, re-running its validation."""

    updates = {key: value for key, value in values.items() if value is not None}
    if not updates:
        return section
    return type(section).model_validate({**section.model_dump(mode="python"), **updates})


def _discover(paths: list[Path], extension_only: bool) -> list[Path]:
    videos = find_candidate_videos(paths, recursive=True, require_audio=True, full_check=not extension_only)
    return sorted(videos)


def _fail(exc: Exception) -> typer.Exit:
    logger.error("Command failed: %s", exc)
    typer.echo(f"Error: {exc}", err=True)
    return typer.Exit(code=1)


@config_app.command("show")
def show_config(
    config_path: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        envvar="SKIPFINDER_CONFIG",
        help=CONFIG_OPTION_HELP,
    )
) -> None:
    """Print resolved runtime configuration."""

    settings = _bootstrap(config_path)
    typer.echo(json.dumps(settings.model_dump(mode="json"), indent=2))


@app.command()
def info() -> None:
    """Display FFmpeg and cache format versions."""

    try:
        version = ffmpeg_version()
    except SkipFinderError as exc:
        raise _fail(exc) from exc

    typer.echo(
        json.dumps(
            {
                "ffmpeg_version": version,
                "fingerprint_format_version": FINGERPRINT_VERSION,
                "skip_format_version": SKIP_VERSION,
            },
            indent=2,
        )
    )


@app.command()
def analyze(
    paths: list[Path] = typer.Argument(..., help="Video files or directories to analyze."),
    config_path: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        envvar="SKIPFINDER_CONFIG",
        help=CONFIG_OPTION_HELP,
    ),
    opening_search_percentage: float | None = typer.Option(
        None, help="Portion of the start of each video that may contain the opening (0-1]."
    ),
    ending_search_percentage: float | None = typer.Option(
        None, help="Portion of the end of each video that may contain the ending (0-1]."
    ),
    hash_period: float | None = typer.Option(None, help="Seconds between consecutive hashes."),
    hash_duration: float | None = typer.Option(None, help="Seconds of audio summarized by each hash."),
    include_endings: bool | None = typer.Option(
        None, "--include-endings/--openings-only", help="Also fingerprint the end of each video."
    ),
    threaded_decoding: bool | None = typer.Option(
        None, "--threaded-decoding/--single-threaded-decoding", help="Let FFmpeg decode with multiple threads."
    ),
    force: bool = typer.Option(False, help="Re-analyze all videos and ignore any cached hash data."),
    persist: bool = typer.Option(True, help="Write frame hash data to the cache."),
    threading: bool | None = typer.Option(None, "--threading/--no-threading", help="Analyze videos in parallel."),
    extension_only: bool = typer.Option(
        False, help="Accept video files by extension instead of probing them with ffprobe."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Decode videos into frame hash data stored in the cache directory."""

    settings = _bootstrap(config_path, verbose)
    total_steps = 2

    try:
        analyzer_settings = _override(
            settings.analyzer,
            opening_search_percentage=opening_search_percentage,
            ending_search_percentage=ending_search_percentage,
            hash_period=hash_period,
            hash_duration=hash_duration,
            include_endings=include_endings,
            threaded_decoding=threaded_decoding,
        )
        runtime = _override(settings.runtime, threading=threading)

        videos = _run_with_progress(1, total_steps, "Discover videos", lambda: _discover(paths, extension_only))
        store = FingerprintStore(settings.cache.cache_dir)
        analyzer = Analyzer.from_settings(videos, analyzer_settings, runtime=runtime, store=store, force=force)
        fingerprints = _run_with_progress(
            2,
            total_steps,
            f"Analyze {len(videos)} video(s)",
            lambda: analyzer.run(
                analyzer_settings.hash_period,
                analyzer_settings.hash_duration,
                persist=persist,
                threading=runtime.threading,
            ),
        )
    except (SkipFinderError, RuntimeError, ValueError) as exc:
        raise _fail(exc) from exc

    typer.echo(
        json.dumps(
            {
                "status": "ok" if not analyzer.failures else "partial",
                "video_count": len(videos),
                "videos": [
                    {
                        "video": fingerprint.video_id,
                        "hash_count": len(fingerprint),
                        "duration_seconds": fingerprint.duration_seconds,
                        "cache_path": str(store.path_for(fingerprint.video_id)) if persist else None,
                    }
                    for fingerprint in fingerprints
                ],
                "failures": [{"video": failure.unit, "error": str(failure.error)} for failure in analyzer.failures],
            },
            indent=2,
        )
    )


@app.command()
def search(
    paths: list[Path] = typer.Argument(..., help="Video files or directories to search for openings and endings."),
    config_path: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        envvar="SKIPFINDER_CONFIG",
        help=CONFIG_OPTION_HELP,
    ),
    hash_match_threshold: int | None = typer.Option(
        None, help="Maximum differing bits for two hashes to match, 0 (exact) to 32."
    ),
    min_opening_duration: float | None = typer.Option(None, help="Minimum opening duration in seconds."),
    min_ending_duration: float | None = typer.Option(None, help="Minimum ending duration in seconds."),
    time_padding: float | None = typer.Option(
        None, help="Seconds added before and after each detected range."
    ),
    include_endings: bool | None = typer.Option(
        None, "--include-endings/--openings-only", help="Also search for endings."
    ),
    analyze: bool = typer.Option(
        False, help="Analyze videos in-place instead of requiring pre-computed hash data."
    ),
    use_skip_files: bool = typer.Option(False, help="Reuse stored skip ranges for unchanged videos."),
    write_skip_files: bool = typer.Option(False, help="Store detected skip ranges for later runs."),
    no_display: bool = typer.Option(False, help="Do not print the per-video report."),
    output_dir: Path | None = typer.Option(
        None, "--output-dir", "-o", help="Directory for JSON/CSV exports of the results."
    ),
    basename: str = typer.Option("skip_ranges", help="Base filename for exported artifacts."),
    threading: bool | None = typer.Option(None, "--threading/--no-threading", help="Compare pairs in parallel."),
    extension_only: bool = typer.Option(
        False, help="Accept video files by extension instead of probing them with ffprobe."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Search for shared openings and endings across two or more videos."""

    settings = _bootstrap(config_path, verbose)
    total_steps = 3 if output_dir else 2

    try:
        settings = settings.model_copy(
            update={
                "comparator": _override(
                    settings.comparator,
                    hash_match_threshold=hash_match_threshold,
                    min_opening_duration=min_opening_duration,
                    min_ending_duration=min_ending_duration,
                    time_padding=time_padding,
                ),
                "analyzer": _override(settings.analyzer, include_endings=include_endings),
                "runtime": _override(settings.runtime, threading=threading),
            }
        )

        videos = _run_with_progress(1, total_steps, "Discover videos", lambda: _discover(paths, extension_only))
        comparator = Comparator.from_settings(videos, settings)
        results = _run_with_progress(
            2,
            total_steps,
            f"Search {len(videos)} video(s)",
            lambda: comparator.run(
                analyze=analyze,
                display=not no_display,
                use_skip_files=use_skip_files,
                write_skip_files=write_skip_files,
                threading=settings.runtime.threading,
            ),
        )

        exported: dict[str, Path] = {}
        if output_dir:
            exported = _run_with_progress(
                3,
                total_steps,
                "Export results",
                lambda: export_results(results, output_dir, basename=basename),
            )
    except (SkipFinderError, RuntimeError, ValueError) as exc:
        raise _fail(exc) from exc

    detected = sum(1 for result in results.values() if not result.is_empty())
    typer.echo(
        json.dumps(
            {
                "status": "ok" if not comparator.failures else "partial",
                "video_count": len(videos),
                "detected_count": detected,
                "outputs": {key: str(path) for key, path in exported.items()},
            },
            indent=2,
        )
    )


if __name__ == "__main__":
    app()
