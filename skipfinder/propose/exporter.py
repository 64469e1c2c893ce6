from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any

from skipfinder.models import SearchResult, SegmentKind, SkipRange


def format_time(seconds: float) -> str:
    """Format seconds as ``MM:SS`` (minutes keep growing past an hour)."""

    whole = int(max(seconds, 0.0))
    return f"{whole // 60:02d}:{whole % 60:02d}"


def format_report(results: dict[str, SearchResult]) -> str:
    """Render search results as the human-readable per-video report."""

    blocks: list[str] = []
    for video_id, result in results.items():
        lines = [video_id]
        if result.cached:
            lines.append("* Using existing skip data")
        lines.append(_format_range("Opening", result.opening))
        lines.append(_format_range("Ending", result.ending))
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def export_results(
    results: dict[str, SearchResult],
    output_dir: str | Path,
    *,
    basename: str = "skip_ranges",
) -> dict[str, Path]:
    """Export search results as a JSON contract and a flat CSV for quick review."""

    resolved_output_dir = Path(output_dir)
    resolved_output_dir.mkdir(parents=True, exist_ok=True)

    json_path = resolved_output_dir / f"{basename}.json"
    csv_path = resolved_output_dir / f"{basename}.csv"

    _write_json(results, json_path)
    _write_csv(results, csv_path)

    return {
        "json": json_path,
        "csv": csv_path,
    }


def load_results(path: str | Path) -> dict[str, SearchResult]:
    """Load search results from the exporter JSON contract."""

    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, list):
        raise ValueError("Skip range contract must be a JSON array.")

    results: dict[str, SearchResult] = {}
    for idx, row in enumerate(payload, start=1):
        if not isinstance(row, dict):
            raise ValueError(f"Skip range row {idx} must be an object.")
        results[str(row["video"])] = SearchResult(
            opening=_range_from_row(SegmentKind.OPENING, row.get("opening")),
            ending=_range_from_row(SegmentKind.ENDING, row.get("ending")),
            cached=bool(row.get("cached", False)),
        )
    return results


def _format_range(label: str, skip_range: SkipRange | None) -> str:
    if skip_range is None:
        return f"* {label} - N/A"
    return f"* {label} - {format_time(skip_range.start_seconds)}-{format_time(skip_range.end_seconds)}"


def _range_to_row(skip_range: SkipRange | None) -> dict[str, float] | None:
    if skip_range is None:
        return None
    return {
        "start_seconds": round(skip_range.start_seconds, 3),
        "end_seconds": round(skip_range.end_seconds, 3),
    }


def _range_from_row(kind: SegmentKind, row: Any) -> SkipRange | None:
    if row is None:
        return None
    return SkipRange(kind=kind, start_seconds=float(row["start_seconds"]), end_seconds=float(row["end_seconds"]))


def _write_json(results: dict[str, SearchResult], path: Path) -> None:
    payload = [
        {
            "video": video_id,
            "opening": _range_to_row(result.opening),
            "ending": _range_to_row(result.ending),
            "cached": result.cached,
        }
        for video_id, result in results.items()
    ]
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")


def _write_csv(results: dict[str, SearchResult], path: Path) -> None:
    fields = [
        "video",
        "kind",
        "start_seconds",
        "end_seconds",
        "duration_seconds",
        "start",
        "end",
        "cached",
    ]

    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=fields)
        writer.writeheader()
        for video_id, result in results.items():
            for skip_range in (result.opening, result.ending):
                if skip_range is None:
                    continue
                writer.writerow(
                    {
                        "video": video_id,
                        "kind": skip_range.kind.value,
                        "start_seconds": f"{skip_range.start_seconds:.3f}",
                        "end_seconds": f"{skip_range.end_seconds:.3f}",
                        "duration_seconds": f"{skip_range.duration_seconds:.3f}",
                        "start": format_time(skip_range.start_seconds),
                        "end": format_time(skip_range.end_seconds),
                        "cached": "yes" if result.cached else "no",
                    }
                )
