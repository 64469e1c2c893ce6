from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

import skipfinder.cli as cli
from skipfinder.config import Settings
from skipfinder.propose.exporter import load_results
from tests.synthetic import FakeMedia, episode, noise


def _settings(tmp_path: Path, **sections: dict[str, Any]) -> Settings:
    return Settings.model_validate({"cache": {"cache_dir": str(tmp_path / "cache")}, **sections})


def _use_settings(monkeypatch: pytest.MonkeyPatch, settings: Settings) -> None:
    monkeypatch.setattr(cli, "_bootstrap", lambda config_path, verbose=False: settings)


def _json_tail(output: str) -> dict[str, Any]:
    return json.loads(output[output.index("{") :])


def test_search_with_single_video_prints_clean_error(
    fake_media: FakeMedia, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    fake_media.add("ep1.mkv", noise(10.0, seed=1))
    _use_settings(monkeypatch, _settings(tmp_path))

    result = CliRunner().invoke(cli.app, ["search", str(fake_media.root), "--extension-only"])

    assert result.exit_code == 1
    assert "[1/2] Discover videos..." in result.output
    assert "[2/2] Search 1 video(s) failed" not in result.output
    assert "Error: Comparator requires at least 2 video paths, got 1" in result.output
    assert "Traceback" not in result.output


def test_analyze_command_writes_fingerprints(
    fake_media: FakeMedia, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    videos = [fake_media.add(f"ep{index}.mkv", noise(10.0, seed=index)) for index in range(2)]
    _use_settings(monkeypatch, _settings(tmp_path))

    result = CliRunner().invoke(
        cli.app,
        [
            "analyze",
            str(fake_media.root),
            "--extension-only",
            "--hash-period",
            "0.5",
            "--hash-duration",
            "2.0",
            "--no-threading",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "[2/2] Analyze 2 video(s) done" in result.output
    summary = _json_tail(result.output)
    assert summary["status"] == "ok"
    assert [row["video"] for row in summary["videos"]] == [str(video) for video in videos]
    for row in summary["videos"]:
        assert row["hash_count"] > 0
        assert Path(row["cache_path"]).exists()


def test_analyze_command_reports_failing_video(
    fake_media: FakeMedia, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    videos = [fake_media.add(f"ep{index}.mkv", noise(10.0, seed=index)) for index in range(2)]
    fake_media.failing.add(str(videos[1]))
    _use_settings(monkeypatch, _settings(tmp_path))

    result = CliRunner().invoke(cli.app, ["analyze", str(fake_media.root), "--extension-only"])

    assert result.exit_code == 1
    assert "[2/2] Analyze 2 video(s) failed" in result.output
    assert f"Error: 1 unit(s) failed: {videos[1]}" in result.output
    assert "Traceback" not in result.output


def test_invalid_override_is_reported_as_error(
    fake_media: FakeMedia, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    fake_media.add("ep1.mkv", noise(10.0, seed=1))
    _use_settings(monkeypatch, _settings(tmp_path))

    result = CliRunner().invoke(
        cli.app, ["analyze", str(fake_media.root), "--extension-only", "--opening-search-percentage", "1.5"]
    )

    assert result.exit_code == 1
    assert "Error:" in result.output
    assert "opening_search_percentage" in result.output


def test_search_command_detects_and_exports_shared_opening(
    fake_media: FakeMedia, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    intro = noise(12.0, seed=99)
    starts = (2.0, 0.0, 4.0)
    videos = [
        fake_media.add(f"ep{index}.mkv", episode(intro, intro_start=start, total_seconds=30.0, seed=index))
        for index, start in enumerate(starts)
    ]
    _use_settings(
        monkeypatch,
        _settings(
            tmp_path,
            analyzer={"hash_period": 0.4, "hash_duration": 2.0, "opening_search_percentage": 0.6},
        ),
    )
    arguments = [
        "search",
        str(fake_media.root),
        "--extension-only",
        "--analyze",
        "--hash-match-threshold",
        "4",
        "--min-opening-duration",
        "8",
        "--no-threading",
        "--write-skip-files",
        "--output-dir",
        str(tmp_path / "out"),
    ]

    result = CliRunner().invoke(cli.app, arguments)

    assert result.exit_code == 0, result.output
    assert "[3/3] Export results done" in result.output
    assert f"{videos[1]}\n* Opening - 00:0" in result.output
    summary = _json_tail(result.output)
    assert summary["status"] == "ok"
    assert summary["detected_count"] == 3
    exported = load_results(summary["outputs"]["json"])
    for video, start in zip(videos, starts):
        opening = exported[str(video)].opening
        assert opening is not None
        assert start - 2.0 <= opening.start_seconds <= start + 0.01

    rerun = CliRunner().invoke(cli.app, [*arguments[:-3], "--use-skip-files"])

    assert rerun.exit_code == 0, rerun.output
    assert rerun.output.count("* Using existing skip data") == 3


def test_info_prints_versions(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "ffmpeg_version", lambda: "6.1.1")

    result = CliRunner().invoke(cli.app, ["info"])

    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert payload == {"ffmpeg_version": "6.1.1", "fingerprint_format_version": 1, "skip_format_version": 1}


def test_config_show_prints_resolved_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _use_settings(monkeypatch, _settings(tmp_path, comparator={"hash_match_threshold": 12}))

    result = CliRunner().invoke(cli.app, ["config", "show"])

    assert result.exit_code == 0
    assert json.loads(result.output)["comparator"]["hash_match_threshold"] == 12
