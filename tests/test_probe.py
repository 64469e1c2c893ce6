from __future__ import annotations

import json
import subprocess
from pathlib import Path

import numpy as np
import pytest

from skipfinder.errors import MediaIOError
from skipfinder.ingest.decode import _build_ffmpeg_command, decode_audio
from skipfinder.ingest.probe import _run_ffprobe, header_md5, media_duration_seconds, probe_media


def test_run_ffprobe_wraps_missing_binary_error(tmp_path: Path) -> None:
    video_path = tmp_path / "sample.mkv"
    video_path.write_bytes(b"data")

    def _raise_missing(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        raise FileNotFoundError("ffprobe")

    with pytest.MonkeyPatch.context() as mp:
        mp.setattr(subprocess, "run", _raise_missing)
        with pytest.raises(MediaIOError, match="ffprobe executable was not found"):
            _run_ffprobe(video_path)


def test_run_ffprobe_wraps_called_process_error(tmp_path: Path) -> None:
    video_path = tmp_path / "sample.mkv"
    video_path.write_bytes(b"data")

    def _raise_process_error(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        raise subprocess.CalledProcessError(
            returncode=1,
            cmd=["ffprobe", str(video_path)],
            output="",
            stderr="invalid data found when processing input",
        )

    with pytest.MonkeyPatch.context() as mp:
        mp.setattr(subprocess, "run", _raise_process_error)
        with pytest.raises(MediaIOError, match="ffprobe failed to read media file") as excinfo:
            _run_ffprobe(video_path)

    assert "invalid data found" in str(excinfo.value)


def test_probe_media_normalizes_streams(tmp_path: Path) -> None:
    video_path = tmp_path / "sample.mkv"
    video_path.write_bytes(b"data")
    payload = {
        "format": {"format_name": "matroska,webm", "duration": "1440.5"},
        "streams": [
            {"index": 0, "codec_type": "video", "codec_name": "h264"},
            {"index": 1, "codec_type": "audio", "codec_name": "aac", "sample_rate": "48000", "channels": 2},
        ],
    }

    def _fake_run(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        return subprocess.CompletedProcess(args=[], returncode=0, stdout=json.dumps(payload), stderr="")

    with pytest.MonkeyPatch.context() as mp:
        mp.setattr(subprocess, "run", _fake_run)
        metadata = probe_media(video_path)

    assert metadata["audio_stream_count"] == 1
    assert metadata["video_stream_count"] == 1
    assert metadata["streams"][1]["sample_rate"] == 48000
    assert metadata["streams"][1]["duration_seconds"] is None
    assert media_duration_seconds(metadata) == 1440.5


def test_probe_media_rejects_missing_file(tmp_path: Path) -> None:
    with pytest.raises(MediaIOError, match="Video file not found"):
        probe_media(tmp_path / "missing.mkv")


def test_media_duration_prefers_audio_stream() -> None:
    metadata = {
        "video_path": "sample.mp4",
        "format": {"duration_seconds": 100.0},
        "streams": [{"codec_type": "audio", "duration_seconds": 99.5}],
    }

    assert media_duration_seconds(metadata) == 99.5


def test_media_duration_requires_some_duration() -> None:
    metadata = {"video_path": "sample.mp4", "format": {"duration_seconds": None}, "streams": []}

    with pytest.raises(MediaIOError, match="No duration found"):
        media_duration_seconds(metadata)


def test_header_md5_only_reads_file_header(tmp_path: Path) -> None:
    first = tmp_path / "first.mkv"
    second = tmp_path / "second.mkv"
    header = b"h" * 8192
    first.write_bytes(header + b"tail one")
    second.write_bytes(header + b"tail two")

    assert header_md5(first) == header_md5(second)
    with pytest.raises(MediaIOError):
        header_md5(tmp_path / "missing.mkv")


def test_ffmpeg_command_limits_duration_and_threads() -> None:
    command = _build_ffmpeg_command(
        source_path=Path("/videos/ep1.mkv"),
        sample_rate=11025,
        duration_seconds=12.5,
        threaded=False,
    )

    assert command[command.index("-threads") + 1] == "1"
    assert command[command.index("-t") + 1] == "12.500"
    assert command[command.index("-ar") + 1] == "11025"
    assert command[-1] == "pipe:1"


def test_decode_audio_converts_pcm_to_float(tmp_path: Path) -> None:
    pcm = np.array([0, 16384, -32768], dtype=np.int16).tobytes()

    def _fake_run(*args: object, **kwargs: object) -> subprocess.CompletedProcess[bytes]:
        return subprocess.CompletedProcess(args=[], returncode=0, stdout=pcm, stderr=b"")

    with pytest.MonkeyPatch.context() as mp:
        mp.setattr(subprocess, "run", _fake_run)
        samples = decode_audio(tmp_path / "ep1.mkv", 11025)

    assert samples.dtype == np.float32
    assert samples.tolist() == [0.0, 0.5, -1.0]


def test_decode_audio_wraps_ffmpeg_failure(tmp_path: Path) -> None:
    def _raise_process_error(*args: object, **kwargs: object) -> subprocess.CompletedProcess[bytes]:
        raise subprocess.CalledProcessError(
            returncode=1, cmd=["ffmpeg"], output=b"", stderr=b"Stream map matches no streams"
        )

    with pytest.MonkeyPatch.context() as mp:
        mp.setattr(subprocess, "run", _raise_process_error)
        with pytest.raises(MediaIOError, match="Stream map matches no streams"):
            decode_audio(tmp_path / "ep1.mkv", 11025)


def test_decode_audio_rejects_empty_output(tmp_path: Path) -> None:
    def _fake_run(*args: object, **kwargs: object) -> subprocess.CompletedProcess[bytes]:
        return subprocess.CompletedProcess(args=[], returncode=0, stdout=b"", stderr=b"")

    with pytest.MonkeyPatch.context() as mp:
        mp.setattr(subprocess, "run", _fake_run)
        with pytest.raises(MediaIOError, match="no audio samples"):
            decode_audio(tmp_path / "ep1.mkv", 11025)
