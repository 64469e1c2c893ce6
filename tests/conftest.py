from __future__ import annotations

from pathlib import Path

import pytest

import skipfinder.features.analyzer as analyzer_module
from tests.synthetic import FakeMedia


@pytest.fixture()
def fake_media(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> FakeMedia:
    media_dir = tmp_path / "media"
    media_dir.mkdir()
    media = FakeMedia(media_dir)
    monkeypatch.setattr(analyzer_module, "probe_media", media.probe)
    monkeypatch.setattr(analyzer_module, "decode_audio", media.decode)
    return media
