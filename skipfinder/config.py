from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

DEFAULT_CONFIG_PATH = Path("configs/default.yaml")
ENV_PREFIX = "SKIPFINDER_"


class AnalyzerSettings(BaseModel):
    hash_period: float = Field(default=0.3, gt=0)
    hash_duration: float = Field(default=3.0, gt=0)
    sample_rate: int = Field(default=11025, gt=0)
    opening_search_percentage: float = Field(default=0.33, gt=0, le=1)
    ending_search_percentage: float = Field(default=0.25, gt=0, le=1)
    include_endings: bool = False
    threaded_decoding: bool = False


class ComparatorSettings(BaseModel):
    hash_match_threshold: int = Field(default=15, ge=0, le=32)
    min_opening_duration: float = Field(default=20.0, ge=0)
    min_ending_duration: float = Field(default=20.0, ge=0)
    time_padding: float = Field(default=0.0, ge=0)


class CacheSettings(BaseModel):
    cache_dir: Path = Path("data/cache")
    output_dir: Path = Path("data/outputs")


class RuntimeSettings(BaseModel):
    threading: bool = True
    max_workers: int | None = Field(default=None, gt=0)
    fail_fast: bool = True


class LoggingSettings(BaseModel):
    level: str = "INFO"


class Settings(BaseModel):
    analyzer: AnalyzerSettings = Field(default_factory=AnalyzerSettings)
    comparator: ComparatorSettings = Field(default_factory=ComparatorSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    runtime: RuntimeSettings = Field(default_factory=RuntimeSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load typed settings from YAML with environment-variable overrides.

    An explicitly requested file must exist; a missing default file falls back to
    built-in defaults.
    """

    explicit = config_path or os.getenv(f"{ENV_PREFIX}CONFIG")
    resolved_path = Path(explicit or DEFAULT_CONFIG_PATH)
    if resolved_path.exists() or explicit:
        raw_config = yaml.safe_load(resolved_path.read_text(encoding="utf-8")) or {}
    else:
        raw_config = {}
    data = Settings.model_validate(raw_config).model_dump(mode="python")

    for key, raw_value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue

        suffix = key[len(ENV_PREFIX) :]
        if suffix == "CONFIG":
            continue

        path = [part.lower() for part in suffix.split("__")]
        _apply_override(data, path, raw_value)

    return Settings.model_validate(data)


def _apply_override(data: dict[str, Any], path: list[str], raw_value: str) -> None:
    current: Any = data
    for segment in path[:-1]:
        if not isinstance(current, dict) or segment not in current:
            return
        current = current[segment]

    if not isinstance(current, dict):
        return

    final_key = path[-1]
    if final_key not in current:
        return

    current[final_key] = _coerce_value(raw_value, current[final_key])


def _coerce_value(raw_value: str, existing_value: Any) -> Any:
    if existing_value is None:
        return None if raw_value.lower() in {"", "none", "null"} else raw_value
    if isinstance(existing_value, bool):
        return raw_value.lower() in {"1", "true", "yes", "on"}
    if isinstance(existing_value, int) and not isinstance(existing_value, bool):
        return int(raw_value)
    if isinstance(existing_value, float):
        return float(raw_value)
    if isinstance(existing_value, list | dict):
        return json.loads(raw_value)
    if isinstance(existing_value, Path):
        return Path(raw_value)
    return raw_value
