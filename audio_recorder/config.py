#!/usr/bin/env python3
"""
Unified configuration loader for the audio recorder.

Load order (first found wins):
  1) AUDIO_RECORDER_CONFIG (env, absolute or relative to CWD)
  2) /etc/audio-recorder/config.yaml
  3) <project_root>/config.yaml (derived from this file's location)
  4) <script_dir>/config.yaml (directory of the running script)
  5) ./config.yaml (current working directory)

Environment variables override file values when present.
"""
from __future__ import annotations
import copy
import os
import sys
from pathlib import Path
from typing import Any, Callable, Dict

import yaml


class ConfigError(ValueError):
    """Raised when the recorder cannot be configured."""


_DEFAULTS: Dict[str, Any] = {
    "audio": {
        "device": "0",
        "input_format": "avfoundation",
        "codec": "aac",
        "bitrate": "192k",
        "sample_rate": 44100,
        "channels": 1,
    },
    "silence": {
        "noise_level_db": -30,
        "duration_sec": 1.0,
        "gate": "start",
    },
    "capture": {
        "min_duration_sec": 2,
        "max_duration_sec": 900,  # 15 minutes
        "poll_interval_sec": 0.5,
        "kill_after_sec": None,
        "discard_invalid": True,
        "retry_delay_sec": 1.0,
    },
    "paths": {
        "buffer_dir": "/tmp/audio-recorder",
    },
    "emit": {
        "tag": "audio.recording",
        "events_path": "",
        "include_content": False,
        "write_sidecar": False,
    },
    "logging": {
        "dev_mode": False,  # if True or ENV DEV=1, enable verbose debug
        "level": "INFO",
    },
}

_cfg_cache: Dict[str, Any] | None = None
_search_paths: list[Path] = []
_active_config_path: Path | None = None


def _load_yaml_if_exists(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
            if isinstance(data, dict):
                return data
    except (OSError, yaml.YAMLError):
        # Ignore parse errors and continue with other locations/defaults
        pass
    return {}


def _candidate_search_paths(project_root: Path, script_dir: Path) -> list[Path]:
    search: list[Path] = []
    env_cfg = os.getenv("AUDIO_RECORDER_CONFIG")
    if env_cfg:
        search.append(Path(env_cfg).expanduser())
    search.extend(
        [
            Path("/etc/audio-recorder/config.yaml"),
            project_root / "config.yaml",
            script_dir / "config.yaml",
            Path.cwd() / "config.yaml",
        ]
    )
    seen: set[Path] = set()
    ordered: list[Path] = []
    for candidate in search:
        try:
            resolved = candidate.resolve()
        except OSError:
            resolved = candidate
        if resolved in seen:
            continue
        seen.add(resolved)
        ordered.append(resolved)
    return ordered


def _deep_merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in extra.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def as_bool(value: Any) -> bool:
    """Coerce a config value; YAML strings like "false" or "off" are False."""
    if isinstance(value, str):
        return _parse_bool(value)
    return bool(value)


def _apply_env_overrides(cfg: Dict[str, Any]) -> None:
    # DEV mode
    if os.getenv("DEV") == "1":
        cfg.setdefault("logging", {})["dev_mode"] = True

    env_map: Dict[str, tuple[str, str, Callable[[str], Any]]] = {
        "AUDIO_DEV": ("audio", "device", str),
        "AUDIO_INPUT_FORMAT": ("audio", "input_format", str),
        "AUDIO_CODEC": ("audio", "codec", str),
        "NOISE_LEVEL_DB": ("silence", "noise_level_db", float),
        "SILENCE_DURATION": ("silence", "duration_sec", float),
        "MIN_DURATION": ("capture", "min_duration_sec", float),
        "MAX_DURATION": ("capture", "max_duration_sec", float),
        "BUFFER_DIR": ("paths", "buffer_dir", str),
        "EMIT_TAG": ("emit", "tag", str),
        "EVENTS_PATH": ("emit", "events_path", str),
        "EMIT_INCLUDE_CONTENT": ("emit", "include_content", _parse_bool),
    }
    for env_key, (section, key, cast) in env_map.items():
        if env_key not in os.environ:
            continue
        raw = os.environ[env_key].strip()
        if not raw:
            continue
        try:
            cfg.setdefault(section, {})[key] = cast(raw)
        except ValueError:
            pass


def get_cfg() -> Dict[str, Any]:
    global _cfg_cache, _search_paths, _active_config_path
    if _cfg_cache is not None:
        return _cfg_cache

    cfg = copy.deepcopy(_DEFAULTS)

    # audio_recorder/ -> project root
    project_root = Path(__file__).resolve().parent.parent

    try:
        script_dir = Path(sys.argv[0]).resolve().parent
    except (OSError, IndexError):
        script_dir = Path.cwd()

    search = _candidate_search_paths(project_root, script_dir)
    _search_paths = list(search)

    active: Path | None = None
    for candidate in search:
        try:
            if candidate.exists():
                active = candidate
                break
        except OSError:
            pass

    for candidate in reversed(search):
        cfg = _deep_merge(cfg, _load_yaml_if_exists(candidate))

    _active_config_path = active
    _apply_env_overrides(cfg)
    _cfg_cache = cfg
    return cfg


def reload_cfg() -> Dict[str, Any]:
    global _cfg_cache
    _cfg_cache = None
    return get_cfg()


def active_config_path() -> Path | None:
    if _cfg_cache is None:
        get_cfg()
    return _active_config_path


def search_paths() -> list[Path]:
    if not _search_paths:
        get_cfg()
    return list(_search_paths)
