from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

DEFAULT_BASE_URL = "https://console.cloud.timescale.com/public/api/v1"
SIZING_MODES = {"strict", "passthrough"}


@dataclass(slots=True)
class ApiConfig:
    base_url: str = DEFAULT_BASE_URL
    request_timeout_seconds: float = 30.0


@dataclass(slots=True)
class PollConfig:
    timeout_seconds: float = 30 * 60
    interval_seconds: float = 1.0
    log_interval_seconds: float = 10.0


@dataclass(slots=True)
class ForkConfig:
    sizing_validation: str = "strict"


@dataclass(slots=True)
class PathsConfig:
    state: Path
    log: Path | None


@dataclass(slots=True)
class AppConfig:
    paths: PathsConfig
    api: ApiConfig = field(default_factory=ApiConfig)
    poll: PollConfig = field(default_factory=PollConfig)
    fork: ForkConfig = field(default_factory=ForkConfig)


def _section(raw: dict, key: str) -> dict:
    value = raw.get(key, {})
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"`{key}` must be a mapping")
    return value


def _positive_float(section: dict, key: str, default: float, name: str) -> float:
    try:
        value = float(section.get(key, default))
    except (TypeError, ValueError) as exc:
        raise ValueError(f"`{name}.{key}` must be a number") from exc
    if value <= 0:
        raise ValueError(f"`{name}.{key}` must be > 0")
    return value


def load_config(path: str | Path | None = None) -> AppConfig:
    if path is None:
        base_dir = Path.cwd()
        raw: object = {}
    else:
        config_path = Path(path).expanduser().resolve()
        base_dir = config_path.parent
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError("Config root must be a mapping")

    api_raw = _section(raw, "api")
    poll_raw = _section(raw, "poll")
    fork_raw = _section(raw, "fork")
    paths_raw = _section(raw, "paths")

    def to_path(value: object) -> Path:
        output = Path(str(value)).expanduser()
        if not output.is_absolute():
            output = base_dir / output
        return output

    log_raw = paths_raw.get("log", ".dbfork/dbfork.log")
    paths = PathsConfig(
        state=to_path(paths_raw.get("state", ".dbfork/state.db")),
        log=to_path(log_raw) if log_raw else None,
    )

    base_url = str(api_raw.get("base_url", DEFAULT_BASE_URL)).rstrip("/")
    if not base_url.startswith(("http://", "https://")):
        raise ValueError("`api.base_url` must be an http(s) URL")
    api = ApiConfig(
        base_url=base_url,
        request_timeout_seconds=_positive_float(api_raw, "request_timeout_seconds", 30.0, "api"),
    )

    poll = PollConfig(
        timeout_seconds=_positive_float(poll_raw, "timeout_seconds", 30 * 60, "poll"),
        interval_seconds=_positive_float(poll_raw, "interval_seconds", 1.0, "poll"),
        log_interval_seconds=_positive_float(poll_raw, "log_interval_seconds", 10.0, "poll"),
    )

    fork = ForkConfig(sizing_validation=str(fork_raw.get("sizing_validation", "strict")).lower())
    if fork.sizing_validation not in SIZING_MODES:
        raise ValueError("`fork.sizing_validation` must be either `strict` or `passthrough`")

    return AppConfig(paths=paths, api=api, poll=poll, fork=fork)


def ensure_local_paths(config: AppConfig) -> None:
    config.paths.state.parent.mkdir(parents=True, exist_ok=True)
    if config.paths.log is not None:
        config.paths.log.parent.mkdir(parents=True, exist_ok=True)
