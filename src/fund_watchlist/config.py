from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from .errors import ConfigError
from .models import RemoteCredentials

DEFAULT_FALLBACK_RELAYS = (
    "https://corsproxy.org/?",
    "https://api.codetabs.com/v1/proxy?quest=",
)
DEFAULT_STORAGE_PATH = Path.home() / ".fund_watchlist" / "storage.json"

ENV_PREFIX = "FUND_WATCHLIST_"


@dataclass(frozen=True)
class AppConfig:
    quote_host: str = "https://fundgz.1234567.com.cn"
    directory_host: str = "https://fund.eastmoney.com"
    relay_url: str = ""
    fallback_relays: tuple[str, ...] = DEFAULT_FALLBACK_RELAYS
    direct_fetch: bool = False
    proxy: str = ""
    request_timeout: float | None = None
    storage_path: Path = DEFAULT_STORAGE_PATH
    api_host: str = "https://api.github.com"
    api_version: str = "2022-11-28"
    remote: RemoteCredentials = field(default_factory=RemoteCredentials)
    max_workers: int = 8
    search_limit: int = 20
    search_debounce_seconds: float = 0.3
    log_level: str = "INFO"
    log_json: bool = False


_FIELD_NAMES = {f.name for f in dataclasses.fields(AppConfig)}


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigError(f"无法读取配置文件: {path} -> {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"配置文件格式错误: {path} -> {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"配置文件顶层必须是映射: {path}")
    return data


def _env_overrides(env: Mapping[str, str]) -> tuple[dict[str, Any], dict[str, str]]:
    top: dict[str, Any] = {}
    remote: dict[str, str] = {}
    if env.get(f"{ENV_PREFIX}RELAY_URL"):
        top["relay_url"] = env[f"{ENV_PREFIX}RELAY_URL"]
    for key in ("token", "repo", "path"):
        value = env.get(f"{ENV_PREFIX}GITHUB_{key.upper()}")
        if value:
            remote[key] = value
    return top, remote


def load_config(
    path: Path | None = None,
    env: Mapping[str, str] | None = None,
    **overrides: Any,
) -> AppConfig:
    """Build the configuration: defaults, then YAML file, then environment, then overrides."""
    env = os.environ if env is None else env
    raw = _read_yaml(path) if path else {}

    unknown = set(raw) - _FIELD_NAMES
    if unknown:
        raise ConfigError(f"未知配置项: {', '.join(sorted(unknown))}")

    remote_raw = raw.pop("remote", None) or {}
    if not isinstance(remote_raw, dict):
        raise ConfigError("remote 配置必须是映射")

    env_top, env_remote = _env_overrides(env)
    raw.update(env_top)
    raw.update({k: v for k, v in overrides.items() if v is not None})
    remote_raw = {**remote_raw, **env_remote}

    if "fallback_relays" in raw:
        relays = raw["fallback_relays"] or []
        if not isinstance(relays, list) or not all(isinstance(r, str) for r in relays):
            raise ConfigError("fallback_relays 必须是字符串列表")
        raw["fallback_relays"] = tuple(relays)
    if "storage_path" in raw:
        raw["storage_path"] = Path(raw["storage_path"]).expanduser()
    if raw.get("request_timeout") is not None:
        raw["request_timeout"] = float(raw["request_timeout"])

    return AppConfig(remote=RemoteCredentials.from_dict(remote_raw), **raw)


def with_credentials(config: AppConfig, credentials: RemoteCredentials | None) -> AppConfig:
    """Fill in remote credentials saved on device when the config carries none."""
    if config.remote.is_complete or credentials is None or not credentials.is_complete:
        return config
    return dataclasses.replace(config, remote=credentials)
