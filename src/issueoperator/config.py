from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, cast

import yaml

from .errors import ConfigError
from .github_rest import DEFAULT_API_URL, DEFAULT_TIMEOUT

__all__ = ["OperatorConfig", "ConfigError", "default_config", "load_config"]


@dataclass
class OperatorConfig:
    # GitHub
    api_url: str = DEFAULT_API_URL
    token_env: str = "GITHUB_TOKEN"
    request_timeout: float = DEFAULT_TIMEOUT
    # Controller
    workers: int = 2
    resync_seconds: float | None = None
    # Store
    store_path: str | None = None
    # Retry
    retry_base: float = 0.5
    retry_max_sleep: float = 300.0
    # Logging configuration
    logging_json_enabled: bool = False
    logging_level: str = "INFO"
    # Telemetry configuration
    telemetry_enabled: bool = False
    telemetry_exporter: str = "console"
    telemetry_endpoint: str | None = None
    # Environment authentication configuration
    env_auth_load_dotenv: bool = True
    env_auth_dotenv_path: str | None = None


def _resolve_env_var(value: Any) -> Any:
    """Resolve environment variable if value starts with $."""
    if isinstance(value, str) and value.startswith('$'):
        return os.getenv(value[1:], value)  # Fallback to original if not found
    return value


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {}) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"config section '{name}' must be a mapping")
    return {k: _resolve_env_var(v) for k, v in value.items()}


def _optional_float(value: Any) -> float | None:
    if value in (None, "", 0, "0"):
        return None
    return float(value)


def default_config() -> OperatorConfig:
    return OperatorConfig()


def load_config(path: str | Path) -> OperatorConfig:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f'Configuration file not found: {p}')
    try:
        loaded = yaml.safe_load(p.read_text(encoding='utf-8')) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f'Invalid YAML in {p}: {exc}') from exc
    if not isinstance(loaded, dict):
        raise ConfigError(f'Configuration root must be a mapping: {p}')
    raw = cast(dict[str, Any], loaded)
    gh = _section(raw, 'github')
    controller = _section(raw, 'controller')
    store = _section(raw, 'store')
    retry = _section(raw, 'retry')
    logging_config = _section(raw, 'logging')
    telemetry = _section(raw, 'telemetry')
    env_auth = _section(raw, 'environment')

    defaults = default_config()
    store_path = store.get('path')
    if store_path and not Path(store_path).is_absolute():
        store_path = str(p.parent / store_path)

    try:
        return OperatorConfig(
            api_url=str(gh.get('api_url', defaults.api_url)),
            token_env=str(gh.get('token_env', defaults.token_env)),
            request_timeout=float(gh.get('timeout', defaults.request_timeout)),
            workers=int(controller.get('workers', defaults.workers)),
            resync_seconds=_optional_float(controller.get('resync_seconds')),
            store_path=store_path,
            retry_base=float(retry.get('base', defaults.retry_base)),
            retry_max_sleep=float(retry.get('max_sleep', defaults.retry_max_sleep)),
            logging_json_enabled=bool(logging_config.get('json_enabled', False)),
            logging_level=str(logging_config.get('level', 'INFO')),
            telemetry_enabled=bool(telemetry.get('enabled', False)),
            telemetry_exporter=str(telemetry.get('exporter', 'console')),
            telemetry_endpoint=telemetry.get('endpoint'),
            env_auth_load_dotenv=bool(env_auth.get('load_dotenv', True)),
            env_auth_dotenv_path=env_auth.get('dotenv_path'),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f'Invalid value in {p}: {exc}') from exc
