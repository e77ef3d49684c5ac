##########################################################################
#                                                                        #
#  Central runtime settings hydration for config.json + .env             #
#                                                                        #
##########################################################################

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Mapping


DEFAULT_RUNTIME_SETTINGS: dict[str, Any] = {
    "dashboard": {
        "idle_timeout_ms": 150000,
        "form_timeout_ms": 300000,
        "show_categories_and_descriptions": True,
        "prefetch_on_open": True,
        "refresh_on_switch": False,
    },
    "database": {
        "connect_timeout_seconds": 2,
    },
    "telegram": {
        "get_updates_write_timeout": 500,
        "poll_interval_seconds": 5.0,
    },
}


ENV_OVERRIDES: dict[str, tuple[tuple[str, ...], str]] = {
    "dashboard.idle_timeout_ms": (("DASH_IDLE_TIMEOUT_MS",), "int"),
    "dashboard.form_timeout_ms": (("DASH_FORM_TIMEOUT_MS",), "int"),
    "dashboard.show_categories_and_descriptions": (("DASH_SHOW_CATEGORIES_AND_DESCRIPTIONS",), "bool"),
    "dashboard.prefetch_on_open": (("DASH_PREFETCH_ON_OPEN",), "bool"),
    "dashboard.refresh_on_switch": (("DASH_REFRESH_ON_SWITCH",), "bool"),
    "database.connect_timeout_seconds": (("DASH_DB_CONNECT_TIMEOUT_SECONDS", "PGCONNECT_TIMEOUT"), "int"),
    "telegram.get_updates_write_timeout": (("DASH_TELEGRAM_GET_UPDATES_WRITE_TIMEOUT",), "int"),
    "telegram.poll_interval_seconds": (("DASH_TELEGRAM_POLL_INTERVAL_SECONDS",), "float"),
}


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _coerce_env_value(raw_value: str, value_type: str) -> Any:
    if value_type == "int":
        return int(raw_value)
    if value_type == "float":
        return float(raw_value)
    if value_type == "bool":
        return _parse_bool(raw_value)
    return raw_value


def _deep_merge(base: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    for key, value in incoming.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _path_parts(path: str) -> list[str]:
    return [part for part in path.split(".") if part]


def get_runtime_setting(settings: dict[str, Any], path: str, default: Any = None) -> Any:
    cursor: Any = settings
    for part in _path_parts(path):
        if not isinstance(cursor, dict) or part not in cursor:
            return default
        cursor = cursor.get(part)
    return cursor


def set_runtime_setting(settings: dict[str, Any], path: str, value: Any) -> None:
    parts = _path_parts(path)
    if not parts:
        return
    cursor: dict[str, Any] = settings
    for part in parts[:-1]:
        next_value = cursor.get(part)
        if not isinstance(next_value, dict):
            next_value = {}
            cursor[part] = next_value
        cursor = next_value
    cursor[parts[-1]] = value


def load_dotenv_file(path: str | Path = ".env", override: bool = False) -> dict[str, str]:
    dotenv_path = Path(path)
    loaded: dict[str, str] = {}
    if not dotenv_path.exists():
        return loaded

    for raw_line in dotenv_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue

        if line.startswith("export "):
            line = line[len("export ") :].strip()

        if "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key:
            continue

        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]

        loaded[key] = value
        if override or key not in os.environ:
            os.environ[key] = value

    return loaded


def build_runtime_settings(
    config_data: dict[str, Any] | None = None,
    env_data: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    settings = copy.deepcopy(DEFAULT_RUNTIME_SETTINGS)
    if isinstance(config_data, dict):
        runtime_config = config_data.get("runtime")
        if isinstance(runtime_config, dict):
            _deep_merge(settings, runtime_config)

    env_values = env_data if env_data is not None else os.environ
    for path, (env_keys, value_type) in ENV_OVERRIDES.items():
        raw_value = None
        for env_key in env_keys:
            raw_candidate = env_values.get(env_key)
            if raw_candidate is None or str(raw_candidate).strip() == "":
                continue
            raw_value = raw_candidate
            break
        if raw_value is None:
            continue
        try:
            parsed = _coerce_env_value(str(raw_value).strip(), value_type)
        except (TypeError, ValueError):
            continue
        set_runtime_setting(settings, path, parsed)

    return settings
