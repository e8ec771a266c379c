from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class BrowserConfig:
    data_dir: str | None = None
    trash_dir: str | None = None
    host: str | None = None
    port: int | None = None
    lock_dir: str | None = None
    cross_process_locks: bool | None = None
    lock_timeout_s: float | None = None
    operation_log: str | None = None
    single_max_bytes: int | None = None
    batch_max_file_bytes: int | None = None
    batch_max_files: int | None = None
    batch_max_total_bytes: int | None = None


def default_browser_config_path() -> Path:
    repo_root = Path(__file__).resolve().parents[2]
    return repo_root / "config" / "browser.json"


def _get_str(data: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        if key not in data:
            continue
        value = data.get(key)
        if value is None:
            continue
        if not isinstance(value, str):
            raise TypeError(f"{key} must be a string")
        value = value.strip()
        if not value:
            return None
        return value
    return None


def _get_int(data: dict[str, Any], *keys: str, minimum: int = 0, maximum: int | None = None) -> int | None:
    for key in keys:
        if key not in data:
            continue
        value = data.get(key)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"{key} must be an integer")
        if maximum is not None and not minimum <= value <= maximum:
            raise ValueError(f"{key} must be between {minimum} and {maximum}")
        if value < minimum:
            raise ValueError(f"{key} must be >= {minimum}")
        return value
    return None


def _get_float(data: dict[str, Any], *keys: str) -> float | None:
    for key in keys:
        if key not in data:
            continue
        value = data.get(key)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TypeError(f"{key} must be a number")
        if value <= 0:
            raise ValueError(f"{key} must be > 0")
        return float(value)
    return None


def _get_bool(data: dict[str, Any], *keys: str) -> bool | None:
    for key in keys:
        if key not in data:
            continue
        value = data.get(key)
        if value is None:
            continue
        if not isinstance(value, bool):
            raise TypeError(f"{key} must be a boolean")
        return value
    return None


def load_browser_config(path: str | Path | None = None) -> BrowserConfig:
    """Load file browser runtime config.

    If path is None, tries default path (config/browser.json) and returns empty
    config when not present.
    """

    if path is None:
        default_path = default_browser_config_path()
        if not default_path.exists():
            return BrowserConfig()
        path = default_path

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"browser config not found: {config_path}")

    data = json.loads(config_path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise TypeError("browser config must be a JSON object")

    return BrowserConfig(
        data_dir=_get_str(data, "data_dir", "dataDir"),
        trash_dir=_get_str(data, "trash_dir", "trashDir"),
        host=_get_str(data, "host", "bind_host", "bindHost"),
        port=_get_int(data, "port", maximum=65535),
        lock_dir=_get_str(data, "lock_dir", "lockDir"),
        cross_process_locks=_get_bool(data, "cross_process_locks", "crossProcessLocks"),
        lock_timeout_s=_get_float(data, "lock_timeout_s", "lockTimeoutSec"),
        operation_log=_get_str(data, "operation_log", "operationLog"),
        single_max_bytes=_get_int(data, "single_max_bytes", "singleMaxBytes", minimum=1),
        batch_max_file_bytes=_get_int(data, "batch_max_file_bytes", "batchMaxFileBytes", minimum=1),
        batch_max_files=_get_int(data, "batch_max_files", "batchMaxFiles", minimum=1),
        batch_max_total_bytes=_get_int(data, "batch_max_total_bytes", "batchMaxTotalBytes", minimum=1),
    )
