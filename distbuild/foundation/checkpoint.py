"""Checkpoint persistence for a configured build.

`build_params.json` holds `[args, config, properties]`; `prereqs.json` holds
every prerequisite bucket, keyed by bucket name.
"""

from __future__ import annotations

import json
import os
from typing import Any, Mapping

from buildkit.errors import BuildError

BUILD_PARAMS_FILE = "build_params.json"
PREREQS_FILE = "prereqs.json"


def _write_json(path: str, payload: Any) -> None:
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2, sort_keys=True, ensure_ascii=False)
        handle.write("\n")


def _jsonable(value: Any, *, path: str) -> Any:
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v, path=f"{path}.{k}") for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v, path=f"{path}[{i}]") for i, v in enumerate(value)]
    if isinstance(value, os.PathLike):
        return os.fspath(value)
    raise TypeError(f"Cannot persist {path} (type={type(value).__name__})")


def write_checkpoint(
    config_dir: str,
    *,
    args: Mapping[str, Any],
    config: Mapping[str, Any],
    properties: Mapping[str, Any],
    prereqs: Mapping[str, Any],
) -> str:
    os.makedirs(config_dir, exist_ok=True)
    if not os.path.isdir(config_dir):
        raise BuildError(f"Can't mkdir {config_dir}")

    _write_json(os.path.join(config_dir, PREREQS_FILE), _jsonable(prereqs, path="prereqs"))

    params_path = os.path.join(config_dir, BUILD_PARAMS_FILE)
    payload = [
        _jsonable(args, path="args"),
        _jsonable(config, path="config"),
        _jsonable(properties, path="properties"),
    ]
    _write_json(params_path, payload)
    return params_path


def read_checkpoint(config_dir: str) -> tuple[dict[str, Any], dict[str, Any], dict[str, Any]]:
    params_path = os.path.join(config_dir, BUILD_PARAMS_FILE)
    try:
        with open(params_path, "r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except FileNotFoundError as exc:
        raise BuildError(f"Can't read '{params_path}': {exc.strerror}") from exc
    except json.JSONDecodeError as exc:
        raise BuildError(f"Corrupt checkpoint {params_path}: {exc}") from exc

    if not isinstance(payload, list) or len(payload) != 3:
        raise BuildError(f"Checkpoint must hold [args, config, properties]: {params_path}")
    args, config, properties = payload
    for label, value in (("args", args), ("config", config), ("properties", properties)):
        if not isinstance(value, dict):
            raise BuildError(f"Checkpoint {label} must be an object: {params_path}")
    return args, config, properties


def read_prereqs(config_dir: str) -> dict[str, Any]:
    path = os.path.join(config_dir, PREREQS_FILE)
    if not os.path.exists(path):
        return {}
    with open(path, "r", encoding="utf-8") as handle:
        payload = json.load(handle)
    return payload if isinstance(payload, dict) else {}
