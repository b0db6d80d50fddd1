from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any

import yaml

CONFIG_ENV_VAR = "DISTBUILD_CONFIG"
RC_ENV_VAR = "DISTBUILD_RC"
RC_FILENAME = ".distbuildrc.yaml"
RC_GLOBAL_SECTION = "*"


def load_yaml_mapping(path: str) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except FileNotFoundError:
        raise
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc

    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise ValueError(f"Config file must contain a YAML mapping: {path}")
    return dict(payload)


def deep_merge(base: Any, overlay: Any, *, path: str) -> Any:
    if overlay is None:
        return None

    if base is None:
        return overlay

    if isinstance(base, Mapping):
        if not isinstance(overlay, Mapping):
            raise ValueError(
                f"Invalid config overlay merge at {path}: base is mapping but overlay is {type(overlay).__name__}"
            )
        merged: dict[str, Any] = dict(base)
        for key, overlay_value in overlay.items():
            next_path = f"{path}.{key}" if path else str(key)
            if key in base:
                merged[key] = deep_merge(base[key], overlay_value, path=next_path)
            else:
                merged[key] = overlay_value
        return merged

    if isinstance(base, (list, tuple)):
        if not isinstance(overlay, (list, tuple)):
            raise ValueError(
                f"Invalid config overlay merge at {path}: base is list but overlay is {type(overlay).__name__}"
            )
        return list(overlay)

    if isinstance(overlay, (Mapping, list, tuple)):
        raise ValueError(
            f"Invalid config overlay merge at {path}: base is {type(base).__name__} but overlay is {type(overlay).__name__}"
        )

    return overlay


def load_project_config(**kwargs):
    """
    Load the project's build properties from YAML.

    Resolution: an explicit `config_path` (or the env var) loads that single file;
    otherwise `<base_dir>/distbuild.yaml` is loaded and `distbuild.local.yaml`
    is deep-merged on top when present. Returns `(properties, meta)`.
    """

    config_path_override = kwargs.get("config_path")
    env_var = kwargs.get("env_var", CONFIG_ENV_VAR)
    config_file = kwargs.get("config_name", "distbuild")
    config_filetype = kwargs.get("config_type", ".yaml")
    required = bool(kwargs.get("required", False))

    explicit_path = None
    if config_path_override is not None:
        explicit_path = str(config_path_override).strip() or None
    elif env_var:
        raw_env = os.environ.get(str(env_var), "")
        explicit_path = raw_env.strip() or None

    if explicit_path:
        expanded = os.path.abspath(os.path.expandvars(os.path.expanduser(explicit_path)))
        cfg = load_yaml_mapping(expanded)
        meta = {
            "mode": "env" if config_path_override is None else "explicit",
            "paths": [expanded],
            "env_var": env_var,
        }
        return cfg, meta

    base_dir = kwargs.get("base_dir") or os.getcwd()
    base_config_path = os.path.join(str(base_dir), config_file + config_filetype)
    local_overlay_path = os.path.join(str(base_dir), f"{config_file}.local{config_filetype}")

    if not os.path.exists(base_config_path):
        if required:
            raise FileNotFoundError(f"Missing project config file: {base_config_path}")
        return {}, {"mode": "none", "paths": [], "env_var": env_var}

    cfg = load_yaml_mapping(base_config_path)
    loaded_paths = [os.path.abspath(base_config_path)]
    mode = "base"

    if os.path.exists(local_overlay_path):
        overlay = load_yaml_mapping(local_overlay_path)
        cfg = deep_merge(cfg, overlay, path="")
        loaded_paths.append(os.path.abspath(local_overlay_path))
        mode = "base+local"

    meta = {"mode": mode, "paths": loaded_paths, "env_var": env_var}
    return cfg, meta


def home_dir() -> str | None:
    for name in ("HOME", "USERPROFILE", "APPDATA"):
        value = os.environ.get(name)
        if value and os.path.isdir(value):
            return value
    return None


def rcfile_path() -> str | None:
    explicit = os.environ.get(RC_ENV_VAR, "").strip()
    if explicit:
        return os.path.abspath(os.path.expanduser(explicit))
    home = home_dir()
    if home is None:
        return None
    return os.path.join(home, RC_FILENAME)


def read_rcfile(path: str | None = None) -> dict[str, dict[str, Any]]:
    """Read the per-user rc file: `{action_or_*: {option: value}}`."""

    rc_path = path or rcfile_path()
    if rc_path is None or not os.path.exists(rc_path):
        return {}

    raw = load_yaml_mapping(rc_path)
    sections: dict[str, dict[str, Any]] = {}
    for section, options in raw.items():
        if options is None:
            continue
        if not isinstance(options, Mapping):
            raise ValueError(
                f"rc file section {section!r} must be a mapping (type={type(options).__name__}): {rc_path}"
            )
        sections[str(section)] = dict(options)
    return sections
