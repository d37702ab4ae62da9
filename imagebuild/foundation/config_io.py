from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any

import yaml

DEFAULT_CONFIG_NAME = "imagebuild.yaml"
DEFAULT_ENV_VAR = "IMAGEBUILD_CONFIG"


def _load_yaml_mapping(path: str) -> dict[str, Any]:
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


def _deep_merge(base: Any, overlay: Any, *, path: str) -> Any:
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
                merged[key] = _deep_merge(base[key], overlay_value, path=next_path)
            else:
                merged[key] = overlay_value
        return merged

    if isinstance(base, (list, tuple)):
        if not isinstance(overlay, (list, tuple)):
            raise ValueError(
                f"Invalid config overlay merge at {path}: base is list but overlay is {type(overlay).__name__}"
            )
        # Lists (steps, mount tables) are replaced wholesale, never spliced.
        return list(overlay)

    if isinstance(overlay, (Mapping, list, tuple)):
        raise ValueError(
            f"Invalid config overlay merge at {path}: base is {type(base).__name__} but overlay is {type(overlay).__name__}"
        )

    return overlay


def local_overlay_path(base_path: str) -> str:
    root, ext = os.path.splitext(base_path)
    return f"{root}.local{ext or '.yaml'}"


def load_config(
    config_path: str | os.PathLike[str] | None = None,
    *,
    env_var: str | None = DEFAULT_ENV_VAR,
    default_path: str | os.PathLike[str] = DEFAULT_CONFIG_NAME,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Load a build configuration from YAML.

    An explicit `config_path` (or the `env_var` environment variable) selects a
    single file. Otherwise `default_path` is loaded and a sibling
    `<name>.local.yaml` overlay, if present, is deep-merged on top.
    """

    explicit_path = None
    if config_path is not None:
        explicit_path = str(config_path).strip() or None
    elif env_var:
        raw_env = os.environ.get(str(env_var), "")
        explicit_path = raw_env.strip() or None

    if explicit_path:
        expanded = os.path.abspath(os.path.expandvars(os.path.expanduser(explicit_path)))
        cfg = _load_yaml_mapping(expanded)
        meta = {
            "mode": "env" if config_path is None else "explicit",
            "paths": [expanded],
            "env_var": env_var,
        }
        return cfg, meta

    base_config_path = os.path.abspath(str(default_path))
    if not os.path.exists(base_config_path):
        raise FileNotFoundError(f"Missing base config file: {base_config_path}")

    cfg = _load_yaml_mapping(base_config_path)
    loaded_paths = [base_config_path]
    mode = "base"

    overlay_path = local_overlay_path(base_config_path)
    if os.path.exists(overlay_path):
        overlay = _load_yaml_mapping(overlay_path)
        cfg = _deep_merge(cfg, overlay, path="")
        loaded_paths.append(overlay_path)
        mode = "base+local"

    meta = {"mode": mode, "paths": loaded_paths, "env_var": env_var}
    return cfg, meta
