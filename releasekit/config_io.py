"""Flag files: YAML mappings fed into a pipeline as its constructor flags."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

FLAGS_ENV_VAR = "RELEASEKIT_FLAGS_FILE"


def _read_flags_file(path: str) -> dict[str, Any]:
    text = Path(path).read_text(encoding="utf-8")
    try:
        payload = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc

    payload = {} if payload is None else payload
    if not isinstance(payload, Mapping):
        raise ValueError(
            f"Flags file must contain a YAML mapping: {path} (got {type(payload).__name__})"
        )
    non_string = sorted(repr(key) for key in payload if not isinstance(key, str))
    if non_string:
        raise ValueError(f"Flag names must be strings in {path}: {', '.join(non_string)}")
    return dict(payload)


def _shape(value: Any) -> str:
    if isinstance(value, Mapping):
        return "mapping"
    if isinstance(value, (list, tuple)):
        return "list"
    return "scalar"


def _overlay(base: Mapping[str, Any], local: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    """Mappings merge key by key; lists and scalars from `local` replace the base value."""

    merged = dict(base)
    for key, value in local.items():
        where = f"{prefix}.{key}" if prefix else str(key)
        current = merged.get(key)
        if current is None or value is None:
            merged[key] = value
            continue

        shape = _shape(value)
        if _shape(current) != shape:
            raise ValueError(
                f"Invalid flags overlay merge at {where}: "
                f"base is {_shape(current)} but overlay is {shape}"
            )
        if shape == "mapping":
            merged[key] = _overlay(current, value, where)
        elif shape == "list":
            merged[key] = list(value)
        else:
            merged[key] = value
    return merged


def load_flags(
    path: str | os.PathLike[str] | None = None,
    *,
    env_var: str | None = FLAGS_ENV_VAR,
    search_dir: str | os.PathLike[str] | None = None,
    base_name: str = "flags.yaml",
    local_name: str = "flags.local.yaml",
    environ: Mapping[str, str] | None = None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Load pipeline flags from YAML.

    An explicit `path` (or the file named by `env_var`) is loaded on its own.
    Otherwise `<search_dir>/<base_name>` is loaded and, when present, overlaid by
    `<search_dir>/<local_name>`. Returns `(flags, meta)`.
    """

    source = os.environ if environ is None else environ

    explicit_path = None
    if path is not None:
        explicit_path = os.fspath(path).strip() or None
    elif env_var:
        explicit_path = (source.get(env_var) or "").strip() or None

    if explicit_path:
        expanded = os.path.abspath(os.path.expandvars(os.path.expanduser(explicit_path)))
        flags = _read_flags_file(expanded)
        meta = {
            "mode": "explicit" if path is not None else "env",
            "paths": [expanded],
            "env_var": env_var,
        }
        return flags, meta

    directory = os.fspath(search_dir) if search_dir is not None else os.getcwd()
    base_path = os.path.join(directory, base_name)
    local_path = os.path.join(directory, local_name)

    if not os.path.exists(base_path):
        raise FileNotFoundError(f"Missing base flags file: {base_path}")

    flags = _read_flags_file(base_path)
    loaded_paths = [os.path.abspath(base_path)]
    mode = "base"

    if os.path.exists(local_path):
        overlay = _read_flags_file(local_path)
        flags = _overlay(flags, overlay)
        loaded_paths.append(os.path.abspath(local_path))
        mode = "base+local"

    return flags, {"mode": mode, "paths": loaded_paths, "env_var": env_var}
