"""Layered flag resolution.

Later layers win: template defaults, then constructor values, then the environment.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from typing import Any

FLAG_ENV_PREFIX = "RELEASEKIT_FLAG_"


def flag_name(name: Any) -> str:
    if not isinstance(name, str):
        raise TypeError(f"Flag name must be a string (type={type(name).__name__})")
    normalized = name.strip()
    if not normalized:
        raise ValueError("Flag name cannot be empty")
    return normalized


def env_flags(environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """Collect `RELEASEKIT_FLAG_<NAME>` variables as lower-cased flag names."""

    source = os.environ if environ is None else environ
    out: dict[str, str] = {}
    for key, value in source.items():
        if not key.startswith(FLAG_ENV_PREFIX):
            continue
        name = key[len(FLAG_ENV_PREFIX) :].lower()
        if name:
            out[name] = value
    return out


def resolve_flags(
    defaults: Mapping[str, Any],
    supplied: Mapping[str, Any] | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    use_env: bool = True,
) -> dict[str, Any]:
    merged: dict[str, Any] = dict(defaults)
    for key, value in (supplied or {}).items():
        merged[flag_name(key)] = value
    if use_env:
        merged.update(env_flags(environ))
    return merged


def missing_flags(flags: Mapping[str, Any], expected: Iterable[str]) -> list[str]:
    return [name for name in expected if name not in flags]
