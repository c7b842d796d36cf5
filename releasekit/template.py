"""Per-type configuration templates and their derivation.

A template is the prototype a pipeline type hands to each of its instances. Deriving
a pipeline type clones the parent's template, so declarations on one type never reach
its ancestors or siblings.
"""

from __future__ import annotations

import copy
import weakref
from dataclasses import dataclass, field
from typing import Any, Literal, TypeAlias

from releasekit.log import LogSettings

PHASES: tuple[str, ...] = ("setup", "before_build", "build", "after_build", "teardown")
BUILD_PHASES: tuple[str, ...] = ("before_build", "build", "after_build")

INCLUDE_NONE = "none"
INCLUDE_ALL = "all"

CapabilityPolicy: TypeAlias = Literal["none", "all"] | tuple[str, ...]


def check_phase(phase: str) -> str:
    if not isinstance(phase, str):
        raise TypeError(f"Phase name must be a string (type={type(phase).__name__})")
    name = phase.strip()
    if name not in PHASES:
        raise ValueError(f"Unknown phase: {phase!r} (phases: {', '.join(PHASES)})")
    return name


def _empty_phase_map() -> dict[str, Any]:
    return {phase: [] for phase in PHASES}


@dataclass
class Template:
    steps: dict[str, list[Any]] = field(default_factory=_empty_phase_map)
    flags: dict[str, Any] = field(default_factory=dict)
    expected_flags: tuple[str, ...] = ()
    capability_policy: CapabilityPolicy = INCLUDE_NONE
    log: LogSettings = field(default_factory=LogSettings)
    artifacts: dict[str, dict[str, Any]] = field(
        default_factory=lambda: {phase: {} for phase in PHASES}
    )

    def clone(self) -> "Template":
        # Steps are immutable and log settings are frozen; sinks may be live streams
        # that must stay shared, so only the mutable containers are copied.
        return Template(
            steps={phase: list(self.steps[phase]) for phase in PHASES},
            flags=copy.deepcopy(self.flags),
            expected_flags=tuple(self.expected_flags),
            capability_policy=self.capability_policy,
            log=self.log,
            artifacts={phase: copy.deepcopy(self.artifacts[phase]) for phase in PHASES},
        )


_TEMPLATES: "weakref.WeakKeyDictionary[type, Template]" = weakref.WeakKeyDictionary()


def template_of(cls: type) -> Template:
    template = _TEMPLATES.get(cls)
    if template is None:
        raise LookupError(f"No template registered for {cls.__qualname__}")
    return template


def derive_template(cls: type, parent: type | None = None) -> Template:
    """Register a fresh template for `cls`, cloned from `parent` when it has one."""

    base = _TEMPLATES.get(parent) if parent is not None else None
    template = base.clone() if base is not None else Template()
    _TEMPLATES[cls] = template
    return template
