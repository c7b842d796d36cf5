"""Reusable behavior bundles ("capabilities") attachable to pipeline types.

A capability is registered once, by name, into a registry. Each pipeline type declares
an inclusion policy; resolving it attaches the matching capabilities in registration
order, exposes their operations through the pipeline, and runs each attach hook once.
"""

from __future__ import annotations

import difflib
import logging
import weakref
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from releasekit.template import INCLUDE_ALL, INCLUDE_NONE, CapabilityPolicy

Operation = Callable[..., Any]


def _check_operations(owner: str, kind: str, ops: Mapping[str, Operation]) -> dict[str, Operation]:
    if not isinstance(ops, Mapping):
        raise TypeError(f"Capability {owner} {kind} must be a mapping (type={type(ops).__name__})")
    out: dict[str, Operation] = {}
    for op_name, fn in ops.items():
        if not isinstance(op_name, str) or not op_name.isidentifier() or op_name.startswith("_"):
            raise ValueError(f"Capability {owner} has an invalid {kind} name: {op_name!r}")
        if not callable(fn):
            raise TypeError(f"Capability {owner} {kind} {op_name} must be callable")
        out[op_name] = fn
    return out


def simple_name(name: str) -> str:
    return name.strip().rsplit(".", 1)[-1]


@dataclass(frozen=True)
class Capability:
    """Type operations take the pipeline type first; instance operations take the pipeline."""

    name: str
    type_ops: Mapping[str, Operation] = field(default_factory=dict)
    instance_ops: Mapping[str, Operation] = field(default_factory=dict)
    on_attach: Callable[[type], Any] | None = None
    doc: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise TypeError("Capability.name must be a non-empty string")
        name = self.name.strip()
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "type_ops", _check_operations(name, "type operation", self.type_ops))
        object.__setattr__(
            self, "instance_ops", _check_operations(name, "instance operation", self.instance_ops)
        )
        if self.on_attach is not None and not callable(self.on_attach):
            raise TypeError(f"Capability {name} on_attach must be callable or None")

    @property
    def simple_name(self) -> str:
        return simple_name(self.name)


class CapabilityRegistry:
    def __init__(self) -> None:
        self._by_name: dict[str, Capability] = {}

    def register(self, capability: Capability) -> Capability:
        if not isinstance(capability, Capability):
            raise TypeError(f"Expected a Capability (type={type(capability).__name__})")
        if capability.name in self._by_name:
            raise ValueError(f"Duplicate capability name: {capability.name}")
        self._by_name[capability.name] = capability
        return capability

    def __iter__(self) -> Iterator[Capability]:
        return iter(tuple(self._by_name.values()))

    def __len__(self) -> int:
        return len(self._by_name)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def available(self) -> tuple[str, ...]:
        return tuple(self._by_name.keys())

    def get(self, name: str) -> Capability:
        capability = self._by_name.get((name or "").strip())
        if capability is None:
            raise ValueError(f"Unknown capability: {name}")
        return capability

    def resolve(self, policy: CapabilityPolicy) -> tuple[Capability, ...]:
        if policy == INCLUDE_NONE:
            return ()
        if policy == INCLUDE_ALL:
            return tuple(self._by_name.values())
        if not isinstance(policy, tuple):
            raise TypeError(f"Invalid capability policy: {policy!r}")

        wanted = {simple_name(entry) for entry in policy}
        return tuple(c for c in self._by_name.values() if c.simple_name in wanted)

    def unmatched(self, policy: CapabilityPolicy) -> tuple[str, ...]:
        if not isinstance(policy, tuple):
            return ()
        known = {c.simple_name for c in self._by_name.values()}
        return tuple(entry for entry in policy if simple_name(entry) not in known)

    def suggest(self, name: str, *, limit: int = 3) -> tuple[str, ...]:
        key = simple_name(name or "")
        if not key:
            return ()
        by_simple: dict[str, str] = {c.simple_name: c.name for c in self._by_name.values()}
        matches = difflib.get_close_matches(key, list(by_simple.keys()), n=limit)
        return tuple(by_simple[m] for m in matches)


CAPABILITIES = CapabilityRegistry()


def register_capability(
    name: str,
    *,
    type_ops: Mapping[str, Operation] | None = None,
    instance_ops: Mapping[str, Operation] | None = None,
    on_attach: Callable[[type], Any] | None = None,
    doc: str | None = None,
    registry: CapabilityRegistry | None = None,
) -> Capability:
    capability = Capability(
        name=name,
        type_ops=dict(type_ops or {}),
        instance_ops=dict(instance_ops or {}),
        on_attach=on_attach,
        doc=doc,
    )
    return (registry if registry is not None else CAPABILITIES).register(capability)


_ATTACHED: "weakref.WeakKeyDictionary[type, list[Capability]]" = weakref.WeakKeyDictionary()


def inherit_attachments(cls: type, parent: type | None) -> None:
    inherited = _ATTACHED.get(parent, []) if parent is not None else []
    _ATTACHED[cls] = list(inherited)


def attached_capabilities(cls: type) -> tuple[Capability, ...]:
    return tuple(_ATTACHED.get(cls, ()))


def find_operation(cls: type, name: str, *, instance: bool) -> Operation | None:
    # Later attachments take precedence over earlier ones.
    for capability in reversed(_ATTACHED.get(cls, ())):
        ops = capability.instance_ops if instance else capability.type_ops
        if name in ops:
            return ops[name]
    return None


def _defined_on(cls: type, name: str, *, instance: bool) -> bool:
    if any(name in vars(klass) for klass in cls.__mro__):
        return True
    # Type operations also compete with attributes of the metaclass (`mro`, ...).
    return not instance and any(name in vars(klass) for klass in type(cls).__mro__)


def attach_capabilities(
    cls: type,
    registry: CapabilityRegistry,
    policy: CapabilityPolicy,
    *,
    logger: logging.Logger | None = None,
    reserved_names: Iterable[str] = (),
) -> tuple[Capability, ...]:
    """Attach every capability the policy selects that `cls` does not have yet.

    `reserved_names` lists attributes that instances (or the objects forwarding to them)
    set at runtime; instance operations may not take those names either.
    """

    reserved = frozenset(reserved_names)
    attached = _ATTACHED.setdefault(cls, [])
    names = {c.name for c in attached}

    if logger:
        for entry in registry.unmatched(policy):
            hints = ", ".join(registry.suggest(entry)) or "<none>"
            logger.warning("No registered capability matches %r (close matches: %s)", entry, hints)

    newly: list[Capability] = []
    for capability in registry.resolve(policy):
        if capability.name in names:
            continue
        clashes = [name for name in capability.type_ops if _defined_on(cls, name, instance=False)]
        clashes += [
            name
            for name in capability.instance_ops
            if name in reserved or _defined_on(cls, name, instance=True)
        ]
        if clashes:
            raise ValueError(
                f"Capability {capability.name} operation {clashes[0]} shadows an existing "
                f"attribute of {cls.__qualname__}"
            )

        attached.append(capability)
        if capability.on_attach is not None:
            try:
                capability.on_attach(cls)
            except Exception:
                attached.remove(capability)
                raise

        names.add(capability.name)
        newly.append(capability)
        if logger:
            logger.debug("Attached capability %s to %s", capability.name, cls.__qualname__)

    return tuple(newly)
