"""Step nodes and the recorders that observe their execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Protocol

if TYPE_CHECKING:
    from releasekit.engine.pipeline import StepContext


def callable_source(fn: Any) -> str | None:
    if not callable(fn):
        return None
    module = getattr(fn, "__module__", None) or "<unknown_module>"
    qualname = getattr(fn, "__qualname__", None) or getattr(fn, "__name__", None) or "<callable>"
    return f"{module}.{qualname}"


@dataclass(frozen=True)
class Step:
    """Caller-supplied logic registered into a phase."""

    name: str | None
    fn: Callable[["StepContext"], Any]
    meta: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.name is not None:
            if not isinstance(self.name, str):
                raise TypeError(
                    f"Step name must be a string or None (type={type(self.name).__name__})"
                )
            name = self.name.strip()
            if not name:
                raise ValueError("Step name cannot be empty")
            object.__setattr__(self, "name", name)

        if not callable(self.fn):
            raise TypeError(f"Step fn must be callable (type={type(self.fn).__name__})")

        if not isinstance(self.meta, dict):
            raise TypeError(f"Step meta must be a dict (type={type(self.meta).__name__})")

    @classmethod
    def of(cls, fn: Callable[["StepContext"], Any] | "Step", name: str | None = None) -> "Step":
        if isinstance(fn, Step):
            return fn if name is None else cls(name=name, fn=fn.fn, meta=dict(fn.meta))
        if name is None:
            fn_name = getattr(fn, "__name__", None)
            if isinstance(fn_name, str) and fn_name.isidentifier():
                name = fn_name
        return cls(name=name, fn=fn)

    def effective_name(self, index: int) -> str:
        return self.name or f"step_{index + 1:02d}"


class StepRecorder(Protocol):
    def on_step_start(self, ctx: "StepContext", path: str) -> None:
        ...

    def on_step_end(self, ctx: "StepContext", record: dict[str, Any]) -> None:
        ...

    def on_step_error(self, ctx: "StepContext", path: str, exc: Exception) -> None:
        ...


class DefaultStepRecorder:
    def on_step_start(self, ctx: "StepContext", path: str) -> None:
        ctx.logger.debug("Step: %s", path)

    def on_step_end(self, ctx: "StepContext", record: dict[str, Any]) -> None:
        source = record.get("source")
        if source:
            ctx.logger.debug("Completed step %s (source=%s)", record["path"], source)
        else:
            ctx.logger.debug("Completed step %s", record["path"])

    def on_step_error(self, ctx: "StepContext", path: str, exc: Exception) -> None:
        ctx.logger.error("Step failed: %s (%s)", path, exc)


class NullStepRecorder:
    def on_step_start(self, ctx: "StepContext", path: str) -> None:
        return

    def on_step_end(self, ctx: "StepContext", record: dict[str, Any]) -> None:
        return

    def on_step_error(self, ctx: "StepContext", path: str, exc: Exception) -> None:
        return
