"""Phase executor for build-and-release pipelines.

A pipeline type is a `Pipeline` subclass. Declaring it clones the parent's template;
the class-level operations below then shape that template (steps, flag defaults,
required flags, capability policy, log defaults). Each instance resolves its flags
once, attaches capabilities, validates required flags, and `run()` executes
`setup -> before_build -> build -> after_build -> teardown` in order.
"""

from __future__ import annotations

import contextlib
import itertools
import logging
import os
from collections.abc import Callable, Iterator, Mapping
from dataclasses import replace
from types import MethodType
from typing import Any, ClassVar

from releasekit import shell
from releasekit.artifacts import ArtifactStore
from releasekit.capabilities import (
    CAPABILITIES,
    Capability,
    CapabilityRegistry,
    attach_capabilities,
    attached_capabilities,
    find_operation,
    inherit_attachments,
)
from releasekit.engine.steps import (
    DefaultStepRecorder,
    Step,
    StepRecorder,
    callable_source,
)
from releasekit.errors import ArtifactError, BuildError, FlagError
from releasekit.flags import env_flags, flag_name, missing_flags, resolve_flags
from releasekit.log import (
    LogSettings,
    build_logger,
    close_logger,
    message_level,
    resolve_log_settings,
)
from releasekit.template import (
    BUILD_PHASES,
    INCLUDE_ALL,
    INCLUDE_NONE,
    Template,
    check_phase,
    derive_template,
    template_of,
)

_INSTANCE_IDS = itertools.count(1)

StepFn = Callable[["StepContext"], Any]


class hybridmethod:
    """Bind to the instance when accessed on one, otherwise to the class."""

    def __init__(self, fn: Callable[..., Any]):
        self.__func__ = fn
        self.__doc__ = fn.__doc__

    def __get__(self, obj: Any, owner: type) -> Any:
        return MethodType(self.__func__, owner if obj is None else obj)


class hybridproperty(hybridmethod):
    def __get__(self, obj: Any, owner: type) -> Any:
        return self.__func__(owner if obj is None else obj)


class PipelineMeta(type):
    def __getattr__(cls, name: str) -> Any:
        if name.startswith("__"):
            raise AttributeError(name)
        op = find_operation(cls, name, instance=False)
        if op is None:
            raise AttributeError(f"type object {cls.__name__!r} has no attribute {name!r}")
        return MethodType(op, cls)


@contextlib.contextmanager
def working_directory(path: str | os.PathLike[str] | None) -> Iterator[None]:
    previous = os.getcwd()
    os.chdir(os.fspath(path) if path is not None else previous)
    try:
        yield
    finally:
        os.chdir(previous)


def _annotate_error(exc: Exception, *, phase: str, step: str) -> None:
    for attr, value in (("pipeline_phase", phase), ("pipeline_step", step)):
        if hasattr(exc, attr):
            continue
        try:
            setattr(exc, attr, value)
        except Exception:
            pass


def _settings_holder(target: Any) -> Template:
    return target._config if isinstance(target, Pipeline) else template_of(target)


def _resolved_type_log(cls: Any) -> LogSettings:
    # The environment is read once per type; later explicit settings are layered on top.
    if cls._type_log_settings is None:
        cls._type_log_settings = resolve_log_settings(template_of(cls).log, environ=os.environ)
    return cls._type_log_settings


def _update_log_settings(target: Any, **changes: Any) -> None:
    holder = _settings_holder(target)
    holder.log = replace(holder.log, **changes)
    if not isinstance(target, Pipeline):
        target._type_log_settings = replace(_resolved_type_log(target), **changes)
    target._reset_logger()


def _log_fatal(target: Any, message: str) -> None:
    # Logging must never mask the failure about to be raised.
    try:
        target.logger.critical("%s", message)
    except Exception:
        pass


class StepContext:
    """Handle passed to every step, scoped to the phase the step runs in.

    Artifact writes through the context are attributed to that phase. Everything
    else is forwarded to the pipeline, including capability instance operations.
    """

    def __init__(self, pipeline: "Pipeline", phase: str):
        self.pipeline = pipeline
        self.phase = phase

    @property
    def logger(self) -> logging.Logger:
        return self.pipeline.logger

    def push_artifact(self, name: str, value: Any) -> None:
        self.pipeline.artifact_store.push(self.phase, name, value)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__") or name in ("pipeline", "phase"):
            raise AttributeError(name)
        return getattr(self.pipeline, name)


# Attributes a StepContext answers itself instead of forwarding to the pipeline.
_CONTEXT_NAMES = frozenset(
    {"pipeline", "phase", *(name for name in vars(StepContext) if not name.startswith("_"))}
)

class Pipeline(metaclass=PipelineMeta):
    capability_registry: ClassVar[CapabilityRegistry] = CAPABILITIES
    recorder_factory: ClassVar[Callable[[], StepRecorder]] = DefaultStepRecorder
    _type_logger: ClassVar[logging.Logger | None] = None
    _type_log_settings: ClassVar[LogSettings | None] = None

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        parent = next((base for base in cls.__mro__[1:] if isinstance(base, PipelineMeta)), None)
        derive_template(cls, parent)
        inherit_attachments(cls, parent)
        cls._type_logger = None
        cls._type_log_settings = None

    def __init__(
        self,
        flags: Mapping[str, Any] | None = None,
        *,
        use_env: bool = True,
        environ: Mapping[str, str] | None = None,
    ):
        self._id = next(_INSTANCE_IDS)
        self._logger: logging.Logger | None = None
        self._current_phase: str | None = None

        type(self).attach_capabilities()

        supplied = dict(flags or {})
        env = (os.environ if environ is None else environ) if use_env else None

        self._config: Template = template_of(type(self)).clone()
        self._config.flags = resolve_flags(
            self._config.flags, supplied, environ=env, use_env=use_env
        )
        self._config.log = resolve_log_settings(self._config.log, supplied=supplied, environ=env)
        self._artifacts = ArtifactStore(self._config.artifacts)
        self._recorder = self.recorder_factory()

        missing = missing_flags(self._config.flags, self._config.expected_flags)
        if missing:
            self.fail_build(f"Missing required flags: {', '.join(missing)}")

        self.logger.debug(
            "Resolved flags for %s: %s", type(self).__name__, ", ".join(sorted(self._config.flags))
        )

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__"):
            raise AttributeError(name)
        op = find_operation(type(self), name, instance=True)
        if op is None:
            raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")
        return MethodType(op, self)

    # Type-level declarations

    @classmethod
    def template(cls) -> Template:
        return template_of(cls)

    @classmethod
    def expect_flags(cls, *names: str) -> None:
        template_of(cls).expected_flags = tuple(flag_name(name) for name in names)

    @classmethod
    def include_capabilities(cls, *names: str) -> None:
        template = template_of(cls)
        current = template.capability_policy if isinstance(template.capability_policy, tuple) else ()
        entries: list[str] = []
        for name in names:
            if not isinstance(name, str) or not name.strip():
                raise ValueError(f"Capability names must be non-empty strings (got {name!r})")
            entries.append(name.strip())
        template.capability_policy = (*current, *entries)

    @classmethod
    def include_all_capabilities(cls) -> None:
        template_of(cls).capability_policy = INCLUDE_ALL

    @classmethod
    def include_no_capabilities(cls) -> None:
        template_of(cls).capability_policy = INCLUDE_NONE

    @classmethod
    def phase(
        cls, phase: str, fn: StepFn | Step | None = None, *, name: str | None = None
    ) -> Any:
        """Append a step to `phase`; without `fn`, return a decorator that does."""

        if fn is None:

            def decorator(inner: StepFn) -> StepFn:
                cls.phase(phase, inner, name=name)
                return inner

            return decorator

        template_of(cls).steps[check_phase(phase)].append(Step.of(fn, name))
        return fn

    @classmethod
    def prepend_phase(
        cls, phase: str, fn: StepFn | Step | None = None, *, name: str | None = None
    ) -> Any:
        if fn is None:

            def decorator(inner: StepFn) -> StepFn:
                cls.prepend_phase(phase, inner, name=name)
                return inner

            return decorator

        template_of(cls).steps[check_phase(phase)].insert(0, Step.of(fn, name))
        return fn

    @classmethod
    def attach_capabilities(cls) -> tuple[Capability, ...]:
        policy = template_of(cls).capability_policy
        if policy == INCLUDE_NONE:
            return ()
        return attach_capabilities(
            cls,
            cls.capability_registry,
            policy,
            logger=cls.logger,
            reserved_names=_CONTEXT_NAMES,
        )

    @classmethod
    def capabilities(cls) -> tuple[Capability, ...]:
        return attached_capabilities(cls)

    @classmethod
    def env_flags(cls, environ: Mapping[str, str] | None = None) -> dict[str, str]:
        return env_flags(environ)

    # Shared by types and instances

    @hybridproperty
    def logger(target: Any) -> logging.Logger:
        if isinstance(target, Pipeline):
            if target._logger is None:
                name = f"releasekit.{type(target).__name__}#{target._id}"
                target._logger = build_logger(name, target._config.log)
            return target._logger

        if target._type_logger is None:
            target._type_logger = build_logger(
                f"releasekit.{target.__name__}", _resolved_type_log(target)
            )
        return target._type_logger

    @hybridmethod
    def _reset_logger(target: Any) -> None:
        if isinstance(target, Pipeline):
            close_logger(target._logger)
            target._logger = None
        else:
            close_logger(target._type_logger)
            target._type_logger = None

    @hybridmethod
    def set_log_level(target: Any, level: Any) -> None:
        _update_log_settings(target, level=level)

    @hybridmethod
    def set_log_sink(target: Any, sink: Any) -> None:
        _update_log_settings(target, sink=sink)

    @hybridmethod
    def log(target: Any, severity: Any, message: str, *args: Any) -> None:
        target.logger.log(message_level(severity), message, *args)

    @hybridmethod
    def set_flag(target: Any, name: str, value: Any) -> None:
        _settings_holder(target).flags[flag_name(name)] = value

    @hybridmethod
    def fail_build(target: Any, message: str) -> None:
        _log_fatal(target, message)
        raise BuildError(message)

    # Step-facing operations

    @property
    def config(self) -> Template:
        return self._config

    @property
    def current_phase(self) -> str | None:
        return self._current_phase

    @property
    def artifact_store(self) -> ArtifactStore:
        return self._artifacts

    def flag(self, name: str) -> Any:
        return self._config.flags.get(flag_name(name))

    def require_flag(self, name: str, message: str | None = None) -> Any:
        value = self.flag(name)
        if value is None:
            text = message or f"Missing flag: {name}"
            _log_fatal(self, text)
            raise FlagError(text)
        return value

    def esc(self, value: Any) -> str:
        return shell.esc(value)

    def esc_flag(self, name: str) -> str | None:
        value = self.flag(name)
        return None if value is None else shell.esc(value)

    def push_artifact(self, name: str, value: Any) -> None:
        self._artifacts.push(self._current_phase, name, value)

    def artifact(self, phase: str, name: str) -> Any:
        return self._artifacts.get(phase, name)

    def artifacts(self, phase: str | None = None) -> dict[str, Any]:
        return self._artifacts.get_all(phase)

    def esc_artifact(self, phase: str, name: str) -> str | None:
        value = self.artifact(phase, name)
        return None if value is None else shell.esc(value)

    def require_artifact(self, phase: str, name: str, message: str | None = None) -> Any:
        try:
            return self._artifacts.require(phase, name, message)
        except ArtifactError as exc:
            _log_fatal(self, str(exc))
            raise

    def append_step(self, phase: str, fn: StepFn | Step, *, name: str | None = None) -> None:
        self._config.steps[check_phase(phase)].append(Step.of(fn, name))

    def prepend_step(self, phase: str, fn: StepFn | Step, *, name: str | None = None) -> None:
        self._config.steps[check_phase(phase)].insert(0, Step.of(fn, name))

    def run_command(self, command: Any, *, cwd: str | None = None) -> bool:
        return shell.run_command(command, logger=self.logger, cwd=cwd)

    # Execution

    def run_phase(self, phase: str) -> None:
        phase = check_phase(phase)
        # Steps added to this phase while it runs take effect on its next run.
        steps = list(self._config.steps[phase])
        ctx = StepContext(self, phase)

        self._current_phase = phase
        self.logger.debug("Phase %s: %d step(s)", phase, len(steps))
        for index, step in enumerate(steps):
            self._run_step(ctx, step, index)
        self._current_phase = None

    def _run_step(self, ctx: StepContext, step: Step, index: int) -> None:
        step_name = step.effective_name(index)
        path = f"{ctx.phase}/{step_name}"
        try:
            self._recorder.on_step_start(ctx, path)
            step.fn(ctx)

            record: dict[str, Any] = {
                "phase": ctx.phase,
                "name": step_name,
                "path": path,
                "source": step.meta.get("source") or callable_source(step.fn),
            }

            self._recorder.on_step_end(ctx, record)
        except Exception as exc:
            try:
                self._recorder.on_step_error(ctx, path, exc)
            except Exception:
                self.logger.exception("Step recorder failed during error handling for %s", path)
            _annotate_error(exc, phase=ctx.phase, step=step_name)
            raise

    def run(self) -> None:
        self.logger.info("Running %s", type(self).__name__)
        self.run_phase("setup")
        with working_directory(self.flag("build_root")):
            for phase in BUILD_PHASES:
                self.run_phase(phase)
        self.run_phase("teardown")
        self.logger.info("Completed %s", type(self).__name__)


derive_template(Pipeline)
inherit_attachments(Pipeline, None)
