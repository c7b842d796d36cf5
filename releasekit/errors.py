"""Typed failures raised by the pipeline engine."""

from __future__ import annotations


class PipelineError(Exception):
    """Root of every failure the engine raises on purpose."""


class FlagError(PipelineError):
    """A flag that step logic relies on is absent."""


class BuildError(PipelineError):
    """The build was aborted, explicitly or by required-flag validation."""


class ArtifactError(BuildError):
    """An artifact that step logic relies on is absent."""
