"""Build-and-release pipeline engine.

Declare a `Pipeline` subclass, register steps into its phases, and call `run()` on an
instance. Capabilities bundle reusable operations that pipeline types opt into.
"""

from releasekit.capabilities import (
    CAPABILITIES,
    Capability,
    CapabilityRegistry,
    register_capability,
)
from releasekit.engine.pipeline import Pipeline, StepContext
from releasekit.engine.steps import DefaultStepRecorder, NullStepRecorder, Step, StepRecorder
from releasekit.errors import ArtifactError, BuildError, FlagError, PipelineError
from releasekit.log import LogSettings
from releasekit.template import BUILD_PHASES, INCLUDE_ALL, INCLUDE_NONE, PHASES

__version__ = "1.0.0"

__all__ = [
    "BUILD_PHASES",
    "CAPABILITIES",
    "INCLUDE_ALL",
    "INCLUDE_NONE",
    "PHASES",
    "ArtifactError",
    "BuildError",
    "Capability",
    "CapabilityRegistry",
    "DefaultStepRecorder",
    "FlagError",
    "LogSettings",
    "NullStepRecorder",
    "Pipeline",
    "PipelineError",
    "Step",
    "StepContext",
    "StepRecorder",
    "register_capability",
]
