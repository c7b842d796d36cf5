"""Engine primitives for declaring and running phased pipelines."""

from releasekit.engine.pipeline import (
    Pipeline,
    PipelineMeta,
    StepContext,
    hybridmethod,
    hybridproperty,
    working_directory,
)
from releasekit.engine.steps import (
    DefaultStepRecorder,
    NullStepRecorder,
    Step,
    StepRecorder,
)

__all__ = [
    "DefaultStepRecorder",
    "NullStepRecorder",
    "Pipeline",
    "PipelineMeta",
    "Step",
    "StepContext",
    "StepRecorder",
    "hybridmethod",
    "hybridproperty",
    "working_directory",
]
