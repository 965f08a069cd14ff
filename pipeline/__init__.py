"""Resumable URL-to-podcast pipeline and its scheduler."""

from pipeline.models import ProcessingResult, ScriptLine, Usage
from pipeline.scheduler import CleanupReport, Scheduler, SchedulerConfig
from pipeline.service import (
    InsufficientContentError,
    PipelineConfig,
    PipelineError,
    ResumablePipeline,
    ResumePoint,
    retry_delay,
)
from pipeline.stages import segment_path, validate_segments

__all__ = [
    "CleanupReport",
    "InsufficientContentError",
    "PipelineConfig",
    "PipelineError",
    "ProcessingResult",
    "ResumablePipeline",
    "ResumePoint",
    "Scheduler",
    "SchedulerConfig",
    "ScriptLine",
    "Usage",
    "retry_delay",
    "segment_path",
    "validate_segments",
]
