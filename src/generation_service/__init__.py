"""Multi-provider image generation: submission, tracking and durable results."""

from .enums import (
    AspectRatio,
    OutputFormat,
    Provider,
    Resolution,
    SessionStatus,
    TaskState,
)
from .models import Base, GenerationSession, GenerationTask
from .orchestrator import GenerationOrchestrator

__all__ = [
    "Base",
    "GenerationOrchestrator",
    "GenerationSession",
    "GenerationTask",
    "AspectRatio",
    "OutputFormat",
    "Provider",
    "Resolution",
    "SessionStatus",
    "TaskState",
]
