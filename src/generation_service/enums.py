from __future__ import annotations

from enum import StrEnum


class Provider(StrEnum):
    """Image generation providers reachable through the upstream API."""

    NANO_BANANA = "nano-banana"
    NANO_BANANA_PRO = "nano-banana-pro"
    GROK_IMAGINE = "grok-imagine"
    OPENAI_4O = "openai-4o"


class AspectRatio(StrEnum):
    """Supported output aspect ratios."""

    SQUARE = "1:1"
    PORTRAIT_2_3 = "2:3"
    LANDSCAPE_3_2 = "3:2"
    PORTRAIT_3_4 = "3:4"
    LANDSCAPE_4_3 = "4:3"
    PORTRAIT_4_5 = "4:5"
    LANDSCAPE_5_4 = "5:4"
    PORTRAIT_9_16 = "9:16"
    LANDSCAPE_16_9 = "16:9"
    ULTRAWIDE_21_9 = "21:9"


class Resolution(StrEnum):
    """Output resolution tiers."""

    ONE_K = "1K"
    TWO_K = "2K"
    FOUR_K = "4K"


class OutputFormat(StrEnum):
    """Image encodings a provider can be asked to return."""

    PNG = "png"
    JPG = "jpg"

    @property
    def content_type(self) -> str:
        if self is OutputFormat.JPG:
            return "image/jpeg"
        return "image/png"


class TaskState(StrEnum):
    """Provider-agnostic lifecycle stage of a generation task."""

    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {TaskState.SUCCEEDED, TaskState.FAILED}


class SessionStatus(StrEnum):
    """Lifecycle states for a batch of tasks created by one user action."""

    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"
