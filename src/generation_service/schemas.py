from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import (
    AspectRatio,
    OutputFormat,
    Provider,
    Resolution,
    SessionStatus,
    TaskState,
)

MAX_PROMPT_LENGTH = 10_000
DEFAULT_TOPIC = "Custom"


def _clean_prompt(value: str) -> str:
    cleaned = value.strip()
    if not cleaned:
        raise ValueError("prompt must not be blank")
    return cleaned


class GenerationRequest(BaseModel):
    """Canonical parameters for a single provider submission."""

    prompt: str = Field(..., min_length=1, max_length=MAX_PROMPT_LENGTH)
    provider: Provider = Provider.NANO_BANANA
    aspect_ratio: AspectRatio = AspectRatio.PORTRAIT_2_3
    resolution: Resolution = Resolution.ONE_K
    output_format: OutputFormat = OutputFormat.PNG

    model_config = ConfigDict(frozen=True)

    @field_validator("prompt")
    @classmethod
    def validate_prompt(cls, value: str) -> str:
        return _clean_prompt(value)


class SubmitRequest(GenerationRequest):
    """Single-provider submission of one or more images."""

    topic: str | None = Field(default=None, max_length=255)
    count: int = Field(default=1, ge=1, le=10)


class FanOutRequest(BaseModel):
    """The same prompt dispatched to several providers for comparison."""

    prompt: str = Field(..., min_length=1, max_length=MAX_PROMPT_LENGTH)
    topic: str | None = Field(default=None, max_length=255)
    providers: list[Provider] = Field(..., min_length=1, max_length=4)
    count_per_provider: int = Field(default=1, ge=1, le=4)
    aspect_ratio: AspectRatio = AspectRatio.PORTRAIT_2_3
    resolution: Resolution = Resolution.ONE_K
    output_format: OutputFormat = OutputFormat.PNG

    @field_validator("prompt")
    @classmethod
    def validate_prompt(cls, value: str) -> str:
        return _clean_prompt(value)

    @field_validator("providers")
    @classmethod
    def validate_providers(cls, value: list[Provider]) -> list[Provider]:
        if len(set(value)) != len(value):
            raise ValueError("providers must be distinct")
        return value

    def request_for(self, provider: Provider) -> GenerationRequest:
        return GenerationRequest(
            prompt=self.prompt,
            provider=provider,
            aspect_ratio=self.aspect_ratio,
            resolution=self.resolution,
            output_format=self.output_format,
        )


class SubmittedTask(BaseModel):
    id: int
    external_task_id: str
    provider: Provider
    session_id: int


class SubmissionResult(BaseModel):
    """Outcome of one provider pipeline: its session and the tasks created."""

    session_id: int
    provider: Provider
    tasks: list[SubmittedTask] = Field(default_factory=list)
    requested_count: int
    failed_count: int = 0


class FanOutResult(BaseModel):
    tasks: list[SubmittedTask] = Field(default_factory=list)
    session_ids: list[int] = Field(default_factory=list)
    providers: list[Provider] = Field(default_factory=list)
    requested_count: int
    total_count: int
    failed_count: int


class TaskStatusResult(BaseModel):
    """Per-task answer to a status check."""

    external_task_id: str
    state: TaskState | None = None
    result_url: str | None = None
    error: str | None = None


class PollOutcome(BaseModel):
    """Result of blocking until a provider job settles."""

    success: bool
    urls: list[str] = Field(default_factory=list)
    error: str | None = None
    attempts: int = 0
    timed_out: bool = False
    state: TaskState | None = None


class GenerationTaskRead(BaseModel):
    id: int
    external_task_id: str
    session_id: int
    user_id: int
    prompt: str
    base_prompt: str
    topic: str | None
    provider: Provider
    aspect_ratio: AspectRatio
    resolution: Resolution
    output_format: OutputFormat
    state: TaskState
    result_url: str | None
    failure_reason: str | None
    created_at: datetime
    completed_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class GenerationSessionRead(BaseModel):
    id: int
    user_id: int
    topic: str
    base_prompt: str
    provider: Provider
    image_count: int
    completed_count: int
    failed_count: int
    status: SessionStatus
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class GenerationSessionDetail(GenerationSessionRead):
    tasks: list[GenerationTaskRead] = Field(default_factory=list)
