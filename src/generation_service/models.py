from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar, TypeAlias

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from .enums import (
    AspectRatio,
    OutputFormat,
    Provider,
    Resolution,
    SessionStatus,
    TaskState,
)

JSONDict: TypeAlias = dict[str, Any]

BIGINT_PK = BigInteger().with_variant(Integer, "sqlite")

metadata = MetaData(
    naming_convention={
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_name)s",
        "ck": "ck_%(table_name)s_%(constraint_name)s",
        "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
        "pk": "pk_%(table_name)s",
    }
)


def _enum_values(enum_cls: type[Any]) -> list[str]:
    return [member.value for member in enum_cls]


def _enum_column(enum_cls: type[Any], name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        values_callable=_enum_values,
        length=32,
    )


class Base(DeclarativeBase):
    """Base class for declarative models."""

    metadata: ClassVar[MetaData]

    type_annotation_map: ClassVar[dict[type[Any], Any]] = {
        dict: JSON,
    }


Base.registry.metadata = metadata


class GenerationSession(Base):
    """Groups the tasks one user action created against one provider."""

    __tablename__ = "generation_sessions"

    id: Mapped[int] = mapped_column(BIGINT_PK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    topic: Mapped[str] = mapped_column(String(255), nullable=False)
    base_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    provider: Mapped[Provider] = mapped_column(
        _enum_column(Provider, "generation_provider"), nullable=False
    )
    image_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    completed_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    failed_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    status: Mapped[SessionStatus] = mapped_column(
        _enum_column(SessionStatus, "generation_session_status"),
        nullable=False,
        default=SessionStatus.PENDING,
        server_default=text("'pending'"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    tasks: Mapped[list[GenerationTask]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="GenerationTask.id",
    )


class GenerationTask(Base):
    """Tracks one provider job from submission to durable result."""

    __tablename__ = "generation_tasks"

    id: Mapped[int] = mapped_column(BIGINT_PK, primary_key=True, autoincrement=True)
    external_task_id: Mapped[str] = mapped_column(String(128), nullable=False)
    session_id: Mapped[int] = mapped_column(
        ForeignKey("generation_sessions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    base_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    topic: Mapped[str | None] = mapped_column(String(255))
    provider: Mapped[Provider] = mapped_column(
        _enum_column(Provider, "generation_provider"), nullable=False
    )
    aspect_ratio: Mapped[AspectRatio] = mapped_column(
        _enum_column(AspectRatio, "generation_aspect_ratio"), nullable=False
    )
    resolution: Mapped[Resolution] = mapped_column(
        _enum_column(Resolution, "generation_resolution"), nullable=False
    )
    output_format: Mapped[OutputFormat] = mapped_column(
        _enum_column(OutputFormat, "generation_output_format"), nullable=False
    )
    state: Mapped[TaskState] = mapped_column(
        _enum_column(TaskState, "generation_task_state"),
        nullable=False,
        default=TaskState.QUEUED,
        server_default=text("'queued'"),
    )
    result_url: Mapped[str | None] = mapped_column(String(2048))
    storage_key: Mapped[str | None] = mapped_column(String(512))
    source_url: Mapped[str | None] = mapped_column(String(2048))
    failure_reason: Mapped[str | None] = mapped_column(String(500))
    provider_payload: Mapped[JSONDict] = mapped_column(
        JSON, nullable=False, default=dict, server_default=text("'{}'")
    )
    materialization_token: Mapped[str | None] = mapped_column(String(64))
    materialization_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    session: Mapped[GenerationSession] = relationship(back_populates="tasks")


Index("ix_generation_sessions_user_id", GenerationSession.user_id)
Index(
    "uq_generation_tasks_external_task_id",
    GenerationTask.external_task_id,
    unique=True,
)
Index("ix_generation_tasks_session_id", GenerationTask.session_id)
Index("ix_generation_tasks_user_state", GenerationTask.user_id, GenerationTask.state)
