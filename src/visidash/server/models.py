"""SQLAlchemy database models for the Visidash server."""

import enum
import secrets
import string
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, Enum, Float, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

INVITATION_CODE_ALPHABET = string.ascii_uppercase + string.digits
INVITATION_CODE_LENGTH = 8


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class ExperimentStatus(str, enum.Enum):
    """Status of an AI lab experiment."""

    pending = "PENDING"
    running = "RUNNING"
    completed = "COMPLETED"
    failed = "FAILED"


class RunStatus(str, enum.Enum):
    """Status of one target run inside an experiment."""

    queued = "QUEUED"
    running = "RUNNING"
    completed = "COMPLETED"
    failed = "FAILED"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def generate_invitation_code() -> str:
    """Generate an 8-character uppercase alphanumeric invitation code."""
    return "".join(
        secrets.choice(INVITATION_CODE_ALPHABET) for _ in range(INVITATION_CODE_LENGTH)
    )


class User(Base):
    """A dashboard user. The first user to register becomes an admin."""

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    query_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    # Relationships
    saved_queries: Mapped[list["SavedQuery"]] = relationship(
        "SavedQuery", back_populates="user", cascade="all, delete-orphan"
    )
    experiments: Mapped[list["AiExperiment"]] = relationship(
        "AiExperiment", back_populates="user", cascade="all, delete-orphan"
    )


class InvitationCode(Base):
    """Single-use code required to register once the first admin exists."""

    __tablename__ = "invitation_codes"

    code: Mapped[str] = mapped_column(String(INVITATION_CODE_LENGTH), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    used_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def is_redeemable(self, now: Optional[datetime] = None) -> bool:
        """True if the code is not revoked, not used and not expired."""
        now = now or utcnow()
        if self.revoked or self.used_by:
            return False
        return as_utc(self.expires_at) >= now


class AppSetting(Base):
    """Application-wide configuration, edited by admins. One row is used."""

    __tablename__ = "app_settings"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)

    # Query webhook
    webhook_url: Mapped[str] = mapped_column(Text, default="", nullable=False)
    webhook_username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    webhook_password: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    webhook_headers: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    timeout_seconds: Mapped[int] = mapped_column(Integer, default=60, nullable=False)
    timeout_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    auto_save_queries: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Prompt helper webhook
    prompt_helper_webhook_url: Mapped[str] = mapped_column(Text, default="", nullable=False)
    prompt_helper_username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    prompt_helper_password: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    prompt_helper_headers: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    # AI provider
    ai_provider_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ai_provider_api_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # AI generation parameters (None means "use the provider default")
    ai_temperature: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    ai_top_p: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    ai_max_tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    ai_stream: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    ai_k: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    ai_retrieval_method: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    ai_frequency_penalty: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    ai_presence_penalty: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    ai_stop: Mapped[Optional[Any]] = mapped_column(JSONType, nullable=True)
    ai_stream_options: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    ai_kb_filters: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    ai_filter_kb_content_by_query_metadata: Mapped[Optional[bool]] = mapped_column(
        Boolean, nullable=True
    )
    ai_include_functions_info: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    ai_include_retrieval_info: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    ai_include_guardrails_info: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    ai_provide_citations: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    ai_disable_token_count: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    ai_json_structuring_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # System prompts
    ai_system_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ai_helper_system_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class SavedQuery(Base):
    """A question and the visualization payload the AI returned for it."""

    __tablename__ = "saved_queries"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    question: Mapped[str] = mapped_column(Text, nullable=False)
    result: Mapped[dict] = mapped_column(JSONType, nullable=False)
    visualization_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_favorite: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="saved_queries")
    follow_ups: Mapped[list["FollowUp"]] = relationship(
        "FollowUp", back_populates="parent_query", cascade="all, delete-orphan"
    )


class FollowUp(Base):
    """A follow-up question chained off a saved query (or another follow-up)."""

    __tablename__ = "follow_ups"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    parent_query_id: Mapped[UUID] = mapped_column(
        ForeignKey("saved_queries.id", ondelete="CASCADE"), nullable=False, index=True
    )
    parent_follow_up_id: Mapped[Optional[UUID]] = mapped_column(
        ForeignKey("follow_ups.id", ondelete="SET NULL"), nullable=True
    )
    question: Mapped[str] = mapped_column(Text, nullable=False)
    result: Mapped[dict] = mapped_column(JSONType, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    chart_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_favorite: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    # Relationships
    parent_query: Mapped["SavedQuery"] = relationship(
        "SavedQuery", back_populates="follow_ups"
    )


class AiExperiment(Base):
    """One prompt sent to several model targets side by side."""

    __tablename__ = "ai_experiments"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    label: Mapped[str] = mapped_column(String(120), nullable=False)
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    expected_answer: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    total_targets: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[ExperimentStatus] = mapped_column(
        Enum(ExperimentStatus, name="experimentstatus"),
        default=ExperimentStatus.pending,
        nullable=False,
    )
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # Target definitions as submitted, with sensitive header values masked
    target_configs: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="experiments")
    results: Mapped[list["AiExperimentResult"]] = relationship(
        "AiExperimentResult",
        back_populates="experiment",
        cascade="all, delete-orphan",
        order_by="AiExperimentResult.slot_index",
    )


class AiExperimentResult(Base):
    """Outcome of one target within an experiment, plus reviewer feedback."""

    __tablename__ = "ai_experiment_results"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    experiment_id: Mapped[UUID] = mapped_column(
        ForeignKey("ai_experiments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    slot_index: Mapped[int] = mapped_column(Integer, nullable=False)
    label: Mapped[str] = mapped_column(String(60), nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    webhook_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    model_name: Mapped[str] = mapped_column(String(120), nullable=False)
    method: Mapped[str] = mapped_column(String(10), default="POST", nullable=False)
    status: Mapped[RunStatus] = mapped_column(
        Enum(RunStatus, name="runstatus"), default=RunStatus.queued, nullable=False
    )

    # Metrics
    latency_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    prompt_tokens: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    completion_tokens: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    total_tokens: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    accuracy_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    speed_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    cost_estimate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    response_payload: Mapped[Optional[Any]] = mapped_column(JSONType, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Reviewer feedback
    review_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    feedback_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    experiment: Mapped["AiExperiment"] = relationship(
        "AiExperiment", back_populates="results"
    )
