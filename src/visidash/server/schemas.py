"""Request and response bodies for the JSON API.

Field names are snake_case in Python and camelCase on the wire.
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    StringConstraints,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from visidash.ai_client import is_absolute_url
from visidash.server.auth_utils import MIN_PASSWORD_LENGTH
from visidash.server.models import ExperimentStatus, RunStatus

NonBlankStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class ApiModel(BaseModel):
    """Base for all API bodies: camelCase aliases, readable from ORM objects."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        protected_namespaces=(),
    )


def _normalize_email(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


# -----------------------------------------------------------------------------
# Auth
# -----------------------------------------------------------------------------


class RegisterRequest(ApiModel):
    email: EmailStr
    password: str = Field(min_length=MIN_PASSWORD_LENGTH)
    name: NonBlankStr
    invitation_code: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> Any:
        return _normalize_email(value)


class LoginRequest(ApiModel):
    email: EmailStr
    password: str = Field(min_length=1)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> Any:
        return _normalize_email(value)


class RefreshRequest(ApiModel):
    user_id: UUID


class UserOut(ApiModel):
    id: UUID
    email: str
    name: str
    is_admin: bool
    query_count: int
    created_at: datetime


class AuthResponse(ApiModel):
    user: UserOut
    message: str
    requires_setup: bool = False


class RefreshResponse(ApiModel):
    user: UserOut


class UserCountResponse(ApiModel):
    user_count: int


# -----------------------------------------------------------------------------
# Admin
# -----------------------------------------------------------------------------


class UserStats(ApiModel):
    id: UUID
    email: str
    name: str
    query_count: int
    created_at: datetime
    last_active: datetime
    status: Literal["active", "inactive", "invited"] = "active"
    is_admin: bool


class MakeAdminRequest(ApiModel):
    user_id: UUID
    target_user_id: UUID


class UserSummary(ApiModel):
    id: UUID
    email: str
    name: str


class PromotedUser(UserSummary):
    is_admin: bool


class MakeAdminResponse(ApiModel):
    success: bool = True
    message: str
    user: PromotedUser


class ResetPasswordRequest(ApiModel):
    new_password: str = Field(min_length=MIN_PASSWORD_LENGTH)
    admin_user_id: UUID


class ResetPasswordResponse(ApiModel):
    message: str
    user: UserSummary


class CreateInvitationRequest(ApiModel):
    expires_in_days: int = Field(default=7, ge=1, le=365)


class InvitationCodeOut(ApiModel):
    code: str
    created_at: datetime
    expires_at: datetime
    used_by: Optional[str] = None
    used_at: Optional[datetime] = None
    revoked: bool = False


class RevokedInvitation(ApiModel):
    code: str
    revoked: bool


class ProviderTestRequest(ApiModel):
    user_id: UUID


class ProviderTestResponse(ApiModel):
    ok: bool
    status: int
    body: Any


# -----------------------------------------------------------------------------
# Saved queries and follow-ups
# -----------------------------------------------------------------------------


class SavedQueryOut(ApiModel):
    id: UUID
    user_id: UUID
    question: str
    result: Any
    visualization_name: Optional[str] = None
    is_favorite: bool
    deleted: bool
    created_at: datetime
    updated_at: datetime


class UserQueries(ApiModel):
    user: UserSummary
    queries: list[SavedQueryOut]


class CreateQueryRequest(ApiModel):
    question: NonBlankStr
    result: dict[str, Any]
    visualization_name: Optional[str] = None
    user_id: UUID


class UpdateQueryRequest(ApiModel):
    visualization_name: Optional[str] = None
    is_favorite: Optional[bool] = None


class FollowUpOut(ApiModel):
    id: UUID
    parent_query_id: UUID
    parent_follow_up_id: Optional[UUID] = None
    question: str
    result: Any
    name: Optional[str] = None
    chart_type: Optional[str] = None
    is_favorite: bool
    created_at: datetime
    updated_at: datetime


class CreateFollowUpRequest(ApiModel):
    parent_query_id: UUID
    parent_follow_up_id: Optional[UUID] = None
    question: NonBlankStr
    result: dict[str, Any]
    name: Optional[str] = None
    chart_type: Optional[str] = None
    user_id: UUID


class UpdateFollowUpRequest(ApiModel):
    name: Optional[str] = None
    is_favorite: Optional[bool] = None
    chart_type: Optional[str] = None


class SuccessResponse(ApiModel):
    success: bool = True


# -----------------------------------------------------------------------------
# Settings
# -----------------------------------------------------------------------------


class KbFilter(ApiModel):
    index: str
    path: Optional[str] = None


class StreamOptions(BaseModel):
    include_usage: Optional[bool] = None


class SettingsUpdate(ApiModel):
    """Partial update of the application settings. Unset fields are left alone."""

    user_id: UUID

    webhook_url: Optional[str] = None
    timeout_seconds: Optional[int] = Field(default=None, ge=60, le=3600)
    timeout_enabled: Optional[bool] = None
    auto_save_queries: Optional[bool] = None
    webhook_username: Optional[str] = None
    webhook_password: Optional[str] = None
    webhook_headers: Optional[dict[str, str]] = None
    prompt_helper_webhook_url: Optional[str] = None
    prompt_helper_username: Optional[str] = None
    prompt_helper_password: Optional[str] = None
    prompt_helper_headers: Optional[dict[str, str]] = None
    ai_provider_url: Optional[str] = None
    ai_provider_api_key: Optional[str] = None

    ai_temperature: Optional[float] = Field(default=None, ge=0, le=2)
    ai_top_p: Optional[float] = Field(default=None, ge=0.01, le=1)
    ai_max_tokens: Optional[int] = Field(default=None, ge=1)
    ai_stream: Optional[bool] = None
    ai_k: Optional[int] = Field(default=None, ge=0)
    ai_retrieval_method: Optional[Literal["rewrite", "step_back", "sub_queries", "none"]] = None
    ai_frequency_penalty: Optional[float] = Field(default=None, ge=-2, le=2)
    ai_presence_penalty: Optional[float] = Field(default=None, ge=-2, le=2)
    ai_stop: Optional[Union[str, list[str]]] = None
    ai_stream_options: Optional[StreamOptions] = None
    ai_kb_filters: Optional[list[KbFilter]] = None
    ai_filter_kb_content_by_query_metadata: Optional[bool] = None
    ai_include_functions_info: Optional[bool] = None
    ai_include_retrieval_info: Optional[bool] = None
    ai_include_guardrails_info: Optional[bool] = None
    ai_provide_citations: Optional[bool] = None
    ai_disable_token_count: Optional[bool] = None
    ai_json_structuring_prompt: Optional[str] = None

    ai_system_prompt: Optional[str] = None
    ai_helper_system_prompt: Optional[str] = None


class SettingsOut(ApiModel):
    id: Optional[UUID] = None
    webhook_url: str = ""
    ai_provider_url: Optional[str] = None
    ai_provider_api_key: Optional[str] = None
    timeout_seconds: int = 60
    timeout_enabled: bool = False
    auto_save_queries: bool = True
    webhook_username: str = ""
    webhook_password: str = ""
    webhook_headers: Optional[dict[str, str]] = None
    prompt_helper_webhook_url: str = ""
    prompt_helper_username: str = ""
    prompt_helper_password: str = ""
    prompt_helper_headers: Optional[dict[str, str]] = None

    @field_validator(
        "webhook_url",
        "webhook_username",
        "webhook_password",
        "prompt_helper_webhook_url",
        "prompt_helper_username",
        "prompt_helper_password",
        mode="before",
    )
    @classmethod
    def none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value


# -----------------------------------------------------------------------------
# AI lab
# -----------------------------------------------------------------------------


class LabTarget(ApiModel):
    """One model endpoint to benchmark. Unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")

    label: str = Field(min_length=1, max_length=60)
    webhook_url: Optional[str] = None
    model_name: str = Field(min_length=1, max_length=120)
    method: Literal["POST", "PUT", "PATCH"] = "POST"
    color: Optional[str] = None
    headers: Optional[dict[str, str]] = None
    timeout_ms: Optional[int] = Field(default=None, ge=1000, le=120000)
    payload_template: Optional[dict[str, Any]] = None
    cost_per_1k_tokens: Optional[float] = Field(default=None, ge=0, alias="costPer1kTokens")
    input_tokens_per_million: Optional[float] = Field(default=None, ge=0)
    output_tokens_per_million: Optional[float] = Field(default=None, ge=0)

    @field_validator("webhook_url")
    @classmethod
    def absolute_url(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not is_absolute_url(value):
            raise ValueError("webhookUrl must be an absolute URL")
        return value


class QuickRunTarget(LabTarget):
    webhook_url: str


class CreateExperimentRequest(ApiModel):
    user_id: UUID
    label: str = Field(min_length=1, max_length=120)
    prompt: str = Field(min_length=1)
    expected_answer: Optional[str] = None
    notes: Optional[str] = None
    max_concurrency: Optional[int] = Field(default=None, ge=1, le=6)
    targets: list[LabTarget] = Field(min_length=1, max_length=6)


class QuickRunRequest(ApiModel):
    user_id: UUID
    prompt: str = Field(min_length=1)
    targets: list[QuickRunTarget] = Field(min_length=1, max_length=6)


class FeedbackRequest(ApiModel):
    """Reviewer score and notes for one result. Sending null clears a field."""

    user_id: UUID
    result_id: UUID
    review_score: Optional[int] = Field(default=None, ge=1, le=5)
    feedback_notes: Optional[str] = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def something_to_update(self) -> "FeedbackRequest":
        if not self.model_fields_set & {"review_score", "feedback_notes"}:
            raise ValueError("reviewScore or feedbackNotes required")
        return self


class ExperimentResultOut(ApiModel):
    id: UUID
    experiment_id: UUID
    slot_index: int
    label: str
    color: Optional[str] = None
    webhook_url: Optional[str] = None
    model_name: str
    method: str
    status: RunStatus
    latency_ms: Optional[int] = None
    prompt_tokens: Optional[float] = None
    completion_tokens: Optional[float] = None
    total_tokens: Optional[float] = None
    accuracy_score: Optional[float] = None
    speed_score: Optional[float] = None
    cost_estimate: Optional[float] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    response_payload: Any = None
    error_message: Optional[str] = None
    review_score: Optional[int] = None
    feedback_notes: Optional[str] = None


class ExperimentOut(ApiModel):
    id: UUID
    user_id: UUID
    label: str
    prompt: str
    expected_answer: Optional[str] = None
    notes: Optional[str] = None
    total_targets: int
    total_completed: int
    status: ExperimentStatus
    duration_ms: Optional[int] = None
    target_configs: Any = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    results: list[ExperimentResultOut] = []


class QuickRunData(ApiModel):
    label: str
    model_name: str
    latency_ms: int
    prompt_tokens: Optional[float] = None
    completion_tokens: Optional[float] = None
    total_tokens: Optional[float] = None
    cost_estimate: Optional[float] = None
    answer: str
    response_payload: Any = None


class QuickRunOutcome(ApiModel):
    target: str
    success: bool
    data: Optional[QuickRunData] = None
    error: Optional[str] = None


class QuickRunResponse(ApiModel):
    success: bool = True
    duration_ms: int
    total_targets: int
    successful: int
    failed: int
    results: list[QuickRunOutcome]
