"""Pydantic request/response models for the API."""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

TASK_TYPE_PATTERN = r"^(chat|translate|code|analyze|research|skill:[a-z0-9_-]+)$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

ContextValue = str | int | float | bool | None
Hour = Annotated[int, Field(ge=0, le=23)]


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: Literal["ok"]
    uptime_seconds: float
    started_at: str
    total_tasks: int
    tasks_by_status: dict[str, int]


class ErrorResponse(BaseModel):
    """Standard error response model."""

    model_config = ConfigDict(extra="forbid")
    error: str
    message: str
    details: dict[str, object]


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class Message(BaseModel):
    """One chat message of a task input."""

    model_config = ConfigDict(extra="forbid")
    role: Literal["user", "assistant", "system"]
    content: str = Field(min_length=1, max_length=32_000)


class TaskInput(BaseModel):
    model_config = ConfigDict(extra="forbid")
    messages: list[Message] = Field(min_length=1, max_length=100)
    context: dict[str, ContextValue] = Field(default_factory=dict)


class TaskConstraints(BaseModel):
    model_config = ConfigDict(extra="forbid")
    timeout_seconds: int = Field(default=60, ge=10, le=600)
    min_output_length: int = Field(default=0, ge=0)


class CreateTaskRequest(BaseModel):
    """Request body for POST /tasks."""

    model_config = ConfigDict(extra="forbid")
    type: str = Field(pattern=TASK_TYPE_PATTERN)
    input: TaskInput
    sensitive: bool = False
    constraints: TaskConstraints = Field(default_factory=TaskConstraints)
    input_preview: dict[str, ContextValue] | None = None


class TaskOutput(BaseModel):
    model_config = ConfigDict(extra="forbid")
    content: str = Field(min_length=1)
    format: Literal["text", "json", "html", "markdown", "code"]


class SubmitWorkRequest(BaseModel):
    """Request body for POST /work/submit."""

    model_config = ConfigDict(extra="forbid")
    task_id: str = Field(min_length=1, max_length=100)
    output: TaskOutput


# ---------------------------------------------------------------------------
# Workers
# ---------------------------------------------------------------------------


class ModelInfo(BaseModel):
    model_config = ConfigDict(extra="forbid")
    provider: str = Field(min_length=1, max_length=50)
    model: str = Field(min_length=1, max_length=100)
    capabilities: list[str] = Field(default_factory=list, max_length=20)


class ConnectWorkerRequest(BaseModel):
    """Request body for POST /workers/connect."""

    model_config = ConfigDict(extra="forbid")
    worker_type: str = Field(min_length=1, max_length=50)
    model_info: ModelInfo | None = None


class PreferencesUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")
    accept: list[str] | None = Field(default=None, max_length=50)
    reject: list[str] | None = Field(default=None, max_length=50)
    languages: list[str] | None = Field(default=None, max_length=20)
    max_tokens: int | None = Field(default=None, gt=0, le=100_000)
    min_price: int | None = Field(default=None, ge=0, le=10_000)


class Shift(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: str = Field(max_length=50)
    hours: tuple[Hour, Hour]
    interval: int = Field(gt=0, le=3600)


class ScheduleUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")
    timezone: str | None = Field(default=None, max_length=50)
    shifts: list[Shift] | None = Field(default=None, max_length=10)


class LimitsUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")
    daily_max_tasks: int | None = Field(default=None, gt=0, le=10_000)
    concurrent: int | None = Field(default=None, gt=0, le=50)


class ProfileUpdate(BaseModel):
    """
    Partial worker profile update.

    Only the fields that are set are merged into the stored profile;
    omitted sections and omitted fields stay unchanged.
    """

    model_config = ConfigDict(extra="forbid")
    preferences: PreferencesUpdate | None = None
    schedule: ScheduleUpdate | None = None
    limits: LimitsUpdate | None = None


class BindEmailRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    email: str = Field(pattern=EMAIL_PATTERN, max_length=254)


class BindPayoutRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    method: Literal["paypal", "solana"]
    address: str = Field(min_length=1, max_length=256)


class WithdrawRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    amount_cents: int = Field(gt=0)


class DepositRequest(BaseModel):
    """Request body for POST /deposits, sent once a payment is confirmed."""

    model_config = ConfigDict(extra="forbid")
    user_id: str = Field(min_length=1, max_length=200)
    amount_cents: int = Field(gt=0, le=1_000_000)
    payment_ref: str = Field(min_length=1, max_length=200)
