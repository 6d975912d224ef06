"""Domain objects for execution plans and their results.

Python attributes are snake_case; the persisted record uses camelCase keys
(``createdAt``, ``riskLevel``, ``completedSteps`` ...). Both spellings are
accepted on input.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    CANCELLED = "cancelled"


class StepStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class _RecordModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AffectedResource(_RecordModel):
    type: str
    name: str
    namespace: str | None = None
    provider: str | None = None


class StepSpec(_RecordModel):
    """A step as supplied at creation time, before ids and defaults are assigned."""

    action: str
    description: str
    command: str | None = None
    resource: str | None = None
    risk_level: RiskLevel | None = None
    reversible: bool | None = None
    expected_outcome: str | None = None
    timeout: str | None = None


class ExecutionStep(_RecordModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(..., description="Sequential step id, step-<1-based index>.")
    action: str
    description: str
    command: str | None = Field(default=None, description="Shell command; absent means skipped.")
    resource: str | None = None
    risk_level: RiskLevel = RiskLevel.LOW
    reversible: bool = True
    expected_outcome: str | None = None
    timeout: str = Field(default="5m", description="Duration such as 30s, 5m or 2h.")


class RollbackConfig(_RecordModel):
    method: str
    commands: list[str] | None = None
    estimated_time: str | None = None
    verification_steps: list[str] | None = None


class PlanContext(_RecordModel):
    issue: str
    root_cause: str | None = None
    affected_resources: list[AffectedResource] = Field(default_factory=list)


class PlanApproval(_RecordModel):
    required: bool = True
    status: ApprovalStatus = ApprovalStatus.PENDING
    approver: str | None = None
    approved_at: datetime | None = None
    comment: str | None = None


class PlanExecution(_RecordModel):
    status: ExecutionStatus = ExecutionStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    current_step: int = 0
    completed_steps: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class ValidationChecks(_RecordModel):
    pre_flight: list[str] = Field(default_factory=list)
    post_execution: list[str] = Field(default_factory=list)


class ExecutionPlan(_RecordModel):
    """A proposed, auditable unit of operational work.

    ``id``, ``title``, ``created_at``, ``risk_level`` and ``steps`` are fixed at
    creation; reassigning them raises a pydantic validation error. Only the
    ``approval`` and ``execution`` sections change over a plan's lifetime.
    """

    id: str = Field(..., frozen=True, description="plan-YYYYMMDD-NNN")
    title: str = Field(..., frozen=True)
    created_at: datetime = Field(..., frozen=True)
    risk_level: RiskLevel = Field(..., frozen=True)
    estimated_duration: str | None = None
    context: PlanContext
    steps: tuple[ExecutionStep, ...] = Field(..., frozen=True, min_length=1)
    rollback: RollbackConfig | None = None
    approval: PlanApproval = Field(default_factory=PlanApproval)
    execution: PlanExecution = Field(default_factory=PlanExecution)
    validation: ValidationChecks = Field(default_factory=ValidationChecks)
    metadata: dict[str, Any] | None = None

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> "ExecutionPlan":
        return cls.model_validate(data)

    def find_step(self, step_id: str) -> ExecutionStep | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


class CreatePlanParams(_RecordModel):
    """Input for ``PlanStore.create``.

    Required fields are checked by the store so each missing one gets its own
    message; the model itself only shapes the input.
    """

    title: str | None = None
    risk_level: RiskLevel | str | None = None
    issue: str | None = None
    root_cause: str | None = None
    affected_resources: list[AffectedResource] = Field(default_factory=list)
    steps: list[StepSpec] = Field(default_factory=list)
    rollback: RollbackConfig | None = None
    estimated_duration: str | None = None
    validation: ValidationChecks | None = None
    metadata: dict[str, Any] | None = None


class StepResult(_RecordModel):
    step_id: str
    status: StepStatus
    output: str | None = None
    error: str | None = None
    duration_ms: int | None = None


class PlanExecutionResult(_RecordModel):
    plan_id: str
    success: bool
    step_results: list[StepResult] = Field(default_factory=list)
    total_duration_ms: int
    rolled_back: bool = False
