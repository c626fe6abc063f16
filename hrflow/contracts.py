"""Core record contracts for the hrflow workflow engine."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class WorkflowType(str, Enum):
    ONBOARDING = "onboarding"
    OFFBOARDING = "offboarding"
    PERFORMANCE = "performance"
    LEAVE = "leave"
    VENDOR = "vendor"


class TemplateStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"


class StepType(str, Enum):
    MANUAL = "manual"
    INTEGRATION = "integration"
    APPROVAL = "approval"
    DOCUMENT = "document"


class AssignedRole(str, Enum):
    HR = "hr"
    MANAGER = "manager"
    IT = "it"
    EMPLOYEE = "employee"


class WorkflowStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ON_HOLD = "on-hold"


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    BLOCKED = "blocked"


class IntegrationType(str, Enum):
    DOCUSIGN = "docusign"
    BACKGROUND_CHECK = "background_check"
    DOC_SEARCH = "doc_search"


class IntegrationStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ResolutionStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"


class ExceptionType(str, Enum):
    INTEGRATION_FAILURE = "integration_failure"
    STEP_FAILURE = "step_failure"
    DEPENDENCY_FAILURE = "dependency_failure"
    MANUAL = "manual"


# Statuses that satisfy a dependency and count toward progress.
DONE_STATUSES = frozenset({StepStatus.COMPLETED, StepStatus.SKIPPED})
OPEN_WORKFLOW_STATUSES = frozenset({WorkflowStatus.ACTIVE, WorkflowStatus.ON_HOLD})


# ----------------------------------------------------------------------
# Template side


class StepDefinition(BaseModel):
    """One step of a reusable template."""

    key: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    order: Optional[int] = None
    step_type: StepType = StepType.MANUAL
    name: str
    description: str = ""
    stage: str = "general"
    required: bool = True
    auto_trigger: bool = False
    assigned_role: AssignedRole = AssignedRole.HR
    due_days: Optional[int] = Field(default=None, ge=0)
    dependencies: List[str] = Field(default_factory=list)
    integration_type: Optional[IntegrationType] = None
    integration_config: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("dependencies")
    @classmethod
    def _dedupe(cls, value: List[str]) -> List[str]:
        return list(dict.fromkeys(value))


class WorkflowTemplate(BaseModel):
    """Reusable, dependency-annotated step list for one workflow type."""

    id: str = Field(default_factory=new_id)
    name: str
    description: str = ""
    workflow_type: WorkflowType = WorkflowType.ONBOARDING
    status: TemplateStatus = TemplateStatus.ACTIVE
    version: int = 1
    steps: List[StepDefinition] = Field(default_factory=list)
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def ordered_steps(self) -> List[StepDefinition]:
        return sorted(self.steps, key=lambda s: s.order or 0)


# ----------------------------------------------------------------------
# Instance side


class EmployeeWorkflow(BaseModel):
    """A running workflow instance for one employee event."""

    id: str = Field(default_factory=new_id)
    employee_id: str
    template_id: Optional[str] = None
    template_name: Optional[str] = None
    template_version: Optional[int] = None
    workflow_type: WorkflowType = WorkflowType.ONBOARDING
    status: WorkflowStatus = WorkflowStatus.ACTIVE
    current_stage: Optional[str] = None
    progress_percentage: int = 0
    started_at: datetime = Field(default_factory=utcnow)
    expected_completion: Optional[datetime] = None
    actual_completion: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class WorkflowStep(BaseModel):
    """Instance-scoped step materialized from a ``StepDefinition``."""

    id: str = Field(default_factory=new_id)
    workflow_id: str
    definition_key: Optional[str] = None
    order: int
    name: str
    description: str = ""
    step_type: StepType = StepType.MANUAL
    stage: str = "general"
    status: StepStatus = StepStatus.PENDING
    required: bool = True
    auto_trigger: bool = False
    assigned_role: AssignedRole = AssignedRole.HR
    dependencies: List[str] = Field(default_factory=list)
    assigned_to: Optional[str] = None
    integration_type: Optional[IntegrationType] = None
    integration_config: Dict[str, Any] = Field(default_factory=dict)
    due_date: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_done(self) -> bool:
        return self.status in DONE_STATUSES


class WorkflowIntegration(BaseModel):
    """Audit record of one dispatch attempt group against a provider."""

    id: str = Field(default_factory=new_id)
    workflow_id: str
    step_id: str
    integration_type: IntegrationType
    external_id: Optional[str] = None
    status: IntegrationStatus = IntegrationStatus.PENDING
    request_payload: Dict[str, Any] = Field(default_factory=dict)
    response_payload: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    retry_count: int = 0
    max_retries: int = 3
    last_attempt_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class WorkflowException(BaseModel):
    """A problem that needs a human to resolve it."""

    id: str = Field(default_factory=new_id)
    workflow_id: str
    step_id: Optional[str] = None
    exception_type: ExceptionType = ExceptionType.MANUAL
    severity: Severity = Severity.MEDIUM
    title: str
    description: str = ""
    resolution_status: ResolutionStatus = ResolutionStatus.OPEN
    assigned_to: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# ----------------------------------------------------------------------
# Queries and read models


class WorkflowFilter(BaseModel):
    status: Optional[WorkflowStatus] = None
    employee_id: Optional[str] = None
    workflow_type: Optional[WorkflowType] = None
    template_id: Optional[str] = None

    def matches(self, workflow: EmployeeWorkflow) -> bool:
        if self.status is not None and workflow.status != self.status:
            return False
        if self.employee_id is not None and workflow.employee_id != self.employee_id:
            return False
        if self.workflow_type is not None and workflow.workflow_type != self.workflow_type:
            return False
        if self.template_id is not None and workflow.template_id != self.template_id:
            return False
        return True


class WorkflowDetails(BaseModel):
    workflow: EmployeeWorkflow
    steps: List[WorkflowStep] = Field(default_factory=list)
    integrations: List[WorkflowIntegration] = Field(default_factory=list)
    exceptions: List[WorkflowException] = Field(default_factory=list)


class WorkflowProgress(BaseModel):
    workflow_id: str
    status: WorkflowStatus
    total_steps: int = 0
    completed_steps: int = 0
    skipped_steps: int = 0
    in_progress_steps: int = 0
    pending_steps: int = 0
    blocked_steps: int = 0
    failed_steps: int = 0
    progress_percentage: int = 0
    current_stage: Optional[str] = None
    days_elapsed: int = 0
    expected_days: Optional[int] = None
    is_on_track: bool = True
    open_exceptions: int = 0
    overdue_steps: List[str] = Field(default_factory=list)


class StageSummary(BaseModel):
    stage: str
    total: int = 0
    completed: int = 0
    skipped: int = 0
    remaining: int = 0
    is_current: bool = False

    @property
    def is_finished(self) -> bool:
        return self.remaining == 0


class DashboardStats(BaseModel):
    active_workflows: int = 0
    on_hold_workflows: int = 0
    completed_workflows: int = 0
    cancelled_workflows: int = 0
    overdue_workflows: int = 0
    active_templates: int = 0
    completed_this_month: int = 0
    avg_completion_days: int = 0
    open_exceptions: Dict[str, int] = Field(default_factory=dict)
