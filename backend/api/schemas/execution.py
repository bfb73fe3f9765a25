"""Execution schemas."""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, List, Optional


class ExecutionCreate(BaseModel):
    """Request to start a template execution for a subject."""

    workflow_template_id: str = Field(description="ID of the template to run")
    student_id: Optional[str] = Field(default=None, description="Subject student")
    application_id: Optional[str] = Field(default=None, description="Correlated application")
    trigger_payload: Dict[str, Any] = Field(default_factory=dict, description="Event data")


class ExecutionLogResponse(BaseModel):
    """Execution log entry response."""

    sequence: int = Field(description="Position in the log")
    step_index: int = Field(description="Index of the action")
    action_type: Optional[str] = Field(default=None, description="Action type, null for execution-level entries")
    status: str = Field(description="completed, failed or skipped")
    result: Optional[Any] = Field(default=None, description="Handler result")
    error: Optional[str] = Field(default=None, description="Error message")
    timestamp: datetime = Field(description="When the step settled")

    class Config:
        from_attributes = True


class ExecutionResponse(BaseModel):
    """Execution information response."""

    id: str = Field(description="Execution ID")
    workflow_template_id: Optional[str] = Field(default=None, description="Template ID")
    workflow_automation_id: Optional[str] = Field(default=None, description="Automation ID")
    student_id: Optional[str] = Field(default=None, description="Subject student")
    application_id: Optional[str] = Field(default=None, description="Correlated application")
    entity_type: Optional[str] = Field(default=None, description="Triggering entity type")
    entity_id: Optional[str] = Field(default=None, description="Triggering entity ID")
    status: str = Field(description="pending, in_progress, completed or failed")
    current_step: int = Field(description="Index of the next action")
    next_action_at: Optional[datetime] = Field(default=None, description="Not due before this time")
    step_attempts: int = Field(default=0, description="Unsettled dispatches of the current step")
    started_at: Optional[datetime] = Field(default=None, description="First dispatch")
    completed_at: Optional[datetime] = Field(default=None, description="Terminal transition")
    created_at: datetime = Field(description="Creation timestamp")

    class Config:
        from_attributes = True


class ExecutionDetailResponse(ExecutionResponse):
    """Execution with its full log."""

    execution_log: List[ExecutionLogResponse] = Field(default_factory=list, description="Log entries")


class ExecutionListResponse(BaseModel):
    """Paginated list of executions."""

    executions: List[ExecutionResponse] = Field(description="List of executions")
    total: int = Field(description="Total number of executions")
    page: int = Field(description="Current page number")
    per_page: int = Field(description="Items per page")


class AdvanceResponse(BaseModel):
    """What one advance call did."""

    execution_id: str
    outcome: str
    status: Optional[str] = None
    current_step: Optional[int] = None
    next_action_at: Optional[datetime] = None
    entries: List[Dict[str, Any]] = Field(default_factory=list)
