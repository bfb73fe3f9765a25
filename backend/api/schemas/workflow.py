"""Workflow schemas — automations and templates."""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, List, Optional


class WorkflowExecuteRequest(BaseModel):
    """Entity event that should fire an automation."""

    entity_id: str = Field(min_length=1, description="ID of the entity that changed")
    entity_type: str = Field(min_length=1, description="Entity type (e.g., 'student_profile')")
    event_data: Dict[str, Any] = Field(default_factory=dict, description="Event payload")


class WorkflowExecuteResponse(BaseModel):
    """Outcome of firing an automation."""

    triggered: bool = Field(description="Whether an execution was created")
    reason: Optional[str] = Field(default=None, description="Why nothing was triggered")
    execution_id: Optional[str] = Field(default=None, description="Created execution ID")
    status: Optional[str] = Field(default=None, description="Execution status after driving")
    current_step: Optional[int] = Field(default=None, description="Execution cursor")
    next_action_at: Optional[datetime] = Field(default=None, description="When the next step is due")
    execution_log: List[Dict[str, Any]] = Field(default_factory=list, description="Log entries")


class ProcessResponse(BaseModel):
    """Result of one poller tick."""

    processed: int = Field(description="Executions advanced")
    errors: int = Field(description="Executions whose advance raised")
    locked: int = Field(default=0, description="Executions held by another invocation")


class WorkflowResponse(BaseModel):
    """Automation information response."""

    id: str = Field(description="Automation ID")
    name: str = Field(description="Automation name")
    description: str = Field(description="Automation description")
    trigger_type: str = Field(description="Trigger type")
    trigger_conditions: Optional[Dict[str, Any]] = Field(default=None, description="Trigger guard")
    actions: List[Dict[str, Any]] = Field(description="Action definitions")
    is_active: bool = Field(description="Whether the automation fires")
    execution_count: int = Field(description="Finished runs")
    last_executed: Optional[datetime] = Field(default=None, description="Last finished run")
    success_rate: float = Field(description="Running mean success percentage")
    created_at: datetime = Field(description="Creation timestamp")
    updated_at: datetime = Field(description="Last update timestamp")

    class Config:
        from_attributes = True


class WorkflowListResponse(BaseModel):
    """Paginated list of automations."""

    workflows: List[WorkflowResponse] = Field(description="List of automations")
    total: int = Field(description="Total number of automations")
    page: int = Field(description="Current page number")
    per_page: int = Field(description="Items per page")


class TemplateResponse(BaseModel):
    """Workflow template response."""

    id: str = Field(description="Template ID")
    name: str = Field(description="Template name")
    description: str = Field(description="Template description")
    is_active: bool = Field(description="Whether executions may run")
    actions: List[Dict[str, Any]] = Field(description="Action definitions")
    created_at: datetime = Field(description="Creation timestamp")
    updated_at: datetime = Field(description="Last update timestamp")

    class Config:
        from_attributes = True


class TemplateListResponse(BaseModel):
    """Paginated list of templates."""

    templates: List[TemplateResponse] = Field(description="List of templates")
    total: int = Field(description="Total number of templates")
    page: int = Field(description="Current page number")
    per_page: int = Field(description="Items per page")
