"""Workflow automation endpoints — listing, event-driven execution and poll ticks."""

from fastapi import APIRouter, Depends, HTTPException, Query, status as http_status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import logging

from api.schemas.common import PaginationParams
from api.schemas.workflow import (
    ProcessResponse,
    WorkflowExecuteRequest,
    WorkflowExecuteResponse,
    WorkflowListResponse,
    WorkflowResponse,
)
from app.dependencies import get_db, get_engine
from core.utils import calculate_offset
from services.workflow_service import AutomationService
from workflow.engine import WorkflowEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["workflows"])


@router.get("/", response_model=WorkflowListResponse)
async def list_workflows(
    pagination: PaginationParams = Depends(),
    is_active: Optional[bool] = Query(None, description="Filter by active flag"),
    trigger_type: Optional[str] = Query(None, description="Filter by trigger type"),
    db: AsyncSession = Depends(get_db),
) -> WorkflowListResponse:
    """List workflow automations (paginated, filterable)."""
    svc = AutomationService(db)
    automations, total = await svc.list(
        offset=calculate_offset(pagination.page, pagination.per_page),
        limit=pagination.per_page,
        filters={"is_active": is_active, "trigger_type": trigger_type},
    )
    return WorkflowListResponse(
        workflows=[WorkflowResponse.model_validate(a) for a in automations],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
    )


@router.post("/process", response_model=ProcessResponse)
async def process_workflows(engine: WorkflowEngine = Depends(get_engine)) -> ProcessResponse:
    """
    Run one poller tick: advance every due execution by one step.

    Meant for an external scheduler hitting this endpoint about once a minute.
    """
    result = await engine.process_due()
    return ProcessResponse(**result.to_dict())


@router.get("/{workflow_id}", response_model=WorkflowResponse)
async def get_workflow(
    workflow_id: str,
    db: AsyncSession = Depends(get_db),
) -> WorkflowResponse:
    """Get a workflow automation by ID."""
    automation = await AutomationService(db).get_by_id(workflow_id)
    if not automation:
        raise HTTPException(
            status_code=http_status.HTTP_404_NOT_FOUND,
            detail="Workflow not found",
        )
    return WorkflowResponse.model_validate(automation)


@router.post("/{workflow_id}/execute", response_model=WorkflowExecuteResponse)
async def execute_workflow(
    workflow_id: str,
    request: WorkflowExecuteRequest,
    engine: WorkflowEngine = Depends(get_engine),
) -> WorkflowExecuteResponse:
    """
    Fire an automation for an entity event.

    Creates an execution when the trigger conditions hold and drives it
    until it completes, fails or waits on a delay.
    """
    summary = await engine.trigger(
        automation_id=workflow_id,
        entity_id=request.entity_id,
        entity_type=request.entity_type,
        event_data=request.event_data,
    )
    return WorkflowExecuteResponse(**summary)
