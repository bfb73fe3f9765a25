"""Workflow execution history and management endpoints."""

from fastapi import APIRouter, HTTPException, status as http_status, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import logging

from api.schemas.execution import (
    AdvanceResponse,
    ExecutionCreate,
    ExecutionDetailResponse,
    ExecutionListResponse,
    ExecutionLogResponse,
    ExecutionResponse,
)
from api.schemas.common import PaginationParams
from app.dependencies import get_db, get_engine
from services.workflow_service import ExecutionService
from core.utils import calculate_offset
from workflow.engine import WorkflowEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["executions"])


@router.get("/", response_model=ExecutionListResponse)
async def list_executions(
    pagination: PaginationParams = Depends(),
    workflow_template_id: Optional[str] = Query(None, description="Filter by template ID"),
    workflow_automation_id: Optional[str] = Query(None, description="Filter by automation ID"),
    exec_status: Optional[str] = Query(None, alias="status", description="Filter by execution status"),
    db: AsyncSession = Depends(get_db),
) -> ExecutionListResponse:
    """
    List workflow executions (paginated, filterable).
    """
    svc = ExecutionService(db)
    executions, total = await svc.get_by_definition(
        workflow_template_id=workflow_template_id,
        workflow_automation_id=workflow_automation_id,
        status=exec_status,
        offset=calculate_offset(pagination.page, pagination.per_page),
        limit=pagination.per_page,
    )

    return ExecutionListResponse(
        executions=[ExecutionResponse.model_validate(ex) for ex in executions],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
    )


@router.post("/", response_model=ExecutionResponse, status_code=http_status.HTTP_201_CREATED)
async def create_execution(
    request: ExecutionCreate,
    engine: WorkflowEngine = Depends(get_engine),
) -> ExecutionResponse:
    """
    Start a template execution for a subject. The next poll tick runs its first step.
    """
    execution = await engine.start_execution(
        workflow_template_id=request.workflow_template_id,
        student_id=request.student_id,
        application_id=request.application_id,
        trigger_payload=request.trigger_payload,
    )
    return ExecutionResponse.model_validate(execution)


@router.get("/{execution_id}", response_model=ExecutionDetailResponse)
async def get_execution(
    execution_id: str,
    db: AsyncSession = Depends(get_db),
) -> ExecutionDetailResponse:
    """
    Get execution details by ID, including its full log.
    """
    svc = ExecutionService(db)
    ex = await svc.get_by_id(execution_id)

    if not ex:
        raise HTTPException(
            status_code=http_status.HTTP_404_NOT_FOUND,
            detail="Execution not found",
        )

    resp = ExecutionResponse.model_validate(ex).model_dump()
    return ExecutionDetailResponse(
        **resp,
        execution_log=[ExecutionLogResponse.model_validate(row) for row in ex.log_entries],
    )


@router.post("/{execution_id}/advance", response_model=AdvanceResponse)
async def advance_execution(
    execution_id: str,
    engine: WorkflowEngine = Depends(get_engine),
) -> AdvanceResponse:
    """
    Advance one execution by at most one step, if it is due.
    """
    result = await engine.advance(execution_id)
    return AdvanceResponse(**result.to_dict())


@router.post("/{execution_id}/retry", response_model=ExecutionResponse, status_code=http_status.HTTP_201_CREATED)
async def retry_execution(
    execution_id: str,
    engine: WorkflowEngine = Depends(get_engine),
) -> ExecutionResponse:
    """
    Re-trigger a failed execution. A new execution is created; the failed one stays as it is.
    """
    execution = await engine.retry(execution_id)
    logger.info(f"Execution {execution_id} re-triggered as {execution.id}")
    return ExecutionResponse.model_validate(execution)
