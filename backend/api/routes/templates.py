"""Workflow template endpoints (read-only)."""

from fastapi import APIRouter, Depends, HTTPException, Query, status as http_status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from api.schemas.common import PaginationParams
from api.schemas.workflow import TemplateListResponse, TemplateResponse
from app.dependencies import get_db
from core.utils import calculate_offset
from services.workflow_service import TemplateService

router = APIRouter(tags=["templates"])


@router.get("/", response_model=TemplateListResponse)
async def list_templates(
    pagination: PaginationParams = Depends(),
    is_active: Optional[bool] = Query(None, description="Filter by active flag"),
    db: AsyncSession = Depends(get_db),
) -> TemplateListResponse:
    """List workflow templates."""
    templates, total = await TemplateService(db).list(
        offset=calculate_offset(pagination.page, pagination.per_page),
        limit=pagination.per_page,
        filters={"is_active": is_active},
    )
    return TemplateListResponse(
        templates=[TemplateResponse.model_validate(t) for t in templates],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
    )


@router.get("/{template_id}", response_model=TemplateResponse)
async def get_template(
    template_id: str,
    db: AsyncSession = Depends(get_db),
) -> TemplateResponse:
    """Get a workflow template by ID."""
    template = await TemplateService(db).get_by_id(template_id)
    if not template:
        raise HTTPException(
            status_code=http_status.HTTP_404_NOT_FOUND,
            detail="Template not found",
        )
    return TemplateResponse.model_validate(template)
