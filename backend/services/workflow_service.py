"""Workflow services — templates, automations and executions."""

import logging
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import func, or_, select, update as sa_update
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import ExecutionStatus, StepStatus
from core.exceptions import ConflictError, ImmutableLogError, NotFoundError, ValidationError
from db.models.execution_log import ExecutionLogEntry
from db.models.workflow_automation import WorkflowAutomation
from db.models.workflow_execution import WorkflowExecution
from db.models.workflow_template import WorkflowTemplate
from services.base import BaseService
from workflow.models import ExecutionLog, LogEntry
from workflow.scheduler import fold_success_rate

logger = logging.getLogger(__name__)


class TemplateService(BaseService[WorkflowTemplate]):
    """Read access to workflow templates, plus creation for seeding."""

    def __init__(self, db: AsyncSession):
        super().__init__(WorkflowTemplate, db)

    async def create_template(
        self,
        name: str,
        actions: list,
        description: str = "",
        is_active: bool = True,
    ) -> WorkflowTemplate:
        return await self.create({
            "name": name,
            "description": description,
            "actions": actions or [],
            "is_active": is_active,
        })


class AutomationService(BaseService[WorkflowAutomation]):
    """Service for event-triggered automations and their run statistics."""

    def __init__(self, db: AsyncSession):
        super().__init__(WorkflowAutomation, db)

    async def create_automation(
        self,
        name: str,
        trigger_type: str,
        actions: list,
        trigger_conditions: dict = None,
        description: str = "",
        is_active: bool = True,
    ) -> WorkflowAutomation:
        return await self.create({
            "name": name,
            "description": description,
            "trigger_type": trigger_type,
            "trigger_conditions": trigger_conditions or {},
            "actions": actions or [],
            "is_active": is_active,
        })

    async def record_run(self, automation_id: str, run_rate: float, finished_at: datetime) -> None:
        """Fold one finished run into the automation's statistics.

        A single UPDATE, so concurrent runs of the same automation never
        lose a count.
        """
        await self.db.execute(
            sa_update(WorkflowAutomation)
            .where(WorkflowAutomation.id == automation_id)
            .values(
                success_rate=fold_success_rate(
                    WorkflowAutomation.success_rate,
                    WorkflowAutomation.execution_count,
                    run_rate,
                ),
                execution_count=WorkflowAutomation.execution_count + 1,
                last_executed=finished_at,
            )
            .execution_options(synchronize_session=False)
        )
        logger.info(f"Automation {automation_id} run recorded at {run_rate:.1f}%")


class ExecutionService(BaseService[WorkflowExecution]):
    """Service for execution records and their append-only logs."""

    def __init__(self, db: AsyncSession):
        super().__init__(WorkflowExecution, db)

    async def create_execution(
        self,
        now: datetime,
        workflow_template_id: Optional[str] = None,
        workflow_automation_id: Optional[str] = None,
        student_id: Optional[str] = None,
        application_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        trigger_payload: Optional[dict] = None,
    ) -> WorkflowExecution:
        """Create a pending execution, due immediately.

        Raises:
            ValidationError: Unless exactly one definition id is given
        """
        if bool(workflow_template_id) == bool(workflow_automation_id):
            raise ValidationError(
                "Exactly one of workflow_template_id or workflow_automation_id is required"
            )
        return await self.create({
            "workflow_template_id": workflow_template_id,
            "workflow_automation_id": workflow_automation_id,
            "student_id": student_id,
            "application_id": application_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "trigger_payload": trigger_payload or {},
            "status": ExecutionStatus.PENDING.value,
            "current_step": 0,
            "next_action_at": None,
            "created_at": now,
            "updated_at": now,
        })

    async def list_due_ids(self, now: datetime, limit: Optional[int] = None) -> list[str]:
        """Ids of non-terminal executions whose next action is due."""
        query = (
            select(WorkflowExecution.id)
            .where(
                WorkflowExecution.status.in_([
                    ExecutionStatus.PENDING.value,
                    ExecutionStatus.IN_PROGRESS.value,
                ]),
                or_(
                    WorkflowExecution.next_action_at.is_(None),
                    WorkflowExecution.next_action_at <= now,
                ),
            )
            .order_by(WorkflowExecution.created_at.asc())
        )
        if limit:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    # ─── Log ───────────────────────────────────────────────

    async def _log_rows(self, execution_id: str) -> Sequence[ExecutionLogEntry]:
        result = await self.db.execute(
            select(ExecutionLogEntry)
            .where(ExecutionLogEntry.execution_id == execution_id)
            .order_by(ExecutionLogEntry.sequence.asc())
        )
        return result.scalars().all()

    async def load_log(self, execution_id: str) -> ExecutionLog:
        """The execution's log as an immutable domain sequence."""
        return ExecutionLog(
            LogEntry(
                step_index=row.step_index,
                action_type=row.action_type,
                status=StepStatus(row.status),
                timestamp=row.timestamp,
                result=row.result,
                error=row.error,
            )
            for row in await self._log_rows(execution_id)
        )

    async def append_log(self, execution_id: str, entries: Iterable[LogEntry]) -> ExecutionLog:
        """Write entries at the end of the log and return the full log.

        Sequence numbers continue from the current maximum; the unique
        (execution_id, sequence) constraint rejects a concurrent writer.

        Raises:
            ImmutableLogError: If the stored log no longer starts with the
                entries it held before this append
        """
        entries = tuple(entries)
        prior = await self.load_log(execution_id)
        result = await self.db.execute(
            select(func.max(ExecutionLogEntry.sequence))
            .where(ExecutionLogEntry.execution_id == execution_id)
        )
        last = result.scalar()
        sequence = -1 if last is None else last
        for entry in entries:
            sequence += 1
            self.db.add(ExecutionLogEntry(
                execution_id=execution_id,
                sequence=sequence,
                step_index=entry.step_index,
                action_type=entry.action_type,
                status=entry.status.value,
                result=entry.result,
                error=entry.error,
                timestamp=entry.timestamp,
            ))
        await self.db.flush()

        updated = await self.load_log(execution_id)
        updated.require_extension_of(prior)
        if len(updated.since(len(prior))) != len(entries):
            raise ImmutableLogError(f"Execution {execution_id} log did not grow by {len(entries)} entries")
        return updated

    # ─── Re-trigger ────────────────────────────────────────

    async def retry(self, execution_id: str, now: datetime) -> WorkflowExecution:
        """Start a new execution for the same definition and subject.

        The failed execution itself is left untouched.

        Raises:
            NotFoundError: If the execution does not exist
            ConflictError: If the execution has not failed
        """
        original = await self.get_by_id(execution_id)
        if not original:
            raise NotFoundError(f"Execution '{execution_id}' not found")
        if original.status != ExecutionStatus.FAILED.value:
            raise ConflictError(
                f"Only failed executions can be retried (status: {original.status})"
            )
        retried = await self.create_execution(
            now=now,
            workflow_template_id=original.workflow_template_id,
            workflow_automation_id=original.workflow_automation_id,
            student_id=original.student_id,
            application_id=original.application_id,
            entity_type=original.entity_type,
            entity_id=original.entity_id,
            trigger_payload=dict(original.trigger_payload or {}),
        )
        logger.info(f"Execution {execution_id} retried as {retried.id}")
        return retried

    async def get_by_definition(
        self,
        workflow_template_id: Optional[str] = None,
        workflow_automation_id: Optional[str] = None,
        status: Optional[str] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[Sequence[WorkflowExecution], int]:
        """Executions filtered by definition and status."""
        filters: dict[str, Any] = {
            "workflow_template_id": workflow_template_id,
            "workflow_automation_id": workflow_automation_id,
            "status": status,
        }
        return await self.list(offset=offset, limit=limit, filters=filters)
