"""
Execution driver — advances one execution by at most one action group.

Each call to ``advance`` runs under the execution's lock and follows the
same order of checks:

    terminal → not due → too old → definition missing/inactive
    → finished → dead-lettered → run the next group

The ``in_progress`` mark is committed before any handler runs, so a crash
mid-step leaves visible evidence. Results are committed afterwards with an
optimistic version check.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from actions.registry import ActionContext, ActionRegistry
from core.clock import Clock
from core.constants import AdvanceOutcome, EntityType, ExecutionStatus, StepStatus
from core.exceptions import NotFoundError, ValidationError
from db.models.workflow_automation import WorkflowAutomation
from db.models.workflow_execution import WorkflowExecution
from db.models.workflow_template import WorkflowTemplate
from services.workflow_service import AutomationService, ExecutionService
from workflow.models import LogEntry, WorkflowDefinition
from workflow.scheduler import (
    compute_run_success_rate,
    group_delay_days,
    next_group,
    run_group,
)

logger = structlog.get_logger(__name__)

DEFINITION_UNAVAILABLE = "Template not found or inactive"
EXECUTION_TOO_OLD = "Execution exceeded maximum age"


@dataclass
class AdvanceResult:
    """What one ``advance`` call did."""

    execution_id: str
    outcome: AdvanceOutcome
    status: Optional[str] = None
    current_step: Optional[int] = None
    next_action_at: Optional[datetime] = None
    entries: list[LogEntry] = field(default_factory=list)

    @property
    def applied(self) -> bool:
        """True if the call changed the execution."""
        return self.outcome not in (
            AdvanceOutcome.NOT_DUE,
            AdvanceOutcome.TERMINAL,
            AdvanceOutcome.LOCKED,
            AdvanceOutcome.CONFLICT,
        )

    def to_dict(self) -> dict:
        return {
            "execution_id": self.execution_id,
            "outcome": self.outcome.value,
            "status": self.status,
            "current_step": self.current_step,
            "next_action_at": self.next_action_at.isoformat() if self.next_action_at else None,
            "entries": [e.to_dict() for e in self.entries],
        }


class DefinitionLoader:
    """Loads the template or automation an execution runs."""

    async def load(self, session: AsyncSession, execution: WorkflowExecution) -> Optional[WorkflowDefinition]:
        """The execution's definition, or None if it no longer exists.

        Raises:
            ValidationError: If a stored action is malformed
        """
        if execution.workflow_template_id:
            row = await session.get(WorkflowTemplate, execution.workflow_template_id)
        elif execution.workflow_automation_id:
            row = await session.get(WorkflowAutomation, execution.workflow_automation_id)
        else:
            return None
        if row is None:
            return None
        return WorkflowDefinition.from_rows(row.id, row.is_active, row.actions)


class ExecutionDriver:
    """Per-step state machine for workflow executions."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        registry: ActionRegistry,
        store,
        locks,
        clock: Clock,
        notifications=None,
        max_step_attempts: int = 3,
        max_execution_age_days: int = 0,
        definitions: Optional[DefinitionLoader] = None,
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.store = store
        self.locks = locks
        self.clock = clock
        self.notifications = notifications
        self.max_step_attempts = max_step_attempts
        self.max_execution_age_days = max_execution_age_days
        self.definitions = definitions or DefinitionLoader()

    async def advance(self, execution_id: str) -> AdvanceResult:
        """Advance one execution by at most one group.

        Returns immediately with ``LOCKED`` if another invocation holds the
        execution.

        Raises:
            NotFoundError: If the execution does not exist
        """
        async with self.locks.hold(execution_id) as acquired:
            if not acquired:
                logger.info("Execution locked, skipping", execution_id=execution_id)
                return AdvanceResult(execution_id, AdvanceOutcome.LOCKED)
            try:
                return await self._advance_locked(execution_id)
            except StaleDataError:
                logger.warning("Execution changed concurrently, not applied", execution_id=execution_id)
                return AdvanceResult(execution_id, AdvanceOutcome.CONFLICT)

    async def _advance_locked(self, execution_id: str) -> AdvanceResult:
        async with self.session_factory() as session:
            executions = ExecutionService(session)
            execution = await executions.get_by_id(execution_id)
            if execution is None:
                raise NotFoundError(f"Execution '{execution_id}' not found")

            now = self.clock.now()

            if execution.is_terminal:
                return self._result(execution, AdvanceOutcome.TERMINAL)

            if execution.next_action_at is not None and execution.next_action_at > now:
                return self._result(execution, AdvanceOutcome.NOT_DUE)

            if self._too_old(execution, now):
                return await self._fail(session, execution, now, EXECUTION_TOO_OLD)

            try:
                definition = await self.definitions.load(session, execution)
            except ValidationError as e:
                return await self._fail(session, execution, now, e.message)
            if definition is None or not definition.is_active:
                return await self._fail(session, execution, now, DEFINITION_UNAVAILABLE)

            actions = definition.actions
            if execution.current_step >= len(actions):
                return await self._complete(session, execution, now, len(actions))

            if execution.step_attempts >= self.max_step_attempts:
                return await self._fail(
                    session,
                    execution,
                    now,
                    f"Step {execution.current_step} exceeded maximum attempts",
                )

            # Claim the step
            execution.transition_to(ExecutionStatus.IN_PROGRESS)
            if execution.started_at is None:
                execution.started_at = now
            execution.step_attempts += 1
            await session.commit()

            first_step = execution.current_step
            group = next_group(actions, first_step)
            subject = await self._subject_context(execution)
            context = ActionContext(
                execution_id=execution.id,
                step_index=first_step,
                now=now,
                store=self.store,
                notifications=self.notifications,
                student_id=execution.student_id,
                application_id=execution.application_id,
                entity_type=execution.entity_type,
                entity_id=execution.entity_id,
                event_data=dict(execution.trigger_payload or {}),
                subject=subject,
            )
            entries = await run_group(group, first_step, self.registry, context, subject)
            await executions.append_log(execution.id, entries)

            failures = [e for e in entries if e.status == StepStatus.FAILED]
            if failures:
                execution.transition_to(ExecutionStatus.FAILED)
                execution.completed_at = now
                outcome = AdvanceOutcome.FAILED
                logger.warning(
                    "Execution failed",
                    execution_id=execution.id,
                    step_index=failures[0].step_index,
                    action_type=failures[0].action_type,
                    error=failures[0].error,
                )
            else:
                execution.advance_cursor(len(group))
                execution.step_attempts = 0
                delay_days = group_delay_days(group)
                execution.next_action_at = now + timedelta(days=delay_days) if delay_days > 0 else None
                all_skipped = all(e.status == StepStatus.SKIPPED for e in entries)
                outcome = AdvanceOutcome.SKIPPED if all_skipped else AdvanceOutcome.ADVANCED
                logger.info(
                    "Execution advanced",
                    execution_id=execution.id,
                    current_step=execution.current_step,
                    next_action_at=execution.next_action_at.isoformat() if execution.next_action_at else None,
                )

            if execution.is_terminal:
                await self._record_automation_run(session, execution, now, len(actions))
            await session.commit()
            return self._result(execution, outcome, entries)

    # ─── Terminal transitions ──────────────────────────────

    async def _complete(
        self,
        session: AsyncSession,
        execution: WorkflowExecution,
        now: datetime,
        total_actions: int,
    ) -> AdvanceResult:
        execution.transition_to(ExecutionStatus.COMPLETED)
        execution.completed_at = now
        execution.next_action_at = None
        if execution.started_at is None:
            execution.started_at = now
        await self._record_automation_run(session, execution, now, total_actions)
        await session.commit()
        logger.info("Execution completed", execution_id=execution.id)
        return self._result(execution, AdvanceOutcome.COMPLETED)

    async def _fail(
        self,
        session: AsyncSession,
        execution: WorkflowExecution,
        now: datetime,
        error: str,
    ) -> AdvanceResult:
        entry = LogEntry(
            step_index=execution.current_step,
            action_type=None,
            status=StepStatus.FAILED,
            timestamp=now,
            error=error,
        )
        await ExecutionService(session).append_log(execution.id, [entry])
        execution.transition_to(ExecutionStatus.FAILED)
        execution.completed_at = now
        execution.next_action_at = None

        total_actions = 0
        if execution.workflow_automation_id:
            automation = await session.get(WorkflowAutomation, execution.workflow_automation_id)
            total_actions = len(automation.actions or []) if automation else 0
        await self._record_automation_run(session, execution, now, total_actions)
        await session.commit()
        logger.warning("Execution failed", execution_id=execution.id, error=error)
        return self._result(execution, AdvanceOutcome.FAILED, [entry])

    async def _record_automation_run(
        self,
        session: AsyncSession,
        execution: WorkflowExecution,
        now: datetime,
        total_actions: int,
    ) -> None:
        if not execution.workflow_automation_id:
            return
        log = await ExecutionService(session).load_log(execution.id)
        run_rate = compute_run_success_rate(log.count(StepStatus.COMPLETED), total_actions)
        await AutomationService(session).record_run(execution.workflow_automation_id, run_rate, now)

    # ─── Helpers ───────────────────────────────────────────

    def _too_old(self, execution: WorkflowExecution, now: datetime) -> bool:
        if not self.max_execution_age_days or execution.created_at is None:
            return False
        return now - execution.created_at > timedelta(days=self.max_execution_age_days)

    async def _subject_context(self, execution: WorkflowExecution) -> dict:
        """Student record overlaid with the trigger payload.

        The application record is nested under ``application`` and the raw
        event data under ``event``.
        """
        payload = dict(execution.trigger_payload or {})
        student = None
        if execution.student_id:
            student = await self.store.get(EntityType.STUDENT_PROFILE.value, execution.student_id)
        subject = {**(student or {}), **payload}
        if execution.application_id:
            application = await self.store.get(EntityType.APPLICATION.value, execution.application_id)
            subject["application"] = application or {}
        subject["event"] = payload
        return subject

    def _result(
        self,
        execution: WorkflowExecution,
        outcome: AdvanceOutcome,
        entries: Optional[list[LogEntry]] = None,
    ) -> AdvanceResult:
        return AdvanceResult(
            execution_id=execution.id,
            outcome=outcome,
            status=execution.status,
            current_step=execution.current_step,
            next_action_at=execution.next_action_at,
            entries=list(entries or []),
        )
