"""
Workflow Engine — wires the driver, poller and automation runner together.

Supports:
- Template executions started for a student/application
- Event-driven automations (trigger conditions + immediate drive)
- Time-delayed steps resumed by periodic poll ticks
- Parallel action batches (fan-out/join)
- Per-step guards (conditional_logic)
- Bounded step attempts and a maximum execution age
- Re-triggering a failed execution as a new one
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import async_sessionmaker

from actions.registry import ActionRegistry, get_action_registry
from core.clock import Clock, get_clock
from core.exceptions import NotFoundError
from db.models.workflow_execution import WorkflowExecution
from services.entity_store import SQLEntityStore
from services.workflow_service import ExecutionService, TemplateService
from workflow.automations import AutomationRunner
from workflow.driver import AdvanceResult, ExecutionDriver
from workflow.locks import get_lock_manager
from workflow.poller import ExecutionPoller, PollResult

logger = structlog.get_logger(__name__)


@dataclass
class WorkflowEngine:
    """Entry point used by the API, the poller thread and the worker."""

    session_factory: async_sessionmaker
    driver: ExecutionDriver
    poller: ExecutionPoller
    runner: AutomationRunner
    clock: Clock

    async def start_execution(
        self,
        workflow_template_id: str,
        student_id: Optional[str] = None,
        application_id: Optional[str] = None,
        trigger_payload: Optional[dict] = None,
    ) -> WorkflowExecution:
        """Create a pending execution of a template; the next tick runs it.

        Raises:
            NotFoundError: If the template does not exist
        """
        async with self.session_factory() as session:
            if not await TemplateService(session).exists(workflow_template_id):
                raise NotFoundError(f"Template '{workflow_template_id}' not found")
            execution = await ExecutionService(session).create_execution(
                now=self.clock.now(),
                workflow_template_id=workflow_template_id,
                student_id=student_id,
                application_id=application_id,
                entity_type="student_profile" if student_id else None,
                entity_id=student_id,
                trigger_payload=trigger_payload,
            )
            await session.commit()
        logger.info("Execution created", execution_id=execution.id, template_id=workflow_template_id)
        return execution

    async def advance(self, execution_id: str) -> AdvanceResult:
        return await self.driver.advance(execution_id)

    async def process_due(self) -> PollResult:
        """One poller tick."""
        return await self.poller.tick()

    async def trigger(
        self,
        automation_id: str,
        entity_id: str,
        entity_type: str,
        event_data: Optional[dict] = None,
    ) -> dict:
        return await self.runner.trigger(automation_id, entity_id, entity_type, event_data)

    async def retry(self, execution_id: str) -> WorkflowExecution:
        """Re-trigger a failed execution as a brand new one."""
        async with self.session_factory() as session:
            execution = await ExecutionService(session).retry(execution_id, self.clock.now())
            await session.commit()
        return execution


def build_workflow_engine(
    session_factory: async_sessionmaker,
    settings=None,
    registry: Optional[ActionRegistry] = None,
    store=None,
    locks=None,
    clock: Optional[Clock] = None,
    notifications=None,
) -> WorkflowEngine:
    """Assemble an engine; every collaborator can be replaced."""
    if settings is None:
        from app.config import get_settings

        settings = get_settings()
    if notifications is None:
        from notifications.manager import get_notification_manager

        notifications = get_notification_manager()

    clock = clock or get_clock()
    store = store or SQLEntityStore(session_factory)
    driver = ExecutionDriver(
        session_factory=session_factory,
        registry=registry or get_action_registry(),
        store=store,
        locks=locks or get_lock_manager(settings),
        clock=clock,
        notifications=notifications,
        max_step_attempts=settings.MAX_STEP_ATTEMPTS,
        max_execution_age_days=settings.MAX_EXECUTION_AGE_DAYS,
    )
    poller = ExecutionPoller(
        session_factory=session_factory,
        driver=driver,
        clock=clock,
        concurrency=settings.POLLER_CONCURRENCY,
    )
    runner = AutomationRunner(
        session_factory=session_factory,
        driver=driver,
        store=store,
        clock=clock,
    )
    return WorkflowEngine(
        session_factory=session_factory,
        driver=driver,
        poller=poller,
        runner=runner,
        clock=clock,
    )


# Singleton bound to the API process's session factory
_engine: Optional[WorkflowEngine] = None


def get_workflow_engine() -> WorkflowEngine:
    """Get or create the API process's workflow engine."""
    global _engine
    if _engine is None:
        from db.database import AsyncSessionLocal

        _engine = build_workflow_engine(AsyncSessionLocal)
    return _engine
