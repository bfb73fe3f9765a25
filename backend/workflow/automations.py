"""Automation runner — the event-driven path into the engine.

An entity event names an automation and the entity that changed. If the
automation is active and its trigger conditions hold for the entity and
event, a new execution is created and driven until it finishes or has to
wait for a delay.
"""

from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.clock import Clock
from core.constants import AdvanceOutcome, EntityType
from core.exceptions import NotFoundError
from services.workflow_service import AutomationService, ExecutionService
from workflow.conditions import evaluate
from workflow.driver import ExecutionDriver

logger = structlog.get_logger(__name__)

# Outcomes after which driving further in the same call does nothing
_STOP_OUTCOMES = frozenset({
    AdvanceOutcome.COMPLETED,
    AdvanceOutcome.FAILED,
    AdvanceOutcome.TERMINAL,
    AdvanceOutcome.NOT_DUE,
    AdvanceOutcome.LOCKED,
    AdvanceOutcome.CONFLICT,
})


def subject_ids(entity_type: str, entity: dict) -> tuple[Optional[str], Optional[str]]:
    """Student and application ids implied by the triggering entity."""
    if entity_type == EntityType.STUDENT_PROFILE.value:
        return entity.get("id"), None
    if entity_type == EntityType.APPLICATION.value:
        return entity.get("student_id"), entity.get("id")
    return entity.get("student_id"), entity.get("application_id")


class AutomationRunner:
    """Creates and drives executions for entity events."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        driver: ExecutionDriver,
        store,
        clock: Clock,
    ):
        self.session_factory = session_factory
        self.driver = driver
        self.store = store
        self.clock = clock

    async def trigger(
        self,
        automation_id: str,
        entity_id: str,
        entity_type: str,
        event_data: Optional[dict] = None,
    ) -> dict:
        """Fire an automation for one entity.

        Returns:
            Execution summary; ``triggered`` is False with a ``reason``
            when the automation is inactive or its conditions do not hold

        Raises:
            NotFoundError: If the automation or the entity does not exist
        """
        event_data = dict(event_data or {})

        async with self.session_factory() as session:
            automation = await AutomationService(session).get_by_id(automation_id)
            if automation is None:
                raise NotFoundError(f"Workflow '{automation_id}' not found")
            if not automation.is_active:
                return {"triggered": False, "reason": "Workflow is inactive"}

            entity = await self.store.get(entity_type, entity_id)
            if entity is None:
                raise NotFoundError(f"{entity_type} '{entity_id}' not found")

            if not evaluate(automation.trigger_conditions, {**entity, **event_data}):
                logger.info(
                    "Trigger conditions not met",
                    automation_id=automation_id,
                    entity_type=entity_type,
                    entity_id=entity_id,
                )
                return {"triggered": False, "reason": "Trigger conditions not met"}

            student_id, application_id = subject_ids(entity_type, entity)
            execution = await ExecutionService(session).create_execution(
                now=self.clock.now(),
                workflow_automation_id=automation.id,
                student_id=student_id,
                application_id=application_id,
                entity_type=entity_type,
                entity_id=entity_id,
                trigger_payload=event_data,
            )
            await session.commit()
            execution_id = execution.id

        logger.info("Automation triggered", automation_id=automation_id, execution_id=execution_id)
        await self.drive(execution_id)
        summary = await self.summary(execution_id)
        summary["triggered"] = True
        return summary

    async def drive(self, execution_id: str, max_steps: int = 1000) -> AdvanceOutcome:
        """Advance repeatedly until the execution finishes or must wait."""
        outcome = AdvanceOutcome.NOT_DUE
        for _ in range(max_steps):
            result = await self.driver.advance(execution_id)
            outcome = result.outcome
            if outcome in _STOP_OUTCOMES:
                break
        return outcome

    async def summary(self, execution_id: str) -> dict:
        """Current state of an execution with its full log."""
        async with self.session_factory() as session:
            executions = ExecutionService(session)
            execution = await executions.get_by_id(execution_id)
            if execution is None:
                raise NotFoundError(f"Execution '{execution_id}' not found")
            log = await executions.load_log(execution_id)
        return {
            "execution_id": execution.id,
            "status": execution.status,
            "current_step": execution.current_step,
            "next_action_at": execution.next_action_at.isoformat() if execution.next_action_at else None,
            "execution_log": log.to_list(),
        }
