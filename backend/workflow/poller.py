"""Poller — one tick advances every due execution by one group.

Ticks are driven by the in-process poller thread, the Celery beat task or
``POST /workflows/process``. All comparisons use naive UTC.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.clock import Clock
from core.constants import AdvanceOutcome
from services.workflow_service import ExecutionService
from workflow.driver import AdvanceResult, ExecutionDriver

logger = structlog.get_logger(__name__)


@dataclass
class PollResult:
    processed: int = 0
    errors: int = 0
    locked: int = 0

    def to_dict(self) -> dict:
        return {"processed": self.processed, "errors": self.errors, "locked": self.locked}


class ExecutionPoller:
    """Finds due executions and advances each one once."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        driver: ExecutionDriver,
        clock: Clock,
        concurrency: int = 10,
    ):
        self.session_factory = session_factory
        self.driver = driver
        self.clock = clock
        self.concurrency = max(1, concurrency)

    async def due_execution_ids(self) -> list[str]:
        async with self.session_factory() as session:
            return await ExecutionService(session).list_due_ids(self.clock.now())

    async def tick(self) -> PollResult:
        """Run one poll cycle.

        Failing to fetch the due list aborts the tick (the exception
        propagates). A failure while advancing one execution is counted in
        ``errors`` and never stops the others.
        """
        due_ids = await self.due_execution_ids()
        if not due_ids:
            logger.debug("No due executions")
            return PollResult()

        logger.info("Polling due executions", count=len(due_ids))
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _advance_one(execution_id: str) -> Optional[AdvanceResult]:
            async with semaphore:
                try:
                    return await self.driver.advance(execution_id)
                except Exception as e:
                    logger.error(
                        "Execution advance failed",
                        execution_id=execution_id,
                        error=str(e),
                        exc_info=True,
                    )
                    return None

        results = await asyncio.gather(*(_advance_one(i) for i in due_ids))

        summary = PollResult()
        for result in results:
            if result is None:
                summary.errors += 1
            elif result.outcome in (AdvanceOutcome.LOCKED, AdvanceOutcome.CONFLICT):
                summary.locked += 1
            else:
                summary.processed += 1

        logger.info("Poll complete", **summary.to_dict())
        return summary
