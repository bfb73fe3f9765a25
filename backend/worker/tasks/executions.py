"""Celery task that advances due workflow executions.

Runs every minute via Celery Beat. Each run is one poller tick: every due
execution is advanced by one step. The in-process poller thread in
``app.main`` calls the same coroutine.

Important: All datetime comparisons use NAIVE UTC to match the database
column type (TIMESTAMP WITHOUT TIME ZONE).
"""

import asyncio
import logging

from worker.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    name="worker.tasks.executions.process_due_executions",
    bind=True,
    max_retries=2,
    default_retry_delay=15,
    queue="workflows",
)
def process_due_executions(self):
    """Advance every due execution by one step."""
    logger.info("[execution-poller] Polling for due executions...")

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        result = loop.run_until_complete(run_poll_tick())
        logger.info(f"[execution-poller] Done: {result}")
        return result
    except Exception as exc:
        logger.error(f"[execution-poller] Polling failed: {exc}", exc_info=True)
        raise self.retry(exc=exc)
    finally:
        loop.close()


async def run_poll_tick() -> dict:
    """One tick on a short-lived engine bound to the current event loop."""
    from app.config import get_settings
    from db.worker_session import worker_session_factory
    from workflow.engine import build_workflow_engine
    from workflow.locks import get_lock_manager

    settings = get_settings()
    locks = get_lock_manager(settings)
    try:
        async with worker_session_factory() as session_factory:
            engine = build_workflow_engine(session_factory, settings=settings, locks=locks)
            result = await engine.process_due()
    finally:
        await locks.close()
    return result.to_dict()
