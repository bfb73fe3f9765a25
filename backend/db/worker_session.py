"""Worker-safe session factory for the poller thread and Celery tasks.

Creates a fresh async engine per call to avoid the 'Future attached
to a different loop' error when asyncpg connections are shared
across event loops (the poller thread and forked Celery workers each
run their own loop).
"""

from contextlib import asynccontextmanager

from db.database import create_db_engine, create_session_factory


@asynccontextmanager
async def worker_session_factory():
    """Provide a session factory bound to a short-lived engine.

    Usage:
        async with worker_session_factory() as session_factory:
            engine = build_workflow_engine(session_factory)
            await engine.poller.tick()
    """
    engine = create_db_engine()
    try:
        yield create_session_factory(engine)
    finally:
        await engine.dispose()
