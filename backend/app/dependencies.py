"""FastAPI dependency injection functions."""

from sqlalchemy.ext.asyncio import AsyncSession
import logging

from db.database import AsyncSessionLocal
from workflow.engine import WorkflowEngine, get_workflow_engine

logger = logging.getLogger(__name__)


async def get_db() -> AsyncSession:
    """
    Provide a database session for API endpoints.

    Yields an async SQLAlchemy session that is automatically
    committed on success or rolled back on error.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.error(f"Database error: {str(e)}")
            await session.rollback()
            raise
        finally:
            await session.close()


def get_engine() -> WorkflowEngine:
    """The API process's workflow engine."""
    return get_workflow_engine()
