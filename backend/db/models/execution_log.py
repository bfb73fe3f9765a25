"""ExecutionLogEntry model — append-only step records of an execution."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.exceptions import ImmutableLogError
from db.base import BaseModel


class ExecutionLogEntry(BaseModel):
    """One settled step (or execution-level event) of an execution.

    Rows are written once. ``sequence`` is contiguous per execution and
    defines the log order; updates and deletes are rejected at flush time.

    Attributes:
        id: Unique identifier (UUID string)
        execution_id: Foreign key to WorkflowExecution
        sequence: Position in the execution's log (0-based)
        step_index: Index of the action in the sorted action list
        action_type: Action type, NULL for execution-level entries
        status: completed, failed, skipped
        result: Handler result (JSON-serializable)
        error: Error message for failed entries
        timestamp: When the step settled
    """

    __tablename__ = "workflow_execution_log"

    execution_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_executions.id"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(nullable=False)
    step_index: Mapped[int] = mapped_column(nullable=False)
    action_type: Mapped[Optional[str]] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(nullable=False, index=True)
    result: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(), nullable=False)

    __table_args__ = (
        UniqueConstraint("execution_id", "sequence", name="uq_execution_log_sequence"),
    )

    execution: Mapped["WorkflowExecution"] = relationship(
        "WorkflowExecution", back_populates="log_entries", lazy="noload"
    )


@event.listens_for(ExecutionLogEntry, "before_update")
def _reject_update(mapper, connection, target):
    raise ImmutableLogError()


@event.listens_for(ExecutionLogEntry, "before_delete")
def _reject_delete(mapper, connection, target):
    raise ImmutableLogError()
