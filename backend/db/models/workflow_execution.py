"""WorkflowExecution model — one run of a definition against a subject."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import ALLOWED_TRANSITIONS, TERMINAL_STATUSES, ExecutionStatus
from core.exceptions import InvalidTransitionError
from db.base import BaseModel


class WorkflowExecution(BaseModel):
    """Execution model — the only entity the driver mutates.

    Attributes:
        id: Unique identifier (UUID string)
        workflow_template_id: Template being run (template path)
        workflow_automation_id: Automation being run (event-driven path)
        student_id: Subject student
        application_id: Optional correlated application
        entity_type / entity_id: The entity whose event created the execution
        trigger_payload: Event data captured at creation
        status: pending, in_progress, completed, failed
        current_step: Index into the sorted action list; only moves forward
        next_action_at: Not due before this time; NULL means due now
        step_attempts: Dispatches of the current step that never settled
        started_at / completed_at: Lifecycle timestamps
        version: Optimistic concurrency counter, bumped on every UPDATE
    """

    __tablename__ = "workflow_executions"

    workflow_template_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("workflow_templates.id"),
        nullable=True,
        index=True,
    )
    workflow_automation_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("workflow_automations.id"),
        nullable=True,
        index=True,
    )
    student_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    application_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    entity_type: Mapped[Optional[str]] = mapped_column(nullable=True)
    entity_id: Mapped[Optional[str]] = mapped_column(nullable=True)
    trigger_payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(
        default=ExecutionStatus.PENDING.value, index=True
    )
    current_step: Mapped[int] = mapped_column(default=0)
    next_action_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(), nullable=True, index=True
    )
    step_attempts: Mapped[int] = mapped_column(default=0)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_workflow_executions_due", "status", "next_action_at"),
    )

    # Relationships
    template: Mapped[Optional["WorkflowTemplate"]] = relationship(
        "WorkflowTemplate", back_populates="executions", lazy="noload"
    )
    automation: Mapped[Optional["WorkflowAutomation"]] = relationship(
        "WorkflowAutomation", back_populates="executions", lazy="noload"
    )
    log_entries: Mapped[list["ExecutionLogEntry"]] = relationship(
        "ExecutionLogEntry",
        back_populates="execution",
        order_by="ExecutionLogEntry.sequence",
        lazy="selectin",
    )

    @property
    def is_terminal(self) -> bool:
        return ExecutionStatus(self.status) in TERMINAL_STATUSES

    def transition_to(self, target: ExecutionStatus) -> None:
        """Move to ``target`` if the state machine allows it.

        Raises:
            InvalidTransitionError: For any edge not in ALLOWED_TRANSITIONS,
                including every edge out of completed/failed
        """
        current = ExecutionStatus(self.status)
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(current.value, target.value)
        self.status = target.value

    def advance_cursor(self, steps: int) -> None:
        """Move ``current_step`` forward; it never moves back."""
        if steps < 0:
            raise ValueError("current_step only moves forward")
        self.current_step += steps
