"""WorkflowAutomation model — event-triggered rule with run statistics."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import TriggerType
from db.base import BaseModel


class WorkflowAutomation(BaseModel):
    """Automation rule fired by entity events.

    Attributes:
        id: Unique identifier (UUID string)
        name: Automation name
        description: Automation description
        trigger_type: Which kind of entity event this rule listens for
        trigger_conditions: Guard evaluated against the triggering entity/event
        actions: JSON list of action definitions
        is_active: Inactive automations never trigger
        execution_count: Number of finished runs folded into success_rate
        last_executed: When the last run finished
        success_rate: Running mean of per-run success percentages
    """

    __tablename__ = "workflow_automations"

    name: Mapped[str] = mapped_column(nullable=False, index=True)
    description: Mapped[str] = mapped_column(nullable=False, default="")
    trigger_type: Mapped[str] = mapped_column(
        default=TriggerType.MANUAL.value, index=True
    )
    trigger_conditions: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    actions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(default=True, index=True)
    execution_count: Mapped[int] = mapped_column(default=0)
    last_executed: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)
    success_rate: Mapped[float] = mapped_column(default=0.0)

    executions: Mapped[list["WorkflowExecution"]] = relationship(
        "WorkflowExecution",
        back_populates="automation",
        lazy="noload",
    )
