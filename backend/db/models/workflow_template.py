"""WorkflowTemplate model — the immutable definition an execution runs."""

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import BaseModel


class WorkflowTemplate(BaseModel):
    """An ordered list of actions authored outside the engine.

    Attributes:
        id: Unique identifier (UUID string)
        name: Template name
        description: Template description
        is_active: Inactive templates fail their executions on the next step
        actions: JSON list of action definitions (see workflow.models.Action)
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """

    __tablename__ = "workflow_templates"

    name: Mapped[str] = mapped_column(nullable=False, index=True)
    description: Mapped[str] = mapped_column(nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(default=True, index=True)
    actions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    executions: Mapped[list["WorkflowExecution"]] = relationship(
        "WorkflowExecution",
        back_populates="template",
        lazy="noload",
    )
