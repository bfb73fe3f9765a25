"""Database models for the workflow automation engine.

This module imports all models to ensure they are registered
with SQLAlchemy's declarative base.
"""

from db.models.workflow_template import WorkflowTemplate
from db.models.workflow_automation import WorkflowAutomation
from db.models.workflow_execution import WorkflowExecution
from db.models.execution_log import ExecutionLogEntry
from db.models.entity_record import EntityRecord

__all__ = [
    "WorkflowTemplate",
    "WorkflowAutomation",
    "WorkflowExecution",
    "ExecutionLogEntry",
    "EntityRecord",
]
