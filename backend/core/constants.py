"""Constants and enums for the workflow automation engine."""

from enum import Enum


class ExecutionStatus(str, Enum):
    """Workflow execution status."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({ExecutionStatus.COMPLETED, ExecutionStatus.FAILED})

# Allowed status transitions. Terminal states have no outgoing edges.
ALLOWED_TRANSITIONS: dict[ExecutionStatus, frozenset] = {
    ExecutionStatus.PENDING: frozenset({
        ExecutionStatus.IN_PROGRESS,
        ExecutionStatus.COMPLETED,  # empty definition
        ExecutionStatus.FAILED,  # configuration error before any dispatch
    }),
    ExecutionStatus.IN_PROGRESS: frozenset({
        ExecutionStatus.IN_PROGRESS,
        ExecutionStatus.COMPLETED,
        ExecutionStatus.FAILED,
    }),
    ExecutionStatus.COMPLETED: frozenset(),
    ExecutionStatus.FAILED: frozenset(),
}


class StepStatus(str, Enum):
    """Status of a single execution log entry."""

    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ActionType(str, Enum):
    """Built-in action types understood by the action registry."""

    CREATE_TASK = "create_task"
    ASSIGN_TASK = "assign_task"
    SEND_NOTIFICATION = "send_notification"
    SEND_EMAIL = "send_email"
    UPDATE_FIELD = "update_field"
    ASSIGN_COUNSELOR = "assign_counselor"
    UPDATE_LEAD_SCORE = "update_lead_score"
    SEND_MESSAGE = "send_message"
    UPDATE_STATUS = "update_status"
    DELAY = "delay"


class TriggerType(str, Enum):
    """What causes an automation to fire."""

    INQUIRY_STATUS_CHANGE = "inquiry_status_change"
    SLA_BREACH = "sla_breach"
    APPLICATION_STATUS_CHANGE = "application_status_change"
    DOCUMENT_UPLOADED = "document_uploaded"
    LEAD_SCORE_THRESHOLD = "lead_score_threshold"
    DAYS_INACTIVE = "days_inactive"
    AT_RISK_DETECTED = "at_risk_detected"
    MANUAL = "manual"


class EntityType(str, Enum):
    """CRM entity types the engine reads or writes."""

    STUDENT_PROFILE = "student_profile"
    APPLICATION = "application"
    INQUIRY = "inquiry"
    TASK = "task"
    NOTIFICATION = "notification"
    COMMUNICATION_HISTORY = "communication_history"
    DOCUMENT = "document"


class AdvanceOutcome(str, Enum):
    """What a single driver invocation did to an execution."""

    ADVANCED = "advanced"
    SKIPPED = "skipped"  # guard not met, cursor still moved
    COMPLETED = "completed"
    FAILED = "failed"
    NOT_DUE = "not_due"
    TERMINAL = "terminal"  # already completed/failed, untouched
    LOCKED = "locked"  # another invocation holds the execution
    CONFLICT = "conflict"  # optimistic version check failed


NOT_IMPLEMENTED = "not_implemented"
LEAD_SCORE_MIN = 0
LEAD_SCORE_MAX = 100
