"""
Built-in CRM action handlers.

Provides the action types a workflow can use:
- create_task / assign_task: Create a follow-up task for a counselor
- send_notification / send_message: In-app notification record
- send_email: Email through the notification manager
- update_field / update_status: Set fields on any named entity
- assign_counselor: Set the owning counselor on the subject
- update_lead_score: Adjust a numeric score, clamped to [0, 100]
- delay: No side effect; the wait itself is the step's delay_days

Handlers receive ``(config, context)`` and return a short result string.
They raise ``ActionError`` when the side effect cannot be performed.
"""

import re
from datetime import timedelta
from typing import Any, Dict, Optional

from actions.registry import ActionContext
from core.constants import LEAD_SCORE_MAX, LEAD_SCORE_MIN, EntityType
from core.exceptions import ActionError, NotFoundError
from notifications.channels import Notification, NotificationChannel

_PLACEHOLDER = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")


# ─── Helpers ───────────────────────────────────────────────────

def resolve_variables(text: str, context: ActionContext) -> str:
    """Replace ``{{field}}`` placeholders with subject or event values.

    Unknown placeholders are left as written.
    """
    if not text:
        return text
    values = {**context.subject, **context.event_data}

    def _lookup(match):
        current: Any = values
        for part in match.group(1).split("."):
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return match.group(0)
        return str(current)

    return _PLACEHOLDER.sub(_lookup, text)


def _stamp(context: ActionContext) -> dict:
    """Fields linking a created record back to the step that made it."""
    return {
        "source_execution_id": context.execution_id,
        "source_step": context.step_index,
    }


async def _find_existing(entity_type: str, context: ActionContext) -> Optional[dict]:
    """A record this same step already created on an earlier attempt."""
    existing = await context.store.list(entity_type, _stamp(context))
    return existing[0] if existing else None


def _target(config: Dict[str, Any], context: ActionContext) -> tuple[str, str]:
    """Entity type and id an update applies to; defaults to the student."""
    entity_type = config.get("entity_type") or EntityType.STUDENT_PROFILE.value
    entity_id = config.get("entity_id")
    if not entity_id:
        if entity_type == EntityType.STUDENT_PROFILE.value:
            entity_id = context.student_id
        elif entity_type == EntityType.APPLICATION.value:
            entity_id = context.application_id
        elif entity_type == context.entity_type:
            entity_id = context.entity_id
    if not entity_id:
        raise ActionError(f"No target {entity_type} for update")
    return entity_type, entity_id


async def _update(entity_type: str, entity_id: str, fields: dict, context: ActionContext) -> dict:
    try:
        return await context.store.update(entity_type, entity_id, fields)
    except NotFoundError as e:
        raise ActionError(e.message) from e


# ─── Tasks ─────────────────────────────────────────────────────

async def create_task(config: Dict[str, Any], context: ActionContext) -> Optional[str]:
    """Create a follow-up task assigned to the student's counselor."""
    existing = await _find_existing(EntityType.TASK.value, context)
    if existing:
        return f"Task {existing['id']} already created"

    due_in_days = int(config.get("due_in_days") or 0)
    task = {
        "title": resolve_variables(config.get("title") or "Follow up", context),
        "description": resolve_variables(config.get("description", ""), context),
        "type": config.get("type", "follow_up"),
        "student_id": context.student_id,
        "application_id": context.application_id,
        "assigned_to": config.get("assigned_to") or context.subject.get("counselor_id"),
        "status": "pending",
        "priority": config.get("priority", "medium"),
        "due_date": (context.now + timedelta(days=due_in_days)).isoformat(),
        **_stamp(context),
    }
    created = await context.store.create(EntityType.TASK.value, task)
    return f"Task {created['id']} created"


# ─── Messages ──────────────────────────────────────────────────

async def send_notification(config: Dict[str, Any], context: ActionContext) -> Optional[str]:
    """Record an in-app notification for a user."""
    existing = await _find_existing(EntityType.NOTIFICATION.value, context)
    if existing:
        return f"Notification {existing['id']} already sent"

    recipient = config.get("recipient_id") or context.subject.get("counselor_id")
    if not recipient:
        raise ActionError("Notification has no recipient")

    notification = {
        "user_id": recipient,
        "title": resolve_variables(config.get("title") or config.get("subject") or "Workflow notification", context),
        "message": resolve_variables(config.get("message") or config.get("body") or "", context),
        "type": config.get("type", "workflow"),
        "related_entity_type": context.entity_type,
        "related_entity_id": context.entity_id,
        "is_read": False,
        **_stamp(context),
    }
    created = await context.store.create(EntityType.NOTIFICATION.value, notification)
    return f"Notification {created['id']} sent"


async def send_email(config: Dict[str, Any], context: ActionContext) -> Optional[str]:
    """Email the subject (or ``to``) and record it in the communication history."""
    recipient = config.get("to") or context.subject.get("email")
    if not recipient:
        raise ActionError("Email has no recipient address")
    if context.notifications is None:
        raise ActionError("Email delivery is not available")

    existing = await _find_existing(EntityType.COMMUNICATION_HISTORY.value, context)
    if existing:
        return f"Email already sent to {existing.get('recipient', recipient)}"

    subject = resolve_variables(config.get("subject") or "", context)
    body = resolve_variables(config.get("body") or config.get("message") or "", context)

    delivery = await context.notifications.send(Notification(
        title=subject,
        message=body,
        channel=NotificationChannel.EMAIL,
        recipient=recipient,
        metadata=_stamp(context),
    ))
    if not delivery.success:
        raise ActionError(f"Email to {recipient} failed: {delivery.error}")

    await context.store.create(EntityType.COMMUNICATION_HISTORY.value, {
        "student_id": context.student_id,
        "channel": "email",
        "direction": "outbound",
        "recipient": recipient,
        "subject": subject,
        "content": body,
        "sent_at": context.now.isoformat(),
        **_stamp(context),
    })
    return f"Email sent to {recipient}"


# ─── Field updates ─────────────────────────────────────────────

async def update_field(config: Dict[str, Any], context: ActionContext) -> Optional[str]:
    """Set one or more fields on a named entity.

    Config accepts ``field``/``value``, a ``fields`` mapping, or a
    ``status_update`` mapping; all three may be combined.
    """
    fields: Dict[str, Any] = {}
    if config.get("field"):
        fields[config["field"]] = config.get("value")
    fields.update(config.get("fields") or {})
    fields.update(config.get("status_update") or {})
    if not fields:
        raise ActionError("update_field has nothing to update")

    entity_type, entity_id = _target(config, context)
    await _update(entity_type, entity_id, fields, context)
    return f"Updated {entity_type} {entity_id}: {', '.join(sorted(fields))}"


async def assign_counselor(config: Dict[str, Any], context: ActionContext) -> Optional[str]:
    """Make ``counselor_id`` the owner of the subject."""
    counselor_id = config.get("counselor_id") or config.get("assigned_to")
    if not counselor_id:
        raise ActionError("assign_counselor requires counselor_id")
    entity_type, entity_id = _target(config, context)
    await _update(entity_type, entity_id, {"counselor_id": counselor_id}, context)
    return f"Assigned counselor {counselor_id}"


def clamp_score(value: float) -> float:
    return max(LEAD_SCORE_MIN, min(LEAD_SCORE_MAX, value))


async def update_lead_score(config: Dict[str, Any], context: ActionContext) -> Optional[str]:
    """Add ``delta`` (or set ``score``) on a numeric field, clamped to [0, 100]."""
    score_field = config.get("field", "lead_score")
    entity_type, entity_id = _target(config, context)

    record = await context.store.get(entity_type, entity_id)
    if record is None:
        raise ActionError(f"{entity_type} '{entity_id}' not found")

    if config.get("score") is not None:
        new_score = clamp_score(float(config["score"]))
    else:
        try:
            current = float(record.get(score_field) or 0)
            delta = float(config.get("delta", 0))
        except (TypeError, ValueError) as e:
            raise ActionError(f"Non-numeric score: {e}") from e
        new_score = clamp_score(current + delta)

    if new_score == int(new_score):
        new_score = int(new_score)
    await _update(entity_type, entity_id, {score_field: new_score}, context)
    return f"{score_field} set to {new_score}"


# ─── Waiting ───────────────────────────────────────────────────

async def delay(config: Dict[str, Any], context: ActionContext) -> Optional[str]:
    """Placeholder step whose only effect is its delay_days."""
    return "Waited"


CRM_ACTION_TYPES = {
    "create_task": create_task,
    "assign_task": create_task,
    "send_notification": send_notification,
    "send_message": send_notification,
    "send_email": send_email,
    "update_field": update_field,
    "update_status": update_field,
    "assign_counselor": assign_counselor,
    "update_lead_score": update_lead_score,
    "delay": delay,
}
