"""Database seed script — creates a demo student, template and automation.

Run: python -m scripts.seed
"""

import asyncio
import sys
import os

# Ensure project root is in path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


AT_RISK_ACTIONS = [
    {
        "action_type": "create_task",
        "execution_order": 1,
        "delay_days": 3,
        "task_config": {
            "title": "Check in with {{first_name}} {{last_name}}",
            "description": "Student was flagged at risk. Call and log the outcome.",
            "priority": "high",
            "due_in_days": 1,
        },
    },
    {
        "action_type": "send_notification",
        "execution_order": 2,
        "parallel": True,
        "message_config": {
            "title": "At-risk follow-up",
            "message": "{{first_name}} has not responded for 3 days.",
        },
    },
    {
        "action_type": "update_lead_score",
        "execution_order": 3,
        "parallel": True,
        "config": {"delta": -10},
        "delay_days": 7,
    },
    {
        "action_type": "send_email",
        "execution_order": 4,
        "conditional_logic": {"status": "at_risk"},
        "message_config": {
            "subject": "We're here to help, {{first_name}}",
            "body": "Your counselor would like to schedule a call this week.",
        },
    },
]


async def seed():
    """Seed the database with demo data."""
    from db.database import init_db
    from db.database import AsyncSessionLocal
    from db.models.workflow_automation import WorkflowAutomation
    from db.models.workflow_template import WorkflowTemplate
    from services.entity_store import SQLEntityStore
    from services.workflow_service import AutomationService, TemplateService
    from sqlalchemy import select

    # Initialize DB tables
    await init_db()

    store = SQLEntityStore(AsyncSessionLocal)
    if await store.get("student_profile", "demo-student") is None:
        await store.create("student_profile", {
            "id": "demo-student",
            "first_name": "Ana",
            "last_name": "Petrova",
            "email": "ana.petrova@example.com",
            "status": "at_risk",
            "lead_score": 55,
            "counselor_id": "counselor-1",
        })
        print("[seed] Created student: demo-student")
    else:
        print("[seed] Student exists: demo-student")

    async with AsyncSessionLocal() as db:
        # 1. Template for the poll path
        result = await db.execute(
            select(WorkflowTemplate).where(WorkflowTemplate.name == "At-risk follow-up")
        )
        template = result.scalar_one_or_none()
        if not template:
            template = await TemplateService(db).create_template(
                name="At-risk follow-up",
                description="Task after 3 days, email a week later if still at risk",
                actions=AT_RISK_ACTIONS,
            )
            print(f"[seed] Created template: {template.name} ({template.id})")
        else:
            print(f"[seed] Template exists: {template.name}")

        # 2. Automation for the event path
        result = await db.execute(
            select(WorkflowAutomation).where(WorkflowAutomation.name == "At-risk detected")
        )
        automation = result.scalar_one_or_none()
        if not automation:
            automation = await AutomationService(db).create_automation(
                name="At-risk detected",
                description="Fires when a student is tagged at risk",
                trigger_type="at_risk_detected",
                trigger_conditions={"status": "at_risk"},
                actions=AT_RISK_ACTIONS,
            )
            print(f"[seed] Created automation: {automation.name} ({automation.id})")
        else:
            print(f"[seed] Automation exists: {automation.name}")

        await db.commit()

    print("[seed] Done.")


if __name__ == "__main__":
    asyncio.run(seed())
