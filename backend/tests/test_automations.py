"""Tests for event-driven automations and their run statistics."""

import pytest

from core.exceptions import NotFoundError
from services.workflow_service import AutomationService
from workflow.automations import subject_ids

# Four steps; two of them only run when the event says so
GUARDED_ACTIONS = [
    {"action_type": "record", "execution_order": 1},
    {"action_type": "record", "execution_order": 2},
    {"action_type": "record", "execution_order": 3, "conditional_logic": {"flag_a": True}},
    {"action_type": "record", "execution_order": 4, "conditional_logic": {"flag_b": True}},
]


@pytest.fixture
def recorded(registry):
    calls = []

    async def record(config, context):
        calls.append(context.step_index)
        return "ok"

    registry.register("record", record)
    return calls


async def _automation(session_factory, automation_id):
    async with session_factory() as session:
        return await AutomationService(session).get_by_id(automation_id)


@pytest.mark.unit
class TestTrigger:

    async def test_trigger_runs_to_completion(self, engine, make_automation, student, recorded):
        automation_id = await make_automation(GUARDED_ACTIONS[:2])

        summary = await engine.trigger(automation_id, student["id"], "student_profile")

        assert summary["triggered"] is True
        assert summary["status"] == "completed"
        assert summary["current_step"] == 2
        assert [e["status"] for e in summary["execution_log"]] == ["completed", "completed"]
        assert recorded == [0, 1]

    async def test_trigger_stops_at_a_delay(self, engine, make_automation, student, recorded):
        automation_id = await make_automation([
            {"action_type": "record", "execution_order": 1, "delay_days": 2},
            {"action_type": "record", "execution_order": 2},
        ])

        summary = await engine.trigger(automation_id, student["id"], "student_profile")

        assert summary["status"] == "in_progress"
        assert summary["current_step"] == 1
        assert summary["next_action_at"] == "2025-03-03T09:00:00"
        assert recorded == [0]

    async def test_trigger_conditions_use_entity_and_event(self, engine, make_automation, student, recorded):
        automation_id = await make_automation(
            GUARDED_ACTIONS[:1],
            trigger_conditions={"status": "at_risk", "days_inactive_gt": 14},
        )

        quiet = await engine.trigger(automation_id, student["id"], "student_profile", {"days_inactive": 3})
        assert quiet == {"triggered": False, "reason": "Trigger conditions not met"}

        fired = await engine.trigger(automation_id, student["id"], "student_profile", {"days_inactive": 30})
        assert fired["triggered"] is True
        assert recorded == [0]

    async def test_inactive_automation_does_not_fire(self, engine, make_automation, student, recorded):
        automation_id = await make_automation(GUARDED_ACTIONS[:1], is_active=False)

        summary = await engine.trigger(automation_id, student["id"], "student_profile")

        assert summary == {"triggered": False, "reason": "Workflow is inactive"}
        assert recorded == []

    async def test_unknown_automation(self, engine, student):
        with pytest.raises(NotFoundError, match="not found"):
            await engine.trigger("missing", student["id"], "student_profile")

    async def test_unknown_entity(self, engine, make_automation):
        automation_id = await make_automation(GUARDED_ACTIONS[:1])
        with pytest.raises(NotFoundError):
            await engine.trigger(automation_id, "nobody", "student_profile")

    async def test_application_event_sets_both_subject_ids(self, engine, make_automation, store, student, recorded):
        application = await store.create("application", {"student_id": student["id"], "status": "submitted"})
        automation_id = await make_automation(
            [{"action_type": "record", "execution_order": 1, "conditional_logic": {"application.status": "submitted"}}],
            trigger_conditions={"status": "submitted"},
        )

        summary = await engine.trigger(automation_id, application["id"], "application")

        assert summary["execution_log"][0]["status"] == "completed"
        assert recorded == [0]


@pytest.mark.unit
class TestRunStatistics:

    async def test_success_rate_is_a_running_mean(self, engine, make_automation, student, session_factory, clock, recorded):
        automation_id = await make_automation(GUARDED_ACTIONS)

        # 3 of 4 steps run
        await engine.trigger(automation_id, student["id"], "student_profile", {"flag_a": True, "flag_b": False})
        automation = await _automation(session_factory, automation_id)
        assert automation.execution_count == 1
        assert automation.success_rate == pytest.approx(75.0)
        assert automation.last_executed == clock.now()

        # 2 of 4 steps run
        clock.advance(hours=1)
        await engine.trigger(automation_id, student["id"], "student_profile", {"flag_a": False, "flag_b": False})
        automation = await _automation(session_factory, automation_id)
        assert automation.execution_count == 2
        assert automation.success_rate == pytest.approx(62.5)
        assert automation.last_executed == clock.now()

    async def test_failed_run_counts(self, engine, make_automation, registry, student, session_factory):
        async def explode(config, context):
            raise RuntimeError("CRM unavailable")

        registry.register("explode", explode)
        automation_id = await make_automation([
            {"action_type": "not_a_real_action", "execution_order": 1},
            {"action_type": "explode", "execution_order": 2},
        ])

        summary = await engine.trigger(automation_id, student["id"], "student_profile")

        assert summary["status"] == "failed"
        automation = await _automation(session_factory, automation_id)
        assert automation.execution_count == 1
        assert automation.success_rate == pytest.approx(50.0)

    async def test_empty_automation_counts_as_full_success(self, engine, make_automation, student, session_factory):
        automation_id = await make_automation([])

        summary = await engine.trigger(automation_id, student["id"], "student_profile")

        assert summary["status"] == "completed"
        automation = await _automation(session_factory, automation_id)
        assert automation.success_rate == pytest.approx(100.0)

    async def test_template_runs_leave_automations_alone(self, engine, make_template, make_automation, student, session_factory, recorded):
        automation_id = await make_automation(GUARDED_ACTIONS[:1])
        template_id = await make_template(GUARDED_ACTIONS[:1])
        execution = await engine.start_execution(template_id, student_id=student["id"])

        await engine.advance(execution.id)
        await engine.advance(execution.id)

        automation = await _automation(session_factory, automation_id)
        assert automation.execution_count == 0


@pytest.mark.unit
def test_subject_ids():
    assert subject_ids("student_profile", {"id": "s-1"}) == ("s-1", None)
    assert subject_ids("application", {"id": "a-1", "student_id": "s-1"}) == ("s-1", "a-1")
    assert subject_ids("inquiry", {"id": "i-1", "student_id": "s-1"}) == ("s-1", None)
