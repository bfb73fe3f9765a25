"""Tests for the execution driver state machine."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import update as sa_update

from core.constants import AdvanceOutcome, ExecutionStatus, StepStatus
from core.exceptions import ActionError, InvalidTransitionError
from db.models.workflow_execution import WorkflowExecution
from db.models.workflow_template import WorkflowTemplate


@pytest.fixture
def recorded(registry):
    """Register a ``record`` action that remembers which steps ran."""
    calls = []

    async def record(config, context):
        calls.append(context.step_index)
        return f"step {context.step_index}"

    async def explode(config, context):
        raise ActionError("CRM write rejected")

    registry.register("record", record)
    registry.register("explode", explode)
    return calls


async def _start(engine, make_template, actions, student_id=None, **kwargs):
    template_id = await make_template(actions, **kwargs)
    execution = await engine.start_execution(template_id, student_id=student_id)
    return execution.id


@pytest.mark.unit
class TestAdvance:

    async def test_one_group_per_invocation_then_completes(self, engine, make_template, load_execution, recorded):
        execution_id = await _start(engine, make_template, [
            {"action_type": "record", "execution_order": 1},
            {"action_type": "record", "execution_order": 2},
        ])

        first = await engine.advance(execution_id)
        assert first.outcome == AdvanceOutcome.ADVANCED
        assert first.current_step == 1
        assert first.status == ExecutionStatus.IN_PROGRESS.value

        second = await engine.advance(execution_id)
        assert second.current_step == 2
        assert second.status == ExecutionStatus.IN_PROGRESS.value

        third = await engine.advance(execution_id)
        assert third.outcome == AdvanceOutcome.COMPLETED

        execution, log = await load_execution(execution_id)
        assert execution.status == "completed"
        assert execution.completed_at is not None
        assert recorded == [0, 1]
        assert [e.result for e in log] == ["step 0", "step 1"]

    async def test_empty_definition_completes_immediately(self, engine, make_template, load_execution):
        execution_id = await _start(engine, make_template, [])

        result = await engine.advance(execution_id)

        assert result.outcome == AdvanceOutcome.COMPLETED
        execution, log = await load_execution(execution_id)
        assert execution.status == "completed"
        assert len(log) == 0

    async def test_delay_sets_next_action_at(self, engine, make_template, clock, load_execution, recorded):
        execution_id = await _start(engine, make_template, [
            {"action_type": "record", "execution_order": 1, "delay_days": 3},
            {"action_type": "record", "execution_order": 2},
        ])

        completed_at = clock.now()
        await engine.advance(execution_id)

        execution, _ = await load_execution(execution_id)
        assert execution.next_action_at == completed_at + timedelta(days=3)

        clock.advance(days=2, hours=23)
        assert (await engine.advance(execution_id)).outcome == AdvanceOutcome.NOT_DUE
        assert recorded == [0]

        clock.advance(hours=1)
        result = await engine.advance(execution_id)
        assert result.outcome == AdvanceOutcome.ADVANCED
        assert result.next_action_at is None
        assert recorded == [0, 1]

    async def test_guard_not_met_skips_and_advances(self, engine, make_template, student, load_execution, recorded):
        execution_id = await _start(engine, make_template, [
            {"action_type": "record", "execution_order": 1, "conditional_logic": {"status": "enrolled"}},
            {"action_type": "record", "execution_order": 2},
        ], student_id=student["id"])

        result = await engine.advance(execution_id)

        assert result.outcome == AdvanceOutcome.SKIPPED
        assert result.current_step == 1
        assert recorded == []
        _, log = await load_execution(execution_id)
        assert log[0].status == StepStatus.SKIPPED
        assert log[0].result == "Conditions not met"

    async def test_guard_sees_student_record(self, engine, make_template, student, recorded):
        execution_id = await _start(engine, make_template, [
            {"action_type": "record", "execution_order": 1, "conditional_logic": {"status": "at_risk", "lead_score_gt": 40}},
        ], student_id=student["id"])

        result = await engine.advance(execution_id)

        assert result.outcome == AdvanceOutcome.ADVANCED
        assert recorded == [0]

    async def test_unknown_action_type_still_advances(self, engine, make_template, load_execution):
        execution_id = await _start(engine, make_template, [
            {"action_type": "teleport", "execution_order": 1},
        ])

        result = await engine.advance(execution_id)

        assert result.outcome == AdvanceOutcome.ADVANCED
        assert result.current_step == 1
        _, log = await load_execution(execution_id)
        assert log[0].status == StepStatus.COMPLETED
        assert log[0].result == "not_implemented"

    async def test_parallel_group_in_one_invocation(self, engine, make_template, registry, load_execution, recorded):
        arrived = []
        gate = asyncio.Event()

        async def rendezvous(config, context):
            arrived.append(context.step_index)
            if len(arrived) == 2:
                gate.set()
            await asyncio.wait_for(gate.wait(), timeout=2)
            return "joined"

        registry.register("rendezvous", rendezvous)
        execution_id = await _start(engine, make_template, [
            {"action_type": "record", "execution_order": 1},
            {"action_type": "rendezvous", "execution_order": 2, "parallel": True, "delay_days": 1},
            {"action_type": "rendezvous", "execution_order": 3, "parallel": True, "delay_days": 2},
            {"action_type": "record", "execution_order": 4},
        ])

        await engine.advance(execution_id)
        batch = await engine.advance(execution_id)

        assert batch.current_step == 3
        assert sorted(arrived) == [1, 2]
        assert recorded == [0]
        assert batch.next_action_at == engine.clock.now() + timedelta(days=2)

        engine.clock.advance(days=2)
        await engine.advance(execution_id)
        assert recorded == [0, 3]
        _, log = await load_execution(execution_id)
        assert [e.step_index for e in log] == [0, 1, 2, 3]


@pytest.mark.unit
class TestFailures:

    async def test_handler_failure_is_terminal(self, engine, make_template, load_execution, recorded):
        execution_id = await _start(engine, make_template, [
            {"action_type": "record", "execution_order": 1},
            {"action_type": "explode", "execution_order": 2},
            {"action_type": "record", "execution_order": 3},
        ])

        await engine.advance(execution_id)
        result = await engine.advance(execution_id)

        assert result.outcome == AdvanceOutcome.FAILED
        execution, log = await load_execution(execution_id)
        assert execution.status == "failed"
        assert execution.current_step == 1
        assert log.last.status == StepStatus.FAILED
        assert log.last.error == "CRM write rejected"

    async def test_terminal_execution_is_never_mutated(self, engine, make_template, load_execution, recorded):
        execution_id = await _start(engine, make_template, [
            {"action_type": "explode", "execution_order": 1},
            {"action_type": "record", "execution_order": 2},
        ])
        await engine.advance(execution_id)
        before, before_log = await load_execution(execution_id)

        for _ in range(3):
            assert (await engine.advance(execution_id)).outcome == AdvanceOutcome.TERMINAL
            await engine.process_due()

        after, after_log = await load_execution(execution_id)
        assert after.version == before.version
        assert after.status == "failed"
        assert after.current_step == before.current_step
        assert after_log.entries == before_log.entries
        assert recorded == []

    async def test_inactive_template_fails(self, engine, make_template, session_factory, load_execution):
        execution_id = await _start(engine, make_template, [{"action_type": "record", "execution_order": 1}])
        async with session_factory() as session:
            await session.execute(sa_update(WorkflowTemplate).values(is_active=False))
            await session.commit()

        result = await engine.advance(execution_id)

        assert result.outcome == AdvanceOutcome.FAILED
        execution, log = await load_execution(execution_id)
        assert execution.status == "failed"
        assert log.last.error == "Template not found or inactive"
        assert log.last.action_type is None

    async def test_malformed_action_fails_execution(self, engine, make_template, load_execution):
        execution_id = await _start(engine, make_template, [{"execution_order": 1}])

        result = await engine.advance(execution_id)

        assert result.outcome == AdvanceOutcome.FAILED
        _, log = await load_execution(execution_id)
        assert log.last.error == "Action is missing action_type"

    async def test_non_numeric_delay_fails_execution(self, engine, make_template, load_execution):
        execution_id = await _start(engine, make_template, [
            {"action_type": "create_task", "execution_order": 1, "delay_days": "soon"},
        ])

        result = await engine.process_due()

        assert result.errors == 0
        execution, log = await load_execution(execution_id)
        assert execution.status == "failed"
        assert log.last.error == "Invalid delay_days: 'soon'"
        assert (await engine.process_due()).to_dict() == {"processed": 0, "errors": 0, "locked": 0}

    async def test_unsettled_step_is_dead_lettered(self, engine, make_template, session_factory, load_execution, recorded):
        execution_id = await _start(engine, make_template, [{"action_type": "record", "execution_order": 1}])
        # Three dispatches that never settled, e.g. worker crashes mid-step
        async with session_factory() as session:
            execution = await session.get(WorkflowExecution, execution_id)
            execution.status = ExecutionStatus.IN_PROGRESS.value
            execution.step_attempts = 3
            await session.commit()

        result = await engine.advance(execution_id)

        assert result.outcome == AdvanceOutcome.FAILED
        assert recorded == []
        _, log = await load_execution(execution_id)
        assert log.last.error == "Step 0 exceeded maximum attempts"

    async def test_unsettled_step_is_retried_below_the_limit(self, engine, make_template, session_factory, recorded):
        execution_id = await _start(engine, make_template, [{"action_type": "record", "execution_order": 1}])
        async with session_factory() as session:
            execution = await session.get(WorkflowExecution, execution_id)
            execution.status = ExecutionStatus.IN_PROGRESS.value
            execution.step_attempts = 1
            await session.commit()

        result = await engine.advance(execution_id)

        assert result.outcome == AdvanceOutcome.ADVANCED
        assert recorded == [0]

    async def test_old_execution_fails(self, engine, make_template, clock, load_execution, recorded):
        execution_id = await _start(engine, make_template, [{"action_type": "record", "execution_order": 1}])

        clock.advance(days=181)
        result = await engine.advance(execution_id)

        assert result.outcome == AdvanceOutcome.FAILED
        assert recorded == []
        _, log = await load_execution(execution_id)
        assert log.last.error == "Execution exceeded maximum age"


@pytest.mark.unit
class TestConcurrency:

    async def test_simultaneous_advances_apply_one_step(self, engine, make_template, load_execution, recorded):
        execution_id = await _start(engine, make_template, [
            {"action_type": "record", "execution_order": 1},
            {"action_type": "record", "execution_order": 2},
        ])

        results = await asyncio.gather(engine.advance(execution_id), engine.advance(execution_id))

        outcomes = sorted(r.outcome.value for r in results)
        assert outcomes == ["advanced", "locked"]
        execution, log = await load_execution(execution_id)
        assert execution.current_step == 1
        assert len(log) == 1
        assert recorded == [0]

    async def test_lock_released_after_advance(self, engine, make_template, locks, recorded):
        execution_id = await _start(engine, make_template, [{"action_type": "record", "execution_order": 1}])
        await engine.advance(execution_id)
        assert not locks.is_locked(execution_id)


@pytest.mark.unit
class TestStateMachine:

    def test_terminal_states_have_no_exits(self):
        execution = WorkflowExecution(status="completed", current_step=0)
        with pytest.raises(InvalidTransitionError):
            execution.transition_to(ExecutionStatus.IN_PROGRESS)

        execution = WorkflowExecution(status="failed", current_step=0)
        with pytest.raises(InvalidTransitionError):
            execution.transition_to(ExecutionStatus.COMPLETED)

    def test_cursor_never_moves_back(self):
        execution = WorkflowExecution(status="in_progress", current_step=2)
        with pytest.raises(ValueError):
            execution.advance_cursor(-1)
        execution.advance_cursor(2)
        assert execution.current_step == 4
