"""
Action scheduler — splits a definition into groups and runs one group.

Grouping rule: an action with ``parallel=False`` is always a group of its
own; consecutive ``parallel=True`` actions share one batch. A batch runs its
members concurrently and settles only once every member has returned.
"""

import asyncio
from dataclasses import replace
from typing import Mapping, Optional, Sequence

import structlog

from actions.registry import ActionContext, ActionRegistry
from core.constants import NOT_IMPLEMENTED, StepStatus
from workflow.conditions import evaluate
from workflow.models import Action, LogEntry

logger = structlog.get_logger(__name__)

CONDITIONS_NOT_MET = "Conditions not met"
DEFAULT_RESULT = "Success"


# ─── Grouping ─────────────────────────────────────────────────

def plan_groups(actions: Sequence[Action]) -> list[list[Action]]:
    """Split ordered actions into sequential singletons and parallel batches.

    A(seq), B(par), C(par), D(seq) → [[A], [B, C], [D]]
    """
    groups: list[list[Action]] = []
    batch: Optional[list[Action]] = None
    for action in actions:
        if action.parallel:
            if batch is None:
                batch = []
                groups.append(batch)
            batch.append(action)
        else:
            groups.append([action])
            batch = None
    return groups


def next_group(actions: Sequence[Action], current_step: int) -> list[Action]:
    """The group that starts at ``current_step`` (empty when finished)."""
    groups = plan_groups(actions[current_step:])
    return groups[0] if groups else []


def group_delay_days(group: Sequence[Action]) -> int:
    return max((a.delay_days for a in group), default=0)


# ─── Running a group ──────────────────────────────────────────

async def _run_member(
    action: Action,
    step_index: int,
    registry: ActionRegistry,
    context: ActionContext,
    subject: Mapping,
) -> LogEntry:
    if action.conditional_logic and not evaluate(action.conditional_logic, subject):
        logger.info(
            "Step skipped",
            execution_id=context.execution_id,
            step_index=step_index,
            action_type=action.action_type,
        )
        return LogEntry(
            step_index=step_index,
            action_type=action.action_type,
            status=StepStatus.SKIPPED,
            timestamp=context.now,
            result=CONDITIONS_NOT_MET,
        )

    member_context = replace(context, step_index=step_index)
    outcome = await registry.dispatch(action.action_type, action.handler_config(), member_context)

    if outcome.failed:
        return LogEntry(
            step_index=step_index,
            action_type=action.action_type,
            status=StepStatus.FAILED,
            timestamp=context.now,
            error=outcome.error,
        )
    result = NOT_IMPLEMENTED if outcome.status == NOT_IMPLEMENTED else (outcome.result or DEFAULT_RESULT)
    return LogEntry(
        step_index=step_index,
        action_type=action.action_type,
        status=StepStatus.COMPLETED,
        timestamp=context.now,
        result=result,
    )


async def run_group(
    group: Sequence[Action],
    first_step: int,
    registry: ActionRegistry,
    context: ActionContext,
    subject: Optional[Mapping] = None,
) -> list[LogEntry]:
    """Run one group and return its log entries in step order.

    A singleton is awaited directly; a batch fans out with
    ``asyncio.gather`` and joins on all members.
    """
    subject = subject or {}
    if len(group) == 1:
        return [await _run_member(group[0], first_step, registry, context, subject)]

    entries = await asyncio.gather(*(
        _run_member(action, first_step + offset, registry, context, subject)
        for offset, action in enumerate(group)
    ))
    return list(entries)


# ─── Success rate ─────────────────────────────────────────────

def compute_run_success_rate(completed_entries: int, total_actions: int) -> float:
    """Percentage of a definition's actions that completed in one run."""
    if total_actions <= 0:
        return 100.0
    return completed_entries / total_actions * 100


def fold_success_rate(old_rate: float, execution_count: int, run_rate: float) -> float:
    """Incremental mean over ``execution_count`` prior runs.

    Works on plain numbers and on column expressions alike, so the fold can
    run inside a single UPDATE statement.
    """
    return (execution_count * old_rate + run_rate) / (execution_count + 1)
