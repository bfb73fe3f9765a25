"""
Action Registry — maps action_type strings to handler functions.

Every handler has the same shape::

    async def handler(config: dict, context: ActionContext) -> Optional[str]

It returns a short result string (or None) and raises on failure. The
registry is the only caller: it times the call, converts exceptions into a
failed ``ActionResult`` and answers unknown types with ``not_implemented``
so one unsupported action never blocks the rest of a workflow.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from core.constants import NOT_IMPLEMENTED

logger = structlog.get_logger(__name__)


@dataclass
class ActionContext:
    """What a handler may know about the execution it runs for.

    ``store`` is the entity store; ``notifications`` is the notification
    manager used for email delivery.
    """

    execution_id: str
    step_index: int
    now: datetime
    store: Any
    notifications: Any = None
    student_id: Optional[str] = None
    application_id: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    event_data: dict = field(default_factory=dict)
    subject: dict = field(default_factory=dict)


@dataclass
class ActionResult:
    """Outcome of one dispatch."""

    status: str  # completed, failed, not_implemented
    result: Optional[str] = None
    error: Optional[str] = None
    duration_ms: float = 0

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    def __iter__(self):
        # Allows ``result, error = await registry.dispatch(...)``
        return iter((self.result, self.error))


ActionHandler = Callable[[dict, ActionContext], Awaitable[Optional[str]]]


class ActionRegistry:
    """Central registry for all action handlers."""

    def __init__(self, register_builtins: bool = True):
        self._handlers: Dict[str, ActionHandler] = {}
        if register_builtins:
            self._register_builtin_actions()

    def _register_builtin_actions(self):
        """Register the CRM action handlers."""
        from actions.implementations.crm_actions import CRM_ACTION_TYPES

        for action_type, handler in CRM_ACTION_TYPES.items():
            self.register(action_type, handler)

    def register(self, action_type: str, handler: ActionHandler) -> None:
        """Register (or replace) the handler for an action type."""
        self._handlers[action_type] = handler

    def get(self, action_type: str) -> Optional[ActionHandler]:
        return self._handlers.get(action_type)

    @property
    def available_types(self) -> list:
        return list(self._handlers.keys())

    async def dispatch(
        self,
        action_type: str,
        config: Dict[str, Any],
        context: ActionContext,
    ) -> ActionResult:
        """Invoke the handler for ``action_type``.

        Never raises: handler exceptions become a failed result.
        """
        handler = self._handlers.get(action_type)
        if handler is None:
            logger.warning(
                "Action type not implemented",
                action_type=action_type,
                execution_id=context.execution_id,
                step_index=context.step_index,
            )
            return ActionResult(status=NOT_IMPLEMENTED, result=NOT_IMPLEMENTED)

        start = time.monotonic()
        try:
            result = await handler(config or {}, context)
        except Exception as e:
            duration_ms = (time.monotonic() - start) * 1000
            logger.error(
                "Action failed",
                action_type=action_type,
                execution_id=context.execution_id,
                step_index=context.step_index,
                error=str(e),
                duration_ms=round(duration_ms, 2),
            )
            return ActionResult(status="failed", error=str(e) or type(e).__name__, duration_ms=duration_ms)

        duration_ms = (time.monotonic() - start) * 1000
        logger.info(
            "Action completed",
            action_type=action_type,
            execution_id=context.execution_id,
            step_index=context.step_index,
            duration_ms=round(duration_ms, 2),
        )
        return ActionResult(status="completed", result=result, duration_ms=duration_ms)


# Singleton
_registry: Optional[ActionRegistry] = None


def get_action_registry() -> ActionRegistry:
    """Get or create the singleton action registry."""
    global _registry
    if _registry is None:
        _registry = ActionRegistry()
    return _registry
