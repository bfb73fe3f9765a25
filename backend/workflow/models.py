"""Domain types shared by the scheduler, the driver and the poller.

These are plain dataclasses, independent of the ORM: the driver converts
stored rows into them on load and back into rows on save.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Iterator, Optional

from core.constants import StepStatus
from core.exceptions import ImmutableLogError, ValidationError


# ─── Actions ──────────────────────────────────────────────────

@dataclass(frozen=True)
class Action:
    """One step of a workflow definition."""

    action_type: str
    execution_order: int = 0
    parallel: bool = False
    delay_days: int = 0
    conditional_logic: Optional[dict] = None
    config: dict = field(default_factory=dict)
    task_config: dict = field(default_factory=dict)
    message_config: dict = field(default_factory=dict)
    status_update: Optional[dict] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Action":
        """Build an action from its stored JSON form.

        Raises:
            ValidationError: If action_type is missing or delay_days is negative
        """
        if not isinstance(data, dict):
            raise ValidationError("Action must be an object")
        action_type = data.get("action_type")
        if not action_type:
            raise ValidationError("Action is missing action_type")
        delay_days = _as_int(data, "delay_days")
        if delay_days < 0:
            raise ValidationError(f"delay_days must be non-negative, got {delay_days}")
        return cls(
            action_type=action_type,
            execution_order=_as_int(data, "execution_order"),
            parallel=_as_bool(data, "parallel"),
            delay_days=delay_days,
            conditional_logic=_as_section(data, "conditional_logic") or None,
            config=_as_section(data, "config"),
            task_config=_as_section(data, "task_config"),
            message_config=_as_section(data, "message_config"),
            status_update=_as_section(data, "status_update") or None,
        )

    def handler_config(self) -> dict:
        """The single config dict handed to the action handler."""
        merged = {**self.config, **self.task_config, **self.message_config}
        if self.status_update:
            merged["status_update"] = dict(self.status_update)
        return merged


def _as_int(data: dict, key: str) -> int:
    value = data.get(key) or 0
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {key}: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid {key}: {value!r}") from e


def _as_bool(data: dict, key: str) -> bool:
    """Real booleans, or the strings "true"/"false" as JSON forms send them."""
    value = data.get(key, False)
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ValidationError(f"Invalid {key}: {value!r}")


def _as_section(data: dict, key: str) -> dict:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ValidationError(f"Invalid {key}: expected an object")
    return dict(value)


def sort_actions(actions: Iterable[Action]) -> list[Action]:
    """Order by execution_order; ties keep their authored order."""
    return sorted(actions, key=lambda a: a.execution_order)


@dataclass(frozen=True)
class WorkflowDefinition:
    """What an execution runs: a template or an automation, normalized."""

    id: str
    is_active: bool
    actions: tuple[Action, ...]

    @classmethod
    def from_rows(cls, definition_id: str, is_active: bool, raw_actions: list) -> "WorkflowDefinition":
        parsed = [Action.from_dict(a) for a in (raw_actions or [])]
        return cls(id=definition_id, is_active=bool(is_active), actions=tuple(sort_actions(parsed)))


# ─── Execution log ────────────────────────────────────────────

@dataclass(frozen=True)
class LogEntry:
    """One immutable record in an execution log."""

    step_index: int
    action_type: Optional[str]
    status: StepStatus
    timestamp: datetime
    result: Any = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "step_index": self.step_index,
            "action_type": self.action_type,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "result": self.result,
            "error": self.error,
        }


class ExecutionLog:
    """Immutable, ordered sequence of log entries.

    A stored log may only grow at its end; ``require_extension_of`` checks
    that a reloaded log still starts with what was there before.
    """

    __slots__ = ("_entries",)

    def __init__(self, entries: Iterable[LogEntry] = ()):
        self._entries: tuple[LogEntry, ...] = tuple(entries)

    def since(self, offset: int) -> tuple[LogEntry, ...]:
        """Entries written after the first ``offset`` ones."""
        return self._entries[offset:]

    def is_extension_of(self, other: "ExecutionLog") -> bool:
        return self._entries[: len(other)] == other._entries

    def require_extension_of(self, other: "ExecutionLog") -> None:
        if not self.is_extension_of(other):
            raise ImmutableLogError("Execution log may only grow at its end")

    @property
    def entries(self) -> tuple[LogEntry, ...]:
        return self._entries

    @property
    def last(self) -> Optional[LogEntry]:
        return self._entries[-1] if self._entries else None

    def count(self, status: StepStatus) -> int:
        return sum(1 for e in self._entries if e.status == status)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(self._entries)

    def __getitem__(self, index):
        return self._entries[index]

    def to_list(self) -> list[dict]:
        return [e.to_dict() for e in self._entries]
