"""Data models for step-count access: capabilities, records, workflow state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable, Iterator

from steplink.domains.steps.errors import DataOperationFailed, StepsWorkflowError

# Platform permission strings look like ``android.permission.health.READ_STEPS``.
PERMISSION_PREFIX = "android.permission.health."

# Aggregate metric for the summed step count over a window.
STEPS_COUNT_TOTAL = "Steps.count_total"


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------

@dataclass(frozen=True, order=True)
class Capability:
    """Permission to read or write one category of health data."""

    record_type: str  # e.g. 'Steps'
    access: str  # 'read' | 'write'

    def __post_init__(self) -> None:
        if self.access not in ("read", "write"):
            raise ValueError(f"Unknown access mode: {self.access!r}")

    @property
    def permission(self) -> str:
        """Permission string in the platform's format."""
        return f"{PERMISSION_PREFIX}{self.access.upper()}_{_to_snake(self.record_type).upper()}"

    @classmethod
    def parse(cls, permission: str) -> Capability:
        """Parse a platform permission string back into a Capability.

        Raises:
            ValueError: If the string is not a read/write health permission.
        """
        if not permission.startswith(PERMISSION_PREFIX):
            raise ValueError(f"Not a health permission: {permission!r}")
        body = permission[len(PERMISSION_PREFIX):]
        access, _, record = body.partition("_")
        if not record or access not in ("READ", "WRITE"):
            raise ValueError(f"Not a health permission: {permission!r}")
        record_type = "".join(part.capitalize() for part in record.lower().split("_"))
        return cls(record_type=record_type, access=access.lower())

    def __str__(self) -> str:
        return self.permission


def _to_snake(name: str) -> str:
    out: list[str] = []
    for i, ch in enumerate(name):
        if ch.isupper() and i:
            out.append("_")
        out.append(ch)
    return "".join(out)


READ_STEPS = Capability("Steps", "read")
WRITE_STEPS = Capability("Steps", "write")


@dataclass(frozen=True)
class CapabilitySet:
    """Immutable, non-empty set of capabilities required by a workflow."""

    members: frozenset[Capability]

    def __post_init__(self) -> None:
        if not self.members:
            raise ValueError("A CapabilitySet needs at least one capability")

    @classmethod
    def of(cls, *capabilities: Capability) -> CapabilitySet:
        return cls(frozenset(capabilities))

    def satisfied_by(self, granted: Iterable[Capability]) -> bool:
        """True if ``granted`` contains every required capability."""
        return self.members <= frozenset(granted)

    def missing(self, granted: Iterable[Capability]) -> list[Capability]:
        return sorted(self.members - frozenset(granted))

    def permissions(self) -> list[str]:
        return sorted(c.permission for c in self.members)

    def __iter__(self) -> Iterator[Capability]:
        return iter(sorted(self.members))

    def __len__(self) -> int:
        return len(self.members)

    def __contains__(self, item: object) -> bool:
        return item in self.members


STEP_CAPABILITIES = CapabilitySet.of(READ_STEPS, WRITE_STEPS)


# ---------------------------------------------------------------------------
# Provider + records
# ---------------------------------------------------------------------------

class ProviderStatus(str, Enum):
    """Install/update state of the health-data provider. Never cached."""

    UNAVAILABLE = "unavailable"
    UPDATE_REQUIRED = "update_required"
    READY = "ready"


@dataclass(frozen=True)
class StepRecord:
    """A step count over a time interval with the local offsets at each end."""

    count: int
    start_time: datetime
    end_time: datetime
    start_offset: timedelta
    end_offset: timedelta

    def __post_init__(self) -> None:
        if self.count < 0:
            raise ValueError(f"Step count must be non-negative, got {self.count}")
        if self.start_time.tzinfo is None or self.end_time.tzinfo is None:
            raise ValueError("StepRecord times must be timezone-aware instants")
        if self.end_time < self.start_time:
            raise ValueError("StepRecord end_time precedes start_time")

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class AggregateResult:
    """Total step count over an aggregation window."""

    total_steps: int
    window_start: datetime
    window_end: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_steps": self.total_steps,
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
        }


@dataclass(frozen=True)
class DataResult:
    """Outcome of a DataClient call: a value, or the failure that replaced it."""

    value: Any = None
    error: DataOperationFailed | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------

class WorkflowMode(str, Enum):
    """Which user-triggered action is pending."""

    QUERY = "query"
    INSERT = "insert"


class WorkflowState(str, Enum):
    IDLE = "idle"
    CHECKING_AVAILABILITY = "checking_availability"
    UNAVAILABLE = "unavailable"
    UPDATE_REQUIRED = "update_required"
    CHECKING_PERMISSION = "checking_permission"
    AWAITING_USER_GRANT = "awaiting_user_grant"
    PERMISSION_DENIED = "permission_denied"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset({
    WorkflowState.UNAVAILABLE,
    WorkflowState.UPDATE_REQUIRED,
    WorkflowState.PERMISSION_DENIED,
    WorkflowState.SUCCEEDED,
    WorkflowState.FAILED,
})


@dataclass
class WorkflowOutcome:
    """Result of one workflow attempt, recorded once a terminal state is reached."""

    state: WorkflowState
    mode: WorkflowMode
    result: AggregateResult | None = None
    records_written: int = 0
    error: StepsWorkflowError | None = None
    duration_ms: float = 0.0
    transitions: list[WorkflowState] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "mode": self.mode.value,
            "result": self.result.to_dict() if self.result else None,
            "records_written": self.records_written,
            "error_kind": self.error.kind if self.error else None,
            "error": str(self.error) if self.error else None,
            "duration_ms": round(self.duration_ms, 1),
        }
