"""Tests for capability sets, step records and workflow model types."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from steplink.domains.steps.errors import DataOperationFailed, PermissionDenied
from steplink.domains.steps.models import (
    READ_STEPS,
    STEP_CAPABILITIES,
    WRITE_STEPS,
    AggregateResult,
    Capability,
    CapabilitySet,
    DataResult,
    StepRecord,
    WorkflowMode,
    WorkflowOutcome,
    WorkflowState,
)

T0 = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


class TestCapability:
    def test_permission_string_format(self):
        assert READ_STEPS.permission == "android.permission.health.READ_STEPS"
        assert WRITE_STEPS.permission == "android.permission.health.WRITE_STEPS"

    def test_parse_reverses_permission(self):
        assert Capability.parse("android.permission.health.WRITE_STEPS") == WRITE_STEPS

    def test_parse_multi_word_record_type(self):
        cap = Capability.parse("android.permission.health.READ_HEART_RATE")
        assert cap == Capability("HeartRate", "read")
        assert cap.permission == "android.permission.health.READ_HEART_RATE"

    def test_parse_rejects_foreign_permission(self):
        with pytest.raises(ValueError, match="Not a health permission"):
            Capability.parse("android.permission.CAMERA")

    def test_parse_rejects_unknown_access(self):
        with pytest.raises(ValueError):
            Capability.parse("android.permission.health.DELETE_STEPS")

    def test_unknown_access_mode_rejected(self):
        with pytest.raises(ValueError, match="access mode"):
            Capability("Steps", "delete")

    def test_equality_by_value(self):
        assert Capability("Steps", "read") == READ_STEPS
        assert len({Capability("Steps", "read"), READ_STEPS}) == 1


class TestCapabilitySet:
    def test_empty_set_rejected(self):
        with pytest.raises(ValueError, match="at least one"):
            CapabilitySet(frozenset())

    def test_step_capabilities_are_read_and_write(self):
        assert set(STEP_CAPABILITIES) == {READ_STEPS, WRITE_STEPS}
        assert len(STEP_CAPABILITIES) == 2

    def test_satisfied_by_exact_set(self):
        assert STEP_CAPABILITIES.satisfied_by({READ_STEPS, WRITE_STEPS})

    def test_satisfied_by_superset(self):
        extra = Capability("HeartRate", "read")
        assert STEP_CAPABILITIES.satisfied_by({READ_STEPS, WRITE_STEPS, extra})

    def test_not_satisfied_by_subset(self):
        assert not STEP_CAPABILITIES.satisfied_by({READ_STEPS})
        assert STEP_CAPABILITIES.missing({READ_STEPS}) == [WRITE_STEPS]

    def test_permissions_sorted(self):
        assert STEP_CAPABILITIES.permissions() == [
            "android.permission.health.READ_STEPS",
            "android.permission.health.WRITE_STEPS",
        ]

    def test_immutable(self):
        with pytest.raises(AttributeError):
            STEP_CAPABILITIES.members = frozenset({READ_STEPS})  # type: ignore[misc]


class TestStepRecord:
    def test_valid_record(self):
        rec = StepRecord(100, T0, T0 + timedelta(seconds=30), timedelta(0), timedelta(0))
        assert rec.duration == timedelta(seconds=30)

    def test_negative_count_rejected(self):
        with pytest.raises(ValueError, match="non-negative"):
            StepRecord(-1, T0, T0, timedelta(0), timedelta(0))

    def test_end_before_start_rejected(self):
        with pytest.raises(ValueError, match="precedes"):
            StepRecord(1, T0, T0 - timedelta(seconds=1), timedelta(0), timedelta(0))

    def test_naive_times_rejected(self):
        with pytest.raises(ValueError, match="timezone-aware"):
            StepRecord(1, T0.replace(tzinfo=None), T0, timedelta(0), timedelta(0))

    def test_zero_length_window_allowed(self):
        rec = StepRecord(0, T0, T0, timedelta(0), timedelta(0))
        assert rec.count == 0


class TestWorkflowTypes:
    def test_terminal_states(self):
        terminal = {s for s in WorkflowState if s.is_terminal}
        assert terminal == {
            WorkflowState.UNAVAILABLE,
            WorkflowState.UPDATE_REQUIRED,
            WorkflowState.PERMISSION_DENIED,
            WorkflowState.SUCCEEDED,
            WorkflowState.FAILED,
        }

    def test_data_result_ok(self):
        assert DataResult(value=1).ok
        assert not DataResult(error=DataOperationFailed("boom")).ok

    def test_outcome_to_dict(self):
        outcome = WorkflowOutcome(
            state=WorkflowState.SUCCEEDED,
            mode=WorkflowMode.QUERY,
            result=AggregateResult(4500, T0, T0 + timedelta(hours=1)),
        )
        data = outcome.to_dict()
        assert data["state"] == "succeeded"
        assert data["result"]["total_steps"] == 4500
        assert data["error_kind"] is None

    def test_outcome_to_dict_with_error(self):
        outcome = WorkflowOutcome(
            state=WorkflowState.PERMISSION_DENIED,
            mode=WorkflowMode.INSERT,
            error=PermissionDenied("nope"),
        )
        data = outcome.to_dict()
        assert data["error_kind"] == "permission_denied"
        assert data["result"] is None
