"""Workflow controller: the state machine behind the two step-data actions.

One attempt runs per user trigger::

    IDLE → CHECKING_AVAILABILITY → (UNAVAILABLE | UPDATE_REQUIRED | CHECKING_PERMISSION)
         → (AWAITING_USER_GRANT) → (PERMISSION_DENIED | EXECUTING) → (SUCCEEDED | FAILED)

Availability is always checked before permissions, and permissions are
always confirmed before any data call. Every terminal state is recorded on
``last_outcome`` and the machine returns to IDLE.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Callable

from steplink.domains.steps.connectors import AppLauncher, ProviderHandle
from steplink.domains.steps.connectors.launcher import StoreIntent, build_store_intent
from steplink.domains.steps.errors import (
    DataOperationFailed,
    PermissionDenied,
    ProviderOutdated,
    ProviderUnavailable,
    StepsWorkflowError,
    UnexpectedWorkflowError,
)
from steplink.domains.steps.models import (
    STEP_CAPABILITIES,
    CapabilitySet,
    ProviderStatus,
    WorkflowMode,
    WorkflowOutcome,
    WorkflowState,
)
from steplink.domains.steps.workflow.availability import ProviderAvailability
from steplink.domains.steps.workflow.clock import LocalClock
from steplink.domains.steps.workflow.data_client import DataClient
from steplink.domains.steps.workflow.permissions import PermissionDecision, PermissionGate

if TYPE_CHECKING:
    from steplink.core.audit.logger import AuditLogger

logger = logging.getLogger(__name__)

StatusListener = Callable[[str], None]


class WorkflowController:
    """Drives availability → permission → data for query and insert actions.

    Usage::

        controller = WorkflowController(availability, gate, launcher,
                                        provider_package="com.google.android.apps.healthdata",
                                        caller_package="com.example.app")
        controller.add_status_listener(view.set_text)
        outcome = await controller.on_query_requested()
    """

    def __init__(
        self,
        availability: ProviderAvailability,
        gate: PermissionGate,
        launcher: AppLauncher,
        *,
        provider_package: str,
        caller_package: str,
        required: CapabilitySet = STEP_CAPABILITIES,
        clock: LocalClock | None = None,
        audit_logger: AuditLogger | None = None,
        store_intent: StoreIntent | None = None,
        label_template: str = "{count}",
        error_text: str = "",
    ) -> None:
        self._availability = availability
        self._gate = gate
        self._launcher = launcher
        self._provider_package = provider_package
        self._required = required
        self._clock = clock or LocalClock()
        self._audit = audit_logger
        self._store_intent = store_intent or build_store_intent(provider_package, caller_package)
        self._label_template = label_template
        self._error_text = error_text

        self._state = WorkflowState.IDLE
        self._mode = WorkflowMode.QUERY
        self._task: asyncio.Task[WorkflowOutcome] | None = None
        self._transitions: list[WorkflowState] = []
        self._status_text = ""
        self._listeners: list[StatusListener] = []
        self._detached = False
        self.last_outcome: WorkflowOutcome | None = None

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def state(self) -> WorkflowState:
        return self._state

    @property
    def mode(self) -> WorkflowMode:
        return self._mode

    @property
    def status_text(self) -> str:
        return self._status_text

    @property
    def in_flight(self) -> asyncio.Task[WorkflowOutcome] | None:
        if self._task is None or self._task.done():
            return None
        return self._task

    @property
    def required(self) -> CapabilitySet:
        return self._required

    def add_status_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def on_query_requested(self) -> asyncio.Task[WorkflowOutcome] | None:
        """Start (or join) an attempt that reads today's step total."""
        return self._trigger(WorkflowMode.QUERY)

    def on_insert_requested(self) -> asyncio.Task[WorkflowOutcome] | None:
        """Start (or join) an attempt that writes the sample step records."""
        return self._trigger(WorkflowMode.INSERT)

    def detach(self) -> None:
        """The UI target is gone: discard any pending continuation.

        The outstanding grant request and in-flight attempt are cancelled.
        Later renders are silent no-ops.
        """
        self._detached = True
        self._listeners.clear()
        self._gate.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.debug("Workflow controller detached")

    def _trigger(self, mode: WorkflowMode) -> asyncio.Task[WorkflowOutcome] | None:
        if self._detached:
            logger.debug("Ignoring %s trigger after detach", mode.value)
            return None
        running = self.in_flight
        if running is not None:
            # The mode is consumed on entry to EXECUTING; until then the latest tap wins.
            if self._state is not WorkflowState.EXECUTING:
                self._mode = mode
            logger.debug("Attempt already in flight (%s); joining it", self._state.value)
            return running
        self._mode = mode
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    # ------------------------------------------------------------------
    # Attempt
    # ------------------------------------------------------------------

    async def _run(self) -> WorkflowOutcome:
        started = time.monotonic()
        self._transitions = []
        try:
            outcome = await self._attempt()
        except asyncio.CancelledError:
            logger.info("Workflow attempt discarded in state %s", self._state.value)
            self._state = WorkflowState.IDLE
            raise
        except Exception as exc:
            outcome = self._unexpected(self._mode, exc)
        outcome.duration_ms = (time.monotonic() - started) * 1000
        return self._finish(outcome)

    # Outcomes carry the live mode: the latest trigger before EXECUTING wins.
    async def _attempt(self) -> WorkflowOutcome:
        self._enter(WorkflowState.CHECKING_AVAILABILITY)
        try:
            availability = await self._availability.check(self._provider_package)
        except ProviderUnavailable as exc:
            return WorkflowOutcome(state=WorkflowState.FAILED, mode=self._mode, error=exc)

        if availability.status is ProviderStatus.UNAVAILABLE:
            logger.warning("Health-data provider %s is unavailable", self._provider_package)
            return WorkflowOutcome(
                state=WorkflowState.UNAVAILABLE,
                mode=self._mode,
                error=ProviderUnavailable(f"{self._provider_package} is not available"),
            )
        if availability.status is ProviderStatus.UPDATE_REQUIRED:
            logger.warning("Health-data provider %s needs an update", self._provider_package)
            self._launcher.launch(self._store_intent)
            return WorkflowOutcome(
                state=WorkflowState.UPDATE_REQUIRED,
                mode=self._mode,
                error=ProviderOutdated(f"{self._provider_package} must be updated"),
            )

        handle = availability.handle
        if handle is None:
            return WorkflowOutcome(
                state=WorkflowState.FAILED,
                mode=self._mode,
                error=ProviderUnavailable("Provider reported ready without a handle"),
            )

        denial = await self._confirm_permissions(handle)
        if denial is not None:
            return WorkflowOutcome(state=WorkflowState.PERMISSION_DENIED, mode=self._mode, error=denial)

        return await self._execute(handle)

    async def _confirm_permissions(self, handle: ProviderHandle) -> PermissionDenied | None:
        self._enter(WorkflowState.CHECKING_PERMISSION)
        granted = await self._gate.has_all(handle, self._required)
        if granted is None:
            return PermissionDenied("Granted capabilities could not be read")
        if granted:
            return None

        self._enter(WorkflowState.AWAITING_USER_GRANT)
        decision = await self._gate.request(self._required)
        if self._detached:
            # Resuming into a torn-down view is a no-op.
            raise asyncio.CancelledError
        if decision is PermissionDecision.DENIED:
            logger.warning("Step permissions denied; user must trigger the action again")
            return PermissionDenied("Required step permissions were not approved")
        return None

    async def _execute(self, handle: ProviderHandle) -> WorkflowOutcome:
        mode = self._mode
        self._enter(WorkflowState.EXECUTING)
        client = DataClient(handle, self._clock)

        if mode is WorkflowMode.QUERY:
            data = await client.aggregate_today()
        else:
            data = await client.insert_sample_steps()

        if not data.ok:
            return WorkflowOutcome(state=WorkflowState.FAILED, mode=mode, error=data.error)
        if mode is WorkflowMode.QUERY:
            return WorkflowOutcome(state=WorkflowState.SUCCEEDED, mode=mode, result=data.value)
        return WorkflowOutcome(
            state=WorkflowState.SUCCEEDED, mode=mode, records_written=len(data.value)
        )

    def _unexpected(self, mode: WorkflowMode, exc: Exception) -> WorkflowOutcome:
        logger.exception("Unexpected error in state %s", self._state.value)
        return WorkflowOutcome(
            state=WorkflowState.FAILED,
            mode=mode,
            error=UnexpectedWorkflowError(f"{type(exc).__name__} in {self._state.value}: {exc}"),
        )

    # ------------------------------------------------------------------
    # Terminal handling
    # ------------------------------------------------------------------

    def _enter(self, state: WorkflowState) -> None:
        logger.debug("Workflow %s → %s", self._state.value, state.value)
        self._state = state
        self._transitions.append(state)

    def _finish(self, outcome: WorkflowOutcome) -> WorkflowOutcome:
        try:
            text = self._text_for(outcome)
        except Exception as exc:
            duration_ms = outcome.duration_ms
            outcome = self._unexpected(outcome.mode, exc)
            outcome.duration_ms = duration_ms
            text = self._error_text

        try:
            self._enter(outcome.state)
            outcome.transitions = list(self._transitions)
            self.last_outcome = outcome
            if text is not None:
                self._render(text)

            if self._audit is not None:
                self._audit.log_workflow_attempt(
                    mode=outcome.mode.value,
                    outcome=outcome.state.value,
                    error_kind=_error_kind(outcome.error),
                    duration_ms=outcome.duration_ms,
                    metadata={"records_written": outcome.records_written},
                )

            logger.info(
                "Workflow %s finished: %s%s (%.0fms)",
                outcome.mode.value,
                outcome.state.value,
                f" [{outcome.error.kind}]" if outcome.error else "",
                outcome.duration_ms,
            )
        finally:
            self._state = WorkflowState.IDLE
        return outcome

    def _text_for(self, outcome: WorkflowOutcome) -> str | None:
        """Status text for a terminal outcome, or None to leave it unchanged."""
        if outcome.result is not None:
            return self._label_template.format(count=outcome.result.total_steps)
        if isinstance(outcome.error, (DataOperationFailed, UnexpectedWorkflowError)):
            return self._error_text
        return None

    def _render(self, text: str) -> None:
        if self._detached:
            return
        self._status_text = text
        for listener in list(self._listeners):
            try:
                listener(text)
            except Exception:
                logger.exception("Status listener failed")


def _error_kind(error: StepsWorkflowError | None) -> str | None:
    return error.kind if error is not None else None
