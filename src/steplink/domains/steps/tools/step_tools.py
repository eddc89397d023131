"""MCP tools that stand in for the step-count screen.

The two trigger tools play the role of the query/insert buttons and the
status tool plays the role of the result text view. When the workflow is
waiting on the user, ``respond_permission_request`` is the grant dialog.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, Callable

from fastmcp import Context, FastMCP

from steplink.core.storage.database import DatabaseError
from steplink.domains.steps.models import Capability, WorkflowState

if TYPE_CHECKING:
    from steplink.core.audit.logger import AuditLogger
    from steplink.domains.steps.connectors.launcher import IntentOutbox
    from steplink.domains.steps.connectors.local_provider import (
        LocalHealthPlatform,
        LocalPermissionController,
    )
    from steplink.domains.steps.workflow.controller import WorkflowController

logger = logging.getLogger(__name__)

_POLL_INTERVAL_S = 0.05


def workflow_snapshot(
    controller: WorkflowController,
    permissions: LocalPermissionController,
    outbox: IntentOutbox,
) -> dict[str, Any]:
    """Current state of the step screen as a JSON-ready dict."""
    pending = permissions.pending
    outcome = controller.last_outcome
    remediation = None
    if outcome is not None and outcome.state is WorkflowState.UPDATE_REQUIRED and outbox.last_intent:
        remediation = outbox.last_intent.to_dict()
    return {
        "status": "ok",
        "state": controller.state.value,
        "mode": controller.mode.value,
        "status_text": controller.status_text,
        "pending_permissions": pending.permissions() if pending else [],
        "last_outcome": outcome.to_dict() if outcome else None,
        "remediation": remediation,
    }


async def _wait_for_progress(
    task: asyncio.Task | None,
    wait_seconds: float,
    *,
    until: Callable[[], bool] | None = None,
) -> None:
    """Wait until the attempt finishes, ``until()`` holds, or time runs out."""
    if task is None or wait_seconds <= 0:
        return
    loop = asyncio.get_running_loop()
    deadline = loop.time() + wait_seconds
    while not task.done() and loop.time() < deadline:
        if until is not None and until():
            return
        await asyncio.wait({task}, timeout=_POLL_INTERVAL_S)


def register_step_tools(
    mcp: FastMCP,
    controller: WorkflowController,
    platform: LocalHealthPlatform,
    permissions: LocalPermissionController,
    outbox: IntentOutbox,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register the step-count workflow tools on the MCP server."""

    def _grant_shown() -> bool:
        return permissions.pending is not None

    @mcp.tool
    async def request_today_steps(ctx: Context, wait_seconds: float = 5.0) -> str:
        """Read today's total step count (local midnight until now).

        If step permissions are missing, the workflow pauses and the
        response lists ``pending_permissions``; answer with
        ``respond_permission_request`` and then check ``workflow_status``.

        Args:
            wait_seconds: How long to wait for the attempt before returning.
        """
        task = controller.on_query_requested()
        await _wait_for_progress(task, wait_seconds, until=_grant_shown)
        return json.dumps(workflow_snapshot(controller, permissions, outbox))

    @mcp.tool
    async def request_sample_steps_insert(ctx: Context, wait_seconds: float = 5.0) -> str:
        """Write two sample step records covering the last 60 seconds.

        Exercises the write path with synthetic counts (2300 then 1000).

        Args:
            wait_seconds: How long to wait for the attempt before returning.
        """
        task = controller.on_insert_requested()
        await _wait_for_progress(task, wait_seconds, until=_grant_shown)
        return json.dumps(workflow_snapshot(controller, permissions, outbox))

    @mcp.tool
    async def workflow_status(ctx: Context) -> str:
        """Current workflow state, displayed result, and last outcome."""
        return json.dumps(workflow_snapshot(controller, permissions, outbox))

    @mcp.tool
    async def pending_permission_request(ctx: Context) -> str:
        """Permissions the workflow is currently waiting for the user to approve."""
        pending = permissions.pending
        return json.dumps({
            "status": "ok",
            "pending": pending is not None,
            "permissions": pending.permissions() if pending else [],
        })

    @mcp.tool
    async def respond_permission_request(
        ctx: Context, approved: list[str], wait_seconds: float = 5.0
    ) -> str:
        """Answer the outstanding grant request.

        Args:
            approved: Permission strings the user approves, e.g.
                'android.permission.health.READ_STEPS'. An empty list denies.
            wait_seconds: How long to wait for the resumed attempt.
        """
        try:
            capabilities = [Capability.parse(p) for p in approved]
        except ValueError as exc:
            return json.dumps({"status": "error", "message": str(exc)})

        if permissions.pending is None:
            return json.dumps({"status": "error", "message": "No permission request is pending"})

        try:
            granted = permissions.respond(capabilities)
        except DatabaseError as exc:
            await _wait_for_progress(controller.in_flight, wait_seconds)
            snapshot = workflow_snapshot(controller, permissions, outbox)
            snapshot.update(status="error", message=str(exc))
            return json.dumps(snapshot)
        await _wait_for_progress(controller.in_flight, wait_seconds)
        snapshot = workflow_snapshot(controller, permissions, outbox)
        snapshot["granted"] = sorted(c.permission for c in granted)
        return json.dumps(snapshot)

    @mcp.tool
    async def revoke_step_permissions(ctx: Context) -> str:
        """Revoke every step permission previously granted to this app."""
        handle = platform.get_or_create_handle()
        revoked = await handle.revoke_all_permissions()
        if audit_logger is not None and revoked:
            audit_logger.log_permission_change(revoked=revoked)
        logger.info("Revoked %d step permissions", len(revoked))
        return json.dumps({"status": "ok", "revoked": sorted(revoked)})
