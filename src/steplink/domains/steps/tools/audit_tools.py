"""MCP tools for viewing the audit trail.

The trail records which workflow attempts ran, how they ended, and which
permissions changed. Step counts are never stored in it.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

if TYPE_CHECKING:
    from steplink.core.audit.logger import AuditLogger

logger = logging.getLogger(__name__)


def register_audit_tools(
    mcp: FastMCP,
    audit_logger: AuditLogger,
) -> None:
    """Register audit trail tools on the MCP server."""

    @mcp.tool
    async def audit_summary(
        ctx: Context,
        days: int = 30,
    ) -> str:
        """View recent workflow attempts and permission changes.

        Args:
            days: Number of days to look back (default: 30).
        """
        since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()

        total_events = audit_logger.count_events(since=since)
        failure_count = audit_logger.count_failures(since=since)
        recent_events = audit_logger.get_events(since=since, limit=20)

        display_events = []
        for event in recent_events:
            display_events.append({
                "timestamp": event.get("timestamp"),
                "action": event.get("action"),
                "mode": event.get("mode"),
                "outcome": event.get("outcome"),
                "error_kind": event.get("error_kind"),
                "status": event.get("status"),
                "duration_ms": event.get("duration_ms"),
            })

        return json.dumps({
            "status": "ok",
            "period_days": days,
            "total_events": total_events,
            "failures": failure_count,
            "recent_events": display_events,
        }, indent=2)
