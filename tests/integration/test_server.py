"""Integration tests for the steplink MCP server."""

from __future__ import annotations

import asyncio
import json

import pytest
from fastmcp import Client

from steplink.core.server.app import create_app
from steplink.core.storage.database import StepsDatabase


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _payload(result) -> dict:
    return json.loads(result.content[0].text)


READ = "android.permission.health.READ_STEPS"
WRITE = "android.permission.health.WRITE_STEPS"

ALL_EXPECTED_TOOLS = [
    "health_check",
    "request_today_steps",
    "request_sample_steps_insert",
    "workflow_status",
    "pending_permission_request",
    "respond_permission_request",
    "revoke_step_permissions",
    "audit_summary",
]


@pytest.fixture
def client(fixed_clock):
    return Client(create_app(clock_override=fixed_clock))


def test_server_starts_and_lists_tools(client):
    """Server should start and expose all registered tools."""
    async def _check():
        async with client:
            tools = await client.list_tools()
            tool_names = [t.name for t in tools]
            for expected in ALL_EXPECTED_TOOLS:
                assert expected in tool_names, f"Missing tool: {expected}"
    _run(_check())


def test_health_check_reports_provider(client):
    async def _check():
        async with client:
            result = await client.call_tool("health_check", {})
            text = str(result)
            assert "ok" in text
            assert "ready" in text
            assert "com.google.android.apps.healthdata" in text
    _run(_check())


def test_query_pauses_for_grant_then_renders_zero(client):
    async def _check():
        async with client:
            first = _payload(await client.call_tool("request_today_steps", {}))
            assert first["state"] == "awaiting_user_grant"
            assert first["pending_permissions"] == [READ, WRITE]

            pending = _payload(await client.call_tool("pending_permission_request", {}))
            assert pending["pending"] is True

            answer = _payload(await client.call_tool(
                "respond_permission_request", {"approved": [READ, WRITE]}
            ))
            assert answer["granted"] == [READ, WRITE]
            assert answer["state"] == "idle"
            assert answer["last_outcome"]["state"] == "succeeded"
            assert answer["status_text"] == "0"
    _run(_check())


def test_insert_then_query_shows_sample_total(client):
    async def _check():
        async with client:
            await client.call_tool("request_sample_steps_insert", {})
            inserted = _payload(await client.call_tool(
                "respond_permission_request", {"approved": [READ, WRITE]}
            ))
            assert inserted["last_outcome"]["records_written"] == 2
            assert inserted["status_text"] == ""

            queried = _payload(await client.call_tool("request_today_steps", {}))
            assert queried["last_outcome"]["state"] == "succeeded"
            assert queried["status_text"] == "3300"
    _run(_check())


def test_denial_then_revoke(client):
    async def _check():
        async with client:
            await client.call_tool("request_today_steps", {})
            denied = _payload(await client.call_tool(
                "respond_permission_request", {"approved": [READ]}
            ))
            assert denied["last_outcome"]["state"] == "permission_denied"
            assert denied["status_text"] == ""

            revoked = _payload(await client.call_tool("revoke_step_permissions", {}))
            assert revoked["revoked"] == [READ]

            audit = json.loads((await client.call_tool("audit_summary", {})).content[0].text)
            actions = {e["action"] for e in audit["recent_events"]}
            assert {"workflow_attempt", "permission_grant", "permission_revoke"} <= actions
    _run(_check())


def test_respond_without_pending_is_an_error(client):
    async def _check():
        async with client:
            result = _payload(await client.call_tool(
                "respond_permission_request", {"approved": [READ]}
            ))
            assert result["status"] == "error"

            bad = _payload(await client.call_tool(
                "respond_permission_request", {"approved": ["not-a-permission"]}
            ))
            assert bad["status"] == "error"
    _run(_check())


def test_outdated_provider_surfaces_store_intent(monkeypatch, fixed_clock):
    monkeypatch.setenv("MIN_PROVIDER_VERSION_CODE", "2")
    client = Client(create_app(clock_override=fixed_clock))

    async def _check():
        async with client:
            result = _payload(await client.call_tool("request_today_steps", {}))
            assert result["last_outcome"]["state"] == "update_required"
            assert result["remediation"]["package"] == "com.android.vending"
            assert "healthdata" in result["remediation"]["uri"]
    _run(_check())


def test_failed_grant_write_is_reported_and_releases_workflow(fixed_clock):
    database = StepsDatabase(":memory:")
    client = Client(create_app(database_override=database, clock_override=fixed_clock))

    async def _check():
        async with client:
            await client.call_tool("request_today_steps", {})
            database.close()
            result = _payload(await client.call_tool(
                "respond_permission_request", {"approved": [READ, WRITE]}
            ))
            assert result["status"] == "error"
            assert result["state"] == "idle"
            assert result["pending_permissions"] == []
            assert result["last_outcome"]["state"] == "permission_denied"
    _run(_check())
