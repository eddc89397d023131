"""steplink MCP server: application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP

from steplink.core.audit.logger import AuditLogger
from steplink.core.config.settings import get_settings
from steplink.core.storage.database import StepsDatabase
from steplink.core.storage.encryption import EncryptionError, FieldEncryptor
from steplink.domains.steps.connectors.launcher import IntentOutbox, build_store_intent
from steplink.domains.steps.connectors.local_provider import (
    LocalHealthPlatform,
    LocalPermissionController,
)
from steplink.domains.steps.tools.audit_tools import register_audit_tools
from steplink.domains.steps.tools.step_tools import register_step_tools
from steplink.domains.steps.workflow.availability import ProviderAvailability
from steplink.domains.steps.workflow.clock import LocalClock
from steplink.domains.steps.workflow.controller import WorkflowController
from steplink.domains.steps.workflow.permissions import PermissionGate

logger = logging.getLogger(__name__)


def create_app(
    *,
    database_override: StepsDatabase | None = None,
    platform_override: LocalHealthPlatform | None = None,
    clock_override: LocalClock | None = None,
) -> FastMCP:
    """Create and configure the steplink MCP server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Opens the local provider store (encrypted SQLite)
    3. Builds the provider platform, grant UI broker and store launcher
    4. Wires the workflow controller
    5. Registers all tools
    """
    settings = get_settings()

    server = FastMCP(
        "steplink",
        instructions=(
            "Reads and writes daily step counts through a health-data provider. "
            "Call request_today_steps or request_sample_steps_insert; when "
            "pending_permissions is non-empty, answer with respond_permission_request."
        ),
    )

    # --- Initialize storage (local provider store) ---
    if settings.encryption_key:
        encryption_key = settings.encryption_key
        db_path = settings.db_path
    else:
        logger.warning(
            "No ENCRYPTION_KEY configured; using an in-memory store with an "
            "ephemeral key. Step records will not survive a restart."
        )
        encryption_key = FieldEncryptor.generate_key()
        db_path = ":memory:"

    try:
        encryptor = FieldEncryptor(encryption_key)
    except EncryptionError as exc:
        logger.error("Invalid ENCRYPTION_KEY: %s", exc)
        raise

    database = database_override or StepsDatabase(db_path)
    database.initialize()
    logger.info("Step store ready (schema v%d)", database.get_schema_version())
    audit_logger = AuditLogger(database)

    # --- Provider collaborators ---
    if platform_override is not None:
        platform = platform_override
    else:
        platform = LocalHealthPlatform(
            database,
            encryptor,
            provider_package=settings.provider_package,
            caller_package=settings.caller_package,
            installed=settings.provider_installed,
            version_code=settings.provider_version_code,
            min_version_code=settings.min_provider_version_code,
        )
    permissions = LocalPermissionController(database, settings.caller_package, audit_logger)
    outbox = IntentOutbox()

    # --- Workflow ---
    controller = WorkflowController(
        ProviderAvailability(platform),
        PermissionGate(permissions),
        outbox,
        provider_package=settings.provider_package,
        caller_package=settings.caller_package,
        clock=clock_override or LocalClock(settings.timezone),
        audit_logger=audit_logger,
        store_intent=build_store_intent(
            settings.provider_package,
            settings.caller_package,
            store_package=settings.store_package,
            onboarding_url=settings.onboarding_url,
        ),
        label_template=settings.steps_label_template,
        error_text=settings.steps_error_text,
    )

    # --- Register tools ---
    @server.tool
    def health_check() -> dict:
        """Check server health and report provider status."""
        return {
            "status": "ok",
            "server": "steplink",
            "version": "0.1.0",
            "provider_package": settings.provider_package,
            "provider_status": platform.get_status(settings.provider_package).value,
            "workflow_state": controller.state.value,
            "persistent_storage": db_path != ":memory:",
        }

    register_step_tools(server, controller, platform, permissions, outbox, audit_logger)
    register_audit_tools(server, audit_logger)
    logger.info("Step workflow tools registered")

    return server


# Module-level instance for FastMCP discovery.
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
