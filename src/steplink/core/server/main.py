"""steplink server entry point: ``python -m steplink.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from steplink.core.config.settings import get_settings
from steplink.core.server.app import create_app


def _is_loopback_host(host: str) -> bool:
    if host in {"localhost"}:
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def run() -> None:
    """Start the steplink MCP server with Streamable HTTP transport."""
    settings = get_settings()
    logging.basicConfig(level=getattr(logging, settings.steplink_log_level.upper(), logging.INFO))

    logger = logging.getLogger(__name__)
    if not settings.steplink_allow_insecure_bind and not _is_loopback_host(settings.steplink_host):
        raise RuntimeError(
            "Refusing to bind steplink to a non-loopback host without an auth layer. "
            "Set STEPLINK_ALLOW_INSECURE_BIND=true to override (unsafe)."
        )
    logger.info(
        "Starting steplink server on %s:%d",
        settings.steplink_host,
        settings.steplink_port,
    )

    mcp = create_app()
    mcp.run(
        transport="streamable-http",
        host=settings.steplink_host,
        port=settings.steplink_port,
    )


if __name__ == "__main__":
    run()
