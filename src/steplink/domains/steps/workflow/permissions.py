"""Permission gate: compare granted capabilities and request missing ones."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum

from steplink.domains.steps.connectors import PermissionPrompter, ProviderHandle
from steplink.domains.steps.models import Capability, CapabilitySet

logger = logging.getLogger(__name__)


class PermissionDecision(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"


class PermissionGate:
    """Ensures a CapabilitySet is granted, prompting the user at most once at a time.

    The grant request always asks for the full required set, not only the
    missing subset. While a request is outstanding, further requests for the
    same set wait on it instead of prompting again.
    """

    def __init__(self, prompter: PermissionPrompter) -> None:
        self._prompter = prompter
        self._pending: asyncio.Task[frozenset[Capability]] | None = None
        self._pending_set: CapabilitySet | None = None

    @property
    def pending(self) -> CapabilitySet | None:
        if self._pending is None or self._pending.done():
            return None
        return self._pending_set

    async def has_all(self, handle: ProviderHandle, required: CapabilitySet) -> bool | None:
        """True if already granted, False if not, None if the handle failed.

        A failure usually means the handle went stale; callers treat it as
        a denial and restart from the availability check on the next action.
        """
        try:
            granted = await handle.get_granted_capabilities()
        except Exception:
            logger.exception("Could not read granted capabilities")
            return None
        missing = required.missing(granted)
        if missing:
            logger.debug("Missing capabilities: %s", ", ".join(str(c) for c in missing))
            return False
        return True

    async def request(self, required: CapabilitySet) -> PermissionDecision:
        """Prompt for ``required`` and decide from what the user approved.

        Raises:
            RuntimeError: If a request for a different set is outstanding.
        """
        pending = self.pending
        if pending is not None and pending != required:
            raise RuntimeError("Another grant request is outstanding")
        if pending is None:
            self._pending_set = required
            self._pending = asyncio.get_running_loop().create_task(self._prompter.request(required))
        task = self._pending

        try:
            approved = await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                logger.info("Grant request was dismissed")
                return PermissionDecision.DENIED
            raise
        except Exception:
            logger.exception("Grant request failed")
            return PermissionDecision.DENIED

        if required.satisfied_by(approved):
            return PermissionDecision.GRANTED
        logger.warning(
            "User did not approve: %s",
            ", ".join(str(c) for c in required.missing(approved)),
        )
        return PermissionDecision.DENIED

    async def ensure_granted(
        self, handle: ProviderHandle, required: CapabilitySet
    ) -> PermissionDecision:
        """Return GRANTED without prompting if possible, else ask the user."""
        already = await self.has_all(handle, required)
        if already is None:
            return PermissionDecision.DENIED
        if already:
            return PermissionDecision.GRANTED
        return await self.request(required)

    def cancel(self) -> None:
        """Discard the outstanding request, if any."""
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None
        self._pending_set = None
