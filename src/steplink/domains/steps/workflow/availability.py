"""Provider availability: install/update status and handle creation."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from steplink.domains.steps.connectors import HealthPlatform, ProviderHandle
from steplink.domains.steps.errors import ProviderUnavailable
from steplink.domains.steps.models import ProviderStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Availability:
    """Provider status plus a live handle when the status is READY."""

    status: ProviderStatus
    handle: ProviderHandle | None = None


class ProviderAvailability:
    """Classifies the provider and, when ready, creates a handle.

    Status is read fresh on every call: the provider can be installed or
    updated out-of-process between two user actions.
    """

    def __init__(self, platform: HealthPlatform) -> None:
        self._platform = platform

    async def check(self, provider_id: str) -> Availability:
        """Return the provider's status and, on READY, a live handle.

        Raises:
            ProviderUnavailable: If the status probe or handle creation fails.
        """
        try:
            status = self._platform.get_status(provider_id)
        except Exception as exc:
            logger.exception("Provider status check failed for %s", provider_id)
            raise ProviderUnavailable(f"Could not read status of {provider_id}") from exc

        logger.debug("Provider %s status: %s", provider_id, status.value)
        if status is not ProviderStatus.READY:
            return Availability(status=status)

        try:
            handle = self._platform.get_or_create_handle()
        except Exception as exc:
            logger.exception("Provider %s is ready but no handle could be created", provider_id)
            raise ProviderUnavailable(f"Could not create a handle for {provider_id}") from exc
        return Availability(status=status, handle=handle)
