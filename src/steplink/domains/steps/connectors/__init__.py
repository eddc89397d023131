"""Step-data connectors: the provider-side collaborators the workflow consumes."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Iterable, Protocol, runtime_checkable

from steplink.domains.steps.models import Capability, ProviderStatus, StepRecord

if TYPE_CHECKING:
    from steplink.domains.steps.connectors.launcher import StoreIntent


@runtime_checkable
class ProviderHandle(Protocol):
    """Live client for a ready health-data provider.

    Handles may go stale when the provider changes out-of-process; any call
    can then raise, and callers restart from the availability check.
    """

    async def get_granted_capabilities(self) -> frozenset[Capability]:
        """Capabilities currently granted to the calling app."""
        ...

    async def aggregate(
        self, metrics: set[str], start: datetime, end: datetime
    ) -> dict[str, int | None]:
        """Aggregate ``metrics`` over [start, end]. Absent data maps to None."""
        ...

    async def insert_records(self, records: list[StepRecord]) -> list[str]:
        """Insert records as one batch and return their provider IDs."""
        ...


@runtime_checkable
class HealthPlatform(Protocol):
    """Host environment inspection for the health-data provider."""

    def get_status(self, provider_id: str) -> ProviderStatus:
        """Classify the provider's install/update state. Not cached."""
        ...

    def get_or_create_handle(self) -> ProviderHandle:
        """Return a live handle. May fail independently of the status."""
        ...


@runtime_checkable
class PermissionPrompter(Protocol):
    """Interactive grant UI: shows a request and reports what the user approved."""

    async def request(self, capabilities: Iterable[Capability]) -> frozenset[Capability]:
        ...


@runtime_checkable
class AppLauncher(Protocol):
    """Hands a store intent off to the OS. Nothing is awaited."""

    def launch(self, intent: StoreIntent) -> None:
        ...
