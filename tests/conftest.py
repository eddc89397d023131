"""Shared test fixtures for steplink tests."""

from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("PROVIDER_INSTALLED", "true")
    monkeypatch.setenv("PROVIDER_VERSION_CODE", "1")
    monkeypatch.setenv("MIN_PROVIDER_VERSION_CODE", "1")
    monkeypatch.setenv("TIMEZONE", "UTC")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from steplink.core.storage.database import StepsDatabase  # noqa: E402
from steplink.core.storage.encryption import FieldEncryptor  # noqa: E402
from steplink.domains.steps.models import (  # noqa: E402
    STEPS_COUNT_TOTAL,
    Capability,
    ProviderStatus,
    StepRecord,
)
from steplink.domains.steps.workflow.clock import LocalClock  # noqa: E402


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

@pytest.fixture
def database() -> StepsDatabase:
    db = StepsDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def encryptor() -> FieldEncryptor:
    return FieldEncryptor(FieldEncryptor.generate_key())


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------

class FixedClock(LocalClock):
    """LocalClock frozen at a given instant."""

    def __init__(self, now: datetime, zone_name: str = "UTC") -> None:
        super().__init__(zone_name)
        self.fixed = now

    def now(self) -> datetime:
        return self.fixed.astimezone(self._tz)


# ---------------------------------------------------------------------------
# Fake provider collaborators
# ---------------------------------------------------------------------------

class FakeHandle:
    """In-memory ProviderHandle that records every call."""

    def __init__(
        self,
        granted: Iterable[Capability] = (),
        total: int | None = None,
        *,
        granted_error: Exception | None = None,
        aggregate_error: Exception | None = None,
        insert_error: Exception | None = None,
    ) -> None:
        self.granted = frozenset(granted)
        self.total = total
        self.granted_error = granted_error
        self.aggregate_error = aggregate_error
        self.insert_error = insert_error
        self.granted_calls = 0
        self.aggregate_calls: list[tuple[set[str], datetime, datetime]] = []
        self.insert_calls: list[list[StepRecord]] = []

    async def get_granted_capabilities(self) -> frozenset[Capability]:
        self.granted_calls += 1
        if self.granted_error:
            raise self.granted_error
        return self.granted

    async def aggregate(self, metrics, start, end):
        self.aggregate_calls.append((set(metrics), start, end))
        if self.aggregate_error:
            raise self.aggregate_error
        return {STEPS_COUNT_TOTAL: self.total}

    async def insert_records(self, records):
        self.insert_calls.append(list(records))
        if self.insert_error:
            raise self.insert_error
        return [f"rec-{i}" for i in range(len(records))]

    @property
    def data_calls(self) -> int:
        return len(self.aggregate_calls) + len(self.insert_calls)


class FakePlatform:
    """HealthPlatform with a settable status and handle."""

    def __init__(
        self,
        status: ProviderStatus = ProviderStatus.READY,
        handle: FakeHandle | None = None,
        *,
        status_error: Exception | None = None,
        handle_error: Exception | None = None,
    ) -> None:
        self.status = status
        self.handle = handle or FakeHandle()
        self.status_error = status_error
        self.handle_error = handle_error
        self.status_calls: list[str] = []
        self.handle_calls = 0

    def get_status(self, provider_id: str) -> ProviderStatus:
        self.status_calls.append(provider_id)
        if self.status_error:
            raise self.status_error
        return self.status

    def get_or_create_handle(self) -> FakeHandle:
        self.handle_calls += 1
        if self.handle_error:
            raise self.handle_error
        return self.handle


class ManualPrompter:
    """PermissionPrompter whose answer is delivered by the test.

    With ``auto_approve`` set, requests are answered immediately.
    """

    def __init__(self, auto_approve: Iterable[Capability] | None = None) -> None:
        self.auto_approve = None if auto_approve is None else frozenset(auto_approve)
        self.requests: list[frozenset[Capability]] = []
        self._future: asyncio.Future | None = None

    async def request(self, capabilities) -> frozenset[Capability]:
        self.requests.append(frozenset(capabilities))
        if self.auto_approve is not None:
            return self.auto_approve
        self._future = asyncio.get_running_loop().create_future()
        return await self._future

    def respond(self, approved: Iterable[Capability]) -> None:
        assert self._future is not None and not self._future.done()
        self._future.set_result(frozenset(approved))

    def fail(self, exc: Exception) -> None:
        assert self._future is not None and not self._future.done()
        self._future.set_exception(exc)


class RecordingLauncher:
    def __init__(self) -> None:
        self.intents = []

    def launch(self, intent) -> None:
        self.intents.append(intent)


# ---------------------------------------------------------------------------
# Fixtures wiring the fakes
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_handle() -> FakeHandle:
    return FakeHandle()


@pytest.fixture
def fake_platform(fake_handle: FakeHandle) -> FakePlatform:
    return FakePlatform(handle=fake_handle)


@pytest.fixture
def prompter() -> ManualPrompter:
    return ManualPrompter()


@pytest.fixture
def launcher() -> RecordingLauncher:
    return RecordingLauncher()


@pytest.fixture
def fixed_clock() -> FixedClock:
    """15:30 UTC on 2026-03-14."""
    return FixedClock(datetime(2026, 3, 14, 15, 30, 0, tzinfo=timezone.utc))
