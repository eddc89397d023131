"""Local step-data provider backed by the encrypted SQLite store.

Stands in for the platform health-data provider: reports an install/version
status, hands out handles for aggregate/insert calls, and owns the grant UI
through which the user approves or denies capabilities.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Iterable

from steplink.core.storage.database import DatabaseError, StepsDatabase
from steplink.core.storage.encryption import FieldEncryptor
from steplink.domains.steps.models import (
    STEPS_COUNT_TOTAL,
    Capability,
    CapabilitySet,
    ProviderStatus,
    StepRecord,
)

if TYPE_CHECKING:
    from steplink.core.audit.logger import AuditLogger

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _to_epoch_ms(instant: datetime) -> int:
    return int((instant - _EPOCH) // timedelta(milliseconds=1))


def _from_epoch_ms(value: int, offset_s: int) -> datetime:
    tz = timezone(timedelta(seconds=offset_s))
    return (_EPOCH + timedelta(milliseconds=value)).astimezone(tz)


class LocalHealthPlatform:
    """HealthPlatform over a local StepsDatabase.

    Usage::

        platform = LocalHealthPlatform(db, encryptor, caller_package="com.example.app")
        if platform.get_status(PROVIDER) is ProviderStatus.READY:
            handle = platform.get_or_create_handle()
    """

    def __init__(
        self,
        database: StepsDatabase,
        encryptor: FieldEncryptor,
        *,
        provider_package: str,
        caller_package: str,
        installed: bool = True,
        version_code: int = 1,
        min_version_code: int = 1,
    ) -> None:
        self._db = database
        self._enc = encryptor
        self._provider_package = provider_package
        self._caller_package = caller_package
        self.installed = installed
        self.version_code = version_code
        self.min_version_code = min_version_code

    def get_status(self, provider_id: str) -> ProviderStatus:
        """Classify the provider from the current install/version state."""
        if not self.installed or provider_id != self._provider_package:
            return ProviderStatus.UNAVAILABLE
        if self.version_code < self.min_version_code:
            return ProviderStatus.UPDATE_REQUIRED
        return ProviderStatus.READY

    def get_or_create_handle(self) -> LocalProviderHandle:
        """Return a handle bound to the caller package.

        Raises:
            DatabaseError: If the backing store is not open.
        """
        if not self._db.is_open:
            raise DatabaseError("Provider store is not open")
        return LocalProviderHandle(self._db, self._enc, self._caller_package)


class LocalProviderHandle:
    """ProviderHandle reading and writing the local step store."""

    def __init__(
        self, database: StepsDatabase, encryptor: FieldEncryptor, caller_package: str
    ) -> None:
        self._db = database
        self._enc = encryptor
        self._caller = caller_package

    async def get_granted_capabilities(self) -> frozenset[Capability]:
        rows = self._db.connection.execute(
            "SELECT permission FROM granted_permissions WHERE package = ?",
            (self._caller,),
        ).fetchall()
        granted = set()
        for row in rows:
            try:
                granted.add(Capability.parse(row["permission"]))
            except ValueError:
                logger.warning("Ignoring unrecognised stored permission %r", row["permission"])
        return frozenset(granted)

    async def aggregate(
        self, metrics: set[str], start: datetime, end: datetime
    ) -> dict[str, int | None]:
        """Sum step counts of records lying within [start, end].

        Metrics other than the step total are reported as absent.
        """
        result: dict[str, int | None] = {m: None for m in metrics}
        if STEPS_COUNT_TOTAL not in metrics:
            return result

        rows = self._db.connection.execute(
            """SELECT count_enc FROM step_records
               WHERE start_epoch_ms >= ? AND end_epoch_ms <= ?""",
            (_to_epoch_ms(start), _to_epoch_ms(end)),
        ).fetchall()
        if rows:
            result[STEPS_COUNT_TOTAL] = sum(int(self._enc.decrypt(r["count_enc"])) for r in rows)
        return result

    async def insert_records(self, records: list[StepRecord]) -> list[str]:
        """Insert all records in a single transaction."""
        ids = [str(uuid.uuid4()) for _ in records]
        conn = self._db.connection
        with conn:
            conn.executemany(
                """INSERT INTO step_records
                   (id, start_epoch_ms, end_epoch_ms, start_offset_s, end_offset_s,
                    count_enc, data_origin)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                [
                    (
                        rid,
                        _to_epoch_ms(rec.start_time),
                        _to_epoch_ms(rec.end_time),
                        int(rec.start_offset.total_seconds()),
                        int(rec.end_offset.total_seconds()),
                        self._enc.encrypt(rec.count),
                        self._caller,
                    )
                    for rid, rec in zip(ids, records)
                ],
            )
        logger.debug("Inserted %d step records for %s", len(ids), self._caller)
        return ids

    async def read_records(self, start: datetime, end: datetime) -> list[StepRecord]:
        """Return stored records lying within [start, end], oldest first."""
        rows = self._db.connection.execute(
            """SELECT * FROM step_records
               WHERE start_epoch_ms >= ? AND end_epoch_ms <= ?
               ORDER BY start_epoch_ms""",
            (_to_epoch_ms(start), _to_epoch_ms(end)),
        ).fetchall()
        return [
            StepRecord(
                count=int(self._enc.decrypt(r["count_enc"])),
                start_time=_from_epoch_ms(r["start_epoch_ms"], r["start_offset_s"]),
                end_time=_from_epoch_ms(r["end_epoch_ms"], r["end_offset_s"]),
                start_offset=timedelta(seconds=r["start_offset_s"]),
                end_offset=timedelta(seconds=r["end_offset_s"]),
            )
            for r in rows
        ]

    async def revoke_all_permissions(self) -> list[str]:
        """Revoke every capability granted to the caller; return what was revoked."""
        conn = self._db.connection
        rows = conn.execute(
            "SELECT permission FROM granted_permissions WHERE package = ?",
            (self._caller,),
        ).fetchall()
        with conn:
            conn.execute("DELETE FROM granted_permissions WHERE package = ?", (self._caller,))
        return [r["permission"] for r in rows]


class LocalPermissionController:
    """Grant UI broker for the local provider.

    ``request()`` shows a grant request and suspends until ``respond()``
    delivers the user's decision. Approved capabilities (limited to what was
    requested) are persisted for the caller package.
    """

    def __init__(
        self,
        database: StepsDatabase,
        caller_package: str,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._db = database
        self._caller = caller_package
        self._audit = audit_logger
        self._requested: CapabilitySet | None = None
        self._future: asyncio.Future[frozenset[Capability]] | None = None

    @property
    def pending(self) -> CapabilitySet | None:
        """Capabilities shown by the outstanding request, if any."""
        if self._future is None or self._future.done():
            return None
        return self._requested

    async def request(self, capabilities: Iterable[Capability]) -> frozenset[Capability]:
        if self.pending is not None:
            raise RuntimeError("A grant request is already being shown")
        requested = CapabilitySet(frozenset(capabilities))
        loop = asyncio.get_running_loop()
        self._requested = requested
        self._future = loop.create_future()
        logger.info("Grant request shown for %s", ", ".join(requested.permissions()))
        try:
            return await self._future
        finally:
            self._requested = None
            self._future = None

    def respond(self, approved: Iterable[Capability]) -> frozenset[Capability]:
        """Deliver the user's decision for the outstanding request.

        Returns:
            The capabilities that were granted.

        Raises:
            RuntimeError: If no request is outstanding.
            DatabaseError: If the grants could not be stored. The request is
                failed as well, so the waiting workflow is released.
        """
        requested = self.pending
        if requested is None:
            raise RuntimeError("No grant request is outstanding")
        granted = frozenset(approved) & requested.members
        try:
            conn = self._db.connection
            with conn:
                conn.executemany(
                    "INSERT OR REPLACE INTO granted_permissions (package, permission) VALUES (?, ?)",
                    [(self._caller, c.permission) for c in granted],
                )
        except DatabaseError as exc:
            logger.error("Failed to store granted permissions: %s", exc)
            self._future.set_exception(exc)
            raise
        except sqlite3.Error as exc:
            logger.error("Failed to store granted permissions: %s", exc)
            error = DatabaseError(f"Failed to store granted permissions: {exc}")
            self._future.set_exception(error)
            raise error from exc
        if self._audit is not None and granted:
            self._audit.log_permission_change(granted=[c.permission for c in granted])
        logger.info("User approved %d of %d requested capabilities", len(granted), len(requested))
        self._future.set_result(granted)
        return granted

    def cancel(self) -> None:
        """Dismiss the outstanding request without a decision."""
        if self._future is not None and not self._future.done():
            self._future.cancel()
