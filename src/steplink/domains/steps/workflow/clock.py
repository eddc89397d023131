"""Local-zone clock used for aggregation windows and record offsets."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo


class LocalClock:
    """Reads "now" and applies local zone rules.

    With no zone name the host's system zone is used. Offsets are always
    resolved at the exact instant asked for, so two instants a few seconds
    apart can carry different offsets across a daylight-saving change.
    """

    def __init__(self, zone_name: str = "") -> None:
        self._tz = ZoneInfo(zone_name) if zone_name else None

    def now(self) -> datetime:
        """Current instant, expressed in the local zone."""
        return datetime.now(timezone.utc).astimezone(self._tz)

    def start_of_day(self, moment: datetime) -> datetime:
        """Local midnight of the day containing ``moment`` (not UTC midnight)."""
        local = moment.astimezone(self._tz)
        if self._tz is not None:
            return local.replace(hour=0, minute=0, second=0, microsecond=0)
        # Naive local wall time re-resolved against the system zone rules.
        naive = local.replace(tzinfo=None, hour=0, minute=0, second=0, microsecond=0)
        return naive.astimezone()

    def offset_at(self, instant: datetime) -> timedelta:
        offset = instant.astimezone(self._tz).utcoffset()
        return offset if offset is not None else timedelta(0)
