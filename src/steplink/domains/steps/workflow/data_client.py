"""Data client: today's step total and the sample-record write path."""

from __future__ import annotations

import logging
from datetime import timedelta

from steplink.domains.steps.connectors import ProviderHandle
from steplink.domains.steps.errors import DataOperationFailed
from steplink.domains.steps.models import (
    STEPS_COUNT_TOTAL,
    AggregateResult,
    DataResult,
    StepRecord,
)
from steplink.domains.steps.workflow.clock import LocalClock

logger = logging.getLogger(__name__)

# Synthetic payload used to exercise the write path: (count, seconds before now
# at which the window starts, seconds before now at which it ends).
SAMPLE_WINDOWS: tuple[tuple[int, int, int], ...] = (
    (2300, 60, 30),
    (1000, 30, 0),
)


class DataClient:
    """Wraps the two provider operations the workflow needs.

    Both operations catch provider failures, log them, and return them as a
    ``DataResult`` carrying ``DataOperationFailed`` instead of raising.
    """

    def __init__(self, handle: ProviderHandle, clock: LocalClock | None = None) -> None:
        self._handle = handle
        self._clock = clock or LocalClock()

    async def aggregate_today(self) -> DataResult:
        """Sum of steps from local midnight until now. No data counts as 0."""
        now = self._clock.now()
        start = self._clock.start_of_day(now)
        try:
            response = await self._handle.aggregate({STEPS_COUNT_TOTAL}, start, now)
        except Exception as exc:
            logger.exception("Step aggregation failed")
            return DataResult(error=DataOperationFailed(f"Aggregation failed: {exc}"))

        total = response.get(STEPS_COUNT_TOTAL) or 0
        logger.info("Today's step count: %d", total)
        return DataResult(value=AggregateResult(total_steps=int(total), window_start=start, window_end=now))

    def build_sample_records(self) -> list[StepRecord]:
        """Two contiguous records covering the 60 seconds ending now."""
        now = self._clock.now()
        records = []
        for count, start_ago, end_ago in SAMPLE_WINDOWS:
            start = now - timedelta(seconds=start_ago)
            end = now - timedelta(seconds=end_ago)
            records.append(StepRecord(
                count=count,
                start_time=start,
                end_time=end,
                start_offset=self._clock.offset_at(start),
                end_offset=self._clock.offset_at(end),
            ))
        return records

    async def insert_sample_steps(self) -> DataResult:
        """Write the sample records in one batch call."""
        try:
            records = self.build_sample_records()
            await self._handle.insert_records(records)
        except Exception as exc:
            logger.exception("Sample step insert failed")
            return DataResult(error=DataOperationFailed(f"Insert failed: {exc}"))
        logger.info("Inserted %d sample step records", len(records))
        return DataResult(value=records)
