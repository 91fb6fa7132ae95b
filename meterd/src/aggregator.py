"""
Aggregation engine -- turns the reading stream into stored series.

For every reading of a known counter:

- **RAW** counters (instantaneous power) are written verbatim to the raw
  store and accumulated into a 5-minute and an hourly window. A window is
  checked on every reading: once at least ``threshold`` seconds have passed
  since it opened, its average is written and the window restarts with the
  current reading. Windows are therefore at least 300 s / 3600 s long and
  overrun by at most one meter reporting interval.
- **CONSUMED / PRODUCED** counters (monotonic registers) are never averaged.
  Their value is snapshotted to the counters store at most once every
  ``total_interval`` seconds.

Each tier is optional; a tier whose store is not configured is skipped.
A failed write is logged and otherwise ignored: the in-memory state moves on
as if the write had succeeded, so a storage outage never stalls ingestion.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from meterd.src.counters import CounterType
from meterd.src.errors import StorageWriteWarning

if TYPE_CHECKING:
    from meterd.src.counters import CounterSpec, WindowState
    from meterd.src.models import ParsedReading
    from meterd.src.storage import SeriesStore

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

FIVEMIN_WINDOW_S: int = 300
"""Minimum length of a 5-minute averaging window in seconds."""

HOURLY_WINDOW_S: int = 3600
"""Minimum length of an hourly averaging window in seconds."""

DEFAULT_TOTAL_INTERVAL_S: int = 300
"""Default seconds between two snapshots of a consumption/production register."""


@dataclass
class SeriesStores:
    """Store handles per series tier; ``None`` disables a tier.

    Attributes:
        raw: Every RAW reading.
        fivemin: 5-minute averages of RAW counters.
        hourly: Hourly averages of RAW counters.
        counters: Snapshots of CONSUMED/PRODUCED registers.
    """

    raw: SeriesStore | None = None
    fivemin: SeriesStore | None = None
    hourly: SeriesStore | None = None
    counters: SeriesStore | None = None

    def all(self) -> list[SeriesStore]:
        """Return the configured stores."""
        return [s for s in (self.raw, self.fivemin, self.hourly, self.counters) if s is not None]


class AggregationEngine:
    """Per-counter state machine feeding the series stores.

    Args:
        counters: Counters to track; readings for other ids are ignored.
        stores: Target store per tier.
        total_interval: Seconds between two snapshots of a
            consumption/production register.
    """

    def __init__(
        self,
        counters: list[CounterSpec],
        stores: SeriesStores,
        *,
        total_interval: int = DEFAULT_TOTAL_INTERVAL_S,
    ) -> None:
        self._counters: dict[str, CounterSpec] = {spec.id: spec for spec in counters}
        self._stores = stores
        self._total_interval = total_interval

    @property
    def counters(self) -> list[CounterSpec]:
        return list(self._counters.values())

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def process(self, reading: ParsedReading, now: int) -> None:
        """Apply one reading received at Unix time *now*."""
        spec = self._counters.get(reading.counter_id)
        if spec is None:
            logger.debug("Ignoring reading for unconfigured counter %s", reading.counter_id)
            return

        spec.state.last_value = reading.value
        spec.state.last_ts = now

        if spec.type is CounterType.RAW:
            await self._process_raw(spec, reading, now)
        else:
            await self._process_cumulative(spec, reading, now)

    async def process_all(self, readings: list[ParsedReading], now: int) -> None:
        """Apply the readings of one telegram, in order."""
        for reading in readings:
            await self.process(reading, now)

    # ------------------------------------------------------------------
    # Counter types
    # ------------------------------------------------------------------

    async def _process_raw(self, spec: CounterSpec, reading: ParsedReading, now: int) -> None:
        if self._stores.raw is not None:
            await self._write(self._stores.raw, spec, now, reading.value, reading.unit)

        if self._stores.fivemin is not None:
            await self._update_window(
                spec.state.fivemin, FIVEMIN_WINDOW_S, self._stores.fivemin, spec, reading, now
            )

        if self._stores.hourly is not None:
            await self._update_window(
                spec.state.hourly, HOURLY_WINDOW_S, self._stores.hourly, spec, reading, now
            )

    async def _update_window(
        self,
        window: WindowState,
        threshold: int,
        store: SeriesStore,
        spec: CounterSpec,
        reading: ParsedReading,
        now: int,
    ) -> None:
        """Flush *window* if it has lasted *threshold* seconds, then accumulate."""
        if window.start is None:
            window.start = now
        elif window.count > 0 and now - window.start >= threshold:
            average = window.sum / window.count
            logger.debug(
                "Flushing %ds window of %s: %d readings, average %s",
                threshold,
                spec.id,
                window.count,
                average,
            )
            await self._write(store, spec, now, average, reading.unit)
            window.reset(now)

        window.sum += reading.value
        window.count += 1

    async def _process_cumulative(
        self, spec: CounterSpec, reading: ParsedReading, now: int
    ) -> None:
        if self._stores.counters is None:
            return

        last = spec.state.last_cumulative_record_ts
        if last is not None and now - last < self._total_interval:
            return

        await self._write(self._stores.counters, spec, now, reading.value, reading.unit)
        spec.state.last_cumulative_record_ts = now

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    async def _write(
        self,
        store: SeriesStore,
        spec: CounterSpec,
        now: int,
        value: Decimal,
        unit: str,
    ) -> None:
        try:
            await store.record(spec.table_name, now, value, unit)
        except StorageWriteWarning as warning:
            logger.warning("Dropping %s value for %s: %s", store.path.name, spec.id, warning)
