"""
Counter definitions -- the quantities meterd tracks and where they are stored.

Each :class:`CounterSpec` names one OBIS-style register reported by the
meter, its type (raw sample, consumed or produced register) and the table
its values are written to. The per-counter aggregation state lives on the
spec itself and is mutated only by the aggregation engine.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from meterd.src.config import DatabaseSettings

# ---------------------------------------------------------------------------
# Counter types and table naming
# ---------------------------------------------------------------------------


class CounterType(IntEnum):
    """Kind of quantity a counter represents.

    The integer values are the codes stored in the ``CONFIGURATION`` table.
    """

    RAW = 0
    CONSUMED = 1
    PRODUCED = 2

    @property
    def table_prefix(self) -> str:
        return _TABLE_PREFIXES[self]


_TABLE_PREFIXES: dict[CounterType, str] = {
    CounterType.RAW: "RAW_",
    CounterType.CONSUMED: "CONSUMED_",
    CounterType.PRODUCED: "PRODUCED_",
}


def table_key(counter_id: str, counter_type: CounterType) -> str:
    """Derive the storage table name for a counter.

    Every ``.`` in the id becomes ``_`` and the type's prefix is prepended,
    so ``("1.8.1", CounterType.CONSUMED)`` maps to ``"CONSUMED_1_8_1"``.
    """
    return counter_type.table_prefix + counter_id.replace(".", "_")


# ---------------------------------------------------------------------------
# Counter specification and its aggregation state
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class WindowState:
    """Accumulator for one averaging window of a RAW counter.

    Attributes:
        sum: Sum of the readings accumulated since ``start``.
        count: Number of readings accumulated since ``start``.
        start: Unix timestamp at which the window opened; ``None`` until
            the first reading arrives.
    """

    sum: Decimal = Decimal(0)
    count: int = 0
    start: int | None = None

    def reset(self, now: int) -> None:
        self.sum = Decimal(0)
        self.count = 0
        self.start = now


@dataclass(slots=True)
class AggregationState:
    """Running state of one counter, owned by the aggregation engine.

    Window state is process-local: a restart starts with empty windows.

    Attributes:
        last_value: Most recent reading.
        last_ts: Unix timestamp of the most recent reading.
        fivemin: 5-minute window (RAW counters only).
        hourly: Hourly window (RAW counters only).
        last_cumulative_record_ts: When a CONSUMED/PRODUCED register was
            last written to the counters store.
    """

    last_value: Decimal | None = None
    last_ts: int | None = None
    fivemin: WindowState = field(default_factory=WindowState)
    hourly: WindowState = field(default_factory=WindowState)
    last_cumulative_record_ts: int | None = None


@dataclass(frozen=True, slots=True)
class CounterSpec:
    """Static definition of one tracked counter.

    Attributes:
        id: OBIS-style identifier as it appears in telegrams (``"1.8.1"``).
        description: Free-text description, stored in ``CONFIGURATION``.
        type: Counter type, see :class:`CounterType`.
        state: Aggregation state; not part of equality.
    """

    id: str
    description: str
    type: CounterType
    state: AggregationState = field(
        default_factory=AggregationState, compare=False, repr=False
    )

    @property
    def table_name(self) -> str:
        return table_key(self.id, self.type)


def build_counter_specs(database: DatabaseSettings) -> list[CounterSpec]:
    """Build the counter list from the ``database`` configuration section.

    RAW counters come from the current consumption/production ids;
    CONSUMED counters from the consumption list followed by the gas counter;
    PRODUCED counters from the production list.
    """
    specs: list[CounterSpec] = []

    if database.current_consumption_id:
        specs.append(
            CounterSpec(database.current_consumption_id, "Current consumption", CounterType.RAW)
        )
    if database.current_production_id:
        specs.append(
            CounterSpec(database.current_production_id, "Current production", CounterType.RAW)
        )

    for counter in database.consumption:
        specs.append(CounterSpec(counter.id, counter.description, CounterType.CONSUMED))
    if database.gascounter is not None:
        specs.append(
            CounterSpec(
                database.gascounter.id,
                database.gascounter.description,
                CounterType.CONSUMED,
            )
        )

    for counter in database.production:
        specs.append(CounterSpec(counter.id, counter.description, CounterType.PRODUCED))

    return specs


def specs_of_type(specs: list[CounterSpec], *types: CounterType) -> list[CounterSpec]:
    """Return the specs whose type is one of *types*, preserving order."""
    return [spec for spec in specs if spec.type in types]
