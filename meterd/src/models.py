"""
Pydantic models for values flowing through the ingestion pipeline.

``ParsedReading`` is what the telegram parser produces for each counter it
recognises; ``SeriesPoint`` is one stored point as read back from a series
database.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel

UNIT_M3 = "m3"
"""Unit of the gas register, which the telegram does not state inline."""

Telegram = list[str]
"""One framed telegram: its lines from the ``/`` header up to the ``!`` trailer."""


class ParsedReading(BaseModel):
    """A single counter value extracted from a telegram line.

    Attributes:
        counter_id: OBIS-style identifier, e.g. ``"1.8.1"``.
        value: The reading, exactly as transmitted.
        unit: Unit string from the telegram (``"kWh"``, ``"kW"``, ``"m3"``).
    """

    model_config = {"frozen": True}

    counter_id: str
    value: Decimal
    unit: str


class SeriesPoint(BaseModel):
    """One point of a stored series.

    Attributes:
        timestamp: Unix time in seconds.
        value: Recorded value (negated when queried with ``invert``).
        unit: Unit recorded with the value.
    """

    model_config = {"frozen": True}

    timestamp: int
    value: Decimal
    unit: str
