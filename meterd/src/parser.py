"""
P1 telegram parser -- turns telegram lines into counter readings.

Every line of interest has the form ``D-D:ID(payload)``, for example
``1-0:1.8.1(00123.456*kWh)``. The payload of a counter line is
``value*unit``. Lines that do not match (header, checksum, equipment ids,
tariff indicators, ...) are ignored.

The gas register is the one exception: in DSMR 2.2/3 telegrams its line
carries the capture timestamp and the value follows on the *next* line, on
its own, in parentheses::

    0-1:24.3.0(121030140000)(00)(60)(1)(0-1:24.2.1)(m3)
    (00347.046)

When the configured gas id is seen, the payload is ignored and the next line
is read as the gas value, in cubic meters.

A malformed line is skipped with a warning; it never invalidates the rest
of the telegram.

CHANGELOG:
- 2026-10-19: Initial creation
- 2026-10-20: Values without a leading number read as zero

TODO:
- None
"""

from __future__ import annotations

import logging
import re
from decimal import Decimal

from meterd.src.errors import ParseWarning
from meterd.src.models import UNIT_M3, ParsedReading, Telegram

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Grammar
# ---------------------------------------------------------------------------

_COUNTER_LINE_RE = re.compile(r"[0-9]-[0-9]:([0-9]+\.[0-9]+\.[0-9]+)[(](.*)[)]")
"""``D-D:ID(payload)``; group 1 is the id, group 2 the (greedy) payload."""

_GAS_VALUE_RE = re.compile(r"[(](.*)[)]")
"""The parenthesised gas value on the line after the gas id."""

_COUNTER_VALUE_RE = re.compile(r"([0-9.]*)[*]([A-Za-z0-9]*)")
"""``value*unit`` inside a counter payload."""

_DECIMAL_PREFIX_RE = re.compile(r"[-+]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)")

MAX_FIELD_LENGTH: int = 256
"""Captured values or units this long (or longer) are rejected as malformed."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_decimal(text: str) -> Decimal:
    """Convert the leading decimal number in *text*.

    Mirrors how meters' values are read: ``"00123.456"`` gives
    ``Decimal("123.456")``, ``"1.2.3"`` gives ``Decimal("1.2")``. A value
    without a leading number (``""``, ``"."``) reads as zero.
    """
    match = _DECIMAL_PREFIX_RE.match(text.lstrip())
    if match is None:
        return Decimal(0)
    return Decimal(match.group(0))


def _check_length(what: str, text: str) -> None:
    if len(text) >= MAX_FIELD_LENGTH:
        raise ParseWarning(f"invalid {what} of length {len(text)}")


def _parse_gas_line(line: str, gas_id: str) -> ParsedReading | None:
    match = _GAS_VALUE_RE.search(line)
    if match is None:
        logger.debug("Expected gas value, got %r", line)
        return None

    value = match.group(1)
    _check_length("gas counter data", value)
    return ParsedReading(counter_id=gas_id, value=_to_decimal(value), unit=UNIT_M3)


def _parse_counter_payload(counter_id: str, payload: str) -> ParsedReading | None:
    match = _COUNTER_VALUE_RE.search(payload)
    if match is None:
        return None

    value, unit = match.group(1), match.group(2)
    _check_length("counter value", value)
    _check_length("unit", unit)
    return ParsedReading(counter_id=counter_id, value=_to_decimal(value), unit=unit)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_telegram(telegram: Telegram, gas_id: str | None = None) -> list[ParsedReading]:
    """Extract every counter reading from a telegram.

    Args:
        telegram: Telegram lines as delivered by the transport.
        gas_id: Id of the gas register (e.g. ``"24.3.0"``), whose value is
            on the following line. ``None`` when no gas meter is configured.

    Returns:
        Readings in the order their lines appear in the telegram.
    """
    readings: list[ParsedReading] = []
    next_is_gas = False

    for line in telegram:
        try:
            if next_is_gas:
                next_is_gas = False
                reading = _parse_gas_line(line, gas_id)  # type: ignore[arg-type]
            else:
                match = _COUNTER_LINE_RE.search(line)
                if match is None:
                    continue

                counter_id, payload = match.group(1), match.group(2)
                if gas_id is not None and counter_id == gas_id:
                    # Value follows on the next line.
                    next_is_gas = True
                    continue

                reading = _parse_counter_payload(counter_id, payload)
        except ParseWarning as warning:
            logger.warning("Skipping malformed telegram line %.64r: %s", line, warning)
            continue

        if reading is not None:
            readings.append(reading)

    return readings
