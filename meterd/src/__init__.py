"""
meterd: smart meter telemetry collector.

Reads DSMR P1 telegrams from a serial-connected utility meter, parses the
counter readings, aggregates them into raw, 5-minute, hourly and cumulative
series and stores those in SQLite databases.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

__version__ = "0.1.0"
