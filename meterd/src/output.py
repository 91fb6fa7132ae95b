"""
meterd-output -- export stored series as CSV or gnuplot data.

Reads the selected counters from one series database, starting ``-i``
seconds before now, and writes one row per point::

    meterd-output -C -d /var/lib/meterd/raw.db -i 3600 -s 1.7.0 -S 2.7.0

Rows are emitted for as long as every selected series still has a point.
Each row uses the timestamp of the first selected series; all series in a
database are written with the same timestamp for a given telegram, so rows
line up. With ``-a`` the selected values are summed into one column.

With ``-r`` the tool also writes gnuplot ``set xrange`` (``-x``) and/or
``set yrange`` (``-y <offset>``) statements covering the exported data.

The output file is only written once all data has been read, so a failed
export never leaves a truncated file behind.

CHANGELOG:
- 2026-10-19: Initial creation
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import TYPE_CHECKING

from meterd.src import __version__
from meterd.src.config import DEFAULT_CONFIG_PATH, load_settings
from meterd.src.errors import MeterdError
from meterd.src.main import configure_logging
from meterd.src.storage import SeriesStore

if TYPE_CHECKING:
    from meterd.src.models import SeriesPoint

logger = logging.getLogger(__name__)

FORMAT_CSV = "csv"
FORMAT_GNUPLOT = "gnuplot"

Row = tuple[int, list[Decimal]]


@dataclass(frozen=True)
class SelectedCounter:
    """A counter picked with ``-s`` (or ``-S`` when *invert* is set)."""

    id: str
    invert: bool = False


@dataclass
class Extent:
    """Minimum and maximum timestamp and value of the exported rows."""

    min_x: int | None = None
    max_x: int | None = None
    min_y: Decimal | None = None
    max_y: Decimal | None = None

    def update(self, row: Row) -> None:
        ts, values = row
        self.min_x = ts if self.min_x is None else min(self.min_x, ts)
        self.max_x = ts if self.max_x is None else max(self.max_x, ts)
        for value in values:
            self.min_y = value if self.min_y is None else min(self.min_y, value)
            self.max_y = value if self.max_y is None else max(self.max_y, value)


# ---------------------------------------------------------------------------
# Row building and formatting
# ---------------------------------------------------------------------------


def build_rows(series: list[list[SeriesPoint]], *, additive: bool = False) -> list[Row]:
    """Merge per-counter series into rows, stopping at the shortest series."""
    rows: list[Row] = []
    for points in zip(*series):
        values = [point.value for point in points]
        if additive:
            values = [sum(values, Decimal(0))]
        rows.append((points[0].timestamp, values))
    return rows


def format_csv(counter_ids: list[str], rows: list[Row], *, additive: bool = False) -> list[str]:
    if additive:
        header = "timestamp," + "+".join(counter_ids)
    else:
        header = ",".join(["timestamp", *counter_ids])

    lines = [header]
    for ts, values in rows:
        lines.append(",".join([str(ts), *(f"{value:.3f}" for value in values)]))
    return lines


def format_gnuplot(rows: list[Row]) -> list[str]:
    return [
        f"{ts:10d}" + "".join(f"  {value:3.3f}" for value in values) for ts, values in rows
    ]


def format_ranges(extent: Extent, *, x_range: bool, y_offset: Decimal | None) -> list[str]:
    """Return gnuplot range statements for *extent*; empty if there is no data."""
    if extent.min_x is None:
        return []

    lines: list[str] = []
    if x_range:
        lines.append(f'set xrange ["{extent.min_x}":"{extent.max_x}"]')
    if y_offset is not None:
        lines.append(
            f"set yrange [{extent.min_y - y_offset:3.3f}:{extent.max_y + y_offset:3.3f}]"
        )
    return lines


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


async def read_series(
    database: str | Path,
    counters: list[SelectedCounter],
    since: int,
    *,
    skip: int = 0,
) -> list[list[SeriesPoint]]:
    """Read every selected counter from *database*, oldest point first.

    Raises:
        StorageError: If the database cannot be opened or a counter is
            not in it.
    """
    async with SeriesStore(database, read_only=True) as store:
        return [
            await store.query(counter.id, since, invert=counter.invert, skip=skip)
            for counter in counters
        ]


async def export(
    *,
    database: str | Path,
    counters: list[SelectedCounter],
    interval: int,
    output_format: str,
    additive: bool = False,
    skip: int = 0,
    outfile: str | Path | None = None,
    range_file: str | Path | None = None,
    x_range: bool = False,
    y_offset: Decimal | None = None,
    now: int | None = None,
) -> int:
    """Write the selected series in *output_format*.

    Args:
        database: Series database to read from.
        counters: Counters to export, in column order.
        interval: How many seconds before *now* to start.
        output_format: :data:`FORMAT_CSV` or :data:`FORMAT_GNUPLOT`.
        additive: Sum the counters into a single column.
        skip: Minimum seconds between two exported points of a series.
        outfile: Output path; stdout when None.
        range_file: Where to write gnuplot range statements.
        x_range: Write an xrange statement.
        y_offset: Write a yrange statement widened by this offset.
        now: Current Unix time; taken from the clock when None.

    Returns:
        Number of rows written.
    """
    if now is None:
        now = int(time.time())

    series = await read_series(database, counters, now - interval, skip=skip)
    rows = build_rows(series, additive=additive)

    if output_format == FORMAT_CSV:
        lines = format_csv([c.id for c in counters], rows, additive=additive)
    else:
        lines = format_gnuplot(rows)
    text = "".join(line + "\n" for line in lines)

    if outfile is None:
        sys.stdout.write(text)
    else:
        Path(outfile).write_text(text)

    if range_file is not None:
        extent = Extent()
        for row in rows:
            extent.update(row)
        ranges = format_ranges(extent, x_range=x_range, y_offset=y_offset)
        if not ranges:
            logger.warning("No data in the selected interval, range file %s is empty", range_file)
        Path(range_file).write_text("".join(line + "\n" for line in ranges))

    logger.info("Exported %d rows of %d counter(s) from %s", len(rows), len(counters), database)
    return len(rows)


# ---------------------------------------------------------------------------
# Command line
# ---------------------------------------------------------------------------


class _SelectAction(argparse.Action):
    """Append a SelectedCounter; ``-S`` selects with inversion."""

    def __call__(self, parser, namespace, values, option_string=None):  # type: ignore[no-untyped-def]
        selected = list(getattr(namespace, self.dest) or [])
        selected.append(SelectedCounter(id=values, invert=option_string == "-S"))
        setattr(namespace, self.dest, selected)


def _offset(text: str) -> Decimal:
    try:
        return Decimal(text)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"invalid offset {text!r}") from exc


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="meterd-output",
        description="Smart Meter Monitoring Daemon data series output tool",
    )
    parser.add_argument(
        "-c",
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help="configuration file (default: %(default)s)",
    )
    parser.add_argument("-q", "--quiet", action="store_true", help="only log errors")
    parser.add_argument(
        "-a",
        "--additive",
        action="store_true",
        help="add the selected counters and merge them into a single column",
    )
    fmt = parser.add_mutually_exclusive_group(required=True)
    fmt.add_argument(
        "-p",
        dest="output_format",
        action="store_const",
        const=FORMAT_GNUPLOT,
        help="output in gnuplot compatible format",
    )
    fmt.add_argument(
        "-C",
        dest="output_format",
        action="store_const",
        const=FORMAT_CSV,
        help="output as CSV",
    )
    parser.add_argument(
        "-s",
        dest="counters",
        metavar="ID",
        action=_SelectAction,
        help="select counter ID (may be repeated)",
    )
    parser.add_argument(
        "-S",
        dest="counters",
        metavar="ID",
        action=_SelectAction,
        help="select counter ID and negate its values (may be repeated)",
    )
    parser.add_argument("-d", dest="database", required=True, help="database to read from")
    parser.add_argument("-o", dest="outfile", help="output file (default: stdout)")
    parser.add_argument(
        "-i",
        dest="interval",
        type=int,
        required=True,
        help="seconds before now to output data for",
    )
    parser.add_argument(
        "-j",
        dest="skip",
        type=int,
        default=0,
        help="skip this many seconds between exported points",
    )
    parser.add_argument(
        "-x",
        dest="x_range",
        action="store_true",
        help="write a gnuplot xrange statement (requires -r)",
    )
    parser.add_argument(
        "-y",
        dest="y_offset",
        type=_offset,
        metavar="OFFSET",
        help="write a gnuplot yrange statement widened by OFFSET (requires -r)",
    )
    parser.add_argument("-r", dest="range_file", help="file to write gnuplot range statements to")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Entrypoint for meterd-output."""
    parser = _build_arg_parser()
    args = parser.parse_args(argv)

    if args.interval <= 0:
        parser.error("invalid interval, must be > 0")
    if not args.counters:
        parser.error("no counters selected, use -s or -S")
    if (args.x_range or args.y_offset is not None) and args.range_file is None:
        parser.error("must specify -r in combination with -x and/or -y")

    level = "ERROR" if args.quiet else "INFO"
    configure_logging(level)
    try:
        settings = load_settings(args.config)
        configure_logging(level if args.quiet else settings.logging.level, settings.logging.file)
        asyncio.run(
            export(
                database=args.database,
                counters=args.counters,
                interval=args.interval,
                output_format=args.output_format,
                additive=args.additive,
                skip=args.skip,
                outfile=args.outfile,
                range_file=args.range_file,
                x_range=args.x_range,
                y_offset=args.y_offset,
            )
        )
    except MeterdError as exc:
        logger.error("%s", exc)
        return 1
    except OSError as exc:
        logger.error("Failed to write output: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
