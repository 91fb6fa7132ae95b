"""
meterd daemon main loop.

Runs up to two concurrent asyncio loops:
1. **Ingestion loop**: receives a telegram from the meter's serial port,
   parses it into counter readings and feeds them to the aggregation engine,
   which writes raw, averaged and cumulative series to the databases.
2. **Task scheduler loop** (only when tasks are configured): runs external
   command lists at their configured intervals.

The blocking serial read runs in a worker thread. A read that times out or is
interrupted is retried; a failing serial device stops ingestion and shuts
the daemon down with exit status 1. SIGTERM/SIGINT set a shared
asyncio.Event; both loops finish their current iteration and return.

Structured JSON logging is used for all events.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from meterd.src import __version__
from meterd.src.errors import MeterdError, TransportError, TransportInterrupted
from meterd.src.parser import parse_telegram

if TYPE_CHECKING:
    from meterd.src.aggregator import AggregationEngine
    from meterd.src.config import MeterdSettings
    from meterd.src.scheduler import TaskScheduler
    from meterd.src.transport import SerialTransport

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


class _JsonFormatter(logging.Formatter):
    """Minimal JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """Configure structured JSON logging.

    Sets up the root logger with a JSON-formatted handler writing to stderr
    and, if *log_file* is given, a second handler appending to that file.
    Calling it again replaces the previous handlers.

    Args:
        level: Root log level name.
        log_file: Optional path of a log file.
    """
    formatter = _JsonFormatter()
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    root = logging.getLogger()
    for handler in root.handlers:
        handler.close()
    root.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(level)


# ---------------------------------------------------------------------------
# Startup config logging
# ---------------------------------------------------------------------------


def log_config_summary(settings: MeterdSettings) -> None:
    """Log a config summary at startup.

    Args:
        settings: The loaded MeterdSettings.
    """
    database = settings.database
    logger.info(
        "meterd %s starting with config: "
        "port=%s, speed=%s, bits=%s, parity=%s, rts_cts=%s, xon_xoff=%s, "
        "databases=%s, total_interval=%s, "
        "current_consumption_id=%s, current_production_id=%s, "
        "consumption=%s, production=%s, gascounter=%s, tasks=%d",
        __version__,
        settings.meter.port,
        settings.meter.speed,
        settings.meter.bits,
        settings.meter.parity,
        settings.meter.rts_cts,
        settings.meter.xon_xoff,
        database.configured(),
        database.total_interval,
        database.current_consumption_id,
        database.current_production_id,
        [c.id for c in database.consumption],
        [c.id for c in database.production],
        database.gascounter.id if database.gascounter else None,
        len(settings.tasks),
    )


# ---------------------------------------------------------------------------
# Single-iteration functions (easily testable)
# ---------------------------------------------------------------------------


async def _ingest_once(
    *,
    transport: SerialTransport,
    engine: AggregationEngine,
    gas_id: str | None,
    clock: Callable[[], float] = time.time,
) -> int:
    """Receive, parse and aggregate a single telegram.

    All readings of one telegram share the same timestamp, taken when the
    telegram has been received.

    Args:
        transport: The opened serial transport.
        engine: The aggregation engine.
        gas_id: Id of the gas register, or None.
        clock: Returns the current Unix time.

    Returns:
        Number of readings parsed from the telegram.

    Raises:
        TransportInterrupted: The read timed out or was interrupted.
        TransportError: The serial device failed.
    """
    telegram = await asyncio.to_thread(transport.receive_telegram)
    now = int(clock())

    readings = parse_telegram(telegram, gas_id)
    logger.debug("Received telegram with %d lines, %d readings", len(telegram), len(readings))

    await engine.process_all(readings, now)
    return len(readings)


# ---------------------------------------------------------------------------
# Loop runners
# ---------------------------------------------------------------------------


async def _ingest_loop(
    *,
    transport: SerialTransport,
    engine: AggregationEngine,
    gas_id: str | None,
    shutdown_event: asyncio.Event,
    clock: Callable[[], float] = time.time,
) -> bool:
    """Run the ingestion loop until shutdown_event is set.

    Args:
        transport: The opened serial transport.
        engine: The aggregation engine.
        gas_id: Id of the gas register, or None.
        shutdown_event: Event to signal graceful shutdown.
        clock: Returns the current Unix time.

    Returns:
        True after a graceful shutdown, False if the serial device failed.
        On failure the shutdown event is set so that the other loops stop.
    """
    logger.info("Ingestion loop started on %s", transport.port)
    while not shutdown_event.is_set():
        try:
            await _ingest_once(transport=transport, engine=engine, gas_id=gas_id, clock=clock)
        except TransportInterrupted as exc:
            logger.debug("Telegram reception interrupted: %s", exc)
            continue
        except TransportError:
            logger.error("Serial transport failed, stopping ingestion", exc_info=True)
            shutdown_event.set()
            return False
        except Exception:
            logger.error("Ingestion cycle error", exc_info=True)
    logger.info("Ingestion loop stopped")
    return True


# ---------------------------------------------------------------------------
# Concurrent runner with graceful shutdown
# ---------------------------------------------------------------------------


async def run_loops(
    *,
    transport: SerialTransport,
    engine: AggregationEngine,
    gas_id: str | None,
    scheduler: TaskScheduler | None,
    shutdown_event: asyncio.Event,
    clock: Callable[[], float] = time.time,
) -> bool:
    """Run the ingestion loop and, if it has tasks, the scheduler loop.

    Args:
        transport: The opened serial transport.
        engine: The aggregation engine.
        gas_id: Id of the gas register, or None.
        scheduler: Task scheduler, or None.
        shutdown_event: Event to signal graceful shutdown.
        clock: Returns the current Unix time.

    Returns:
        The ingestion loop's result.
    """
    loops = [
        _ingest_loop(
            transport=transport,
            engine=engine,
            gas_id=gas_id,
            shutdown_event=shutdown_event,
            clock=clock,
        )
    ]
    if scheduler is not None and scheduler.tasks:
        logger.info("There are %d tasks scheduled, starting task scheduler", len(scheduler.tasks))
        loops.append(scheduler.run(shutdown_event))
    else:
        logger.info("No tasks scheduled, skipping start of task scheduler")

    results = await asyncio.gather(*loops)
    logger.info("Shutdown complete")
    return results[0]


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def async_main(config_path: str) -> int:
    """Async entrypoint: load config, build components, run loops.

    Sets up SIGTERM/SIGINT handlers to trigger graceful shutdown.

    Returns:
        Process exit status.

    Raises:
        MeterdError: On a fatal configuration, storage or transport error
            during startup.
    """
    from meterd.src.aggregator import AggregationEngine, SeriesStores
    from meterd.src.config import load_settings
    from meterd.src.counters import build_counter_specs
    from meterd.src.scheduler import ScheduledTask, TaskScheduler
    from meterd.src.storage import SeriesStore
    from meterd.src.transport import SerialTransport

    settings = load_settings(config_path)
    configure_logging(settings.logging.level, settings.logging.file)
    log_config_summary(settings)

    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: _handle_signal(shutdown_event),
        )

    database = settings.database
    stores = SeriesStores(
        raw=SeriesStore(database.raw_db) if database.raw_db else None,
        fivemin=SeriesStore(database.fivemin_avg) if database.fivemin_avg else None,
        hourly=SeriesStore(database.hourly_avg) if database.hourly_avg else None,
        counters=SeriesStore(database.counters) if database.counters else None,
    )
    engine = AggregationEngine(
        build_counter_specs(database),
        stores,
        total_interval=database.total_interval,
    )
    scheduler = TaskScheduler([ScheduledTask.from_settings(t) for t in settings.tasks])
    gas_id = database.gascounter.id if database.gascounter else None

    async with contextlib.AsyncExitStack() as stack:
        for store in stores.all():
            await stack.enter_async_context(store)
            logger.info("Opened database %s", store.path)

        transport = stack.enter_context(SerialTransport.from_settings(settings.meter))

        ok = await run_loops(
            transport=transport,
            engine=engine,
            gas_id=gas_id,
            scheduler=scheduler,
            shutdown_event=shutdown_event,
        )

    return 0 if ok else 1


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the shutdown event.

    Args:
        shutdown_event: The event to set for graceful shutdown.
    """
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()


def _build_arg_parser() -> argparse.ArgumentParser:
    from meterd.src.config import DEFAULT_CONFIG_PATH

    parser = argparse.ArgumentParser(
        prog="meterd",
        description="Smart Meter Monitoring Daemon",
    )
    parser.add_argument(
        "-c",
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help="configuration file (default: %(default)s)",
    )
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Synchronous entrypoint for the meterd daemon."""
    args = _build_arg_parser().parse_args(argv)
    configure_logging()

    try:
        status = asyncio.run(async_main(args.config))
    except MeterdError as exc:
        logger.error("%s, exiting", exc)
        return 1

    logger.info("Stopping the Smart Meter Monitoring Daemon (meterd) version %s", __version__)
    return status


if __name__ == "__main__":
    sys.exit(main())
