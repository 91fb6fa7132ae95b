"""
meterd-createdb -- provision the series databases named in the configuration.

The raw, 5-minute and hourly databases get one table per RAW counter
(current consumption and production); the counters database gets one table
per consumption, production and gas register. A database whose tier is not
configured, or that would hold no counters, is skipped.

Existing files are left alone unless ``-f`` is given. If the tables of a new
database cannot be created, the half-initialised file is removed.

CHANGELOG:
- 2026-10-19: Initial creation
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import TYPE_CHECKING

from meterd.src import __version__
from meterd.src.config import DEFAULT_CONFIG_PATH, MeterdSettings, load_settings
from meterd.src.counters import CounterType, build_counter_specs, specs_of_type
from meterd.src.errors import MeterdError, StorageError
from meterd.src.main import configure_logging
from meterd.src.storage import SeriesStore

if TYPE_CHECKING:
    from meterd.src.counters import CounterSpec

logger = logging.getLogger(__name__)

RAW_TIERS: tuple[str, ...] = ("raw_db", "fivemin_avg", "hourly_avg")


async def create_database(path: str, counters: list[CounterSpec], *, force: bool = False) -> None:
    """Create the database at *path* with tables for *counters*.

    Raises:
        StorageError: If the database or its tables cannot be created.
    """
    store = SeriesStore(path)
    await store.create(force=force)
    try:
        await store.create_schema(counters)
    except StorageError:
        logger.error("Error during table creation in %s", path)
        await store.close()
        store.path.unlink(missing_ok=True)
        raise
    await store.close()


async def create_databases(settings: MeterdSettings, *, force: bool = False) -> list[str]:
    """Create every configured database.

    Returns:
        Paths of the databases that were created.

    Raises:
        StorageError: On the first database that cannot be created.
    """
    database = settings.database
    specs = build_counter_specs(database)
    raw_specs = specs_of_type(specs, CounterType.RAW)
    register_specs = specs_of_type(specs, CounterType.CONSUMED, CounterType.PRODUCED)

    plan: list[tuple[str, str | None, list[CounterSpec]]] = [
        (tier, getattr(database, tier), raw_specs) for tier in RAW_TIERS
    ]
    plan.append(("counters", database.counters, register_specs))

    created: list[str] = []
    for tier, path, counters in plan:
        if not path:
            logger.info("No database of type %s configured", tier)
            continue
        if not counters:
            logger.info(
                "No counters for database %s of type %s, skipping creation", path, tier
            )
            continue

        await create_database(path, counters, force=force)
        logger.info("Created database %s of type %s", path, tier)
        created.append(path)

    return created


def main(argv: list[str] | None = None) -> int:
    """Entrypoint for meterd-createdb."""
    parser = argparse.ArgumentParser(
        prog="meterd-createdb",
        description="Create the databases for the Smart Meter Monitoring Daemon",
    )
    parser.add_argument(
        "-c",
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help="configuration file (default: %(default)s)",
    )
    parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="overwrite existing databases",
    )
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)

    configure_logging()
    try:
        settings = load_settings(args.config)
        configure_logging(settings.logging.level, settings.logging.file)
        asyncio.run(create_databases(settings, force=args.force))
    except MeterdError as exc:
        logger.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
