"""
Shared test fixtures for meterd tests.

Provides a fake serial port, a minimal configuration file and opened series
stores. All METERD_* environment variables are removed before each test so
that settings come only from what the test sets up.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest
import pytest_asyncio
from meterd.src.counters import CounterSpec, CounterType
from meterd.src.storage import SeriesStore

# ---------------------------------------------------------------------------
# Environment isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _clean_meterd_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Remove all METERD_* env vars and run each test from tmp_path.

    Tests that write files relative to the working directory stay inside
    tmp_path.
    """
    for var in list(os.environ):
        if var.startswith("METERD_"):
            monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


# ---------------------------------------------------------------------------
# Fake serial port
# ---------------------------------------------------------------------------


class FakeSerial:
    """Stands in for ``serial.Serial``: replays scripted ``readline`` results.

    Each item of *script* is either ``bytes`` (returned by one readline call)
    or an exception instance (raised by that call). Once the script is
    exhausted, readline returns ``b""`` like a port whose timeout expired.
    """

    def __init__(self, script: list[bytes | BaseException]) -> None:
        self._script = list(script)
        self.reset_calls = 0
        self.closed = False
        self.read_sizes: list[int] = []

    def readline(self, size: int = -1) -> bytes:
        self.read_sizes.append(size)
        if not self._script:
            return b""
        item = self._script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def reset_input_buffer(self) -> None:
        self.reset_calls += 1

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def fake_serial() -> type[FakeSerial]:
    """The FakeSerial class, for tests that script a port."""
    return FakeSerial


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

SAMPLE_CONFIG = """\
meter:
  port: /dev/ttyUSB0
  speed: 115200
  bits: 8
  parity: None
database:
  raw_db: {tmp}/raw.db
  fivemin_avg: {tmp}/fivemin.db
  hourly_avg: {tmp}/hourly.db
  counters: {tmp}/counters.db
  total_interval: 300
  current_consumption_id: "1.7.0"
  current_production_id: "2.7.0"
  consumption:
    - id: "1.8.1"
      description: "Consumed (low tariff)"
    - id: "1.8.2"
      description: "Consumed (normal tariff)"
  production:
    - id: "2.8.1"
      description: "Produced (low tariff)"
  gascounter:
    id: "24.3.0"
tasks:
  - description: "Plot graphs"
    interval: 300
    commands:
      - "true"
logging:
  level: debug
"""


@pytest.fixture()
def config_file(tmp_path: Path) -> Path:
    """Write SAMPLE_CONFIG with databases under tmp_path and return its path."""
    path = tmp_path / "meterd.yaml"
    path.write_text(SAMPLE_CONFIG.format(tmp=tmp_path))
    return path


# ---------------------------------------------------------------------------
# Series stores
# ---------------------------------------------------------------------------


def make_raw_specs() -> list[CounterSpec]:
    return [
        CounterSpec("1.7.0", "Current consumption", CounterType.RAW),
        CounterSpec("2.7.0", "Current production", CounterType.RAW),
    ]


def make_register_specs() -> list[CounterSpec]:
    return [
        CounterSpec("1.8.1", "Consumed (low tariff)", CounterType.CONSUMED),
        CounterSpec("24.3.0", "Gas", CounterType.CONSUMED),
        CounterSpec("2.8.1", "Produced (low tariff)", CounterType.PRODUCED),
    ]


@pytest.fixture()
def raw_specs() -> list[CounterSpec]:
    """Fresh RAW counter specs (current consumption and production)."""
    return make_raw_specs()


@pytest.fixture()
def register_specs() -> list[CounterSpec]:
    """Fresh consumption, gas and production register specs."""
    return make_register_specs()


async def _created_store(path: Path, specs: list[CounterSpec]) -> SeriesStore:
    store = SeriesStore(path)
    await store.create()
    await store.create_schema(specs)
    return store


@pytest_asyncio.fixture()
async def raw_store(tmp_path: Path) -> AsyncIterator[SeriesStore]:
    """An opened store with tables for the RAW counters."""
    store = await _created_store(tmp_path / "raw.db", make_raw_specs())
    yield store
    await store.close()


@pytest_asyncio.fixture()
async def counters_store(tmp_path: Path) -> AsyncIterator[SeriesStore]:
    """An opened store with tables for the consumption/production registers."""
    store = await _created_store(tmp_path / "counters.db", make_register_specs())
    yield store
    await store.close()


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture()
def _restore_root_logger() -> Iterator[None]:
    """Undo configure_logging() so later tests keep pytest's handlers."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
