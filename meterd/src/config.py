"""
Daemon configuration loaded from a YAML file and environment variables.

Uses Pydantic BaseSettings for validation. Values come from the YAML file
passed on the command line (``-c``); ``METERD_``-prefixed environment
variables (``__`` separates nesting levels, e.g. ``METERD_METER__PORT``)
fill in keys the file leaves unset.

Serial line settings are validated here, so unsupported baud rates, data
bits or parity values are rejected before the device is ever opened.

CHANGELOG:
- 2026-10-19: Initial creation
- 2026-10-20: Stop reading .env files; only the YAML file and METERD_ variables apply

TODO:
- None
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings

from meterd.src.errors import ConfigurationError

DEFAULT_CONFIG_PATH = "/etc/meterd.yaml"

SUPPORTED_BAUD_RATES: tuple[int, ...] = (
    50,
    75,
    110,
    134,
    150,
    200,
    300,
    600,
    1200,
    2400,
    4800,
    9600,
    19200,
    38400,
    57600,
    115200,
    230400,
)
"""Line speeds accepted for the meter's serial port."""

SUPPORTED_PARITIES: tuple[str, ...] = ("none", "even", "odd")

_COUNTER_ID_RE = re.compile(r"^[0-9]+\.[0-9]+\.[0-9]+$")


def _check_counter_id(v: str) -> str:
    if not _COUNTER_ID_RE.match(v):
        raise ValueError(f"counter id {v!r} must have the form N.N.N (e.g. '1.8.1')")
    return v


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


class MeterSettings(BaseModel):
    """Serial port and line discipline of the meter's P1 port.

    Attributes:
        port: Path of the serial character device.
        speed: Line speed in baud, one of :data:`SUPPORTED_BAUD_RATES`.
        bits: Data bits per character (5-8).
        parity: ``"none"``, ``"even"`` or ``"odd"`` (case-insensitive).
        rts_cts: Enable hardware (RTS/CTS) flow control.
        xon_xoff: Enable software (XON/XOFF) flow control.
        read_timeout_s: Seconds a single read may block before it is
            reported as interrupted, so the daemon can notice shutdown.
    """

    port: str
    speed: int = 9600
    bits: int = 7
    parity: str = "none"
    rts_cts: bool = False
    xon_xoff: bool = False
    read_timeout_s: float = 1.0

    @field_validator("port")
    @classmethod
    def port_must_be_set(cls, v: str) -> str:
        """Reject an empty serial port path."""
        if not v:
            raise ValueError("No serial port specified")
        return v

    @field_validator("speed")
    @classmethod
    def speed_must_be_supported(cls, v: int) -> int:
        """Only standard termios line speeds are accepted."""
        if v not in SUPPORTED_BAUD_RATES:
            raise ValueError(f"Unsupported line speed {v} baud")
        return v

    @field_validator("bits")
    @classmethod
    def bits_must_be_supported(cls, v: int) -> int:
        """Validate the number of data bits (5-8)."""
        if v < 5 or v > 8:
            raise ValueError(f"Unsupported #serial bits {v}")
        return v

    @field_validator("parity")
    @classmethod
    def parity_must_be_supported(cls, v: str) -> str:
        """Normalise parity to lower case and check it is known."""
        v = v.lower()
        if v not in SUPPORTED_PARITIES:
            raise ValueError(
                f"Invalid parity setting {v!r}, valid values are: none, even, odd"
            )
        return v

    @field_validator("read_timeout_s")
    @classmethod
    def read_timeout_must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("read_timeout_s must be > 0")
        return v


class CounterSettings(BaseModel):
    """One consumption or production register to record."""

    id: str
    description: str = ""

    @field_validator("id")
    @classmethod
    def id_must_be_obis(cls, v: str) -> str:
        return _check_counter_id(v)


class GasCounterSettings(BaseModel):
    """The gas register, whose value arrives on the line after its id."""

    id: str
    description: str = "Gas"

    @field_validator("id")
    @classmethod
    def id_must_be_obis(cls, v: str) -> str:
        return _check_counter_id(v)


class DatabaseSettings(BaseModel):
    """Series databases and the counters recorded in them.

    Attributes:
        raw_db: Database for every raw sample of the RAW counters.
        fivemin_avg: Database for 5-minute averages of the RAW counters.
        hourly_avg: Database for hourly averages of the RAW counters.
        counters: Database for periodic snapshots of the consumption,
            production and gas registers.
        total_interval: Seconds between two snapshots of a register.
        current_consumption_id: Id of the instantaneous consumption counter.
        current_production_id: Id of the instantaneous production counter.
        consumption: Consumption registers.
        production: Production registers.
        gascounter: Gas register, if the meter reports one.
    """

    raw_db: str | None = None
    fivemin_avg: str | None = None
    hourly_avg: str | None = None
    counters: str | None = None
    total_interval: int = 300
    current_consumption_id: str | None = None
    current_production_id: str | None = None
    consumption: list[CounterSettings] = Field(default_factory=list)
    production: list[CounterSettings] = Field(default_factory=list)
    gascounter: GasCounterSettings | None = None

    @field_validator("total_interval")
    @classmethod
    def total_interval_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("total_interval must be >= 1")
        return v

    @field_validator("current_consumption_id", "current_production_id")
    @classmethod
    def current_ids_must_be_obis(cls, v: str | None) -> str | None:
        return None if v is None else _check_counter_id(v)

    def configured(self) -> dict[str, str]:
        """Return ``{tier: path}`` for every database that is configured."""
        tiers = {
            "raw_db": self.raw_db,
            "fivemin_avg": self.fivemin_avg,
            "hourly_avg": self.hourly_avg,
            "counters": self.counters,
        }
        return {tier: path for tier, path in tiers.items() if path}


class TaskSettings(BaseModel):
    """An external command list run periodically by the task scheduler."""

    description: str = ""
    interval: int
    commands: list[str] = Field(min_length=1)

    @field_validator("interval")
    @classmethod
    def interval_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("task interval must be >= 1")
        return v


class LoggingSettings(BaseModel):
    """Log level and optional log file."""

    level: str = "INFO"
    file: str | None = None

    @field_validator("level")
    @classmethod
    def level_must_be_known(cls, v: str) -> str:
        v = v.upper()
        if not isinstance(logging.getLevelName(v), int):
            raise ValueError(f"Unknown log level {v!r}")
        return v


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class MeterdSettings(BaseSettings):
    """Complete meterd configuration.

    Attributes:
        meter: Serial port settings (required).
        database: Series databases and counter definitions.
        tasks: Periodic external commands.
        logging: Log level and destination.
    """

    meter: MeterSettings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    tasks: list[TaskSettings] = Field(default_factory=list)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @model_validator(mode="after")
    def _at_least_one_database(self) -> MeterdSettings:
        """Refuse to run without anywhere to write measurements."""
        if not self.database.configured():
            raise ValueError("No databases configured, please fix the configuration")
        return self

    model_config = {
        "env_prefix": "METERD_",
        "env_nested_delimiter": "__",
        "extra": "ignore",
    }


def load_settings(path: str | Path = DEFAULT_CONFIG_PATH) -> MeterdSettings:
    """Load and validate the configuration file at *path*.

    Raises:
        ConfigurationError: If the file cannot be read, is not valid YAML,
            or does not validate.
    """
    path = Path(path)
    try:
        with path.open() as f:
            raw = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigurationError(f"Failed to read the configuration {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Configuration {path} must be a mapping")

    try:
        return MeterdSettings(**raw)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration {path}: {exc}") from exc
