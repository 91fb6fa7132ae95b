"""
Unit tests for meterd configuration (MeterdSettings, load_settings).

Tests verify:
- A complete YAML file loads with every section populated.
- Serial defaults are applied (9600 baud, 7 bits, no parity, 1 s timeout).
- Unsupported baud rates, data bits and parities are rejected.
- Parity is case-insensitive.
- Counter ids must have the N.N.N form.
- At least one database must be configured.
- METERD_* environment variables fill keys the file leaves unset; a .env
  file in the working directory is ignored.
- Unreadable, non-YAML and invalid files raise ConfigurationError.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

from pathlib import Path

import pytest
from meterd.src.config import (
    DatabaseSettings,
    MeterdSettings,
    MeterSettings,
    TaskSettings,
    load_settings,
)
from meterd.src.errors import ConfigurationError
from pydantic import ValidationError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(text)
    return path


_MINIMAL = """\
meter:
  port: /dev/ttyUSB0
database:
  raw_db: /tmp/raw.db
"""


class TestLoadSettings:
    """load_settings reads and validates a YAML file."""

    def test_loads_full_config(self, config_file: Path, tmp_path: Path) -> None:
        settings = load_settings(config_file)

        assert settings.meter.port == "/dev/ttyUSB0"
        assert settings.meter.speed == 115200
        assert settings.meter.bits == 8
        assert settings.meter.parity == "none"
        assert settings.database.raw_db == f"{tmp_path}/raw.db"
        assert settings.database.current_consumption_id == "1.7.0"
        assert [c.id for c in settings.database.consumption] == ["1.8.1", "1.8.2"]
        assert [c.id for c in settings.database.production] == ["2.8.1"]
        assert settings.database.gascounter is not None
        assert settings.database.gascounter.id == "24.3.0"
        assert settings.database.gascounter.description == "Gas"
        assert len(settings.tasks) == 1
        assert settings.tasks[0].commands == ["true"]
        assert settings.logging.level == "DEBUG"

    def test_defaults_applied(self, tmp_path: Path) -> None:
        settings = load_settings(_write(tmp_path, _MINIMAL))

        assert settings.meter.speed == 9600
        assert settings.meter.bits == 7
        assert settings.meter.parity == "none"
        assert settings.meter.rts_cts is False
        assert settings.meter.xon_xoff is False
        assert settings.meter.read_timeout_s == 1.0
        assert settings.database.total_interval == 300
        assert settings.database.consumption == []
        assert settings.database.gascounter is None
        assert settings.tasks == []
        assert settings.logging.level == "INFO"
        assert settings.logging.file is None

    def test_missing_file_raises_configuration_error(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="Failed to read"):
            load_settings(tmp_path / "nope.yaml")

    def test_invalid_yaml_raises_configuration_error(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_settings(_write(tmp_path, "meter: [unclosed\n"))

    def test_non_mapping_raises_configuration_error(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="mapping"):
            load_settings(_write(tmp_path, "- just\n- a list\n"))

    def test_validation_error_wrapped(self, tmp_path: Path) -> None:
        text = _MINIMAL.replace("port: /dev/ttyUSB0", "port: /dev/ttyUSB0\n  speed: 12345")
        with pytest.raises(ConfigurationError, match="Unsupported line speed"):
            load_settings(_write(tmp_path, text))

    def test_no_database_configured_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="No databases configured"):
            load_settings(_write(tmp_path, "meter:\n  port: /dev/ttyUSB0\n"))


class TestEnvironmentOverrides:
    """METERD_* variables fill in what the file leaves unset."""

    def test_port_from_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("METERD_METER__PORT", "/dev/ttyAMA0")
        settings = load_settings(_write(tmp_path, "database:\n  counters: /tmp/c.db\n"))

        assert settings.meter.port == "/dev/ttyAMA0"

    def test_file_wins_over_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("METERD_METER__PORT", "/dev/ttyAMA0")
        settings = load_settings(_write(tmp_path, _MINIMAL))

        assert settings.meter.port == "/dev/ttyUSB0"

    def test_dotenv_file_is_not_read(self, tmp_path: Path) -> None:
        # The working directory is tmp_path (see conftest).
        (tmp_path / ".env").write_text("METERD_METER__PORT=/dev/ttyAMA0\n")

        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            load_settings(_write(tmp_path, "database:\n  counters: /tmp/c.db\n"))


class TestMeterSettings:
    """Serial line settings are validated before the port is opened."""

    @pytest.mark.parametrize("speed", [50, 1200, 9600, 115200, 230400])
    def test_supported_speeds(self, speed: int) -> None:
        assert MeterSettings(port="/dev/ttyS0", speed=speed).speed == speed

    @pytest.mark.parametrize("speed", [0, 100, 14400, 460800])
    def test_unsupported_speed_rejected(self, speed: int) -> None:
        with pytest.raises(ValidationError, match="Unsupported line speed"):
            MeterSettings(port="/dev/ttyS0", speed=speed)

    @pytest.mark.parametrize("bits", [4, 9])
    def test_unsupported_bits_rejected(self, bits: int) -> None:
        with pytest.raises(ValidationError, match="Unsupported #serial bits"):
            MeterSettings(port="/dev/ttyS0", bits=bits)

    @pytest.mark.parametrize(("raw", "expected"), [("EVEN", "even"), ("Odd", "odd"), ("NONE", "none")])
    def test_parity_case_insensitive(self, raw: str, expected: str) -> None:
        assert MeterSettings(port="/dev/ttyS0", parity=raw).parity == expected

    def test_invalid_parity_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Invalid parity"):
            MeterSettings(port="/dev/ttyS0", parity="mark")

    def test_empty_port_rejected(self) -> None:
        with pytest.raises(ValidationError, match="No serial port"):
            MeterSettings(port="")

    def test_non_positive_timeout_rejected(self) -> None:
        with pytest.raises(ValidationError):
            MeterSettings(port="/dev/ttyS0", read_timeout_s=0)


class TestDatabaseSettings:
    """Counter ids and the configured database map."""

    def test_configured_lists_only_set_paths(self) -> None:
        database = DatabaseSettings(raw_db="/a.db", counters="/c.db")

        assert database.configured() == {"raw_db": "/a.db", "counters": "/c.db"}

    @pytest.mark.parametrize("bad_id", ["1.8", "1-0:1.8.1", "a.b.c", ""])
    def test_malformed_counter_id_rejected(self, bad_id: str) -> None:
        with pytest.raises(ValidationError, match="N.N.N"):
            DatabaseSettings(consumption=[{"id": bad_id}])

    def test_malformed_current_id_rejected(self) -> None:
        with pytest.raises(ValidationError):
            DatabaseSettings(current_consumption_id="1.7")

    def test_total_interval_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            DatabaseSettings(total_interval=0)


class TestTaskSettings:
    """Scheduled task definitions."""

    def test_task_requires_commands(self) -> None:
        with pytest.raises(ValidationError):
            TaskSettings(interval=60, commands=[])

    def test_task_interval_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            TaskSettings(interval=0, commands=["true"])


class TestLoggingSettings:
    """Log level validation through the root settings model."""

    def test_unknown_level_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Unknown log level"):
            MeterdSettings(
                meter={"port": "/dev/ttyS0"},
                database={"raw_db": "/a.db"},
                logging={"level": "chatty"},
            )
