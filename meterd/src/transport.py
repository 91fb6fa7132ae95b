"""
Serial line transport for the meter's P1 port.

Opens the serial device with the configured line discipline (pyserial) and
frames the incoming byte stream into telegrams. A telegram starts with a
line whose first character is ``/`` and ends with a line whose first
character is ``!``. Anything received before the first ``/`` (for example
the tail of a telegram that was already in flight when the port was opened)
is discarded.

Failure semantics:

- A read interrupted by a signal, or a read that times out before a
  complete line has arrived, raises
  :class:`~meterd.src.errors.TransportInterrupted`. The partial telegram
  is dropped; the caller may simply retry.
- Any other I/O failure raises :class:`~meterd.src.errors.TransportError`,
  which the ingestion loop treats as fatal.

CHANGELOG:
- 2026-10-19: Initial creation
- 2026-10-20: Reads that time out mid-line abort the telegram

TODO:
- None
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import serial

from meterd.src.errors import TransportError, TransportInterrupted

if TYPE_CHECKING:
    from meterd.src.config import MeterSettings
    from meterd.src.models import Telegram

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_READ_BYTES: int = 4095
"""Upper bound for a single line read; telegram lines are far shorter."""

_BYTESIZES: dict[int, int] = {
    5: serial.FIVEBITS,
    6: serial.SIXBITS,
    7: serial.SEVENBITS,
    8: serial.EIGHTBITS,
}

_PARITIES: dict[str, str] = {
    "none": serial.PARITY_NONE,
    "even": serial.PARITY_EVEN,
    "odd": serial.PARITY_ODD,
}


class SerialTransport:
    """Telegram reader on top of a pyserial port.

    Line settings are expected to be validated already (see
    :class:`~meterd.src.config.MeterSettings`); this class only maps them
    onto pyserial constants.

    Args:
        port: Serial device path, e.g. ``/dev/ttyUSB0``.
        speed: Line speed in baud.
        bits: Data bits (5-8).
        parity: ``"none"``, ``"even"`` or ``"odd"``.
        rts_cts: Enable hardware flow control.
        xon_xoff: Enable software flow control.
        read_timeout_s: Seconds a read may block before it is reported as
            interrupted. ``None`` blocks indefinitely, in which case an
            empty read means end of file.

    Usage::

        with SerialTransport(port="/dev/ttyUSB0", speed=115200, bits=8) as t:
            lines = t.receive_telegram()
    """

    def __init__(
        self,
        *,
        port: str,
        speed: int = 9600,
        bits: int = 7,
        parity: str = "none",
        rts_cts: bool = False,
        xon_xoff: bool = False,
        read_timeout_s: float | None = 1.0,
    ) -> None:
        self._port = port
        self._speed = speed
        self._bits = bits
        self._parity = parity
        self._rts_cts = rts_cts
        self._xon_xoff = xon_xoff
        self._read_timeout_s = read_timeout_s
        self._serial: serial.Serial | None = None

    @classmethod
    def from_settings(cls, meter: MeterSettings) -> SerialTransport:
        """Create a transport from the ``meter`` configuration section."""
        return cls(
            port=meter.port,
            speed=meter.speed,
            bits=meter.bits,
            parity=meter.parity,
            rts_cts=meter.rts_cts,
            xon_xoff=meter.xon_xoff,
            read_timeout_s=meter.read_timeout_s,
        )

    @property
    def port(self) -> str:
        return self._port

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> None:
        """Open the serial device and flush any stale input.

        Raises:
            TransportError: If the device cannot be opened or configured.
        """
        try:
            self._serial = serial.Serial(
                port=self._port,
                baudrate=self._speed,
                bytesize=_BYTESIZES[self._bits],
                parity=_PARITIES[self._parity],
                stopbits=serial.STOPBITS_ONE,
                timeout=self._read_timeout_s,
                rtscts=self._rts_cts,
                xonxoff=self._xon_xoff,
            )
            self._serial.reset_input_buffer()
        except (serial.SerialException, OSError, ValueError) as exc:
            raise TransportError(
                f"Failed to open serial terminal {self._port}: {exc}"
            ) from exc

        logger.info("Connected to serial terminal %s", self._port)

    def close(self) -> None:
        """Close the serial device. Safe to call more than once."""
        if self._serial is not None:
            self._serial.close()
            self._serial = None
            logger.info("Disconnected from serial terminal")

    def __enter__(self) -> SerialTransport:
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def receive_telegram(self) -> Telegram:
        """Block until one complete telegram has been received.

        Returns:
            The telegram's lines, starting with the ``/`` header line and
            excluding the ``!`` trailer, each stripped of trailing CR/LF.

        Raises:
            TransportInterrupted: The read was interrupted or timed out.
            TransportError: The device failed.
        """
        line = self._read_line()
        while not line.startswith("/"):
            logger.debug("Skipping data outside a telegram: %r", line)
            line = self._read_line()

        telegram: Telegram = []
        while not line.startswith("!"):
            telegram.append(line)
            line = self._read_line()

        return telegram

    def _read_line(self) -> str:
        assert self._serial is not None, "Transport not opened. Call open() or use with."
        try:
            data = self._serial.readline(MAX_READ_BYTES)
        except InterruptedError as exc:
            raise TransportInterrupted("Serial read interrupted by signal") from exc
        except (serial.SerialException, OSError) as exc:
            raise TransportError(f"Failed to read from {self._port}: {exc}") from exc

        if not data:
            if self._read_timeout_s is None:
                raise TransportError(f"End of file on {self._port}")
            raise TransportInterrupted("Serial read timed out")
        if not data.endswith(b"\n") and len(data) < MAX_READ_BYTES:
            # Bytes received before the timeout; the rest of the line is lost.
            raise TransportInterrupted("Serial read timed out mid-line")

        return data.decode("ascii", errors="replace").rstrip("\r\n")
