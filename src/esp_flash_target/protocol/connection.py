"""
Serial connection to the ESP ROM bootloader (or the RAM flasher stub).

Handles:
- Serial port management and bootloader entry via DTR/RTS
- SLIP framing of requests and responses
- Per-command timeouts and status checking
"""

import logging
import os
import struct
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Optional, TypeVar

import serial
from serial.tools import list_ports

from esp_flash_target.errors import (
    CommandFailedError,
    CommandTimeoutError,
    TransportError,
)
from esp_flash_target.protocol.commands import (
    DEFAULT_TIMEOUT,
    HEADER_FORMAT,
    HEADER_SIZE,
    MAX_TIMEOUT,
    RESPONSE_DIRECTION,
    Command,
    Sync,
)
from esp_flash_target.protocol.slip import SlipDecoder, slip_encode

logger = logging.getLogger(__name__)

T = TypeVar("T")

# USB PID of the built-in USB-Serial-JTAG peripheral (Espressif VID 0x303A)
USB_SERIAL_JTAG_PID = 0x1001

# Status trailer length in response data
ROM_STATUS_BYTES = 4
STUB_STATUS_BYTES = 2

DEFAULT_BAUDRATE = 115200
DEFAULT_CONNECT_ATTEMPTS = 7
RESET_DELAY = 0.1
BOOT_DELAY = 0.05


@dataclass
class CommandResponse:
    """
    Decoded response packet.

    Attributes:
        command: Opcode the response belongs to
        value: 32-bit value field from the header (used by read-type commands)
        data: Response body including the status trailer
    """
    command: int
    value: int
    data: bytes


class Connection:
    """
    Bootloader connection over a serial port.

    Example:
        with Connection("/dev/ttyUSB0", use_stub=False) as conn:
            conn.connect()
            conn.negotiate_compression(get_chip_spec(Chip.ESP32C3))
            response = conn.with_timeout(3.0, lambda c: c.command(Sync()))
    """

    def __init__(
        self,
        port: str,
        baudrate: int = DEFAULT_BAUDRATE,
        timeout: float = DEFAULT_TIMEOUT,
        use_stub: bool = False,
        compression: bool = True,
    ):
        """
        Args:
            port: Serial port (e.g., "/dev/ttyUSB0", "COM3")
            baudrate: Serial baud rate
            timeout: Timeout used when no command-specific one applies
            use_stub: True when talking to the RAM flasher stub
            compression: Allow compressed transfers if the chip supports them
        """
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.use_stub = use_stub
        self.compression = compression
        self.ser: Optional[serial.Serial] = None
        self._decoder = SlipDecoder()
        self._pending: Deque[bytes] = deque()
        self._use_compression: Optional[bool] = None

    def open(self) -> None:
        """
        Open the serial port.

        Raises:
            TransportError: If port cannot be opened
        """
        try:
            self.ser = serial.Serial(
                port=self.port,
                baudrate=self.baudrate,
                timeout=self.timeout,
                write_timeout=self.timeout,
            )
        except serial.SerialException as e:
            raise TransportError(f"Cannot open port {self.port}: {e}") from e
        logger.debug(f"Opened {self.port} at {self.baudrate} bps (timeout={self.timeout}s)")

    def close(self) -> None:
        if self.ser and self.ser.is_open:
            self.ser.close()
            logger.debug(f"Closed {self.port}")

    def __enter__(self) -> "Connection":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _require_open(self) -> serial.Serial:
        if not self.ser or not self.ser.is_open:
            raise TransportError("Serial port not open")
        return self.ser

    # ------------------------------------------------------------------
    # Framing
    # ------------------------------------------------------------------

    def _write(self, packet: bytes) -> None:
        ser = self._require_open()
        frame = slip_encode(packet)
        try:
            written = ser.write(frame)
        except serial.SerialException as e:
            raise TransportError(f"Write error: {e}") from e
        if written is not None and written != len(frame):
            raise TransportError(f"Incomplete write: sent {written}/{len(frame)} bytes")
        logger.debug(f">>> {packet[:32].hex().upper()}{'...' if len(packet) > 32 else ''}")

    def _read_packet(self, command_name: str) -> bytes:
        """Return the next SLIP packet, waiting at most the port timeout."""
        ser = self._require_open()
        timeout = ser.timeout if ser.timeout is not None else self.timeout
        deadline = time.monotonic() + timeout
        while not self._pending:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise CommandTimeoutError(command_name, timeout)
            try:
                chunk = ser.read(max(1, ser.in_waiting))
            except serial.SerialException as e:
                raise TransportError(f"Read error: {e}") from e
            if not chunk:
                raise CommandTimeoutError(command_name, timeout)
            self._pending.extend(self._decoder.feed(chunk))
        packet = self._pending.popleft()
        logger.debug(f"<<< {packet.hex().upper()}")
        return packet

    def flush_input(self) -> None:
        """Discard buffered input and any partially decoded packet."""
        ser = self._require_open()
        ser.reset_input_buffer()
        self._decoder.reset()
        self._pending.clear()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def command(self, cmd: Command) -> CommandResponse:
        """
        Send one command and wait for its response.

        Responses to other opcodes (late answers to earlier commands) are
        skipped.

        Raises:
            CommandTimeoutError: No matching response within the port timeout
            CommandFailedError: Device reported a non-zero status
            TransportError: Port fault or malformed framing
        """
        name = cmd.TYPE.description
        self._write(cmd.to_bytes())

        while True:
            packet = self._read_packet(name)
            if len(packet) < HEADER_SIZE:
                logger.debug(f"Ignoring short packet ({len(packet)} bytes)")
                continue
            direction, op, length, value = struct.unpack(HEADER_FORMAT, packet[:HEADER_SIZE])
            if direction != RESPONSE_DIRECTION or op != int(cmd.TYPE):
                logger.debug(f"Ignoring response dir={direction} op=0x{op:02X}")
                continue
            data = packet[HEADER_SIZE:HEADER_SIZE + length]
            self._check_status(name, data)
            return CommandResponse(command=op, value=value, data=data)

    def _check_status(self, name: str, data: bytes) -> None:
        status_bytes = STUB_STATUS_BYTES if self.use_stub else ROM_STATUS_BYTES
        if len(data) < status_bytes:
            raise TransportError(
                f"{name} response too short for status ({len(data)} bytes)"
            )
        status = data[-status_bytes]
        error = data[-status_bytes + 1]
        if status != 0:
            raise CommandFailedError(name, status, error)

    def with_timeout(self, seconds: float, func: Callable[["Connection"], T]) -> T:
        """Run `func(self)` with the port timeout set to `seconds` (capped)."""
        ser = self._require_open()
        previous = ser.timeout
        ser.timeout = min(seconds, MAX_TIMEOUT)
        try:
            return func(self)
        finally:
            ser.timeout = previous

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def _enter_bootloader(self) -> None:
        """Classic auto-reset circuit: EN on RTS, IO0 on DTR."""
        ser = self._require_open()
        ser.dtr = False
        ser.rts = True
        time.sleep(RESET_DELAY)
        ser.dtr = True
        ser.rts = False
        time.sleep(BOOT_DELAY)
        ser.dtr = False

    def _enter_bootloader_usb_jtag(self) -> None:
        """
        Reset sequence for the built-in USB-Serial-JTAG peripheral.

        The peripheral decodes the lines itself, so the chip is taken out of
        reset through (RTS=1, DTR=1) rather than (0, 0).
        """
        ser = self._require_open()
        ser.rts = False
        ser.dtr = False
        time.sleep(RESET_DELAY)
        ser.dtr = True
        ser.rts = False
        time.sleep(RESET_DELAY)
        ser.rts = True
        ser.dtr = False
        ser.rts = True
        time.sleep(RESET_DELAY)
        ser.dtr = False
        ser.rts = False

    def sync(self) -> None:
        self.with_timeout(Sync.TYPE.timeout(), lambda conn: conn.command(Sync()))

    def connect(self, attempts: int = DEFAULT_CONNECT_ATTEMPTS) -> None:
        """
        Reset into the bootloader and synchronise.

        Raises:
            TransportError: If the device never answers Sync
        """
        usb_jtag = self.get_usb_pid() == USB_SERIAL_JTAG_PID
        enter_bootloader = self._enter_bootloader_usb_jtag if usb_jtag else self._enter_bootloader
        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            logger.debug(f"Connect attempt {attempt}/{attempts}")
            enter_bootloader()
            self.flush_input()
            try:
                self.sync()
            except (TransportError, CommandFailedError) as e:
                logger.debug(f"Sync failed: {e}")
                last_error = e
                self.flush_input()
                continue
            # The ROM answers one Sync several times
            time.sleep(BOOT_DELAY)
            self.flush_input()
            logger.info(f"Connected to bootloader on {self.port}")
            return
        raise TransportError(
            f"Failed to connect to bootloader on {self.port} after {attempts} attempts: {last_error}"
        )

    def negotiate_compression(self, chip_spec) -> bool:
        """Settle compression once for the session from the flag and chip support."""
        self._use_compression = self.compression and chip_spec.supports_compression
        logger.debug(f"Compression {'enabled' if self._use_compression else 'disabled'}")
        return self._use_compression

    def should_use_compression(self) -> bool:
        if self._use_compression is None:
            return self.compression
        return self._use_compression

    def get_usb_pid(self) -> Optional[int]:
        """USB product ID of the port, or None for non-USB ports."""
        port = os.path.realpath(self.port)
        for info in list_ports.comports():
            if os.path.realpath(info.device) == port:
                return info.pid
        return None

    def reset(self) -> None:
        """Hard reset the chip by pulsing RTS (EN)."""
        ser = self._require_open()
        ser.rts = True
        time.sleep(RESET_DELAY)
        ser.rts = False
