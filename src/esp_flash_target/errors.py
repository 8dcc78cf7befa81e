"""
Exception hierarchy for ESP flash operations.

Every failure surfaced by the transport, the command layer, the codec or the
transfer state machine derives from FlashError, so callers can catch one
type and decide whether to reconnect and restart the transfer.
"""

from typing import Optional


class FlashError(Exception):
    """Base exception for all flashing errors."""


class TransportError(FlashError):
    """Serial port fault or malformed SLIP framing."""


class CommandTimeoutError(TransportError):
    """Device did not answer a command within its timeout."""

    def __init__(self, command: str, timeout: Optional[float] = None):
        self.command = command
        self.timeout = timeout
        if timeout is None:
            message = f"Timed out waiting for response to {command}"
        else:
            message = f"Timed out after {timeout:.2f}s waiting for response to {command}"
        super().__init__(message)


# Reason byte reported by the ROM loader / stub next to a non-zero status
ROM_ERROR_REASONS = {
    0x05: "Received message is invalid",
    0x06: "Failed to act on received message",
    0x07: "Invalid CRC in message",
    0x08: "Flash write error",
    0x09: "Flash read error",
    0x0A: "Flash read length error",
    0x0B: "Deflate error",
    0xC0: "Bad data length",
    0xC1: "Bad data checksum",
    0xC2: "Bad block size",
    0xC3: "Invalid command",
    0xC4: "Failed SPI operation",
    0xC5: "Failed SPI unlock",
    0xC6: "Not in flash mode",
    0xC7: "Inflate error",
    0xC8: "Not enough data",
    0xC9: "Too much data",
    0xFF: "Command not implemented",
}


class CommandFailedError(FlashError):
    """
    Device answered with a non-success status.

    Attributes:
        command: Name of the command that failed
        status: Raw status byte (non-zero)
        error: Reason byte following the status
    """

    def __init__(self, command: str, status: int, error: int):
        self.command = command
        self.status = status
        self.error = error
        self.description = ROM_ERROR_REASONS.get(error, "Unknown error")
        super().__init__(
            f"{command} failed (status=0x{status:02X}, error=0x{error:02X}: {self.description})"
        )


class CodecError(FlashError):
    """Compression or decompression stream error."""


class InvalidStateError(FlashError):
    """Transfer operation called out of order."""
