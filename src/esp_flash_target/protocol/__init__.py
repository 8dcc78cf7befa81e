"""
Bootloader wire protocol: SLIP framing, command encoding and the serial
connection.
"""

from .slip import SlipDecoder, slip_encode
from .commands import Command, CommandType, checksum
from .connection import USB_SERIAL_JTAG_PID, CommandResponse, Connection

__all__ = [
    "SlipDecoder",
    "slip_encode",
    "Command",
    "CommandType",
    "checksum",
    "USB_SERIAL_JTAG_PID",
    "CommandResponse",
    "Connection",
]
