"""
SLIP framing used by the ESP serial bootloader.

Frame format:
    0xC0 | payload (0xC0 -> 0xDB 0xDC, 0xDB -> 0xDB 0xDD) | 0xC0
"""

from typing import List, Optional

from esp_flash_target.errors import TransportError

SLIP_END = 0xC0
SLIP_ESC = 0xDB
SLIP_ESC_END = 0xDC
SLIP_ESC_ESC = 0xDD


def slip_encode(packet: bytes) -> bytes:
    """Wrap a packet in SLIP delimiters, escaping END and ESC bytes."""
    escaped = packet.replace(b"\xdb", b"\xdb\xdd").replace(b"\xc0", b"\xdb\xdc")
    return b"\xc0" + escaped + b"\xc0"


class SlipDecoder:
    """
    Incremental SLIP decoder.

    Feed raw bytes as they arrive from the port; complete packets are
    returned as soon as their closing delimiter is seen. Partial packets
    are kept between calls.
    """

    def __init__(self) -> None:
        self._partial: Optional[bytearray] = None
        self._in_escape = False

    @property
    def in_packet(self) -> bool:
        """True while a packet has been opened but not closed."""
        return self._partial is not None

    def reset(self) -> None:
        self._partial = None
        self._in_escape = False

    def feed(self, data: bytes) -> List[bytes]:
        packets: List[bytes] = []
        for b in data:
            if self._partial is None:
                # Noise between frames is dropped
                if b == SLIP_END:
                    self._partial = bytearray()
                continue

            if self._in_escape:
                self._in_escape = False
                if b == SLIP_ESC_END:
                    self._partial.append(SLIP_END)
                elif b == SLIP_ESC_ESC:
                    self._partial.append(SLIP_ESC)
                else:
                    self.reset()
                    raise TransportError(f"Invalid SLIP escape (0xDB, 0x{b:02X})")
            elif b == SLIP_ESC:
                self._in_escape = True
            elif b == SLIP_END:
                if self._partial:
                    packets.append(bytes(self._partial))
                    self._partial = None
                # An empty frame means the END was really a start marker
            else:
                self._partial.append(b)
        return packets
