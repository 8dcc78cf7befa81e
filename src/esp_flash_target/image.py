"""Flash segments: raw bytes paired with their target flash address."""

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Union

MAX_ADDRESS = 0xFFFFFFFF


@dataclass(frozen=True)
class Segment:
    """
    Contiguous block of firmware bytes destined for one flash address.

    Attributes:
        address: Flash offset (unsigned 32-bit)
        data: Bytes to write
    """
    address: int
    data: bytes

    def __post_init__(self):
        if not 0 <= self.address <= MAX_ADDRESS:
            raise ValueError(f"Segment address out of range: {self.address:#x}")
        if not isinstance(self.data, bytes):
            object.__setattr__(self, "data", bytes(self.data))

    @property
    def end_address(self) -> int:
        """Return end address (exclusive)."""
        return self.address + len(self.data)

    @property
    def region(self) -> str:
        return f"0x{self.address:08X}-0x{self.end_address:08X}"

    def sha256(self) -> str:
        return hashlib.sha256(self.data).hexdigest()


def load_segment(address: int, path: Union[str, Path]) -> Segment:
    """
    Read a raw binary file into a Segment.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is empty or the address is invalid
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Image not found: {path}")
    data = path.read_bytes()
    if not data:
        raise ValueError(f"Image is empty: {path}")
    return Segment(address=address, data=data)
