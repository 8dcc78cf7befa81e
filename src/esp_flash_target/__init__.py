"""
ESP Flash Target - flash firmware segments onto ESP32-family chips

Drives the ROM serial bootloader (or the RAM flasher stub) through the
begin / write segment / finish sequence.
"""

__version__ = "0.1.0"

from esp_flash_target.errors import FlashError
from esp_flash_target.image import Segment, load_segment
from esp_flash_target.protocol import Connection
from esp_flash_target.targets import Chip, Esp32Target, FlashSize

__all__ = [
    "Chip",
    "Connection",
    "Esp32Target",
    "FlashError",
    "FlashSize",
    "Segment",
    "load_segment",
    "__version__",
]
