"""Shared fixtures: an in-memory connection that records every command."""

from typing import List, Optional

import pytest

from esp_flash_target.errors import CommandFailedError
from esp_flash_target.progress import ProgressCallbacks
from esp_flash_target.protocol.connection import CommandResponse


class RecordingConnection:
    """
    Stand-in for Connection that acknowledges every command.

    Set `fail_at` to the 1-based index of a command that should fail with
    `failure` (a CommandFailedError by default).
    """

    def __init__(
        self,
        use_stub: bool = False,
        compression: bool = False,
        usb_pid: Optional[int] = None,
        fail_at: Optional[int] = None,
        failure: Optional[Exception] = None,
    ):
        self.use_stub = use_stub
        self.compression = compression
        self.usb_pid = usb_pid
        self.fail_at = fail_at
        self.failure = failure or CommandFailedError("flash data", 0x01, 0xC1)
        self.commands: List = []
        self.timeouts: List[float] = []
        self.resets = 0

    def with_timeout(self, seconds, func):
        self.timeouts.append(seconds)
        return func(self)

    def command(self, cmd):
        self.commands.append(cmd)
        if self.fail_at is not None and len(self.commands) == self.fail_at:
            raise self.failure
        return CommandResponse(command=int(cmd.TYPE), value=0, data=b"\x00\x00\x00\x00")

    def should_use_compression(self) -> bool:
        return self.compression

    def get_usb_pid(self) -> Optional[int]:
        return self.usb_pid

    def reset(self) -> None:
        self.resets += 1

    def command_types(self):
        return [type(cmd).__name__ for cmd in self.commands]


class RecordingProgress(ProgressCallbacks):
    """Progress observer that records every event as a tuple."""

    def __init__(self):
        self.events = []

    def init(self, address, total_blocks):
        self.events.append(("init", address, total_blocks))

    def update(self, blocks_done):
        self.events.append(("update", blocks_done))

    def finish(self):
        self.events.append(("finish",))

    def close(self):
        self.events.append(("close",))


@pytest.fixture
def make_connection():
    """Factory for RecordingConnection with per-test options."""
    return RecordingConnection


@pytest.fixture
def connection():
    return RecordingConnection()


@pytest.fixture
def progress():
    return RecordingProgress()
