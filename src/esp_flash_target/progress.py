"""
Progress observers for segment transfers.

A transfer reports progress in blocks: init(address, total_blocks) once,
update(blocks_done) after every acknowledged block, finish() once the whole
segment succeeded.
"""

from typing import Optional

from rich.console import Console
from rich.progress import BarColumn, Progress, TaskID, TextColumn, TimeRemainingColumn


class ProgressCallbacks:
    """Observer interface. The default implementation ignores every event."""

    def init(self, address: int, total_blocks: int) -> None:
        pass

    def update(self, blocks_done: int) -> None:
        pass

    def finish(self) -> None:
        pass

    def close(self) -> None:
        """Release display resources after an aborted segment."""


class NullProgress(ProgressCallbacks):
    """Used when the caller does not want progress reports."""


class RichProgress(ProgressCallbacks):
    """Renders one rich progress bar per segment."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()
        self._progress: Optional[Progress] = None
        self._task: Optional[TaskID] = None

    def init(self, address: int, total_blocks: int) -> None:
        self._progress = Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TextColumn("{task.completed}/{task.total} blocks"),
            TimeRemainingColumn(),
            console=self.console,
        )
        self._progress.start()
        self._task = self._progress.add_task(f"0x{address:08X}", total=total_blocks)

    def update(self, blocks_done: int) -> None:
        if self._progress is not None:
            self._progress.update(self._task, completed=blocks_done)

    def finish(self) -> None:
        self.close()

    def close(self) -> None:
        """Stop rendering; safe to call more than once."""
        if self._progress is not None:
            self._progress.stop()
            self._progress = None
            self._task = None
