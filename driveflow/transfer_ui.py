from __future__ import annotations

import io
import threading
from dataclasses import dataclass
from typing import BinaryIO, Callable

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    ProgressColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)


# Bar total for transfers of unknown size; fractions are scaled onto it.
UNKNOWN_TOTAL = 1000

OUTCOME_STYLES = {
    "transferred": "green",
    "skipped": "dim",
    "conflict": "magenta",
    "failed": "red",
}


def _columns() -> list[ProgressColumn]:
    return [
        TextColumn("[bold cyan]{task.fields[direction]:>3}"),
        TextColumn("{task.fields[name]}", justify="left"),
        BarColumn(bar_width=None),
        TaskProgressColumn(),
        DownloadColumn(binary_units=True),
        TransferSpeedColumn(),
        TimeRemainingColumn(compact=True),
        TextColumn("{task.fields[outcome]}"),
    ]


@dataclass(slots=True)
class TransferTaskHandle:
    task_id: TaskID
    total: int
    path: str


class TransferProgressUI:
    """One Rich progress row per get/put, fed by 0..1 fraction callbacks."""

    def __init__(self, console: Console | None = None, *, transient: bool = False) -> None:
        self._lock = threading.Lock()
        self._progress = Progress(*_columns(), console=console, transient=transient, expand=True)

    def __enter__(self) -> "TransferProgressUI":
        self._progress.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._progress.stop()

    def add_transfer(self, *, action: str, path: str, total_bytes: int | None) -> TransferTaskHandle:
        total = total_bytes or UNKNOWN_TOTAL
        with self._lock:
            task_id = self._progress.add_task(path, total=total, direction=action, name=path, outcome="")
        return TransferTaskHandle(task_id=task_id, total=total, path=path)

    def fraction_callback(self, handle: TransferTaskHandle) -> Callable[[float], None]:
        def _update(fraction: float) -> None:
            done = round(handle.total * min(max(fraction, 0.0), 1.0))
            with self._lock:
                self._progress.update(handle.task_id, completed=done)

        return _update

    def _set_outcome(self, handle: TransferTaskHandle, outcome: str, **changes) -> None:
        style = OUTCOME_STYLES.get(outcome, "")
        label = f"[{style}]{outcome}[/{style}]" if style else outcome
        with self._lock:
            self._progress.update(handle.task_id, outcome=label, **changes)

    def finish(self, handle: TransferTaskHandle, state: str = "transferred") -> None:
        self._set_outcome(handle, state, completed=handle.total)

    def fail(self, handle: TransferTaskHandle, message: str = "failed") -> None:
        self._set_outcome(handle, message)


class ProgressFileReader(io.BufferedIOBase):
    """Read-only view of an open binary file that counts what has been read.

    ``on_read`` receives the running total after every non-empty read; a seek
    resets the total to the new position. Closing the view leaves the wrapped
    file open.
    """

    def __init__(self, file_obj: BinaryIO, *, on_read: Callable[[int], None]) -> None:
        self._source = file_obj
        self._on_read = on_read
        self._consumed = 0

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return self._source.seekable()

    def read(self, size: int | None = -1) -> bytes:
        chunk = self._source.read(-1 if size is None else size)
        if chunk:
            self._consumed += len(chunk)
            self._on_read(self._consumed)
        return chunk

    def readinto(self, buffer) -> int:
        chunk = self.read(len(buffer))
        buffer[: len(chunk)] = chunk
        return len(chunk)

    def tell(self) -> int:
        return self._source.tell()

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        self._consumed = self._source.seek(offset, whence)
        return self._consumed

    def fileno(self) -> int:
        return self._source.fileno()
