from __future__ import annotations

import os
import secrets
import stat
from pathlib import Path
from typing import BinaryIO, Callable, Protocol


TENTATIVE_SUFFIX = ".dflow-part"
NEW_FILE_MODE = 0o666


class Tentative(Protocol):
    stream: BinaryIO

    def commit(self, overwrite: bool = False) -> None: ...

    def discard(self) -> None: ...

    def __enter__(self) -> "Tentative": ...

    def __exit__(self, exc_type, exc, tb) -> None: ...


def _create_sibling(final_path: Path) -> tuple[int, Path]:
    """Exclusively create a hidden file next to ``final_path``, honouring the umask."""
    flags = os.O_WRONLY | os.O_CREAT | os.O_EXCL | getattr(os, "O_BINARY", 0)
    while True:
        candidate = final_path.with_name(
            f".{final_path.name}.{secrets.token_hex(4)}{TENTATIVE_SUFFIX}"
        )
        try:
            return os.open(candidate, flags, NEW_FILE_MODE), candidate
        except FileExistsError:
            continue


class TentativeFile:
    """Write to a hidden sibling file and move it onto ``path`` on commit.

    Until ``commit`` succeeds the destination is never touched. Leaving the
    context without committing deletes the temporary file. Without
    ``overwrite`` the move is a hard link, so a destination that appeared in
    the meantime makes the commit fail instead of being replaced.
    """

    def __init__(self, path: Path) -> None:
        self.final_path = Path(path)
        fd, self.tmp_path = _create_sibling(self.final_path)
        self.stream: BinaryIO = os.fdopen(fd, "wb")
        self._done = False

    def commit(self, overwrite: bool = False) -> None:
        if self._done:
            return
        self.stream.close()
        if overwrite:
            try:
                mode = stat.S_IMODE(self.final_path.stat().st_mode)
            except FileNotFoundError:
                mode = None
            if mode is not None:
                os.chmod(self.tmp_path, mode)
            os.replace(self.tmp_path, self.final_path)
        else:
            try:
                os.link(self.tmp_path, self.final_path)
            except FileExistsError:
                raise FileExistsError(
                    f"Refusing to replace existing file: {self.final_path}"
                ) from None
            self.tmp_path.unlink()
        self._done = True

    def discard(self) -> None:
        if self._done:
            return
        self.stream.close()
        self.tmp_path.unlink(missing_ok=True)
        self._done = True

    def __enter__(self) -> "TentativeFile":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.discard()


class _NullStream:
    def write(self, data: bytes) -> int:
        return len(data)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        pass


class NullTentativeFile:
    """Tentative file that discards everything; commit is a no-op."""

    def __init__(self, path: Path | None = None) -> None:
        self.final_path = path
        self.stream = _NullStream()

    def commit(self, overwrite: bool = False) -> None:
        pass

    def discard(self) -> None:
        pass

    def __enter__(self) -> "NullTentativeFile":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        pass


TentativeFactory = Callable[[Path], Tentative]


def open_tentative(path: Path) -> TentativeFile:
    return TentativeFile(path)
