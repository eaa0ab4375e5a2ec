from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable

from driveflow.errors import LocalFileNotFoundError
from driveflow.hasher import hash_stream
from driveflow.models import NodeIdentity
from driveflow.state_db import LOCAL_HASH_TABLE, REMOTE_HASH_TABLE, fetch_and_touch, upsert


logger = logging.getLogger(__name__)

Opener = Callable[[Path], BinaryIO]


@dataclass(slots=True)
class LocalHashEntry:
    mtime: int
    hash: str


def canonical_path(path: str | os.PathLike[str]) -> Path:
    return Path(path).expanduser().resolve()


def file_mtime(path: str | os.PathLike[str]) -> int:
    """Modification time truncated to whole seconds."""
    return int(os.stat(path).st_mtime)


def _open_binary(path: Path) -> BinaryIO:
    return path.open("rb")


class LocalHashCache:
    """Persistent content hashes of local files, keyed by canonical path.

    A row is trusted only while the file's modification time (to the second)
    still equals the stored one. Rows for deleted files are left in place.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path

    async def get(self, path: str | os.PathLike[str]) -> LocalHashEntry | None:
        row = await fetch_and_touch(self._db_path, LOCAL_HASH_TABLE, (str(canonical_path(path)),))
        if row is None:
            return None
        return LocalHashEntry(mtime=int(row["mtime"]), hash=str(row["hash"]))

    async def put(self, path: str | os.PathLike[str], mtime: int, content_hash: str) -> None:
        await upsert(
            self._db_path,
            LOCAL_HASH_TABLE,
            (str(canonical_path(path)),),
            (int(mtime), content_hash),
        )

    async def get_or_compute(
        self,
        path: str | os.PathLike[str],
        opener: Opener | None = None,
    ) -> str:
        resolved = canonical_path(path)
        opener = opener or _open_binary
        try:
            fh = opener(resolved)
        except OSError as exc:
            raise LocalFileNotFoundError(str(resolved), exc.strerror) from exc

        with fh:
            try:
                mtime = file_mtime(resolved)
            except OSError as exc:
                raise LocalFileNotFoundError(str(resolved), exc.strerror) from exc

            cached = await self.get(resolved)
            if cached is not None and cached.mtime == mtime:
                return cached.hash

            content_hash = await hash_stream(fh)

        logger.debug("Hashed %s: %s", resolved, content_hash)
        await self.put(resolved, mtime, content_hash)
        return content_hash


class RemoteHashCache:
    """Persistent content hashes of immutable remote revisions."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path

    async def get(self, identity: NodeIdentity, revision_id: str) -> str | None:
        row = await fetch_and_touch(self._db_path, REMOTE_HASH_TABLE, (*identity.key(), revision_id))
        if row is None:
            return None
        return str(row["hash"])

    async def put(self, identity: NodeIdentity, revision_id: str, content_hash: str) -> None:
        await upsert(
            self._db_path,
            REMOTE_HASH_TABLE,
            (*identity.key(), revision_id),
            (content_hash,),
        )
