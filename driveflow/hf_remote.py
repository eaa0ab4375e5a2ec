from __future__ import annotations

import asyncio
import hashlib
import logging
import os
from contextlib import contextmanager
from typing import Any, AsyncIterator, BinaryIO, Callable, Iterator, TypeVar

from huggingface_hub import HfApi, HfFileSystem
from huggingface_hub.hf_api import RepoFile, RepoFolder
from huggingface_hub.utils import (
    are_progress_bars_disabled,
    disable_progress_bars,
    enable_progress_bars,
)

from driveflow.errors import NotAFileError, RemoteNodeNotFoundError
from driveflow.models import (
    FileNode,
    FolderNode,
    NodeIdentity,
    RemoteNode,
    Revision,
    Share,
    VerificationStatus,
    Volume,
)
from driveflow.remote import ByteProgress, Sink
from driveflow.transfer_ui import ProgressFileReader


logger = logging.getLogger(__name__)

# The Hub has no empty folders; an empty marker file keeps created folders alive.
FOLDER_PLACEHOLDER = ".dflow-keep"
DOWNLOAD_CHUNK_SIZE = 1024 * 1024
FS_PREFIXES = {"model": "", "dataset": "datasets/", "space": "spaces/"}
T = TypeVar("T")


TIMEOUT_ERROR_NAMES = frozenset(
    {"TimeoutException", "ReadTimeout", "ConnectTimeout", "ReadTimeoutError"}
)


def _causes(exc: BaseException) -> Iterator[BaseException]:
    """``exc`` followed by its ``__cause__``/``__context__`` chain, without cycles."""
    visited: set[int] = set()
    while exc is not None and id(exc) not in visited:
        visited.add(id(exc))
        yield exc
        exc = exc.__cause__ or exc.__context__


def _is_timeout_error(exc: BaseException) -> bool:
    return any(
        isinstance(link, TimeoutError)
        or type(link).__name__ in TIMEOUT_ERROR_NAMES
        or "timeout" in str(link).lower()
        or "timed out" in str(link).lower()
        for link in _causes(exc)
    )


async def _retry_on_timeout(
    func: Callable[[], T],
    *,
    operation: str,
    max_attempts: int = 3,
    base_delay_seconds: float = 1.0,
) -> T:
    """Run a blocking Hub call in a worker thread, retrying timeouts with backoff."""
    attempt = 1
    while True:
        try:
            return await asyncio.to_thread(func)
        except Exception as exc:
            if attempt >= max_attempts or not _is_timeout_error(exc):
                raise
            sleep_seconds = base_delay_seconds * (2 ** (attempt - 1))
            logger.warning(
                "%s timed out, retrying in %.1fs (%d/%d)",
                operation,
                sleep_seconds,
                attempt + 1,
                max_attempts,
            )
            await asyncio.sleep(sleep_seconds)
            attempt += 1


@contextmanager
def quiet_progress_bars():
    """Disable huggingface_hub progress bars while dflow renders its own Rich UI."""
    was_disabled = bool(are_progress_bars_disabled())
    if not was_disabled:
        disable_progress_bars()
    try:
        yield
    finally:
        if not was_disabled:
            enable_progress_bars()


def _basename(path: str) -> str:
    return path.rstrip("/").rsplit("/", 1)[-1]


def _join(parent_path: str, name: str) -> str:
    return f"{parent_path}/{name}" if parent_path else name


class HfDriveClient:
    """Remote drive backed by a Hugging Face Hub repository.

    Identities map onto the repo as (repo type, repo id, path in repo); the
    repo root is the empty path. A file's revision id is its git blob id, so a
    revision is immutable exactly like the sync engine expects.
    """

    def __init__(
        self,
        repo_id: str,
        *,
        token: str | None = None,
        repo_type: str = "model",
        revision: str = "main",
        api: Any | None = None,
        fs: Any | None = None,
    ) -> None:
        if repo_type not in FS_PREFIXES:
            raise ValueError(f"Unsupported repo type: {repo_type}")
        self._repo_id = repo_id
        self._repo_type = repo_type
        self._revision = revision
        self._token = token
        self._api = api or HfApi(token=token)
        self._fs = fs or HfFileSystem(token=token)

    def _identity(self, path: str, share_id: str | None) -> NodeIdentity:
        return NodeIdentity(share_id, self._repo_id, path)

    def _to_node(self, entry: RepoFile | RepoFolder, share_id: str | None) -> RemoteNode:
        if isinstance(entry, RepoFolder):
            return FolderNode(identity=self._identity(entry.path, share_id), name=_basename(entry.path))

        lfs = getattr(entry, "lfs", None)
        revision = Revision(
            revision_id=str(entry.blob_id),
            size=int(entry.size) if entry.size is not None else None,
            content_sha256=getattr(lfs, "sha256", None) if lfs is not None else None,
        )
        return FileNode(
            identity=self._identity(entry.path, share_id),
            name=_basename(entry.path),
            active_revision=revision,
            revisions=[revision],
            size=revision.size,
        )

    async def _paths_info(self, paths: list[str]) -> list[RepoFile | RepoFolder]:
        def _call():
            return self._api.get_paths_info(
                repo_id=self._repo_id,
                paths=paths,
                repo_type=self._repo_type,
                revision=self._revision,
                token=self._token,
            )

        return list(await _retry_on_timeout(_call, operation=f"paths_info:{paths}"))

    async def get_volumes(self) -> list[Volume]:
        return [Volume(volume_id=self._repo_id, root_share_id=self._repo_type)]

    async def get_share(self, share_id: str) -> Share:
        return Share(share_id=share_id, volume_id=self._repo_id, root_node_id="")

    async def list_children(self, folder: NodeIdentity) -> AsyncIterator[RemoteNode]:
        def _call():
            return list(
                self._api.list_repo_tree(
                    repo_id=self._repo_id,
                    path_in_repo=folder.node_id or None,
                    recursive=False,
                    repo_type=self._repo_type,
                    revision=self._revision,
                    token=self._token,
                )
            )

        entries = await _retry_on_timeout(_call, operation=f"list:{folder.node_id or '/'}")
        for entry in entries:
            if _basename(entry.path) == FOLDER_PLACEHOLDER:
                continue
            # Share ids are left for the caller to backfill.
            yield self._to_node(entry, None)

    async def download(
        self,
        node: NodeIdentity,
        revision: Revision,
        sink: Sink,
        on_progress: ByteProgress,
    ) -> VerificationStatus:
        size = revision.size
        if size is None:
            remote = await self.get_node(node.share_id or self._repo_type, node.node_id)
            size = remote.size if isinstance(remote, FileNode) else None

        sha256 = hashlib.sha256()
        git_blob = hashlib.sha1()
        if size is not None:
            git_blob.update(f"blob {size}\0".encode("ascii"))

        fs_path = f"{FS_PREFIXES[self._repo_type]}{self._repo_id}/{node.node_id}"
        fh = await _retry_on_timeout(
            lambda: self._fs.open(fs_path, "rb", revision=self._revision),
            operation=f"open:{node.node_id}",
        )
        done = 0
        try:
            while True:
                chunk = await asyncio.to_thread(fh.read, DOWNLOAD_CHUNK_SIZE)
                if not chunk:
                    break
                sha256.update(chunk)
                git_blob.update(chunk)
                sink.write(chunk)
                done += len(chunk)
                on_progress(done, size or done)
        finally:
            await asyncio.to_thread(fh.close)

        if size is not None and done != size:
            logger.warning("%s: expected %d bytes, got %d", node.node_id, size, done)
            return VerificationStatus.FAILED
        if revision.content_sha256:
            matches = sha256.hexdigest() == revision.content_sha256
        elif size is not None:
            matches = git_blob.hexdigest() == revision.revision_id
        else:
            return VerificationStatus.NOT_VERIFIED
        return VerificationStatus.OK if matches else VerificationStatus.FAILED

    async def _upload(
        self,
        parent: NodeIdentity,
        name: str,
        source: BinaryIO,
        mtime: int,
        on_progress: ByteProgress,
    ) -> FileNode:
        path = _join(parent.node_id, name)
        total = os.fstat(source.fileno()).st_size
        reader = ProgressFileReader(source, on_read=lambda done: on_progress(min(done, total), total))

        def _call():
            reader.seek(0)
            return self._api.upload_file(
                path_or_fileobj=reader,
                path_in_repo=path,
                repo_id=self._repo_id,
                repo_type=self._repo_type,
                revision=self._revision,
                token=self._token,
                commit_message=f"DriveFlow put: {path}",
                commit_description=f"mtime={mtime}",
            )

        await _retry_on_timeout(_call, operation=f"upload:{path}")
        node = await self.get_node(parent.share_id or self._repo_type, path)
        if not isinstance(node, FileNode):
            raise NotAFileError(f"{path} is a folder on the remote")
        return node

    async def upload_new_file(
        self,
        parent: NodeIdentity,
        name: str,
        media_type: str,
        source: BinaryIO,
        mtime: int,
        on_progress: ByteProgress,
    ) -> FileNode:
        path = _join(parent.node_id, name)
        if await self._paths_info([path]):
            raise FileExistsError(f"{path} already exists in {self._repo_id}")
        return await self._upload(parent, name, source, mtime, on_progress)

    async def upload_new_file_or_revision(
        self,
        parent: NodeIdentity,
        name: str,
        media_type: str,
        source: BinaryIO,
        mtime: int,
        on_progress: ByteProgress,
    ) -> FileNode:
        return await self._upload(parent, name, source, mtime, on_progress)

    async def create_folder(self, parent: NodeIdentity, name: str) -> FolderNode:
        path = _join(parent.node_id, name)

        def _call():
            return self._api.upload_file(
                path_or_fileobj=b"",
                path_in_repo=_join(path, FOLDER_PLACEHOLDER),
                repo_id=self._repo_id,
                repo_type=self._repo_type,
                revision=self._revision,
                token=self._token,
                commit_message=f"DriveFlow mkdir: {path}",
            )

        await _retry_on_timeout(_call, operation=f"mkdir:{path}")
        return FolderNode(identity=self._identity(path, parent.share_id), name=name)

    async def get_node(self, share_id: str, node_id: str) -> RemoteNode:
        if not node_id:
            return FolderNode(identity=self._identity("", share_id), name="")
        entries = await self._paths_info([node_id])
        if not entries:
            raise RemoteNodeNotFoundError(f"{node_id} not found in {self._repo_id}")
        return self._to_node(entries[0], share_id)

    async def get_file_revisions(self, node: NodeIdentity) -> list[Revision]:
        remote = await self.get_node(node.share_id or self._repo_type, node.node_id)
        if not isinstance(remote, FileNode):
            return []
        return list(remote.revisions)
