from __future__ import annotations

from typing import AsyncIterator, BinaryIO, Callable, Protocol

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


ByteProgress = Callable[[int, int], None]


class Sink(Protocol):
    def write(self, data: bytes) -> int: ...


class RemoteDriveClient(Protocol):
    """What the sync engine needs from a remote store.

    Nodes handed back may omit ``identity.share_id``; callers backfill it from
    the folder they were listed under. ``get_file_revisions`` returns the
    newest revision first.
    """

    async def get_volumes(self) -> list[Volume]: ...

    async def get_share(self, share_id: str) -> Share: ...

    def list_children(self, folder: NodeIdentity) -> AsyncIterator[RemoteNode]: ...

    async def download(
        self,
        node: NodeIdentity,
        revision: Revision,
        sink: Sink,
        on_progress: ByteProgress,
    ) -> VerificationStatus: ...

    async def upload_new_file(
        self,
        parent: NodeIdentity,
        name: str,
        media_type: str,
        source: BinaryIO,
        mtime: int,
        on_progress: ByteProgress,
    ) -> FileNode: ...

    async def upload_new_file_or_revision(
        self,
        parent: NodeIdentity,
        name: str,
        media_type: str,
        source: BinaryIO,
        mtime: int,
        on_progress: ByteProgress,
    ) -> FileNode: ...

    async def create_folder(self, parent: NodeIdentity, name: str) -> FolderNode: ...

    async def get_node(self, share_id: str, node_id: str) -> RemoteNode: ...

    async def get_file_revisions(self, node: NodeIdentity) -> list[Revision]: ...
