from __future__ import annotations

import logging
from contextlib import aclosing
from dataclasses import replace
from typing import Sequence

from driveflow.errors import NotAFolderError, RemoteNodeNotFoundError
from driveflow.models import FolderNode, NodeIdentity, RemoteNode
from driveflow.remote import RemoteDriveClient
from driveflow.tree_cache import RemoteTreeCache, RemotePath, descend_toward


logger = logging.getLogger(__name__)


def split_remote_path(path: str) -> RemotePath:
    return tuple(part for part in path.replace("\\", "/").split("/") if part)


def join_remote_path(parts: Sequence[str]) -> str:
    return "/".join(parts)


class PathResolver:
    """Turns slash-separated remote paths into nodes, creating folders on demand."""

    def __init__(self, client: RemoteDriveClient, tree: RemoteTreeCache) -> None:
        self._client = client
        self.tree = tree
        self._root: NodeIdentity | None = None

    async def root_identity(self) -> NodeIdentity:
        if self._root is None:
            volumes = await self._client.get_volumes()
            if not volumes:
                raise RemoteNodeNotFoundError("Remote has no volumes")
            main_volume = volumes[0]
            share = await self._client.get_share(main_volume.root_share_id)
            self._root = NodeIdentity(share.share_id, main_volume.volume_id, share.root_node_id)
        return replace(self._root)

    async def _start(self, start: NodeIdentity | None) -> NodeIdentity:
        if start is None:
            return await self.root_identity()
        return replace(start)

    async def resolve(
        self,
        start: NodeIdentity | None,
        target: Sequence[str],
    ) -> RemoteNode | None:
        start = await self._start(start)
        target = tuple(target)
        if not target:
            return FolderNode(identity=start, name="")

        async with aclosing(self.tree.list_recursive((), start, descend_toward(target))) as walk:
            async for path, node in walk:
                if path == target:
                    return node
        return None

    async def create_folder(self, parent: NodeIdentity, name: str) -> FolderNode:
        logger.info("Creating folder %s", name)
        folder = await self._client.create_folder(parent, name)
        self.tree.invalidate(parent)
        folder.identity.backfill_share(parent.share_id)
        return folder

    async def resolve_or_create_folders(
        self,
        start: NodeIdentity | None,
        target: Sequence[str],
    ) -> RemoteNode:
        start = await self._start(start)
        current: RemoteNode = FolderNode(identity=start, name="")

        for segment in target:
            if not isinstance(current, FolderNode):
                raise NotAFolderError(f"{current.name} is a file, cannot descend into it")

            children = await self.tree.list_children(current.identity)
            child = next((node for node in children if node.name == segment), None)

            if child is None:
                child = await self.create_folder(current.identity, segment)
            else:
                logger.info("Found existing child %s", child.name)

            current = child

        if not isinstance(current, FolderNode):
            raise NotAFolderError(f"{join_remote_path(target)} is a file, expected a folder")
        return current
