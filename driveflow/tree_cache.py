from __future__ import annotations

import logging
from dataclasses import replace
from typing import AsyncIterator, Callable, Iterator

from driveflow.errors import TraversalDepthError
from driveflow.models import FolderNode, NodeIdentity, RemoteNode, clone_node
from driveflow.remote import RemoteDriveClient


logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 256

RemotePath = tuple[str, ...]
DescendPredicate = Callable[[RemotePath, FolderNode], bool]


class RemoteTreeCache:
    """Memoized folder listings keyed by the folder's identity.

    Entries are only ever dropped, never patched: any mutation of a folder's
    children must be followed by ``invalidate`` on that folder. Concurrent
    misses on the same folder may both hit the remote; the later write wins
    with an equivalent listing.
    """

    def __init__(self, client: RemoteDriveClient, *, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self._client = client
        self._max_depth = max_depth
        self._children: dict[tuple[str, str, str], tuple[RemoteNode, ...]] = {}

    async def list_children(self, folder: NodeIdentity) -> list[RemoteNode]:
        key = folder.key()
        children = self._children.get(key)
        if children is None:
            fetched: list[RemoteNode] = []
            async for child in self._client.list_children(folder):
                child.identity.backfill_share(folder.share_id)
                fetched.append(child)
            children = tuple(fetched)
            self._children[key] = children
            logger.debug("Listed %d child(ren) of %s", len(children), folder.node_id)

        return [clone_node(child) for child in children]

    def invalidate(self, folder: NodeIdentity) -> None:
        self._children.pop(folder.key(), None)

    def is_cached(self, folder: NodeIdentity) -> bool:
        return folder.key() in self._children

    async def list_recursive(
        self,
        start_path: RemotePath,
        start: NodeIdentity,
        should_descend: DescendPredicate,
    ) -> AsyncIterator[tuple[RemotePath, RemoteNode]]:
        """Depth-first pre-order walk below ``start``.

        Each child is yielded before its own children. Folders are entered
        only when ``should_descend(path, folder)`` is true. The pending sibling
        cursors live on an explicit stack whose height is capped at
        ``max_depth``.
        """
        stack: list[tuple[RemotePath, Iterator[RemoteNode]]] = [
            (tuple(start_path), iter(await self.list_children(start)))
        ]

        while stack:
            prefix, cursor = stack[-1]
            child = next(cursor, None)
            if child is None:
                stack.pop()
                continue

            child_path = (*prefix, child.name)
            descend_into = replace(child.identity)
            yield child_path, child

            if isinstance(child, FolderNode) and should_descend(child_path, child):
                if len(stack) >= self._max_depth:
                    raise TraversalDepthError(
                        f"Remote tree deeper than {self._max_depth} levels at {'/'.join(child_path)}"
                    )
                stack.append((child_path, iter(await self.list_children(descend_into))))


def descend_everywhere(_path: RemotePath, _folder: FolderNode) -> bool:
    return True


def descend_toward(target: RemotePath) -> DescendPredicate:
    """Only enter folders whose path is a prefix of ``target``."""
    target = tuple(target)

    def _predicate(path: RemotePath, _folder: FolderNode) -> bool:
        return len(path) <= len(target) and target[: len(path)] == tuple(path)

    return _predicate
