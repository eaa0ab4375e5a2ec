from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Union


class NodeState(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"


class VerificationStatus(str, Enum):
    OK = "ok"
    NOT_VERIFIED = "not_verified"
    FAILED = "failed"


class TargetKind(str, Enum):
    UNSPECIFIED = "unspecified"
    FILE = "file"
    FOLDER = "folder"


@dataclass(slots=True)
class NodeIdentity:
    share_id: str | None
    volume_id: str
    node_id: str

    def key(self) -> tuple[str, str, str]:
        """Key used by the tree cache and hash caches; requires a share id."""
        if self.share_id is None:
            raise ValueError(f"Node {self.node_id!r} has no share id")
        return (self.node_id, self.volume_id, self.share_id)

    def backfill_share(self, share_id: str | None) -> None:
        if self.share_id is None:
            self.share_id = share_id


@dataclass(slots=True)
class Revision:
    revision_id: str
    size: int | None = None
    content_sha256: str | None = None


@dataclass(slots=True)
class FolderNode:
    identity: NodeIdentity
    name: str
    state: NodeState = NodeState.ACTIVE


@dataclass(slots=True)
class FileNode:
    identity: NodeIdentity
    name: str
    state: NodeState = NodeState.ACTIVE
    active_revision: Revision | None = None
    revisions: list[Revision] = field(default_factory=list)
    size: int | None = None
    media_type: str | None = None


RemoteNode = Union[FolderNode, FileNode]


@dataclass(slots=True)
class Volume:
    volume_id: str
    root_share_id: str


@dataclass(slots=True)
class Share:
    share_id: str
    volume_id: str
    root_node_id: str


def clone_node(node: RemoteNode) -> RemoteNode:
    return copy.deepcopy(node)
