"""Shared fixtures: an in-memory remote drive and a wired sync engine."""

import copy
import itertools
from collections import Counter

import pytest

from driveflow.engine import build_engine
from driveflow.models import (
    FileNode,
    FolderNode,
    NodeIdentity,
    NodeState,
    Revision,
    Share,
    VerificationStatus,
    Volume,
)


class FakeDrive:
    """Remote drive kept in dictionaries, recording the calls made against it."""

    share_id = "share-1"
    volume_id = "vol-1"
    root_id = "root"

    def __init__(self, *, omit_share_ids=True):
        self.omit_share_ids = omit_share_ids
        self.nodes = {
            self.root_id: FolderNode(identity=self._identity(self.root_id), name="")
        }
        self.children = {self.root_id: []}
        self.contents = {}
        self.list_calls = Counter()
        self.download_calls = []
        self.created_folders = []
        self.uploads = []
        self.verdict = VerificationStatus.OK
        self.fail_downloads = set()
        self.leave_draft = False
        self.stored_suffix = b""
        self._ids = itertools.count(1)

    # -- helpers for arranging remote state ---------------------------------

    def _identity(self, node_id):
        return NodeIdentity(self.share_id, self.volume_id, node_id)

    def _new_id(self, prefix):
        return f"{prefix}-{next(self._ids)}"

    def child_named(self, parent_id, name):
        for child_id in self.children.get(parent_id, []):
            if self.nodes[child_id].name == name:
                return self.nodes[child_id]
        return None

    def add_folder(self, name, parent_id=root_id):
        node_id = self._new_id("folder")
        node = FolderNode(identity=self._identity(node_id), name=name)
        self.nodes[node_id] = node
        self.children[node_id] = []
        self.children[parent_id].append(node_id)
        return node

    def add_file(self, name, data, parent_id=root_id, *, active=True):
        node_id = self._new_id("file")
        node = FileNode(identity=self._identity(node_id), name=name)
        self.nodes[node_id] = node
        self.children[parent_id].append(node_id)
        self.add_revision(node_id, data, active=active)
        return node

    def add_revision(self, node_id, data, *, active=True):
        node = self.nodes[node_id]
        revision = Revision(revision_id=self._new_id("rev"), size=len(data))
        self.contents[(node_id, revision.revision_id)] = data
        node.revisions.append(revision)
        node.size = len(data)
        node.active_revision = revision if active else None
        return revision

    def read(self, node_id):
        node = self.nodes[node_id]
        revision = node.active_revision or node.revisions[-1]
        return self.contents[(node_id, revision.revision_id)]

    def _handout(self, node):
        node = copy.deepcopy(node)
        if self.omit_share_ids:
            node.identity.share_id = None
        return node

    # -- remote collaborator protocol ---------------------------------------

    async def get_volumes(self):
        return [Volume(volume_id=self.volume_id, root_share_id=self.share_id)]

    async def get_share(self, share_id):
        return Share(share_id=share_id, volume_id=self.volume_id, root_node_id=self.root_id)

    async def list_children(self, folder):
        self.list_calls[folder.node_id] += 1
        for child_id in list(self.children[folder.node_id]):
            yield self._handout(self.nodes[child_id])

    async def download(self, node, revision, sink, on_progress):
        self.download_calls.append((node.node_id, revision.revision_id))
        data = self.contents[(node.node_id, revision.revision_id)]
        for offset in range(0, len(data), 4):
            sink.write(data[offset : offset + 4])
            on_progress(min(offset + 4, len(data)), len(data))
        if node.node_id in self.fail_downloads:
            return VerificationStatus.FAILED
        return self.verdict

    def _store_upload(self, parent, name, source):
        data = source.read() + self.stored_suffix
        existing = self.child_named(parent.node_id, name)
        if existing is None:
            node = self.add_file(name, data, parent.node_id)
        else:
            node = existing
            self.add_revision(node.identity.node_id, data)
        if self.leave_draft:
            node.state = NodeState.DRAFT
        self.uploads.append(name)
        return self._handout(node)

    async def upload_new_file(self, parent, name, media_type, source, mtime, on_progress):
        if self.child_named(parent.node_id, name) is not None:
            raise FileExistsError(name)
        node = self._store_upload(parent, name, source)
        on_progress(1, 1)
        return node

    async def upload_new_file_or_revision(self, parent, name, media_type, source, mtime, on_progress):
        node = self._store_upload(parent, name, source)
        on_progress(1, 1)
        return node

    async def create_folder(self, parent, name):
        self.created_folders.append(name)
        return self._handout(self.add_folder(name, parent.node_id))

    async def get_node(self, share_id, node_id):
        return copy.deepcopy(self.nodes[node_id])

    async def get_file_revisions(self, node):
        return list(reversed(copy.deepcopy(self.nodes[node.node_id].revisions)))


@pytest.fixture
def drive():
    return FakeDrive()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "state" / "state.db"


@pytest.fixture
def engine(drive, db_path):
    return build_engine(drive, db_path)


@pytest.fixture
def workdir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return path
