"""Tests for the Hugging Face Hub adapter, with the Hub replaced by fakes."""

import hashlib
import io

import pytest
from huggingface_hub.hf_api import RepoFile, RepoFolder

from driveflow.hf_remote import FOLDER_PLACEHOLDER, HfDriveClient, _is_timeout_error, _retry_on_timeout
from driveflow.models import FileNode, FolderNode, NodeIdentity, Revision, VerificationStatus


DATA = b"weights and biases"


def git_blob_id(data):
    return hashlib.sha1(b"blob %d\0" % len(data) + data).hexdigest()


class FakeFileSystem:
    def __init__(self, files):
        self.files = files
        self.opened = []

    def open(self, path, mode="rb", revision=None):
        self.opened.append((path, revision))
        return io.BytesIO(self.files[path])


class FakeApi:
    def __init__(self, entries):
        self.entries = entries

    def list_repo_tree(self, repo_id, path_in_repo=None, **kwargs):
        return iter(self.entries)


def _client(fs=None, api=None, repo_type="model"):
    return HfDriveClient(
        "user/repo",
        token="hf_test",
        repo_type=repo_type,
        revision="main",
        api=api or object(),
        fs=fs or FakeFileSystem({}),
    )


@pytest.mark.asyncio
async def test_download_verifies_git_blob_id():
    fs = FakeFileSystem({"user/repo/w.bin": DATA})
    client = _client(fs)
    sink = io.BytesIO()
    progress = []

    verdict = await client.download(
        NodeIdentity("model", "user/repo", "w.bin"),
        Revision(revision_id=git_blob_id(DATA), size=len(DATA)),
        sink,
        lambda done, total: progress.append((done, total)),
    )

    assert verdict is VerificationStatus.OK
    assert sink.getvalue() == DATA
    assert progress[-1] == (len(DATA), len(DATA))
    assert fs.opened == [("user/repo/w.bin", "main")]


@pytest.mark.asyncio
async def test_download_reports_changed_blob_as_failed():
    client = _client(FakeFileSystem({"user/repo/w.bin": DATA}))

    verdict = await client.download(
        NodeIdentity("model", "user/repo", "w.bin"),
        Revision(revision_id=git_blob_id(b"older content"), size=len(DATA)),
        io.BytesIO(),
        lambda done, total: None,
    )

    assert verdict is VerificationStatus.FAILED


@pytest.mark.asyncio
async def test_download_verifies_lfs_sha256_for_datasets():
    fs = FakeFileSystem({"datasets/user/repo/big/data.bin": DATA})
    client = _client(fs, repo_type="dataset")

    verdict = await client.download(
        NodeIdentity("dataset", "user/repo", "big/data.bin"),
        Revision(
            revision_id="pointer-blob",
            size=len(DATA),
            content_sha256=hashlib.sha256(DATA).hexdigest(),
        ),
        io.BytesIO(),
        lambda done, total: None,
    )

    assert verdict is VerificationStatus.OK
    assert fs.opened[0][0] == "datasets/user/repo/big/data.bin"


@pytest.mark.asyncio
async def test_download_size_mismatch_fails():
    client = _client(FakeFileSystem({"user/repo/w.bin": DATA[:4]}))

    verdict = await client.download(
        NodeIdentity("model", "user/repo", "w.bin"),
        Revision(revision_id=git_blob_id(DATA), size=len(DATA)),
        io.BytesIO(),
        lambda done, total: None,
    )

    assert verdict is VerificationStatus.FAILED


@pytest.mark.asyncio
async def test_listing_hides_folder_placeholders():
    api = FakeApi(
        [
            RepoFolder(path="docs", oid="tree-1"),
            RepoFile(path=FOLDER_PLACEHOLDER, size=0, oid="blob-0"),
            RepoFile(path="readme.md", size=5, oid="blob-1"),
        ]
    )
    client = _client(api=api)

    children = [child async for child in client.list_children(NodeIdentity("model", "user/repo", ""))]

    assert [child.name for child in children] == ["docs", "readme.md"]
    assert isinstance(children[0], FolderNode)
    assert isinstance(children[1], FileNode)
    assert children[1].active_revision.revision_id == "blob-1"
    assert all(child.identity.share_id is None for child in children)


@pytest.mark.asyncio
async def test_root_share_maps_to_repo():
    client = _client()

    (volume,) = await client.get_volumes()
    share = await client.get_share(volume.root_share_id)

    assert volume.volume_id == "user/repo"
    assert share.root_node_id == ""


def test_unknown_repo_type_is_rejected():
    with pytest.raises(ValueError):
        _client(repo_type="bucket")


@pytest.mark.asyncio
async def test_timeouts_are_retried():
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise TimeoutError("read timed out")
        return "ok"

    result = await _retry_on_timeout(flaky, operation="flaky", base_delay_seconds=0)

    assert result == "ok"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_other_errors_are_not_retried():
    calls = []

    def broken():
        calls.append(1)
        raise PermissionError("forbidden")

    with pytest.raises(PermissionError):
        await _retry_on_timeout(broken, operation="broken", base_delay_seconds=0)

    assert len(calls) == 1


def test_timeout_detected_through_exception_chain():
    class ReadTimeout(Exception):
        pass

    try:
        try:
            raise ReadTimeout("socket")
        except ReadTimeout as inner:
            raise RuntimeError("request failed") from inner
    except RuntimeError as outer:
        wrapped = outer

    assert _is_timeout_error(wrapped)
    assert not _is_timeout_error(RuntimeError("404 not found"))
