"""Tests for remote path resolution and folder creation."""

import pytest

from driveflow.errors import NotAFolderError
from driveflow.models import FileNode, FolderNode
from driveflow.resolver import join_remote_path, split_remote_path


def test_split_remote_path_drops_empty_segments():
    assert split_remote_path("/a//b/") == ("a", "b")
    assert split_remote_path("") == ()
    assert join_remote_path(("a", "b")) == "a/b"


@pytest.mark.asyncio
async def test_resolve_empty_path_returns_root(engine, drive):
    node = await engine.resolver.resolve(None, ())

    assert isinstance(node, FolderNode)
    assert node.identity == drive.nodes[drive.root_id].identity


@pytest.mark.asyncio
async def test_resolve_nested_file(engine, drive):
    docs = drive.add_folder("docs")
    drive.add_file("report.txt", b"r", docs.identity.node_id)

    node = await engine.resolver.resolve(None, ("docs", "report.txt"))

    assert isinstance(node, FileNode)
    assert node.name == "report.txt"
    assert node.identity.share_id == drive.share_id


@pytest.mark.asyncio
async def test_resolve_missing_path_returns_none(engine, drive):
    drive.add_folder("docs")

    assert await engine.resolver.resolve(None, ("docs", "missing.txt")) is None
    assert await engine.resolver.resolve(None, ("nothing",)) is None


@pytest.mark.asyncio
async def test_resolve_or_create_builds_missing_chain(engine, drive):
    folder = await engine.resolver.resolve_or_create_folders(None, ("docs", "2024"))

    assert isinstance(folder, FolderNode)
    assert folder.name == "2024"
    assert folder.identity.share_id == drive.share_id
    assert drive.created_folders == ["docs", "2024"]


@pytest.mark.asyncio
async def test_resolve_or_create_is_idempotent(engine, drive):
    first = await engine.resolver.resolve_or_create_folders(None, ("docs", "2024"))
    second = await engine.resolver.resolve_or_create_folders(None, ("docs", "2024"))

    assert second.identity == first.identity
    assert drive.created_folders == ["docs", "2024"]


@pytest.mark.asyncio
async def test_created_folder_is_visible_to_next_listing(engine, drive):
    root = await engine.resolver.root_identity()
    assert await engine.tree.list_children(root) == []

    await engine.resolver.resolve_or_create_folders(None, ("fresh",))
    children = await engine.tree.list_children(root)

    assert [child.name for child in children] == ["fresh"]
    assert drive.list_calls[drive.root_id] == 2


@pytest.mark.asyncio
async def test_file_in_the_way_is_rejected(engine, drive):
    drive.add_file("docs", b"not a folder")

    with pytest.raises(NotAFolderError):
        await engine.resolver.resolve_or_create_folders(None, ("docs", "inner"))


@pytest.mark.asyncio
async def test_root_identity_is_looked_up_once(engine, drive):
    first = await engine.resolver.root_identity()
    first.node_id = "tampered"

    second = await engine.resolver.root_identity()
    assert second.node_id == drive.root_id
