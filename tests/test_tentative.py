"""Tests for tentative (write then rename) files."""

import os
import stat
from pathlib import Path

import pytest

from driveflow.tentative import TENTATIVE_SUFFIX, NullTentativeFile, open_tentative


def _leftovers(directory):
    return [p for p in directory.iterdir() if p.name.endswith(TENTATIVE_SUFFIX)]


def test_commit_moves_content_into_place(workdir):
    dest = workdir / "out.bin"

    with open_tentative(dest) as tentative:
        tentative.stream.write(b"payload")
        assert not dest.exists()
        tentative.commit()

    assert dest.read_bytes() == b"payload"
    assert _leftovers(workdir) == []


def test_exception_discards_temporary_file(workdir):
    dest = workdir / "out.bin"

    with pytest.raises(RuntimeError):
        with open_tentative(dest) as tentative:
            tentative.stream.write(b"half")
            raise RuntimeError("interrupted")

    assert not dest.exists()
    assert _leftovers(workdir) == []


def test_commit_refuses_to_replace_without_overwrite(workdir):
    dest = workdir / "out.bin"
    dest.write_bytes(b"original")

    with pytest.raises(FileExistsError):
        with open_tentative(dest) as tentative:
            tentative.stream.write(b"new")
            tentative.commit(overwrite=False)

    assert dest.read_bytes() == b"original"
    assert _leftovers(workdir) == []


def test_commit_with_overwrite_replaces(workdir):
    dest = workdir / "out.bin"
    dest.write_bytes(b"original")

    with open_tentative(dest) as tentative:
        tentative.stream.write(b"new")
        tentative.commit(overwrite=True)

    assert dest.read_bytes() == b"new"


def test_null_tentative_writes_nothing(workdir):
    dest = workdir / "never.bin"

    with NullTentativeFile(dest) as tentative:
        assert tentative.stream.write(b"ignored") == 7
        tentative.commit()

    assert not dest.exists()


posix_only = pytest.mark.skipif(os.name != "posix", reason="POSIX permission bits")


@pytest.fixture
def umask_022():
    previous = os.umask(0o022)
    yield
    os.umask(previous)


@posix_only
def test_new_file_follows_umask(workdir, umask_022):
    dest = workdir / "out.bin"

    with open_tentative(dest) as tentative:
        tentative.stream.write(b"payload")
        tentative.commit()

    assert stat.S_IMODE(dest.stat().st_mode) == 0o644


@posix_only
def test_overwrite_keeps_existing_permissions(workdir, umask_022):
    dest = workdir / "out.bin"
    dest.write_bytes(b"original")
    dest.chmod(0o640)

    with open_tentative(dest) as tentative:
        tentative.stream.write(b"new")
        tentative.commit(overwrite=True)

    assert dest.read_bytes() == b"new"
    assert stat.S_IMODE(dest.stat().st_mode) == 0o640


def test_destination_created_after_open_is_not_replaced(workdir, monkeypatch):
    dest = workdir / "out.bin"

    with pytest.raises(FileExistsError):
        with open_tentative(dest) as tentative:
            tentative.stream.write(b"new")
            dest.write_bytes(b"arrived meanwhile")
            # Even if an existence check were fooled, the commit must not clobber.
            monkeypatch.setattr(Path, "exists", lambda self: False)
            tentative.commit(overwrite=False)

    monkeypatch.undo()
    assert dest.read_bytes() == b"arrived meanwhile"
    assert _leftovers(workdir) == []
