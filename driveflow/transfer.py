from __future__ import annotations

import logging
import mimetypes
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Sequence

from driveflow.errors import (
    DraftStateError,
    IntegrityMismatchError,
    LocalFileNotFoundError,
    NotAFileError,
    RemoteNodeNotFoundError,
    VerificationFailedError,
)
from driveflow.hash_cache import LocalHashCache, RemoteHashCache, canonical_path, file_mtime
from driveflow.hasher import HashingWriter
from driveflow.models import (
    FileNode,
    FolderNode,
    NodeIdentity,
    NodeState,
    Revision,
    TargetKind,
    VerificationStatus,
)
from driveflow.remote import ByteProgress, RemoteDriveClient
from driveflow.resolver import PathResolver, split_remote_path
from driveflow.tentative import NullTentativeFile, Tentative, TentativeFactory, open_tentative


logger = logging.getLogger(__name__)

DEFAULT_MEDIA_TYPE = "application/octet-stream"

Progress = Callable[[float], None]


class TransferStatus(str, Enum):
    TRANSFERRED = "transferred"
    SKIPPED = "skipped"
    CONFLICT = "conflict"


@dataclass(slots=True)
class TransferResult:
    status: TransferStatus
    local_path: str
    content_hash: str | None = None

    @property
    def is_conflict(self) -> bool:
        return self.status is TransferStatus.CONFLICT


def _ignore_progress(_fraction: float) -> None:
    pass


def _fractional(on_progress: Progress) -> ByteProgress:
    def _report(done: int, total: int) -> None:
        on_progress(done / total if total > 0 else 1.0)

    return _report


def _media_type(name: str) -> str:
    guessed, _ = mimetypes.guess_type(name)
    return guessed or DEFAULT_MEDIA_TYPE


class TransferOrchestrator:
    """Decides whether a get/put has to move bytes, and moves them if so.

    Both hash caches are consulted before any network traffic; a conflict
    (hashes differ and ``overwrite`` is off) is reported as a result and
    never touches the destination.
    """

    def __init__(
        self,
        client: RemoteDriveClient,
        resolver: PathResolver,
        local_cache: LocalHashCache,
        remote_cache: RemoteHashCache,
        *,
        tentative_factory: TentativeFactory = open_tentative,
    ) -> None:
        self._client = client
        self.resolver = resolver
        self._local_cache = local_cache
        self._remote_cache = remote_cache
        self._tentative_factory = tentative_factory

    async def _select_revision(self, file_node: FileNode, revision: Revision | None) -> Revision:
        if revision is not None:
            return revision
        if file_node.active_revision is not None:
            return file_node.active_revision

        logger.warning("No active revision for %s, using the latest one", file_node.name)
        revisions = await self._client.get_file_revisions(file_node.identity)
        if not revisions:
            raise RemoteNodeNotFoundError(f"{file_node.name} has no revisions")
        return revisions[0]

    async def _probe_local_hash(self, dest: Path) -> str | None:
        if not dest.is_file():
            return None
        try:
            return await self._local_cache.get_or_compute(dest)
        except LocalFileNotFoundError:
            return None

    async def _download_into(
        self,
        tentative: Tentative,
        file_node: FileNode,
        revision: Revision,
        on_progress: Progress,
    ) -> str:
        writer = HashingWriter(tentative.stream)
        on_progress(0.0)
        verdict = await self._client.download(
            file_node.identity,
            revision,
            writer,
            _fractional(on_progress),
        )
        if verdict is not VerificationStatus.OK:
            raise VerificationFailedError(file_node.name, verdict)
        writer.flush()
        on_progress(1.0)

        content_hash = writer.hash
        await self._remote_cache.put(file_node.identity, revision.revision_id, content_hash)
        return content_hash

    async def get_node_hash(self, file_node: FileNode, revision: Revision | None = None) -> str:
        revision = await self._select_revision(file_node, revision)
        cached = await self._remote_cache.get(file_node.identity, revision.revision_id)
        if cached is not None:
            return cached

        with NullTentativeFile() as sink:
            return await self._download_into(sink, file_node, revision, _ignore_progress)

    async def download_node(
        self,
        file_node: FileNode,
        dest: str | os.PathLike[str],
        *,
        revision: Revision | None = None,
        overwrite: bool = False,
        on_progress: Progress | None = None,
    ) -> TransferResult:
        on_progress = on_progress or _ignore_progress
        dest = canonical_path(dest)
        revision = await self._select_revision(file_node, revision)

        local_hash = await self._probe_local_hash(dest)
        remote_hash = await self._remote_cache.get(file_node.identity, revision.revision_id)
        if local_hash is not None and remote_hash is not None:
            if local_hash == remote_hash:
                logger.info("Skipping download because hashes match: %s %s", local_hash, dest)
                return TransferResult(TransferStatus.SKIPPED, str(dest), local_hash)
            if not overwrite:
                logger.warning("Skipping due to conflict: %s", dest)
                logger.info("%s != %s", local_hash, remote_hash)
                return TransferResult(TransferStatus.CONFLICT, str(dest), remote_hash)

        with self._tentative_factory(dest) as tentative:
            content_hash = await self._download_into(tentative, file_node, revision, on_progress)

            if local_hash is not None:
                if local_hash == content_hash:
                    logger.info("Skipping write because hashes match: %s %s", content_hash, dest)
                    return TransferResult(TransferStatus.SKIPPED, str(dest), content_hash)
                if not overwrite:
                    logger.warning("Skipping due to conflict: %s", dest)
                    logger.info("%s != %s", local_hash, content_hash)
                    return TransferResult(TransferStatus.CONFLICT, str(dest), content_hash)
                logger.warning("Overwriting: %s", dest)

            tentative.commit(overwrite=overwrite)

        await self._local_cache.put(dest, file_mtime(dest), content_hash)
        return TransferResult(TransferStatus.TRANSFERRED, str(dest), content_hash)

    async def upload_node(
        self,
        source: str | os.PathLike[str],
        target: str | Sequence[str],
        *,
        start: NodeIdentity | None = None,
        target_kind: TargetKind = TargetKind.UNSPECIFIED,
        overwrite: bool = False,
        on_progress: Progress | None = None,
    ) -> TransferResult:
        """Upload ``source`` to a slash-separated remote path.

        ``FOLDER`` targets keep the source's base name, ``FILE`` targets use
        the last path segment as the name. ``UNSPECIFIED`` looks at what is
        already there: a folder makes it a folder target, a file or nothing
        makes it a file target.
        """
        segments = split_remote_path(target) if isinstance(target, str) else tuple(target)
        source_name = Path(source).name
        if start is None:
            start = await self.resolver.root_identity()

        if target_kind is TargetKind.UNSPECIFIED:
            existing = await self.resolver.resolve(start, segments)
            target_kind = TargetKind.FOLDER if isinstance(existing, FolderNode) else TargetKind.FILE

        if target_kind is TargetKind.FOLDER:
            parent = await self.resolver.resolve_or_create_folders(start, segments)
            dest_name = source_name
        elif target_kind is TargetKind.FILE:
            if not segments:
                raise ValueError("A file target needs at least one path segment")
            parent = await self.resolver.resolve_or_create_folders(start, segments[:-1])
            dest_name = segments[-1]
        else:
            raise ValueError(f"Unknown target kind: {target_kind}")

        return await self.upload_to_parent(
            source,
            parent.identity,
            dest_name,
            overwrite=overwrite,
            on_progress=on_progress,
        )

    async def upload_to_parent(
        self,
        source: str | os.PathLike[str],
        parent: NodeIdentity,
        name: str,
        *,
        overwrite: bool = False,
        on_progress: Progress | None = None,
    ) -> TransferResult:
        on_progress = on_progress or _ignore_progress
        source = canonical_path(source)

        local_hash = await self._local_cache.get_or_compute(source)

        existing = await self.resolver.resolve(parent, (name,))
        if existing is not None:
            if not isinstance(existing, FileNode):
                raise NotAFileError(f"{name} already exists as a folder")
            existing_hash = await self.get_node_hash(existing)
            if existing_hash == local_hash:
                logger.info("Skipping upload because hashes match: %s %s", existing_hash, name)
                return TransferResult(TransferStatus.SKIPPED, str(source), local_hash)
            if not overwrite:
                logger.warning("Skipping due to conflict: %s", name)
                logger.info("%s != %s", local_hash, existing_hash)
                return TransferResult(TransferStatus.CONFLICT, str(source), existing_hash)
            logger.warning("Overwriting: %s", name)

        upload = self._client.upload_new_file_or_revision if overwrite else self._client.upload_new_file
        try:
            fh = source.open("rb")
        except OSError as exc:
            raise LocalFileNotFoundError(str(source), exc.strerror) from exc

        with fh:
            mtime = file_mtime(source)
            on_progress(0.0)
            response = await upload(
                parent,
                name,
                _media_type(name),
                fh,
                mtime,
                _fractional(on_progress),
            )
            on_progress(1.0)

        self.resolver.tree.invalidate(parent)

        node = await self._client.get_node(parent.share_id, response.identity.node_id)
        if node.state is NodeState.DRAFT:
            raise DraftStateError(f"Node ended up in Draft state when uploading {source}")
        if not isinstance(node, FileNode):
            raise NotAFileError(f"Upload of {source} produced a folder node")
        node.identity.backfill_share(parent.share_id)

        remote_hash = await self.get_node_hash(node)
        if remote_hash != local_hash:
            raise IntegrityMismatchError(str(source), local_hash, remote_hash)

        logger.info("Uploaded %s -> %s", source, name)
        return TransferResult(TransferStatus.TRANSFERRED, str(source), local_hash)
