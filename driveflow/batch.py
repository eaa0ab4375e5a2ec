from __future__ import annotations

import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Sequence

from driveflow.models import FileNode, FolderNode, TargetKind
from driveflow.resolver import join_remote_path
from driveflow.scanner import discover_local_files
from driveflow.transfer import TransferOrchestrator, TransferResult, TransferStatus
from driveflow.transfer_ui import TransferProgressUI
from driveflow.tree_cache import descend_everywhere


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BatchResult:
    transferred: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def record(self, label: str, result: TransferResult) -> None:
        if result.status is TransferStatus.TRANSFERRED:
            self.transferred.append(label)
        elif result.status is TransferStatus.CONFLICT:
            self.conflicts.append(label)
        else:
            self.skipped.append(label)


async def _run_one(
    batch: BatchResult,
    label: str,
    job: Callable[[Callable[[float], None]], Awaitable[TransferResult]],
    *,
    ui: TransferProgressUI | None,
    action: str,
    total_bytes: int | None,
) -> None:
    """Run one transfer; its failure is recorded without stopping the batch."""
    handle = None
    on_progress: Callable[[float], None] | None = None
    if ui is not None:
        handle = ui.add_transfer(action=action, path=label, total_bytes=total_bytes)
        on_progress = ui.fraction_callback(handle)

    try:
        result = await job(on_progress or (lambda _fraction: None))
    except Exception as exc:
        logger.exception("%s %s failed", action, label)
        batch.failed.append((label, str(exc)))
        if ui is not None and handle is not None:
            ui.fail(handle)
        return

    batch.record(label, result)
    if ui is not None and handle is not None:
        ui.finish(handle, state=result.status.value)


async def download_tree(
    orchestrator: TransferOrchestrator,
    folder: FolderNode,
    dest_root: Path,
    *,
    overwrite: bool = False,
    ui: TransferProgressUI | None = None,
) -> BatchResult:
    batch = BatchResult()
    dest_root = dest_root.resolve()
    if dest_root.exists() and not dest_root.is_dir():
        raise NotADirectoryError(f"{dest_root} is a file")

    walk = orchestrator.resolver.tree.list_recursive((), folder.identity, descend_everywhere)
    async with aclosing(walk) as children:
        async for path, node in children:
            if not isinstance(node, FileNode):
                continue

            dest = dest_root.joinpath(*path)
            dest.parent.mkdir(parents=True, exist_ok=True)
            size = node.active_revision.size if node.active_revision else node.size

            await _run_one(
                batch,
                join_remote_path(path),
                lambda progress, node=node, dest=dest: orchestrator.download_node(
                    node, dest, overwrite=overwrite, on_progress=progress
                ),
                ui=ui,
                action="GET",
                total_bytes=size,
            )

    return batch


async def upload_tree(
    orchestrator: TransferOrchestrator,
    source_root: Path,
    target: Sequence[str],
    *,
    overwrite: bool = False,
    ui: TransferProgressUI | None = None,
) -> BatchResult:
    batch = BatchResult()
    target = tuple(target)

    for local_file in discover_local_files(source_root):
        remote_parts = (*target, *local_file.relative_parts)
        logger.debug("%s -> %s", local_file.path, join_remote_path(remote_parts))

        await _run_one(
            batch,
            local_file.relative_path,
            lambda progress, local_file=local_file, remote_parts=remote_parts: orchestrator.upload_node(
                local_file.path,
                remote_parts,
                target_kind=TargetKind.FILE,
                overwrite=overwrite,
                on_progress=progress,
            ),
            ui=ui,
            action="PUT",
            total_bytes=local_file.size,
        )

    return batch
