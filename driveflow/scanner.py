from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from driveflow.tentative import TENTATIVE_SUFFIX


@dataclass(slots=True)
class LocalFile:
    path: Path
    relative_parts: tuple[str, ...]
    size: int

    @property
    def relative_path(self) -> str:
        return "/".join(self.relative_parts)


def discover_local_files(root: Path) -> list[LocalFile]:
    """List regular files below ``root`` in a stable order.

    Leftover tentative download files are not real content and are skipped.
    """
    root = root.resolve()
    found: list[LocalFile] = []

    for file_path in sorted(root.rglob("*")):
        if not file_path.is_file():
            continue
        if file_path.name.endswith(TENTATIVE_SUFFIX):
            continue
        found.append(
            LocalFile(
                path=file_path,
                relative_parts=file_path.relative_to(root).parts,
                size=file_path.stat().st_size,
            )
        )

    return found
