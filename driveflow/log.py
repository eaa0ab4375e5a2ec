"""
Logging setup for the dflow CLI.

Modules log through ``logging.getLogger(__name__)``; ``setup_logging`` wires
the root logger to a Rich handler on stderr (and optionally a rotating file)
once per process.
"""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler


_CONFIGURED = False


def setup_logging(
    level: str | int = "INFO",
    *,
    console: Console | None = None,
    log_file: str | Path | None = None,
    max_bytes: int = 5_000_000,
    backup_count: int = 3,
) -> None:
    global _CONFIGURED
    if _CONFIGURED:
        return

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    root.addHandler(handler)

    if log_file is not None:
        log_path = Path(log_file).expanduser().resolve()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        root.addHandler(file_handler)

    # huggingface_hub is chatty at INFO.
    logging.getLogger("huggingface_hub").setLevel(max(level, logging.WARNING))
    _CONFIGURED = True
