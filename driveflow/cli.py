from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path

import typer
from rich.console import Console
from rich.text import Text

from driveflow.auth import missing_token_hint, resolve_token
from driveflow.batch import BatchResult, download_tree, upload_tree
from driveflow.config import (
    DriveFlowConfig,
    default_token,
    load_config,
    normalize_repo_id,
    repo_type_from_url,
    save_config,
    state_db_path,
)
from driveflow.engine import SyncEngine, engine_from_config
from driveflow.errors import DriveFlowError
from driveflow.hf_remote import quiet_progress_bars
from driveflow.log import setup_logging
from driveflow.models import FileNode, FolderNode, TargetKind
from driveflow.resolver import split_remote_path
from driveflow.state_db import ensure_db
from driveflow.transfer import TransferResult, TransferStatus
from driveflow.transfer_ui import TransferProgressUI


app = typer.Typer(help="DriveFlow CLI: hash-aware get/put against a remote drive.")
console = Console()


@dataclass(slots=True)
class LogOptions:
    level: str | None = None
    file: str | None = None


def _render_path_summary(title: str, paths: list[str], style: str) -> None:
    if not paths:
        return
    console.print(Text(f"{title} ({len(paths)}):", style=style))
    for path in paths:
        console.print(f"  {path}")


def _render_batch(result: BatchResult) -> None:
    _render_path_summary("Transferred", result.transferred, "green")
    _render_path_summary("Conflicts (left untouched, use --overwrite)", result.conflicts, "magenta")
    _render_path_summary(
        "Failed", [f"{path}: {error}" for path, error in result.failed], "red"
    )
    console.print(f"Skipped unchanged: {len(result.skipped)}")


def _render_single(result: TransferResult) -> int:
    if result.status is TransferStatus.TRANSFERRED:
        console.print(f"[green]Transferred[/green] {result.local_path} ({result.content_hash})")
    elif result.status is TransferStatus.SKIPPED:
        console.print(f"[green]Already in sync:[/green] {result.local_path}")
    else:
        console.print(
            f"[magenta]Conflict:[/magenta] {result.local_path} differs from the remote. "
            "Use --overwrite to replace it."
        )
    return 0


def _load_engine(options: LogOptions) -> tuple[DriveFlowConfig, SyncEngine]:
    config = load_config()
    setup_logging(
        options.level or config.log_level,
        console=Console(stderr=True),
        log_file=options.file or config.log_file or None,
    )
    return config, engine_from_config(config)


@app.callback()
def main(
    ctx: typer.Context,
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ...). Defaults to the configured level.",
    ),
    log_file: str | None = typer.Option(
        None,
        "--log-file",
        help="Also write logs to this file, rotated at 5 MB.",
    ),
) -> None:
    ctx.obj = LogOptions(level=log_level, file=log_file)


async def _init_async(repo_id: str, repo_type: str | None, revision: str) -> DriveFlowConfig:
    config = DriveFlowConfig(
        repo_id=normalize_repo_id(repo_id),
        token=default_token(),
        repo_type=repo_type or repo_type_from_url(repo_id) or "model",
        revision=revision,
    )
    save_config(config)
    await ensure_db(state_db_path())
    return config


@app.command()
def init(
    repo_id: str,
    repo_type: str | None = typer.Option(None, "--repo-type", help="model, dataset or space."),
    revision: str = typer.Option("main", "--revision", help="Branch to read from and commit to."),
) -> None:
    """Point DriveFlow at a remote repository."""
    config = asyncio.run(_init_async(repo_id, repo_type, revision))
    console.print(f"[green]Initialized DriveFlow[/green] for {config.repo_id} ({config.repo_type})")
    console.print(f"State DB: {state_db_path()}")
    if config.repo_id != repo_id.strip():
        console.print(f"Repo ID normalized: {repo_id} -> {config.repo_id}")
    if not config.token:
        console.print(
            "[yellow]No token in the environment. Reads of public repos still work; "
            "uploads need `HF_TOKEN` or `hf auth login`.[/yellow]"
        )


async def _get_async(
    options: LogOptions, src: str, dest: str, *, overwrite: bool, recursive: bool
) -> int:
    _, engine = _load_engine(options)
    dest_path = Path(dest).expanduser().resolve()

    node = await engine.resolver.resolve(None, split_remote_path(src))
    if node is None:
        console.print(f"[red]{src} not found[/red]")
        return 1

    with quiet_progress_bars(), TransferProgressUI(console=console) as ui:
        if isinstance(node, FileNode):
            if dest_path.is_dir():
                dest_path = dest_path / node.name
            size = node.active_revision.size if node.active_revision else node.size
            handle = ui.add_transfer(action="GET", path=src, total_bytes=size)
            result = await engine.orchestrator.download_node(
                node,
                dest_path,
                overwrite=overwrite,
                on_progress=ui.fraction_callback(handle),
            )
            ui.finish(handle, state=result.status.value)
            return _render_single(result)

        if not recursive:
            console.print(f"[red]{src} is not a file. Did you want --recursive?[/red]")
            return 1
        if not isinstance(node, FolderNode):
            raise DriveFlowError(f"{src} resolved to an unexpected node type")
        if dest_path.exists() and not dest_path.is_dir():
            console.print(f"[red]{dest_path} is a file[/red]")
            return 1

        result = await download_tree(engine.orchestrator, node, dest_path, overwrite=overwrite, ui=ui)

    _render_batch(result)
    return 0 if result.ok else 1


async def _put_async(
    options: LogOptions, src: str, dest: str, *, overwrite: bool, recursive: bool
) -> int:
    config, engine = _load_engine(options)
    if resolve_token(config.token) is None:
        console.print(f"[red]{missing_token_hint()}[/red]")
        return 1
    src_path = Path(src).expanduser().resolve()
    dest_parts = split_remote_path(dest)

    if src_path.is_file():
        target_kind = TargetKind.FOLDER if dest.endswith("/") else TargetKind.UNSPECIFIED
        with quiet_progress_bars(), TransferProgressUI(console=console) as ui:
            handle = ui.add_transfer(action="PUT", path=str(src_path), total_bytes=src_path.stat().st_size)
            result = await engine.orchestrator.upload_node(
                src_path,
                dest_parts,
                target_kind=target_kind,
                overwrite=overwrite,
                on_progress=ui.fraction_callback(handle),
            )
            ui.finish(handle, state=result.status.value)
        return _render_single(result)

    if src_path.is_dir():
        if not recursive:
            console.print(f"[red]{src_path} is not a file. Did you want --recursive?[/red]")
            return 1
        with quiet_progress_bars(), TransferProgressUI(console=console) as ui:
            result = await upload_tree(engine.orchestrator, src_path, dest_parts, overwrite=overwrite, ui=ui)
        _render_batch(result)
        return 0 if result.ok else 1

    console.print(f"[red]{src_path} does not exist.[/red]")
    return 1


def _run(coro, action: str) -> int:
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        console.print(
            f"[yellow]{action} interrupted.[/yellow] Destinations are untouched for unfinished files."
        )
        return 130
    except (FileNotFoundError, DriveFlowError) as exc:
        console.print(f"[red]{exc}[/red]")
        return 1
    except Exception as exc:
        console.print(f"[red]{action} failed:[/red] {exc}")
        return 1


@app.command()
def get(
    ctx: typer.Context,
    src: str = typer.Argument(..., help="Remote path, e.g. folder/file.bin"),
    dest: str = typer.Argument(..., help="Local file or directory."),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace local files that differ."),
    recursive: bool = typer.Option(False, "--recursive", "-r", help="Download folders recursively."),
) -> None:
    """Download a remote file or folder."""
    job = _get_async(ctx.obj or LogOptions(), src, dest, overwrite=overwrite, recursive=recursive)
    raise typer.Exit(code=_run(job, "Get"))


@app.command()
def put(
    ctx: typer.Context,
    src: str = typer.Argument(..., help="Local file or directory."),
    dest: str = typer.Argument(..., help="Remote path; a trailing '/' means 'into this folder'."),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace remote files that differ."),
    recursive: bool = typer.Option(False, "--recursive", "-r", help="Upload directories recursively."),
) -> None:
    """Upload a local file or directory."""
    job = _put_async(ctx.obj or LogOptions(), src, dest, overwrite=overwrite, recursive=recursive)
    raise typer.Exit(code=_run(job, "Put"))
