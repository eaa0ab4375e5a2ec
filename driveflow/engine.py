from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from driveflow.auth import resolve_token
from driveflow.config import DriveFlowConfig, state_db_path
from driveflow.hash_cache import LocalHashCache, RemoteHashCache
from driveflow.hf_remote import HfDriveClient
from driveflow.remote import RemoteDriveClient
from driveflow.resolver import PathResolver
from driveflow.transfer import TransferOrchestrator
from driveflow.tree_cache import RemoteTreeCache


@dataclass(slots=True)
class SyncEngine:
    """One wiring of the sync components around a single remote client."""

    client: RemoteDriveClient
    tree: RemoteTreeCache
    resolver: PathResolver
    local_cache: LocalHashCache
    remote_cache: RemoteHashCache
    orchestrator: TransferOrchestrator


def build_engine(client: RemoteDriveClient, db_path: Path) -> SyncEngine:
    tree = RemoteTreeCache(client)
    resolver = PathResolver(client, tree)
    local_cache = LocalHashCache(db_path)
    remote_cache = RemoteHashCache(db_path)
    orchestrator = TransferOrchestrator(client, resolver, local_cache, remote_cache)
    return SyncEngine(
        client=client,
        tree=tree,
        resolver=resolver,
        local_cache=local_cache,
        remote_cache=remote_cache,
        orchestrator=orchestrator,
    )


def engine_from_config(config: DriveFlowConfig, base_dir: Path | None = None) -> SyncEngine:
    client = HfDriveClient(
        config.repo_id,
        token=resolve_token(config.token),
        repo_type=config.repo_type,
        revision=config.revision,
    )
    return build_engine(client, state_db_path(base_dir))
