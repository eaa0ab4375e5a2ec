from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from urllib.parse import urlparse


CONFIG_FILENAME = "config.json"
STATE_DB_FILENAME = "state.db"
HOME_ENV = "DRIVEFLOW_HOME"
HF_HOSTS = {"huggingface.co", "www.huggingface.co", "hf.co", "www.hf.co"}
HF_SSH_PREFIXES = "git@hf.co:", "git@huggingface.co:"
REPO_TYPE_PREFIXES = {"datasets": "dataset", "spaces": "space", "models": "model"}


@dataclass(slots=True)
class DriveFlowConfig:
    repo_id: str
    token: str = ""
    repo_type: str = "model"
    revision: str = "main"
    log_level: str = "INFO"
    log_file: str = ""


def app_dir() -> Path:
    """Where config and state live: ``$DRIVEFLOW_HOME``, else the XDG data dir."""
    explicit = os.getenv(HOME_ENV)
    if explicit:
        return Path(explicit).expanduser().resolve()
    data_home = os.getenv("XDG_DATA_HOME") or Path.home() / ".local" / "share"
    return (Path(data_home) / "driveflow").resolve()


def config_path(base_dir: Path | None = None) -> Path:
    return (base_dir or app_dir()) / CONFIG_FILENAME


def state_db_path(base_dir: Path | None = None) -> Path:
    return (base_dir or app_dir()) / STATE_DB_FILENAME


def load_config(base_dir: Path | None = None) -> DriveFlowConfig:
    target = config_path(base_dir)
    try:
        raw = json.loads(target.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise FileNotFoundError(
            f"No DriveFlow config at {target}. Run `dflow init <repo_id>` first."
        ) from None

    known = {f.name for f in fields(DriveFlowConfig)}
    config = DriveFlowConfig(**{key: value for key, value in raw.items() if key in known})
    config.repo_id = normalize_repo_id(config.repo_id)
    return config


def save_config(config: DriveFlowConfig, base_dir: Path | None = None) -> Path:
    target = config_path(base_dir)
    target.parent.mkdir(parents=True, exist_ok=True)
    data = asdict(config) | {"repo_id": normalize_repo_id(config.repo_id)}
    target.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    return target


def default_token() -> str:
    return os.getenv("DRIVEFLOW_TOKEN") or os.getenv("HF_TOKEN", "")


def normalize_repo_id(repo_id: str) -> str:
    """Reduce Hub web URLs and Git-over-SSH remotes to ``namespace/repo``."""
    candidate = (repo_id or "").strip()

    for prefix in HF_SSH_PREFIXES:
        if candidate.startswith(prefix):
            return _repo_from_path(candidate[len(prefix):])

    if "://" in candidate:
        url = urlparse(candidate)
        return _repo_from_path(url.path) if url.hostname in HF_HOSTS else candidate

    return candidate.rstrip("/")


def repo_type_from_url(repo_id: str) -> str | None:
    """``datasets``/``spaces``/``models`` URL prefixes imply a repo type."""
    if "://" not in repo_id:
        return None
    segments = urlparse(repo_id).path.strip("/").split("/")
    return REPO_TYPE_PREFIXES.get(segments[0])


def _repo_from_path(path: str) -> str:
    segments = [s for s in path.strip().removesuffix(".git").split("/") if s]
    if len(segments) >= 3 and segments[0] in REPO_TYPE_PREFIXES:
        del segments[0]
    return "/".join(segments[:2])
