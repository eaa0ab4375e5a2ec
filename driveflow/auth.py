from __future__ import annotations

import os

from huggingface_hub import get_token


TOKEN_ENV_NAMES = ("DRIVEFLOW_TOKEN", "HF_TOKEN", "HUGGING_FACE_HUB_TOKEN")


def resolve_token(config_token: str | None = None) -> str | None:
    """First non-empty token from the environment, the config, then `hf auth login`."""
    candidates = [os.getenv(name, "") for name in TOKEN_ENV_NAMES]
    candidates.append(config_token or "")
    for candidate in candidates:
        if candidate.strip():
            return candidate.strip()

    cached = (get_token() or "").strip()
    return cached or None


def missing_token_hint() -> str:
    return (
        "Uploading needs a Hugging Face token with write access. Export `HF_TOKEN` "
        "(or `DRIVEFLOW_TOKEN`) or run `hf auth login`."
    )
