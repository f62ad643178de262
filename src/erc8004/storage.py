"""Local state directory helpers."""

from __future__ import annotations

import os
from pathlib import Path


DEFAULT_STATE_DIR = Path.home() / ".erc8004"

STATE_FILES = {
    "identity": "identity_registry.json",
    "reputation": "reputation_registry.json",
    "validation": "validation_registry.json",
}


def ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    os.chmod(path, 0o700)


def ensure_private_file(path: Path) -> None:
    if not path.exists():
        path.touch()
    os.chmod(path, 0o600)


def registry_state_path(state_dir: Path, registry: str) -> Path:
    """Return the state file for one registry under ``state_dir``."""
    try:
        filename = STATE_FILES[registry]
    except KeyError:
        raise ValueError(f"Unknown registry: {registry}") from None
    return state_dir / filename
