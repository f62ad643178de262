"""Registry configuration with environment overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from .chain import DEFAULT_BLOCK_TIME_SECONDS
from .storage import DEFAULT_STATE_DIR


DEFAULT_REGISTRATION_FEE = 0
DEFAULT_EXPIRATION_WINDOW = 1000

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass
class RegistryConfig:
    """Deployment-wide constants shared by the three registries."""

    registration_fee: int = DEFAULT_REGISTRATION_FEE
    expiration_window: int = DEFAULT_EXPIRATION_WINDOW
    # When True a response at exactly ``expiration_window`` heights is accepted.
    expiry_boundary_inclusive: bool = True
    block_time_seconds: float = DEFAULT_BLOCK_TIME_SECONDS
    state_dir: Path = field(default_factory=lambda: DEFAULT_STATE_DIR)

    def __post_init__(self):
        if self.registration_fee < 0:
            raise ValueError("registration_fee must be >= 0")
        if self.expiration_window <= 0:
            raise ValueError("expiration_window must be > 0")
        if self.block_time_seconds <= 0:
            raise ValueError("block_time_seconds must be > 0")
        self.state_dir = Path(self.state_dir)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> RegistryConfig:
        env = os.environ if environ is None else environ
        kwargs = {}
        if env.get("ERC8004_HOME"):
            kwargs["state_dir"] = Path(env["ERC8004_HOME"]).expanduser()
        if env.get("ERC8004_REGISTRATION_FEE"):
            kwargs["registration_fee"] = _parse_int(env["ERC8004_REGISTRATION_FEE"], "ERC8004_REGISTRATION_FEE")
        if env.get("ERC8004_EXPIRATION_WINDOW"):
            kwargs["expiration_window"] = _parse_int(env["ERC8004_EXPIRATION_WINDOW"], "ERC8004_EXPIRATION_WINDOW")
        if env.get("ERC8004_EXPIRY_INCLUSIVE"):
            kwargs["expiry_boundary_inclusive"] = _parse_bool(env["ERC8004_EXPIRY_INCLUSIVE"], "ERC8004_EXPIRY_INCLUSIVE")
        if env.get("ERC8004_BLOCK_TIME"):
            try:
                kwargs["block_time_seconds"] = float(env["ERC8004_BLOCK_TIME"])
            except ValueError as e:
                raise ValueError(f"Invalid ERC8004_BLOCK_TIME: {env['ERC8004_BLOCK_TIME']}") from e
        return cls(**kwargs)


def _parse_int(value: str, name: str) -> int:
    try:
        return int(value.strip())
    except ValueError as e:
        raise ValueError(f"Invalid {name}: {value}") from e


def _parse_bool(value: str, name: str) -> bool:
    raw = value.strip().lower()
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid {name}: {value} (expected true/false)")
