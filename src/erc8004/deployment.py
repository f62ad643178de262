"""Wire the three registries together.

Identity is deployed first; reputation and validation each receive an
immutable reference to that one identity registry. All three share a block
source and an event log.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .admission import FeeAdmissionPolicy
from .chain import BlockSource, ManualChain, WallClockChain
from .config import RegistryConfig
from .events import EventLog
from .identity_registry import IdentityRegistry
from .reputation_registry import ReputationRegistry
from .state_store import FileStateStore, MemoryStateStore
from .storage import ensure_private_dir, registry_state_path
from .tokens import TokenDeriver
from .validation_registry import ResponsePolicy, ValidationRegistry

logger = logging.getLogger(__name__)

EVENT_LOG_FILENAME = "events.jsonl"


@dataclass
class Deployment:
    config: RegistryConfig
    chain: BlockSource
    events: EventLog
    identity: IdentityRegistry
    reputation: ReputationRegistry
    validation: ValidationRegistry


def deploy(
    config: Optional[RegistryConfig] = None,
    *,
    persistent: bool = False,
    chain: Optional[BlockSource] = None,
    token_deriver: Optional[TokenDeriver] = None,
    response_policy: Optional[ResponsePolicy] = None,
) -> Deployment:
    """Build a deployment.

    With ``persistent=True`` registry state and events live under
    ``config.state_dir`` and the block height follows the wall clock, so
    separate processes see the same registries. Otherwise everything is held
    in memory on a manually advanced chain.
    """
    config = config or RegistryConfig()

    if persistent:
        ensure_private_dir(config.state_dir)
        chain = chain or WallClockChain(config.block_time_seconds)
        events = EventLog(config.state_dir / EVENT_LOG_FILENAME)
        stores = {
            name: FileStateStore(registry_state_path(config.state_dir, name))
            for name in ("identity", "reputation", "validation")
        }
    else:
        chain = chain or ManualChain()
        events = EventLog()
        stores = {
            name: MemoryStateStore()
            for name in ("identity", "reputation", "validation")
        }

    identity = IdentityRegistry(
        stores["identity"],
        admission=FeeAdmissionPolicy(config.registration_fee),
        chain=chain,
        events=events,
    )
    reputation = ReputationRegistry(
        identity,
        stores["reputation"],
        token_deriver=token_deriver,
        chain=chain,
        events=events,
    )
    validation = ValidationRegistry(
        identity,
        stores["validation"],
        expiration_window=config.expiration_window,
        expiry_boundary_inclusive=config.expiry_boundary_inclusive,
        response_policy=response_policy,
        chain=chain,
        events=events,
    )
    logger.info(
        "Registries deployed: persistent=%s fee=%s expiration_window=%s",
        persistent,
        config.registration_fee,
        config.expiration_window,
    )
    return Deployment(
        config=config,
        chain=chain,
        events=events,
        identity=identity,
        reputation=reputation,
        validation=validation,
    )
