"""
erc8004 — Trust registries for autonomous agents.

Identity → who an agent is (ID, domain, controlling address).
Reputation → who may leave feedback about whom.
Validation → time-bounded, single-shot independent reviews.
"""

__version__ = "0.1.0"

from .admission import AdmissionPolicy, FeeAdmissionPolicy
from .chain import BlockContext, ManualChain, WallClockChain
from .config import RegistryConfig
from .deployment import Deployment, deploy
from .encoding import ZERO_ADDRESS, ZERO_HASH
from .events import EventLog, EventType, RegistryEvent
from .identity_registry import Agent, IdentityRegistry
from .reputation_registry import ReputationRegistry
from .state_store import FileStateStore, MemoryStateStore
from .tokens import KeccakTokenDeriver, SequentialTokenDeriver
from .validation_registry import (
    BinaryResponses,
    ScoredResponses,
    ValidationRegistry,
    ValidationRequest,
    ValidationResult,
    ValidationStatus,
)

__all__ = [
    "Agent", "IdentityRegistry", "ReputationRegistry", "ValidationRegistry",
    "ValidationRequest", "ValidationResult", "ValidationStatus",
    "ScoredResponses", "BinaryResponses",
    "AdmissionPolicy", "FeeAdmissionPolicy",
    "KeccakTokenDeriver", "SequentialTokenDeriver",
    "BlockContext", "ManualChain", "WallClockChain",
    "EventLog", "EventType", "RegistryEvent",
    "MemoryStateStore", "FileStateStore",
    "RegistryConfig", "Deployment", "deploy",
    "ZERO_ADDRESS", "ZERO_HASH",
]
