"""
Identity registry: the authoritative agent directory.

Agents get dense, never-reused IDs starting at 1. Domains and addresses are
each globally unique and indexed back to the agent ID. The agent record and
both indices always change inside one store transaction, so a failed update
leaves every index exactly as it was.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Mapping, Optional

from .admission import AdmissionPolicy, FeeAdmissionPolicy
from .chain import BlockSource, ManualChain
from .encoding import ZERO_ADDRESS, is_zero_address, normalize_address
from .errors import (
    AddressAlreadyRegisteredError,
    AgentNotFoundError,
    DomainAlreadyRegisteredError,
    InvalidAddressError,
    InvalidDomainError,
    UnauthorizedUpdateError,
)
from .events import EventLog, EventType
from .state_store import MemoryStateStore, StateStore

logger = logging.getLogger(__name__)

REGISTRY_NAME = "identity"


@dataclass(frozen=True)
class Agent:
    agent_id: int
    agent_domain: str
    agent_address: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> Agent:
        return cls(
            agent_id=int(d["agent_id"]),
            agent_domain=str(d["agent_domain"]),
            agent_address=normalize_address(str(d["agent_address"])),
        )


class IdentityRegistry:
    """Allocates agent IDs and keeps the domain and address indices consistent."""

    def __init__(
        self,
        store: Optional[StateStore] = None,
        *,
        admission: Optional[AdmissionPolicy] = None,
        chain: Optional[BlockSource] = None,
        events: Optional[EventLog] = None,
    ):
        self._store = store if store is not None else MemoryStateStore()
        self._admission = admission if admission is not None else FeeAdmissionPolicy()
        self.chain = chain if chain is not None else ManualChain()
        self.events = events if events is not None else EventLog()

    # ── Mutations ─────────────────────────────────────────────────

    def new_agent(self, domain: str, address: str, *, fee: int = 0) -> int:
        """Register a new agent and return its ID."""
        normalized_domain = _validate_domain(domain)
        normalized_address = _validate_agent_address(address)

        with self._store.lock():
            with self._store.transaction() as state:
                domains = state.setdefault("domain_to_id", {})
                addresses = state.setdefault("address_to_id", {})
                if normalized_domain in domains:
                    raise DomainAlreadyRegisteredError(normalized_domain)
                if normalized_address in addresses:
                    raise AddressAlreadyRegisteredError(normalized_address)
                retained = self._admission.admit(normalized_address, fee)

                agent_id = int(state.get("agent_count", 0)) + 1
                agent = Agent(
                    agent_id=agent_id,
                    agent_domain=normalized_domain,
                    agent_address=normalized_address,
                )
                state.setdefault("agents", {})[str(agent_id)] = agent.to_dict()
                domains[normalized_domain] = agent_id
                addresses[normalized_address] = agent_id
                state["agent_count"] = agent_id
                state["collected_fees"] = int(state.get("collected_fees", 0)) + retained
                block = self.chain.current_block()

            event = self.events.append(
                EventType.AGENT_REGISTERED,
                registry=REGISTRY_NAME,
                block=block,
                args={
                    "agent_id": agent_id,
                    "agent_domain": normalized_domain,
                    "agent_address": normalized_address,
                },
            )

        self.events.notify(event)
        logger.info(
            "Agent registered: id=%s domain=%s address=%s",
            agent_id,
            normalized_domain,
            normalized_address,
        )
        return agent_id

    def update_agent(
        self,
        agent_id: int,
        new_domain: Optional[str] = "",
        new_address: Optional[str] = ZERO_ADDRESS,
        *,
        caller: str,
    ) -> bool:
        """Update an agent's domain and/or address.

        Only the agent's current address may update it. An empty domain or a
        zero/``None`` address leaves that field unchanged. Collisions for both
        new keys are checked before either index is touched.
        """
        key = _agent_key(agent_id)
        normalized_caller = normalize_address(caller)
        change_domain = new_domain not in (None, "")
        domain = _validate_domain(new_domain) if change_domain else None
        change_address = not is_zero_address(new_address)
        address = normalize_address(new_address) if change_address else None

        with self._store.lock():
            with self._store.transaction() as state:
                record = state.get("agents", {}).get(key)
                if record is None:
                    raise AgentNotFoundError(agent_id)
                current = Agent.from_dict(record)
                if current.agent_address != normalized_caller:
                    raise UnauthorizedUpdateError(current.agent_id, normalized_caller)

                domains = state.setdefault("domain_to_id", {})
                addresses = state.setdefault("address_to_id", {})
                if change_domain and domains.get(domain, current.agent_id) != current.agent_id:
                    raise DomainAlreadyRegisteredError(domain)
                if change_address and addresses.get(address, current.agent_id) != current.agent_id:
                    raise AddressAlreadyRegisteredError(address)

                updated_domain = domain if change_domain else current.agent_domain
                updated_address = address if change_address else current.agent_address
                if updated_domain != current.agent_domain:
                    del domains[current.agent_domain]
                    domains[updated_domain] = current.agent_id
                if updated_address != current.agent_address:
                    del addresses[current.agent_address]
                    addresses[updated_address] = current.agent_id

                updated = Agent(
                    agent_id=current.agent_id,
                    agent_domain=updated_domain,
                    agent_address=updated_address,
                )
                state["agents"][key] = updated.to_dict()
                block = self.chain.current_block()

            event = self.events.append(
                EventType.AGENT_UPDATED,
                registry=REGISTRY_NAME,
                block=block,
                args={
                    "agent_id": updated.agent_id,
                    "agent_domain": updated.agent_domain,
                    "agent_address": updated.agent_address,
                },
            )

        self.events.notify(event)
        logger.info(
            "Agent updated: id=%s domain=%s address=%s",
            updated.agent_id,
            updated.agent_domain,
            updated.agent_address,
        )
        return True

    # ── Lookups ───────────────────────────────────────────────────

    def get_agent(self, agent_id: int) -> Agent:
        key = _agent_key(agent_id)
        with self._store.snapshot() as state:
            record = state.get("agents", {}).get(key)
            if record is None:
                raise AgentNotFoundError(agent_id)
            return Agent.from_dict(record)

    def resolve_by_domain(self, domain: str) -> Agent:
        if not isinstance(domain, str):
            raise AgentNotFoundError(domain)
        with self._store.snapshot() as state:
            agent_id = state.get("domain_to_id", {}).get(domain.strip())
            if agent_id is None:
                raise AgentNotFoundError(domain)
            return Agent.from_dict(state["agents"][str(agent_id)])

    def resolve_by_address(self, address: str) -> Agent:
        normalized = normalize_address(address)
        with self._store.snapshot() as state:
            agent_id = state.get("address_to_id", {}).get(normalized)
            if agent_id is None:
                raise AgentNotFoundError(normalized)
            return Agent.from_dict(state["agents"][str(agent_id)])

    def agent_exists(self, agent_id: int) -> bool:
        try:
            key = _agent_key(agent_id)
        except AgentNotFoundError:
            return False
        with self._store.snapshot() as state:
            return key in state.get("agents", {})

    def get_agent_count(self) -> int:
        with self._store.snapshot() as state:
            return int(state.get("agent_count", 0))

    def collected_fees(self) -> int:
        """Total registration fees retained, in wei."""
        with self._store.snapshot() as state:
            return int(state.get("collected_fees", 0))

    def list_agents(self, cursor: int = 0, size: int = 100) -> tuple[list[Agent], int]:
        """Page through agents in ID order. Returns (agents, next_cursor)."""
        if size <= 0:
            raise ValueError("size must be > 0")
        if cursor < 0:
            raise ValueError("cursor must be >= 0")

        with self._store.snapshot() as state:
            count = int(state.get("agent_count", 0))
            if cursor > count:
                raise ValueError("cursor out of range")
            end = min(count, cursor + size)
            agents = state.get("agents", {})
            page = [Agent.from_dict(agents[str(i + 1)]) for i in range(cursor, end)]
        return page, end


def _agent_key(agent_id: int) -> str:
    if isinstance(agent_id, bool) or not isinstance(agent_id, int) or agent_id <= 0:
        raise AgentNotFoundError(agent_id)
    return str(agent_id)


def _validate_domain(domain: Any) -> str:
    if not isinstance(domain, str):
        raise InvalidDomainError(f"Agent domain must be a string, got {type(domain).__name__}")
    candidate = domain.strip()
    if not candidate:
        raise InvalidDomainError("Agent domain must be non-empty")
    return candidate


def _validate_agent_address(address: Any) -> str:
    normalized = normalize_address(address)
    if normalized == ZERO_ADDRESS:
        raise InvalidAddressError("Agent address must not be the zero address")
    return normalized
