"""
Reputation registry: server-granted feedback authorizations.

A server agent authorizes a client agent to leave feedback about it. The
registry stores one 32-byte token per ordered (client, server) pair. Tokens
are never cleared once granted; re-authorizing a pair regenerates the token.
"""

from __future__ import annotations

import logging
from typing import Optional

from .chain import BlockSource
from .encoding import ZERO_HASH, normalize_address, normalize_hex32
from .errors import AgentNotFoundError, IdentityRegistryUnsetError, UnauthorizedFeedbackError
from .events import EventLog, EventType
from .identity_registry import IdentityRegistry
from .state_store import MemoryStateStore, StateStore
from .tokens import KeccakTokenDeriver, TokenDeriver

logger = logging.getLogger(__name__)

REGISTRY_NAME = "reputation"


class ReputationRegistry:
    """Records feedback authorizations for agent pairs known to the identity registry."""

    def __init__(
        self,
        identity: IdentityRegistry,
        store: Optional[StateStore] = None,
        *,
        token_deriver: Optional[TokenDeriver] = None,
        chain: Optional[BlockSource] = None,
        events: Optional[EventLog] = None,
    ):
        if identity is None:
            raise IdentityRegistryUnsetError("ReputationRegistry requires an identity registry")
        self._identity = identity
        self._store = store if store is not None else MemoryStateStore()
        self._token_deriver = token_deriver if token_deriver is not None else KeccakTokenDeriver()
        self._chain = chain if chain is not None else identity.chain
        self.events = events if events is not None else identity.events

    @property
    def identity(self) -> IdentityRegistry:
        return self._identity

    def accept_feedback(self, client_agent_id: int, server_agent_id: int, *, caller: str) -> str:
        """Authorize ``client_agent_id`` to give feedback about ``server_agent_id``.

        Must be called by the server agent's current address. Returns the new
        token; calling again for the same pair succeeds and issues a fresh one.
        """
        normalized_caller = normalize_address(caller)

        with self._store.lock():
            with self._store.transaction() as state:
                if not self._identity.agent_exists(client_agent_id):
                    raise AgentNotFoundError(client_agent_id)
                server = self._identity.get_agent(server_agent_id)
                if server.agent_address != normalized_caller:
                    raise UnauthorizedFeedbackError(server.agent_id, normalized_caller)

                block = self._chain.current_block()
                nonce = int(state.get("auth_nonce", 0))
                token = ZERO_HASH
                while token == ZERO_HASH:
                    nonce += 1
                    token = normalize_hex32(
                        self._token_deriver.derive(client_agent_id, server_agent_id, block, nonce),
                        "feedback_auth_id",
                    )
                state["auth_nonce"] = nonce
                state.setdefault("authorizations", {})[_pair_key(client_agent_id, server_agent_id)] = token

            event = self.events.append(
                EventType.AUTH_FEEDBACK,
                registry=REGISTRY_NAME,
                block=block,
                args={
                    "agent_client_id": client_agent_id,
                    "agent_server_id": server_agent_id,
                    "feedback_auth_id": token,
                },
            )

        self.events.notify(event)
        logger.info(
            "Feedback authorized: client=%s server=%s token=%s",
            client_agent_id,
            server_agent_id,
            token,
        )
        return token

    def is_feedback_authorized(self, client_agent_id: int, server_agent_id: int) -> tuple[bool, str]:
        token = self.get_feedback_auth_id(client_agent_id, server_agent_id)
        return token != ZERO_HASH, token

    def get_feedback_auth_id(self, client_agent_id: int, server_agent_id: int) -> str:
        with self._store.snapshot() as state:
            return state.get("authorizations", {}).get(
                _pair_key(client_agent_id, server_agent_id),
                ZERO_HASH,
            )


def _pair_key(client_agent_id: int, server_agent_id: int) -> str:
    return f"{int(client_agent_id)}:{int(server_agent_id)}"
