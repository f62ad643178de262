"""Feedback authorization token derivation."""

from __future__ import annotations

from typing import Protocol

from eth_utils import keccak

from .chain import BlockContext


class TokenDeriver(Protocol):
    def derive(
        self,
        client_agent_id: int,
        server_agent_id: int,
        block: BlockContext,
        nonce: int,
    ) -> str:
        """Return a 32-byte token as ``0x`` + 64 hex chars."""
        ...


def _uint256(value: int) -> bytes:
    return int(value).to_bytes(32, "big")


class KeccakTokenDeriver:
    """keccak256 over the agent pair, block context and a per-registry nonce.

    The nonce increases on every authorization, so re-authorizing a pair in
    the same block still yields a fresh token.
    """

    def __init__(self, salt: bytes = b""):
        self.salt = salt

    def derive(
        self,
        client_agent_id: int,
        server_agent_id: int,
        block: BlockContext,
        nonce: int,
    ) -> str:
        preimage = b"".join(
            (
                _uint256(client_agent_id),
                _uint256(server_agent_id),
                _uint256(block.timestamp),
                _uint256(block.number),
                _uint256(nonce),
                self.salt,
            )
        )
        return "0x" + keccak(preimage).hex()


class SequentialTokenDeriver:
    """Tokens are the nonce itself. Predictable; meant for tests and replays."""

    def derive(
        self,
        client_agent_id: int,
        server_agent_id: int,
        block: BlockContext,
        nonce: int,
    ) -> str:
        return "0x" + f"{nonce:064x}"
