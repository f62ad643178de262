"""
Validation registry: time-bounded, single-shot review requests.

Anyone may ask a validator agent to review a server agent's work, keyed by
the work's 32-byte data hash. Only the validator's current address may
answer, once, before the request expires. Expiry is derived at read time from
the current block height; records are never deleted, so expired and
answered requests stay readable.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from enum import Enum, IntEnum
from typing import Any, Mapping, Optional, Protocol

from .chain import BlockSource
from .config import DEFAULT_EXPIRATION_WINDOW
from .encoding import normalize_address, normalize_data_hash
from .errors import (
    AgentNotFoundError,
    DuplicateValidationRequestError,
    IdentityRegistryUnsetError,
    InvalidResponseError,
    RequestExpiredError,
    UnauthorizedValidatorError,
    ValidationAlreadyRespondedError,
    ValidationRequestNotFoundError,
)
from .events import EventLog, EventType
from .identity_registry import IdentityRegistry
from .state_store import MemoryStateStore, StateStore

logger = logging.getLogger(__name__)

REGISTRY_NAME = "validation"


class ValidationStatus(str, Enum):
    ABSENT = "absent"
    PENDING = "pending"
    RESPONDED = "responded"
    EXPIRED = "expired"


class ValidationResult(IntEnum):
    UNSET = 0
    APPROVED = 1
    REJECTED = 2


# ── Response policies ─────────────────────────────────────────────


class ResponsePolicy(Protocol):
    unset: Any

    def check(self, response: Any) -> int:
        """Return the value to store, or raise InvalidResponseError."""
        ...

    def interpret(self, value: int) -> Any: ...


@dataclass(frozen=True)
class ScoredResponses:
    """Integer scores in ``[min_score, max_score]``."""

    min_score: int = 0
    max_score: int = 100
    unset: Any = None

    def check(self, response: Any) -> int:
        if isinstance(response, bool) or not isinstance(response, int):
            raise InvalidResponseError(response, "score must be an integer")
        if not self.min_score <= response <= self.max_score:
            raise InvalidResponseError(
                response, f"score must be between {self.min_score} and {self.max_score}"
            )
        return int(response)

    def interpret(self, value: int) -> int:
        return value


@dataclass(frozen=True)
class BinaryResponses:
    """Exactly approved or rejected."""

    unset: Any = ValidationResult.UNSET

    def check(self, response: Any) -> int:
        if isinstance(response, bool) or not isinstance(response, int):
            raise InvalidResponseError(response, "result must be APPROVED or REJECTED")
        if response not in (ValidationResult.APPROVED, ValidationResult.REJECTED):
            raise InvalidResponseError(response, "result must be APPROVED or REJECTED")
        return int(response)

    def interpret(self, value: int) -> ValidationResult:
        return ValidationResult(value)


# ── Records ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class ValidationRequest:
    data_hash: str
    agent_validator_id: int
    agent_server_id: int
    created_at_height: int
    responded: bool = False
    response: int = 0
    responded_at_height: Optional[int] = None
    requester: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> ValidationRequest:
        return cls(
            data_hash=str(d["data_hash"]),
            agent_validator_id=int(d["agent_validator_id"]),
            agent_server_id=int(d["agent_server_id"]),
            created_at_height=int(d["created_at_height"]),
            responded=bool(d.get("responded", False)),
            response=int(d.get("response", 0)),
            responded_at_height=(
                int(d["responded_at_height"]) if d.get("responded_at_height") is not None else None
            ),
            requester=d.get("requester"),
        )


class ValidationRegistry:
    """Tracks validation requests and their single allowed response."""

    def __init__(
        self,
        identity: IdentityRegistry,
        store: Optional[StateStore] = None,
        *,
        expiration_window: int = DEFAULT_EXPIRATION_WINDOW,
        expiry_boundary_inclusive: bool = True,
        response_policy: Optional[ResponsePolicy] = None,
        chain: Optional[BlockSource] = None,
        events: Optional[EventLog] = None,
    ):
        if identity is None:
            raise IdentityRegistryUnsetError("ValidationRegistry requires an identity registry")
        if expiration_window <= 0:
            raise ValueError("expiration_window must be > 0")
        self._identity = identity
        self._store = store if store is not None else MemoryStateStore()
        self.expiration_window = expiration_window
        self.expiry_boundary_inclusive = expiry_boundary_inclusive
        self.response_policy = response_policy if response_policy is not None else ScoredResponses()
        self._chain = chain if chain is not None else identity.chain
        self.events = events if events is not None else identity.events

    @property
    def identity(self) -> IdentityRegistry:
        return self._identity

    def last_live_height(self, request: ValidationRequest) -> int:
        """Highest block height at which ``request`` may still be answered."""
        if self.expiry_boundary_inclusive:
            return request.created_at_height + self.expiration_window
        return request.created_at_height + self.expiration_window - 1

    def _is_expired(self, request: ValidationRequest, height: int) -> bool:
        return not request.responded and height > self.last_live_height(request)

    # ── Mutations ─────────────────────────────────────────────────

    def validation_request(
        self,
        validator_agent_id: int,
        server_agent_id: int,
        data_hash: Any,
        *,
        caller: Optional[str] = None,
    ) -> ValidationRequest:
        """Open a validation request. Any caller may do this."""
        normalized_hash = normalize_data_hash(data_hash)
        requester = normalize_address(caller) if caller is not None else None

        with self._store.lock():
            with self._store.transaction() as state:
                requests = state.setdefault("requests", {})
                if normalized_hash in requests:
                    raise DuplicateValidationRequestError(normalized_hash)
                if not self._identity.agent_exists(validator_agent_id):
                    raise AgentNotFoundError(validator_agent_id)
                if not self._identity.agent_exists(server_agent_id):
                    raise AgentNotFoundError(server_agent_id)

                block = self._chain.current_block()
                request = ValidationRequest(
                    data_hash=normalized_hash,
                    agent_validator_id=validator_agent_id,
                    agent_server_id=server_agent_id,
                    created_at_height=block.number,
                    requester=requester,
                )
                requests[normalized_hash] = request.to_dict()

            event = self.events.append(
                EventType.VALIDATION_REQUESTED,
                registry=REGISTRY_NAME,
                block=block,
                args={
                    "agent_validator_id": validator_agent_id,
                    "agent_server_id": server_agent_id,
                    "data_hash": normalized_hash,
                },
            )

        self.events.notify(event)
        logger.info(
            "Validation requested: hash=%s validator=%s server=%s height=%s",
            normalized_hash,
            validator_agent_id,
            server_agent_id,
            block.number,
        )
        return request

    def validation_response(self, data_hash: Any, response: Any, *, caller: str) -> bool:
        """Record the designated validator's answer to a pending request."""
        normalized_hash = normalize_data_hash(data_hash)
        normalized_caller = normalize_address(caller)

        with self._store.lock():
            with self._store.transaction() as state:
                record = state.get("requests", {}).get(normalized_hash)
                if record is None:
                    raise ValidationRequestNotFoundError(normalized_hash)
                request = ValidationRequest.from_dict(record)

                validator = self._identity.get_agent(request.agent_validator_id)
                if validator.agent_address != normalized_caller:
                    raise UnauthorizedValidatorError(request.agent_validator_id, normalized_caller)
                if request.responded:
                    raise ValidationAlreadyRespondedError(normalized_hash)
                block = self._chain.current_block()
                if self._is_expired(request, block.number):
                    raise RequestExpiredError(normalized_hash, self.last_live_height(request) + 1)
                value = self.response_policy.check(response)

                record.update(
                    responded=True,
                    response=value,
                    responded_at_height=block.number,
                )

            event = self.events.append(
                EventType.VALIDATION_RESPONDED,
                registry=REGISTRY_NAME,
                block=block,
                args={
                    "agent_validator_id": request.agent_validator_id,
                    "agent_server_id": request.agent_server_id,
                    "data_hash": normalized_hash,
                    "response": value,
                },
            )

        self.events.notify(event)
        logger.info(
            "Validation responded: hash=%s validator=%s response=%s",
            normalized_hash,
            request.agent_validator_id,
            value,
        )
        return True

    # ── Reads ─────────────────────────────────────────────────────

    def _find(self, data_hash: Any) -> Optional[ValidationRequest]:
        normalized_hash = normalize_data_hash(data_hash)
        with self._store.snapshot() as state:
            record = state.get("requests", {}).get(normalized_hash)
            return ValidationRequest.from_dict(record) if record is not None else None

    def get_validation_request(self, data_hash: Any) -> ValidationRequest:
        request = self._find(data_hash)
        if request is None:
            raise ValidationRequestNotFoundError(normalize_data_hash(data_hash))
        return request

    def get_validation_status(self, data_hash: Any) -> ValidationStatus:
        request = self._find(data_hash)
        if request is None:
            return ValidationStatus.ABSENT
        if request.responded:
            return ValidationStatus.RESPONDED
        if self._is_expired(request, self._chain.current_block().number):
            return ValidationStatus.EXPIRED
        return ValidationStatus.PENDING

    def is_validation_pending(self, data_hash: Any) -> tuple[bool, bool]:
        """Return (exists, pending)."""
        status = self.get_validation_status(data_hash)
        return status != ValidationStatus.ABSENT, status == ValidationStatus.PENDING

    def get_validation_response(self, data_hash: Any) -> tuple[bool, int]:
        """Return (has_response, response); (False, 0) until answered."""
        request = self._find(data_hash)
        if request is None or not request.responded:
            return False, 0
        return True, request.response

    def validation_result(self, data_hash: Any) -> Any:
        """The interpreted response, or the policy's unset value."""
        request = self._find(data_hash)
        if request is None or not request.responded:
            return self.response_policy.unset
        return self.response_policy.interpret(request.response)

    def list_pending(self) -> list[ValidationRequest]:
        height = self._chain.current_block().number
        with self._store.snapshot() as state:
            requests = [ValidationRequest.from_dict(r) for r in state.get("requests", {}).values()]
        pending = [r for r in requests if not r.responded and not self._is_expired(r, height)]
        pending.sort(key=lambda r: (r.created_at_height, r.data_hash))
        return pending

    def list_expiring(self, within: int) -> list[tuple[ValidationRequest, int]]:
        """Pending requests that expire within ``within`` blocks, with blocks left."""
        if within <= 0:
            raise ValueError("within must be > 0")
        height = self._chain.current_block().number
        expiring = []
        for request in self.list_pending():
            remaining = self.last_live_height(request) - height
            if remaining < within:
                expiring.append((request, remaining))
        return expiring
