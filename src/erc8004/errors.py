"""
Registry error types.

Every failure is a local, caller-correctable condition raised synchronously
by the operation that triggered it. A raised error means nothing was
committed.
"""

from __future__ import annotations


class RegistryError(Exception):
    """Base error for all registry operations."""
    pass


class IdentityRegistryUnsetError(RegistryError):
    """A dependent registry was wired without an identity registry."""
    pass


# Uniqueness errors
class UniquenessError(RegistryError):
    """Base error for duplicate keys."""
    pass


class DomainAlreadyRegisteredError(UniquenessError):
    def __init__(self, domain: str):
        self.domain = domain
        super().__init__(f"Domain already registered: {domain}")


class AddressAlreadyRegisteredError(UniquenessError):
    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Address already registered: {address}")


class DuplicateValidationRequestError(UniquenessError):
    """The data hash already has a validation request on record."""
    def __init__(self, data_hash: str):
        self.data_hash = data_hash
        super().__init__(f"Validation request already exists: {data_hash}")


# Authorization errors
class AuthorizationError(RegistryError):
    """Base error for callers that do not control the relevant agent."""
    pass


class UnauthorizedUpdateError(AuthorizationError):
    def __init__(self, agent_id: int, caller: str):
        self.agent_id = agent_id
        self.caller = caller
        super().__init__(f"Caller {caller} does not control agent {agent_id}")


class UnauthorizedFeedbackError(AuthorizationError):
    """Only the server agent's address may authorize feedback about it."""
    def __init__(self, server_agent_id: int, caller: str):
        self.server_agent_id = server_agent_id
        self.caller = caller
        super().__init__(f"Caller {caller} does not control server agent {server_agent_id}")


class UnauthorizedValidatorError(AuthorizationError):
    def __init__(self, validator_agent_id: int, caller: str):
        self.validator_agent_id = validator_agent_id
        self.caller = caller
        super().__init__(f"Caller {caller} is not the designated validator (agent {validator_agent_id})")


# Not-found errors
class NotFoundError(RegistryError):
    """Base error for unknown keys."""
    pass


class AgentNotFoundError(NotFoundError):
    def __init__(self, key: object):
        self.key = key
        super().__init__(f"Agent not found: {key}")


class ValidationRequestNotFoundError(NotFoundError):
    def __init__(self, data_hash: str):
        self.data_hash = data_hash
        super().__init__(f"Validation request not found: {data_hash}")


# Range / format errors
class InvalidInputError(RegistryError, ValueError):
    """Base error for malformed or out-of-range input."""
    pass


class InvalidDomainError(InvalidInputError):
    pass


class InvalidAddressError(InvalidInputError):
    pass


class InvalidDataHashError(InvalidInputError):
    pass


class InvalidResponseError(InvalidInputError):
    def __init__(self, response: object, message: str):
        self.response = response
        super().__init__(f"Invalid validation response {response!r}: {message}")


# Payment errors
class InsufficientFeeError(RegistryError):
    def __init__(self, fee: int, required: int):
        self.fee = fee
        self.required = required
        super().__init__(f"Registration fee {fee} wei is below required {required} wei")


# Temporal errors
class TemporalError(RegistryError):
    """Base error for requests answered too late or more than once."""
    pass


class RequestExpiredError(TemporalError):
    def __init__(self, data_hash: str, expired_at_height: int):
        self.data_hash = data_hash
        self.expired_at_height = expired_at_height
        super().__init__(f"Validation request {data_hash} expired at height {expired_at_height}")


class ValidationAlreadyRespondedError(TemporalError):
    def __init__(self, data_hash: str):
        self.data_hash = data_hash
        super().__init__(f"Validation request already responded: {data_hash}")
