"""Tests for the validation request/response state machine."""

import pytest
from eth_account import Account

from erc8004.chain import ManualChain
from erc8004.errors import (
    AgentNotFoundError,
    DuplicateValidationRequestError,
    IdentityRegistryUnsetError,
    InvalidDataHashError,
    InvalidResponseError,
    RequestExpiredError,
    UnauthorizedValidatorError,
    ValidationAlreadyRespondedError,
    ValidationRequestNotFoundError,
)
from erc8004.events import EventType
from erc8004.identity_registry import IdentityRegistry
from erc8004.state_store import FileStateStore
from erc8004.validation_registry import (
    BinaryResponses,
    ValidationRegistry,
    ValidationResult,
    ValidationStatus,
)


SERVER = Account.create()
VALIDATOR = Account.create()
STRANGER = Account.create()
DATA_HASH = "0x" + "11" * 32


def _setup(start_height: int = 10, **kwargs):
    chain = ManualChain(height=start_height)
    identity = IdentityRegistry(chain=chain)
    identity.new_agent("trading.alice.eth", Account.create().address)
    server_id = identity.new_agent("analytics.bob.eth", SERVER.address)
    validator_id = identity.new_agent("validator.charlie.eth", VALIDATOR.address)
    validation = ValidationRegistry(identity, **kwargs)
    return chain, identity, validation, validator_id, server_id


class TestRequestResponseFlow:
    def test_end_to_end_scored_response(self):
        _, _, validation, validator_id, server_id = _setup()
        assert (validator_id, server_id) == (3, 2)

        validation.validation_request(validator_id, server_id, DATA_HASH)
        assert validation.is_validation_pending(DATA_HASH) == (True, True)

        assert validation.validation_response(DATA_HASH, 85, caller=VALIDATOR.address) is True
        assert validation.get_validation_response(DATA_HASH) == (True, 85)
        assert validation.is_validation_pending(DATA_HASH) == (True, False)
        assert validation.validation_result(DATA_HASH) == 85
        assert validation.get_validation_status(DATA_HASH) == ValidationStatus.RESPONDED

    def test_request_records_metadata(self):
        chain, _, validation, validator_id, server_id = _setup(start_height=42)

        validation.validation_request(validator_id, server_id, DATA_HASH.upper().replace("0X", "0x"), caller=STRANGER.address)
        request = validation.get_validation_request(DATA_HASH)

        assert request.data_hash == DATA_HASH
        assert request.agent_validator_id == validator_id
        assert request.agent_server_id == server_id
        assert request.created_at_height == 42
        assert request.responded is False
        assert request.requester == STRANGER.address.lower()

    def test_absent_hash_reads(self):
        _, _, validation, _, _ = _setup()

        assert validation.is_validation_pending(DATA_HASH) == (False, False)
        assert validation.get_validation_response(DATA_HASH) == (False, 0)
        assert validation.validation_result(DATA_HASH) is None
        assert validation.get_validation_status(DATA_HASH) == ValidationStatus.ABSENT
        with pytest.raises(ValidationRequestNotFoundError):
            validation.get_validation_request(DATA_HASH)

    def test_events_emitted(self):
        _, _, validation, validator_id, server_id = _setup()
        validation.validation_request(validator_id, server_id, DATA_HASH)
        validation.validation_response(DATA_HASH, 70, caller=VALIDATOR.address)

        (requested,) = validation.events.read_events(event_type=EventType.VALIDATION_REQUESTED)
        (responded,) = validation.events.read_events(event_type=EventType.VALIDATION_RESPONDED)
        assert requested.args == {
            "agent_validator_id": validator_id,
            "agent_server_id": server_id,
            "data_hash": DATA_HASH,
        }
        assert responded.args["response"] == 70


class TestRequestRejections:
    def test_duplicate_live_request_rejected(self):
        _, _, validation, validator_id, server_id = _setup()
        validation.validation_request(validator_id, server_id, DATA_HASH)

        with pytest.raises(DuplicateValidationRequestError):
            validation.validation_request(validator_id, server_id, DATA_HASH)

    def test_responded_request_not_overwritten(self):
        _, _, validation, validator_id, server_id = _setup()
        validation.validation_request(validator_id, server_id, DATA_HASH)
        validation.validation_response(DATA_HASH, 90, caller=VALIDATOR.address)

        with pytest.raises(DuplicateValidationRequestError):
            validation.validation_request(validator_id, server_id, DATA_HASH)
        assert validation.get_validation_response(DATA_HASH) == (True, 90)

    def test_unknown_agents_rejected(self):
        _, _, validation, validator_id, server_id = _setup()

        with pytest.raises(AgentNotFoundError):
            validation.validation_request(99, server_id, DATA_HASH)
        with pytest.raises(AgentNotFoundError):
            validation.validation_request(validator_id, 99, DATA_HASH)
        assert validation.get_validation_status(DATA_HASH) == ValidationStatus.ABSENT

    @pytest.mark.parametrize("bad_hash", ["0x" + "00" * 32, "0x1234", "zz" * 32, None])
    def test_invalid_data_hash_rejected(self, bad_hash):
        _, _, validation, validator_id, server_id = _setup()
        with pytest.raises(InvalidDataHashError):
            validation.validation_request(validator_id, server_id, bad_hash)

    def test_requires_identity_registry(self):
        with pytest.raises(IdentityRegistryUnsetError):
            ValidationRegistry(None)


class TestResponseRejections:
    @pytest.mark.parametrize("answer", [150, 101, -1, True, "85", 85.0])
    def test_out_of_range_response_leaves_request_pending(self, answer):
        _, _, validation, validator_id, server_id = _setup()
        validation.validation_request(validator_id, server_id, DATA_HASH)

        with pytest.raises(InvalidResponseError):
            validation.validation_response(DATA_HASH, answer, caller=VALIDATOR.address)

        request = validation.get_validation_request(DATA_HASH)
        assert request.responded is False
        assert validation.is_validation_pending(DATA_HASH) == (True, True)

    @pytest.mark.parametrize("answer", [0, 100])
    def test_range_bounds_inclusive(self, answer):
        _, _, validation, validator_id, server_id = _setup()
        validation.validation_request(validator_id, server_id, DATA_HASH)

        validation.validation_response(DATA_HASH, answer, caller=VALIDATOR.address)
        assert validation.get_validation_response(DATA_HASH) == (True, answer)

    @pytest.mark.parametrize("answer", [50, 150])
    def test_non_validator_always_rejected(self, answer):
        _, _, validation, validator_id, server_id = _setup()
        validation.validation_request(validator_id, server_id, DATA_HASH)

        with pytest.raises(UnauthorizedValidatorError):
            validation.validation_response(DATA_HASH, answer, caller=SERVER.address)

        assert validation.get_validation_response(DATA_HASH) == (False, 0)

    def test_second_response_rejected(self):
        _, _, validation, validator_id, server_id = _setup()
        validation.validation_request(validator_id, server_id, DATA_HASH)
        validation.validation_response(DATA_HASH, 60, caller=VALIDATOR.address)

        with pytest.raises(ValidationAlreadyRespondedError):
            validation.validation_response(DATA_HASH, 99, caller=VALIDATOR.address)
        assert validation.get_validation_response(DATA_HASH) == (True, 60)

    def test_unknown_request(self):
        _, _, validation, _, _ = _setup()
        with pytest.raises(ValidationRequestNotFoundError):
            validation.validation_response(DATA_HASH, 50, caller=VALIDATOR.address)

    def test_validator_address_update_moves_authority(self):
        _, identity, validation, validator_id, server_id = _setup()
        validation.validation_request(validator_id, server_id, DATA_HASH)
        new_key = Account.create()
        identity.update_agent(validator_id, "", new_key.address, caller=VALIDATOR.address)

        with pytest.raises(UnauthorizedValidatorError):
            validation.validation_response(DATA_HASH, 50, caller=VALIDATOR.address)
        validation.validation_response(DATA_HASH, 50, caller=new_key.address)

    def test_failed_response_emits_nothing(self):
        _, _, validation, validator_id, server_id = _setup()
        validation.validation_request(validator_id, server_id, DATA_HASH)
        with pytest.raises(InvalidResponseError):
            validation.validation_response(DATA_HASH, 150, caller=VALIDATOR.address)

        assert validation.events.read_events(event_type=EventType.VALIDATION_RESPONDED) == []


class TestExpiry:
    def test_inclusive_boundary_accepts_response_at_window(self):
        chain, _, validation, validator_id, server_id = _setup(start_height=10)
        validation.validation_request(validator_id, server_id, DATA_HASH)

        chain.advance_to(10 + 1000)
        assert validation.is_validation_pending(DATA_HASH) == (True, True)
        validation.validation_response(DATA_HASH, 77, caller=VALIDATOR.address)
        assert validation.get_validation_response(DATA_HASH) == (True, 77)

    def test_inclusive_boundary_rejects_one_past_window(self):
        chain, _, validation, validator_id, server_id = _setup(start_height=10)
        validation.validation_request(validator_id, server_id, DATA_HASH)

        chain.advance_to(10 + 1001)
        assert validation.is_validation_pending(DATA_HASH) == (True, False)
        assert validation.get_validation_status(DATA_HASH) == ValidationStatus.EXPIRED
        with pytest.raises(RequestExpiredError) as exc_info:
            validation.validation_response(DATA_HASH, 77, caller=VALIDATOR.address)
        assert exc_info.value.expired_at_height == 1011

    def test_exclusive_boundary_rejects_response_at_window(self):
        chain, _, validation, validator_id, server_id = _setup(
            start_height=10, expiry_boundary_inclusive=False
        )
        validation.validation_request(validator_id, server_id, DATA_HASH)

        chain.advance_to(10 + 999)
        assert validation.is_validation_pending(DATA_HASH) == (True, True)
        chain.advance_to(10 + 1000)
        assert validation.is_validation_pending(DATA_HASH) == (True, False)
        with pytest.raises(RequestExpiredError):
            validation.validation_response(DATA_HASH, 77, caller=VALIDATOR.address)

    def test_expired_request_stays_readable_and_unanswerable(self):
        chain, _, validation, validator_id, server_id = _setup(expiration_window=5)
        validation.validation_request(validator_id, server_id, DATA_HASH)
        chain.mine(6)

        with pytest.raises(RequestExpiredError):
            validation.validation_response(DATA_HASH, 50, caller=VALIDATOR.address)

        request = validation.get_validation_request(DATA_HASH)
        assert request.agent_validator_id == validator_id
        assert request.responded is False
        assert validation.get_validation_response(DATA_HASH) == (False, 0)
        with pytest.raises(DuplicateValidationRequestError):
            validation.validation_request(validator_id, server_id, DATA_HASH)

    def test_responded_request_never_becomes_expired(self):
        chain, _, validation, validator_id, server_id = _setup(expiration_window=5)
        validation.validation_request(validator_id, server_id, DATA_HASH)
        validation.validation_response(DATA_HASH, 50, caller=VALIDATOR.address)
        chain.mine(100)

        assert validation.get_validation_status(DATA_HASH) == ValidationStatus.RESPONDED

    def test_list_expiring(self):
        chain, _, validation, validator_id, server_id = _setup(start_height=0, expiration_window=10)
        soon, later = "0x" + "aa" * 32, "0x" + "bb" * 32
        validation.validation_request(validator_id, server_id, soon)
        chain.mine(5)
        validation.validation_request(validator_id, server_id, later)
        chain.mine(3)

        expiring = validation.list_expiring(within=5)
        assert [(r.data_hash, left) for r, left in expiring] == [(soon, 2)]
        assert [r.data_hash for r in validation.list_pending()] == [soon, later]

    def test_invalid_window(self):
        identity = IdentityRegistry()
        with pytest.raises(ValueError):
            ValidationRegistry(identity, expiration_window=0)


class TestBinaryResponses:
    def test_approve_and_reject(self):
        _, _, validation, validator_id, server_id = _setup(response_policy=BinaryResponses())
        approved, rejected = "0x" + "aa" * 32, "0x" + "bb" * 32
        validation.validation_request(validator_id, server_id, approved)
        validation.validation_request(validator_id, server_id, rejected)

        assert validation.validation_result(approved) == ValidationResult.UNSET
        validation.validation_response(approved, ValidationResult.APPROVED, caller=VALIDATOR.address)
        validation.validation_response(rejected, 2, caller=VALIDATOR.address)

        assert validation.validation_result(approved) == ValidationResult.APPROVED
        assert validation.validation_result(rejected) == ValidationResult.REJECTED

    @pytest.mark.parametrize("answer", [0, 3, 85])
    def test_other_codes_rejected(self, answer):
        _, _, validation, validator_id, server_id = _setup(response_policy=BinaryResponses())
        validation.validation_request(validator_id, server_id, DATA_HASH)

        with pytest.raises(InvalidResponseError):
            validation.validation_response(DATA_HASH, answer, caller=VALIDATOR.address)
        assert validation.validation_result(DATA_HASH) == ValidationResult.UNSET


def test_file_backed_requests_survive_new_instance(tmp_path):
    chain = ManualChain(height=1)
    identity = IdentityRegistry(FileStateStore(tmp_path / "identity.json"), chain=chain)
    identity.new_agent("server.eth", SERVER.address)
    identity.new_agent("validator.eth", VALIDATOR.address)
    store_path = tmp_path / "validation.json"

    ValidationRegistry(identity, FileStateStore(store_path)).validation_request(2, 1, DATA_HASH)
    reopened = ValidationRegistry(identity, FileStateStore(store_path))
    reopened.validation_response(DATA_HASH, 64, caller=VALIDATOR.address)

    assert reopened.get_validation_response(DATA_HASH) == (True, 64)
