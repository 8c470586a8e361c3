"""
Tests for Protocol Operations

End-to-end register, mint, transfer, burn and seize flows for the dummy
substandard, run through the operations service against the in-memory
ledger, plus transfers of unregistered tokens held in custody.
"""

import pytest

from crypto.credentials import Credential
from registry.schema import ORIGIN_KEY
from txbuilder.ledger import make_unit

from tests.conftest import ASSET_NAME, apply, custody_balance, custody_records, h28, owner, wallet


def register_request(**overrides):
    request = {
        "substandard_id": "dummy",
        "owner_credential": str(owner("issuer")),
        "asset_name": ASSET_NAME.hex(),
        "quantity": 100,
        "recipient": wallet("alice"),
        "fee_payer": wallet("issuer"),
    }
    request.update(overrides)
    return request


def transfer_request(policy, quantity, sender="alice", recipient="bob", name=ASSET_NAME):
    return {
        "sender": wallet(sender),
        "unit": make_unit(policy, name),
        "quantity": quantity,
        "recipient": wallet(recipient),
    }


class TestRegister:
    """Test token registration."""

    def test_register_inserts_registry_node(self, service, state, protocol, factory):
        result = service.register(register_request())

        assert result.successful, result.error
        assert result.unsigned_tx
        metadata = result.metadata
        policy = bytes.fromhex(metadata["new_policy_id"])
        assert metadata["operation_type"] == "register"
        assert metadata["node_keys_touched"] == [ORIGIN_KEY.hex(), policy.hex()]
        assert metadata["fee"] > 0

        apply(state, result)
        registry = protocol.registry()
        assert registry.keys() == [ORIGIN_KEY, policy]
        assert registry.validate_chain()

        node = registry.find(policy).node
        handler = factory.get_handler("dummy")
        assert node.transfer_logic == Credential.script(handler.transfer_logic_script().hash)
        assert node.admin_logic is None
        assert custody_balance(protocol, "alice", policy) == 100

    def test_register_invokes_issuer_logic(self, service, factory):
        result = service.register(register_request())
        view = result.plan.transaction.view
        issuer = Credential.script(factory.get_handler("dummy").issuer_logic_script().hash)

        assert issuer in view.withdrawals
        assert view.mint.quantity_of(bytes.fromhex(result.metadata["new_policy_id"]), ASSET_NAME) == 100

    def test_second_registration_rejected(self, service, dummy_token):
        result = service.register(register_request())

        assert not result.successful
        assert result.error_code == "already_registered"

    def test_expected_policy_mismatch(self, service):
        result = service.register(register_request(substandard_config={"expected_policy_id": h28("x").hex()}))

        assert not result.successful
        assert result.error_code == "validation_rejected"

    def test_owner_authorizes_registration(self, service):
        result = service.register(register_request())
        assert owner("issuer").hash in result.plan.transaction.view.required_signers

        other = service.register(register_request(owner_credential=str(owner("somebody-else"))))
        assert owner("somebody-else").hash in other.plan.transaction.view.required_signers
        assert other.unsigned_tx != result.unsigned_tx

    def test_script_owner_is_invoked(self, service):
        script_owner = Credential.script(h28("owner-script"))
        result = service.register(register_request(owner_credential=str(script_owner)))

        assert result.successful, result.error
        assert script_owner in result.plan.transaction.view.withdrawals

    def test_expected_policy_match(self, service, factory):
        policy = factory.get_handler("dummy").policy_id()
        result = service.register(register_request(substandard_config={"expected_policy_id": policy.hex()}))

        assert result.successful, result.error
        assert result.metadata["new_policy_id"] == policy.hex()

    def test_expected_policy_must_be_policy_id(self, service):
        result = service.register(register_request(substandard_config={"expected_policy_id": "zz"}))
        assert result.error_code == "malformed_request"

    def test_unknown_substandard(self, service):
        result = service.register(register_request(substandard_id="nonexistent"))
        assert result.error_code == "not_found"

    def test_malformed_request(self, service):
        result = service.register(register_request(quantity=0))
        assert result.error_code == "malformed_request"


class TestMint:
    """Test minting more of a registered token."""

    def test_mint_to_custody(self, service, state, protocol, dummy_token):
        result = service.mint({
            "policy_id": dummy_token.hex(),
            "asset_name": ASSET_NAME.hex(),
            "quantity": 50,
            "recipient": wallet("bob"),
            "fee_payer": wallet("issuer"),
        })

        assert result.successful, result.error
        assert result.metadata["unit"] == make_unit(dummy_token, ASSET_NAME)
        apply(state, result)
        assert custody_balance(protocol, "bob", dummy_token) == 50
        assert custody_balance(protocol, "alice", dummy_token) == 100

    def test_mint_unregistered_policy(self, service):
        result = service.mint({
            "policy_id": h28("nobody").hex(),
            "asset_name": ASSET_NAME.hex(),
            "quantity": 50,
            "recipient": wallet("bob"),
            "fee_payer": wallet("issuer"),
        })
        assert result.error_code == "not_registered"


class TestTransfer:
    """Test transfers of registered tokens."""

    def test_transfer_between_owners(self, service, state, protocol, factory, dummy_token):
        result = service.transfer(transfer_request(dummy_token, 40))

        assert result.successful, result.error
        assert result.metadata["registered"] is True
        assert result.metadata["registry_proofs"] == [{"policy_id": dummy_token.hex(), "kind": "exists"}]

        view = result.plan.transaction.view
        transfer_logic = Credential.script(factory.get_handler("dummy").transfer_logic_script().hash)
        coordinator = Credential.script(protocol.params.coordinator_hash)
        assert set(view.withdrawals) == {transfer_logic, coordinator}
        assert owner("alice").hash in view.required_signers
        assert protocol.registry_node(dummy_token).utxo in view.reference_inputs

        apply(state, result)
        assert custody_balance(protocol, "alice", dummy_token) == 60
        assert custody_balance(protocol, "bob", dummy_token) == 40

    def test_transfer_whole_balance(self, service, state, protocol, dummy_token):
        apply(state, service.transfer(transfer_request(dummy_token, 100)))

        assert custody_balance(protocol, "alice", dummy_token) == 0
        assert custody_balance(protocol, "bob", dummy_token) == 100

    def test_chained_transfers(self, service, state, protocol, dummy_token):
        apply(state, service.transfer(transfer_request(dummy_token, 70)))
        result = service.transfer(transfer_request(dummy_token, 25, sender="bob", recipient="alice"))

        assert result.successful, result.error
        apply(state, result)
        assert custody_balance(protocol, "alice", dummy_token) == 55
        assert custody_balance(protocol, "bob", dummy_token) == 45

    def test_insufficient_tokens(self, service, dummy_token):
        result = service.transfer(transfer_request(dummy_token, 1000))

        assert not result.successful
        assert result.error_code == "insufficient_funds"

    def test_unregistered_tokens_pass_through(self, service, state, protocol, foreign_tokens, foreign_policy):
        """Unregistered tokens in custody move with only the coordinator invoked."""
        result = service.transfer(transfer_request(foreign_policy, 200, name=b"coin"))

        assert result.successful, result.error
        assert result.metadata["registered"] is False
        assert result.metadata["registry_proofs"] == [{"policy_id": foreign_policy.hex(), "kind": "not_exists"}]

        view = result.plan.transaction.view
        assert set(view.withdrawals) == {Credential.script(protocol.params.coordinator_hash)}

        apply(state, result)
        assert custody_balance(protocol, "bob", foreign_policy, b"coin") == 200
        assert custody_balance(protocol, "alice", foreign_policy, b"coin") == 300


class TestAdministrativeActions:
    """Dummy tokens have no admin logic."""

    def test_burn_rejected(self, service, protocol, dummy_token):
        record = custody_records(protocol, "alice")[0]
        result = service.burn({
            "policy_id": dummy_token.hex(),
            "asset_name": ASSET_NAME.hex(),
            "quantity": 10,
            "target_record_ref": str(record.ref),
            "fee_payer": wallet("issuer"),
        })

        assert not result.successful
        assert result.error_code == "validation_rejected"

    def test_seize_unsupported(self, service, protocol, dummy_token):
        record = custody_records(protocol, "alice")[0]
        result = service.seize({
            "policy_id": dummy_token.hex(),
            "target_record_ref": str(record.ref),
            "recipient": wallet("issuer"),
            "fee_payer": wallet("issuer"),
        })

        assert not result.successful
        assert result.error_code == "malformed_request"

    @pytest.mark.parametrize("operation", ["blacklist_insert", "blacklist_remove"])
    def test_no_denylist(self, service, dummy_token, operation):
        result = getattr(service, operation)({
            "policy_id": dummy_token.hex(),
            "target_credential": str(owner("alice")),
            "admin_credential": str(owner("issuer")),
            "fee_payer": wallet("issuer"),
        })
        assert result.error_code == "malformed_request"
