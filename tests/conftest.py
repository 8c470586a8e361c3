"""
Pytest configuration and fixtures for programmable token tests.

Every fixture builds on one deterministic in-memory ledger: bootstrap
reference outputs, an empty registry (origin node only) and funded
wallets for a few named parties.
"""

import json
from types import SimpleNamespace

import pytest

from crypto.addresses import programmable_address, wallet_address
from crypto.credentials import Credential, blake2b_224, blake2b_256
from registry.schema import SENTINEL_KEY, RegistryNode
from registry.state import InMemoryStateProvider
from substandards import FreezeAndSeizeContext, SubstandardHandlerFactory
from txbuilder.ledger import OutRef, TxOutput, UTxO, Value
from txbuilder.operations import TokenOperationsService
from txbuilder.params import ProtocolParams
from txbuilder.protocol import ProtocolBuilder
from txbuilder.scripts import Blueprint


NETWORK = "testnet"
BOOTSTRAP_TX = "11" * 32
FUNDING = 50_000_000
ASSET_NAME = b"REGCOIN"

DUMMY_BLUEPRINT = {
    "preamble": {"title": "programmable-tokens/dummy", "version": "0.1.0"},
    "validators": [
        {"title": "issue_validator.withdraw", "compiledCode": b"dummy-issue-code".hex()},
        {"title": "transfer_validator.withdraw", "compiledCode": b"dummy-transfer-code".hex()},
    ],
}

FREEZE_AND_SEIZE_BLUEPRINT = {
    "preamble": {"title": "programmable-tokens/freeze-and-seize", "version": "0.1.0"},
    "validators": [
        {"title": "example_transfer_logic.issuer_admin_contract.withdraw",
         "compiledCode": b"fes-issuer-admin-code".hex()},
        {"title": "example_transfer_logic.transfer.withdraw",
         "compiledCode": b"fes-transfer-code".hex()},
        {"title": "blacklist_mint.mint", "compiledCode": b"fes-blacklist-mint-code".hex()},
        {"title": "blacklist_spend.spend", "compiledCode": b"fes-blacklist-spend-code".hex()},
    ],
}


def h28(label: str) -> bytes:
    """Deterministic 28-byte hash for a label."""
    return blake2b_224(label.encode())


def owner(label: str) -> Credential:
    """Owner (staking) credential of a named party."""
    return Credential.key(h28(f"{label}-stake"))


def payment_key(label: str) -> Credential:
    return Credential.key(h28(f"{label}-payment"))


def wallet(label: str) -> str:
    """Base wallet address of a named party."""
    return wallet_address(payment_key(label), owner(label), NETWORK)


def funding_utxos(label: str, count: int = 2, amount: int = FUNDING):
    tx_hash = blake2b_256(f"fund-{label}".encode())
    return [UTxO(OutRef(tx_hash, i), TxOutput(wallet(label), Value(amount))) for i in range(count)]


def apply(state: InMemoryStateProvider, plan):
    """Confirm a built plan (or a successful TransactionContext) against the state."""
    plan = getattr(plan, "plan", None) or plan
    return state.apply_transaction(plan.transaction)


def custody_records(protocol: ProtocolBuilder, label: str):
    return protocol.state.find_records_by_owner(protocol.custody_address(owner(label)))


def custody_balance(protocol: ProtocolBuilder, label: str, policy_id: bytes, name: bytes = ASSET_NAME) -> int:
    return sum(u.value.quantity_of(policy_id, name) for u in custody_records(protocol, label))


@pytest.fixture
def protocol_params():
    """Bootstrap parameters of a test deployment."""
    return ProtocolParams(
        network=NETWORK,
        tx_hash=BOOTSTRAP_TX,
        custody_script_hash=h28("custody").hex(),
        coordinator_script_hash=h28("coordinator").hex(),
        registry_node_policy_id=h28("registry").hex(),
        registry_spend_script_hash=h28("registry-spend").hex(),
        issuance_template=b"issuance-template-code".hex(),
        protocol_params_ref=f"{BOOTSTRAP_TX}#0",
        issuance_ref=f"{BOOTSTRAP_TX}#1",
    )


@pytest.fixture
def registry_address(protocol_params):
    return wallet_address(Credential.script(protocol_params.registry_spend_hash), None, NETWORK)


@pytest.fixture
def state(protocol_params, registry_address):
    """Bootstrapped ledger with an empty registry and funded parties."""
    provider = InMemoryStateProvider()
    provider.set_bootstrap_params(protocol_params)

    bootstrap = bytes.fromhex(BOOTSTRAP_TX)
    provider.add_utxo(UTxO(OutRef(bootstrap, 0), TxOutput(wallet("bootstrap"), Value(5_000_000))))
    provider.add_utxo(UTxO(OutRef(bootstrap, 1), TxOutput(wallet("bootstrap"), Value(20_000_000))))

    origin = RegistryNode(key=b"", next=SENTINEL_KEY)
    provider.add_utxo(UTxO(
        OutRef(bootstrap, 2),
        TxOutput(registry_address, Value.of(protocol_params.registry_policy, b"", 1, lovelace=2_000_000),
                 origin.to_plutus()),
    ))

    for label in ("alice", "bob", "issuer", "manager"):
        for utxo in funding_utxos(label):
            provider.add_utxo(utxo)
    return provider


@pytest.fixture
def protocol(state):
    return ProtocolBuilder(state)


@pytest.fixture
def blueprints():
    return {
        "dummy": Blueprint.from_dict(DUMMY_BLUEPRINT),
        "freeze-and-seize": Blueprint.from_dict(FREEZE_AND_SEIZE_BLUEPRINT),
    }


@pytest.fixture
def factory(protocol, blueprints):
    return SubstandardHandlerFactory(protocol, blueprints)


@pytest.fixture
def service(protocol, factory):
    return TokenOperationsService(protocol, factory, max_retries=1)


@pytest.fixture
def foreign_policy():
    return h28("foreign-policy")


@pytest.fixture
def foreign_tokens(state, protocol, foreign_policy):
    """Unregistered tokens sitting in alice's custody address."""
    utxo = UTxO(
        OutRef(blake2b_256(b"foreign"), 0),
        TxOutput(protocol.custody_address(owner("alice")),
                 Value.of(foreign_policy, b"coin", 500, lovelace=2_000_000)),
    )
    state.add_utxo(utxo)
    return utxo


@pytest.fixture
def dummy_token(service, state):
    """A dummy token registered with 100 units in alice's custody."""
    result = service.register({
        "substandard_id": "dummy",
        "owner_credential": str(owner("issuer")),
        "asset_name": ASSET_NAME.hex(),
        "quantity": 100,
        "recipient": wallet("alice"),
        "fee_payer": wallet("issuer"),
    })
    assert result.successful, result.error
    apply(state, result)
    return bytes.fromhex(result.metadata["new_policy_id"])


@pytest.fixture
def fes_context():
    """Freeze-and-seize deployment keys, before the denylist exists."""
    return FreezeAndSeizeContext(
        issuer_admin_pkh=h28("issuer-admin").hex(),
        denylist_manager_pkh=h28("denylist-manager").hex(),
    )


@pytest.fixture
def fes_token(service, state, fes_context):
    """
    A freeze-and-seize deployment: denylist bootstrapped and a token
    registered with 100 units in alice's custody.
    """
    init = service.blacklist_init(
        {"admin_credential": f"key:{fes_context.denylist_manager_pkh}", "fee_payer": wallet("manager")},
        fes_context.to_dict(),
    )
    assert init.successful, init.error
    apply(state, init)
    context = FreezeAndSeizeContext(**init.metadata["context"])

    result = service.register({
        "substandard_id": "freeze-and-seize",
        "owner_credential": f"key:{context.issuer_admin_pkh}",
        "asset_name": ASSET_NAME.hex(),
        "quantity": 100,
        "recipient": wallet("alice"),
        "fee_payer": wallet("issuer"),
        "substandard_config": context.to_dict(),
    })
    assert result.successful, result.error
    apply(state, result)
    return SimpleNamespace(
        policy=bytes.fromhex(result.metadata["new_policy_id"]),
        context=context,
        manager=f"key:{context.denylist_manager_pkh}",
    )


@pytest.fixture
def blueprint_files(tmp_path):
    """Blueprints written to disk, as the CLI loads them."""
    paths = {}
    for substandard_id, data in (("dummy", DUMMY_BLUEPRINT), ("freeze-and-seize", FREEZE_AND_SEIZE_BLUEPRINT)):
        path = tmp_path / f"{substandard_id}.plutus.json"
        path.write_text(json.dumps(data))
        paths[substandard_id] = str(path)
    return paths
