"""
Programmable Tokens - Protocol Transaction Builders

This module assembles the protocol-level part of every operation: registry
insertion, issuance, custody inputs and outputs, registry proofs and the
coordinator invocation. Substandard handlers supply the token-specific
scripts, redeemers and rules through SubstandardScripts and
LogicInvocation.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from cbor2 import CBORTag

from crypto.addresses import owner_credential_of, programmable_address, wallet_address
from crypto.credentials import Credential
from registry.linked_list import InsertPlan, PendingProof, RemovePlan, SortedLinkedList
from registry.schema import ListKind, NodeRecord, ProofKind, RegistryNode
from registry.state import StateProvider
from validator.coordinator import Coordinator, CoordinatorRule, SeizeAct, TransferAct
from validator.core import ScriptPurpose, ValidationEngine, ValidationRule
from validator.guard import CustodyGuardRule
from validator.rules.issuer_admin import IssuanceRule
from validator.rules.linked_list import LIST_INSERT, SortedListMintRule, SortedListSpendRule

from .builder import (
    OperationMetadata,
    OperationType,
    Redeemer,
    TransactionBuilder,
    UnsignedTxPlan,
)
from .exceptions import (
    AlreadyRegisteredError,
    ConflictError,
    DuplicateKeyError,
    InsufficientFundsError,
    MalformedRequestError,
    NotFoundError,
    NotRegisteredError,
    StateUnavailableError,
)
from .ledger import UTxO, Value, constr, make_unit
from .params import FeeSettings, ProtocolParams
from .requests import BurnRequest, MintRequest, RegisterRequest, SeizeRequest, TransferRequest
from .scripts import PlutusScript, ScriptTemplate, derive_issuance_policy, verify_issuance_policy
from .selection import select_asset_utxos


logger = logging.getLogger(__name__)

UNIT_REDEEMER = CBORTag(121, [])

RuleBinding = Tuple[ScriptPurpose, bytes, ValidationRule]


@dataclass
class LogicInvocation:
    """One stake-script invocation contributed by a substandard."""
    credential: Credential
    redeemer: Redeemer = UNIT_REDEEMER
    reference_inputs: List[UTxO] = field(default_factory=list)
    required_signers: List[bytes] = field(default_factory=list)
    rules: List[RuleBinding] = field(default_factory=list)


@dataclass
class SubstandardScripts:
    """Token-specific scripts and the rules modelling them."""
    issuer_logic: PlutusScript
    transfer_logic: PlutusScript
    admin_logic: Optional[Credential]
    rules: List[RuleBinding] = field(default_factory=list)
    required_signers: List[bytes] = field(default_factory=list)

    @property
    def issuer_credential(self) -> Credential:
        return Credential.script(self.issuer_logic.hash)

    @property
    def transfer_credential(self) -> Credential:
        return Credential.script(self.transfer_logic.hash)


TransferLogicResolver = Callable[[bytes, RegistryNode, List[UTxO]], LogicInvocation]


class ProtocolBuilder:
    """
    Protocol-level builders over a state snapshot.

    Args:
        state: Ledger state collaborator
        fee_settings: Overrides the fee settings of the bootstrap parameters
    """

    def __init__(self, state: StateProvider, fee_settings: Optional[FeeSettings] = None):
        self.state = state
        self.fee_settings = fee_settings

    @property
    def params(self) -> ProtocolParams:
        return self.state.get_bootstrap_params()

    def coordinator(self) -> Coordinator:
        return Coordinator(self.params.custody_hash, self.params.registry_policy)

    def custody_address(self, owner: Credential) -> str:
        return programmable_address(self.params.custody_hash, owner, self.params.network)

    def registry_address(self) -> str:
        return wallet_address(Credential.script(self.params.registry_spend_hash), None, self.params.network)

    def create_engine(self, extra_rules: List[RuleBinding] = ()) -> ValidationEngine:
        """Engine with the protocol's own scripts plus ``extra_rules``."""
        params = self.params
        engine = ValidationEngine({"network": params.network})
        engine.register_rule(ScriptPurpose.SPEND, params.custody_hash,
                             CustodyGuardRule(params.coordinator_hash))
        engine.register_rule(ScriptPurpose.WITHDRAW, params.coordinator_hash,
                             CoordinatorRule(self.coordinator()))
        engine.register_rule(ScriptPurpose.MINT, params.registry_policy,
                             SortedListMintRule(params.registry_policy, ListKind.REGISTRY,
                                                admin_key_hash=params.registry_admin,
                                                require_key_minted=True,
                                                issuance_template=self.issuance_template()))
        engine.register_rule(ScriptPurpose.SPEND, params.registry_spend_hash,
                             SortedListSpendRule(params.registry_policy, ListKind.REGISTRY))
        for purpose, script_hash, rule in extra_rules:
            engine.register_rule(purpose, script_hash, rule)
        return engine

    def new_transaction(self, extra_rules: List[RuleBinding] = ()) -> TransactionBuilder:
        return TransactionBuilder(self.params, self.create_engine(extra_rules), self.fee_settings)

    def registry(self) -> SortedLinkedList:
        return self.state.find_list_nodes(self.params.registry_policy)

    def registry_node(self, policy_id: bytes) -> NodeRecord:
        record = self.registry().get(policy_id)
        if record is None:
            raise NotRegisteredError(f"Policy {policy_id.hex()} is not registered")
        return record

    def protocol_reference(self) -> UTxO:
        return self._bootstrap_output(self.params.params_ref, "protocol parameters")

    def issuance_reference(self) -> UTxO:
        return self._bootstrap_output(self.params.issuance_script_ref, "issuance script")

    def _bootstrap_output(self, ref, label) -> UTxO:
        utxo = self.state.find_record(ref)
        if utxo is None:
            raise StateUnavailableError(f"Bootstrap output for {label} ({ref}) is not available")
        return utxo

    def issuance_template(self) -> ScriptTemplate:
        return ScriptTemplate.from_hex(self.params.issuance_template, "issuance.mint")

    def fee_utxos(self, address: str) -> List[UTxO]:
        return self.state.find_records_by_owner(address)

    def require_custody_record(self, ref) -> UTxO:
        record = self.state.require_record(ref)
        if not self.coordinator().is_custody(record.address):
            raise MalformedRequestError(f"Output {ref} is not a custody record")
        return record

    @staticmethod
    def _policy_bytes(value: str) -> bytes:
        try:
            policy_id = bytes.fromhex(value)
        except (TypeError, ValueError):
            raise MalformedRequestError(f"Invalid policy id {value!r}")
        if len(policy_id) != 28:
            raise MalformedRequestError(f"Policy id {value!r} must be 28 bytes")
        return policy_id

    # Sorted list changes

    def insert_node(self, tb: TransactionBuilder, lst: SortedLinkedList, key: bytes,
                    redeemer: Redeemer, **attributes) -> InsertPlan:
        """Consume the covering node and produce it relinked plus the new node."""
        if not len(lst):
            raise StateUnavailableError(f"List {lst.list_id.hex()} has no nodes")
        try:
            covering, _ = lst.find_covering(key)
        except NotFoundError as e:
            raise ConflictError(f"List {lst.list_id.hex()} is inconsistent: {e.reason}")
        plan = lst.plan_insert(covering, key, **attributes)

        tb.add_input(covering.utxo, UNIT_REDEEMER)
        tb.mint_asset(lst.list_id, key, 1, redeemer)
        tb.add_output(covering.utxo.address, covering.utxo.value, plan.updated_covering.to_plutus())
        tb.add_output(covering.utxo.address, Value.of(lst.list_id, key, 1), plan.new_node.to_plutus())
        logger.debug(f"Planned insert of {key.hex()} after {covering.key.hex()} in {lst.list_id.hex()}")
        return plan

    def remove_node(self, tb: TransactionBuilder, lst: SortedLinkedList, key: bytes,
                    redeemer: Redeemer) -> RemovePlan:
        """Consume the node and its predecessor; produce the predecessor relinked."""
        target = lst.find(key)
        try:
            previous = lst.find_predecessor(key)
        except NotFoundError as e:
            raise ConflictError(f"List {lst.list_id.hex()} is inconsistent: {e.reason}")
        plan = lst.plan_remove(previous, target)

        tb.add_input(previous.utxo, UNIT_REDEEMER)
        tb.add_input(target.utxo, UNIT_REDEEMER)
        tb.mint_asset(lst.list_id, key, -1, redeemer)
        tb.add_output(previous.utxo.address, previous.utxo.value, plan.updated_previous.to_plutus())
        logger.debug(f"Planned removal of {key.hex()} after {previous.key.hex()} in {lst.list_id.hex()}")
        return plan

    # Operations

    def register(self, request: RegisterRequest, scripts: SubstandardScripts) -> UnsignedTxPlan:
        """
        Register a token: insert its registry node and mint the initial supply.

        The owner credential authorizes the registration: a key signs, a
        script is invoked.

        Raises:
            AlreadyRegisteredError: If the derived policy is already registered
            ValidationRejectedError: If the derived policy differs from the
                one the caller expects
        """
        template = self.issuance_template()
        issuance = derive_issuance_policy(template, scripts.issuer_logic.hash)
        policy_id = issuance.hash
        expected = (request.substandard_config or {}).get("expected_policy_id")
        if expected:
            verify_issuance_policy(template, scripts.issuer_logic.hash, self._policy_bytes(expected))

        registry = self.registry()
        if policy_id in registry:
            raise AlreadyRegisteredError(f"Policy {policy_id.hex()} is already registered")

        tb = self.new_transaction(scripts.rules + [
            (ScriptPurpose.MINT, policy_id, IssuanceRule(scripts.issuer_logic.hash)),
        ])
        try:
            plan = self.insert_node(
                tb, registry, policy_id,
                constr(LIST_INSERT, [policy_id, scripts.issuer_logic.hash]),
                transfer_logic=scripts.transfer_credential,
                admin_logic=scripts.admin_logic,
                global_state_id=b"",
            )
        except DuplicateKeyError:
            raise AlreadyRegisteredError(f"Policy {policy_id.hex()} is already registered")

        self._issue(tb, scripts, policy_id, request.asset_name_bytes, request.quantity)
        tb.authorize(request.owner)
        recipient = owner_credential_of(request.recipient_address)
        tb.add_output(self.custody_address(recipient),
                      Value.of(policy_id, request.asset_name_bytes, request.quantity))
        if self.params.registry_admin:
            tb.add_required_signer(self.params.registry_admin)

        unsigned = tb.build(request.fee_payer, self.fee_utxos(request.fee_payer))
        logger.info(f"Registered policy {policy_id.hex()} for substandard {request.substandard_id}")
        return UnsignedTxPlan(unsigned, OperationMetadata(
            operation_type=OperationType.REGISTER,
            tx_id=unsigned.tx_id.hex(),
            node_keys_touched=[plan.covering.key.hex(), policy_id.hex()],
            new_policy_id=policy_id.hex(),
        ))

    def mint(self, request: MintRequest, scripts: SubstandardScripts) -> UnsignedTxPlan:
        policy_id = request.policy
        self.registry_node(policy_id)
        verify_issuance_policy(self.issuance_template(), scripts.issuer_logic.hash, policy_id)

        tb = self.new_transaction(scripts.rules + [
            (ScriptPurpose.MINT, policy_id, IssuanceRule(scripts.issuer_logic.hash)),
        ])
        self._issue(tb, scripts, policy_id, request.asset_name_bytes, request.quantity)
        recipient = owner_credential_of(request.recipient)
        tb.add_output(self.custody_address(recipient),
                      Value.of(policy_id, request.asset_name_bytes, request.quantity))

        unsigned = tb.build(request.fee_payer, self.fee_utxos(request.fee_payer))
        return UnsignedTxPlan(unsigned, OperationMetadata(
            operation_type=OperationType.MINT,
            tx_id=unsigned.tx_id.hex(),
            extra={"unit": make_unit(policy_id, request.asset_name_bytes), "quantity": request.quantity},
        ))

    def _issue(self, tb: TransactionBuilder, scripts: SubstandardScripts, policy_id: bytes,
               asset_name: bytes, quantity: int):
        tb.mint_asset(policy_id, asset_name, quantity,
                      constr(0, [scripts.issuer_credential.to_plutus()]))
        tb.add_withdrawal(scripts.issuer_credential, UNIT_REDEEMER)
        tb.add_reference_input(self.protocol_reference())
        tb.add_reference_input(self.issuance_reference())
        for signer in scripts.required_signers:
            tb.add_required_signer(signer)

    def burn(self, request: BurnRequest, scripts: SubstandardScripts,
             admin: LogicInvocation) -> UnsignedTxPlan:
        """Burn tokens out of one custody record under the token's admin logic."""
        policy_id, name = request.policy, request.asset_name_bytes
        node = self.registry_node(policy_id)
        verify_issuance_policy(self.issuance_template(), scripts.issuer_logic.hash, policy_id)
        record = self.require_custody_record(request.target_ref)
        held = record.value.quantity_of(policy_id, name)
        if held < request.quantity:
            raise InsufficientFundsError(request.quantity, held, unit=make_unit(policy_id, name))

        tb = self.new_transaction(scripts.rules + [
            (ScriptPurpose.MINT, policy_id, IssuanceRule(scripts.issuer_logic.hash)),
        ])
        tb.add_input(record, UNIT_REDEEMER)
        remaining = record.value - Value.of(policy_id, name, request.quantity)
        output_index = tb.add_output(record.address, remaining, record.datum, enforce_min=False)
        self._issue(tb, scripts, policy_id, name, -request.quantity)
        self._administer(tb, node, admin, [(record, output_index)])

        unsigned = tb.build(request.fee_payer, self.fee_utxos(request.fee_payer))
        return UnsignedTxPlan(unsigned, OperationMetadata(
            operation_type=OperationType.BURN,
            tx_id=unsigned.tx_id.hex(),
            extra={"unit": make_unit(policy_id, name), "quantity": request.quantity,
                   "target": str(record.ref)},
        ))

    def seize(self, request: SeizeRequest, scripts: SubstandardScripts,
              admin: LogicInvocation) -> UnsignedTxPlan:
        """Move every token of the policy out of one custody record."""
        policy_id = request.policy
        node = self.registry_node(policy_id)
        record = self.require_custody_record(request.target_ref)
        seized = record.value.policy_assets(policy_id)
        if not seized:
            raise NotFoundError(f"Record {record.ref} holds no tokens of {policy_id.hex()}")

        tb = self.new_transaction(scripts.rules)
        tb.add_input(record, UNIT_REDEEMER)
        output_index = tb.add_output(record.address, record.value.without_policy(policy_id),
                                     record.datum, enforce_min=False)
        recipient = owner_credential_of(request.recipient)
        tb.add_output(self.custody_address(recipient), Value(0, {policy_id: seized}))
        tb.add_reference_input(self.protocol_reference())
        self._administer(tb, node, admin, [(record, output_index)])

        unsigned = tb.build(request.fee_payer, self.fee_utxos(request.fee_payer))
        logger.info(f"Seizure of {policy_id.hex()} from {record.ref} planned")
        return UnsignedTxPlan(unsigned, OperationMetadata(
            operation_type=OperationType.SEIZE,
            tx_id=unsigned.tx_id.hex(),
            extra={"policy_id": policy_id.hex(), "target": str(record.ref),
                   "seized": {name.hex(): q for name, q in sorted(seized.items())}},
        ))

    def _administer(self, tb: TransactionBuilder, node: NodeRecord, admin: LogicInvocation,
                    pairs: List[Tuple[UTxO, int]]):
        tb.add_reference_input(node.utxo)
        self._invoke(tb, admin)

        def seize_act(view):
            return SeizeAct(
                view.reference_index(node.utxo.ref),
                tuple((view.input_index(utxo.ref), out) for utxo, out in pairs),
            ).to_plutus()

        tb.add_withdrawal(Credential.script(self.params.coordinator_hash), seize_act)

    def _invoke(self, tb: TransactionBuilder, invocation: LogicInvocation):
        tb.authorize(invocation.credential, invocation.redeemer)
        for utxo in invocation.reference_inputs:
            tb.add_reference_input(utxo)
        for signer in invocation.required_signers:
            tb.add_required_signer(signer)

    def transfer(self, request: TransferRequest, resolve_logic: TransferLogicResolver) -> UnsignedTxPlan:
        """
        Transfer tokens between custody records.

        Every distinct policy among the selected records gets one registry
        proof. Registered policies invoke their transfer logic (resolved by
        ``resolve_logic``); unregistered ones pass through with an absence
        proof and only the coordinator runs.
        """
        policy_id, name = request.policy, request.asset_name_bytes
        sender = owner_credential_of(request.sender)
        recipient = owner_credential_of(request.recipient)
        sender_custody = self.custody_address(sender)

        records = self.state.find_records_by_owner(sender_custody)
        selected, total = select_asset_utxos(records, policy_id, name, request.quantity)

        registry = self.registry()
        proofs: List[PendingProof] = []
        invocations: Dict[Credential, LogicInvocation] = {}
        for policy in total.policies():
            record = registry.get(policy)
            if record is not None:
                proofs.append(registry.build_exists_proof(policy))
                invocation = resolve_logic(policy, record.node, selected)
                invocations.setdefault(invocation.credential, invocation)
            else:
                try:
                    proofs.append(registry.build_absence_proof(policy))
                except NotFoundError as e:
                    raise ConflictError(f"Registry is inconsistent: {e.reason}")

        extra_rules: List[RuleBinding] = [r for inv in invocations.values() for r in inv.rules]
        tb = self.new_transaction(extra_rules)
        for utxo in selected:
            tb.add_input(utxo, UNIT_REDEEMER)
        for proof in proofs:
            tb.add_reference_input(proof.record.utxo)
        tb.add_reference_input(self.protocol_reference())

        sent = Value.of(policy_id, name, request.quantity)
        tb.add_output(self.custody_address(recipient), sent)
        returning = total - sent
        if returning != Value():
            tb.add_output(sender_custody, returning)

        tb.authorize(sender)
        for invocation in invocations.values():
            self._invoke(tb, invocation)

        def transfer_act(view):
            return TransferAct(tuple(
                p.resolve(view.reference_index(p.record.utxo.ref)) for p in proofs
            )).to_plutus()

        tb.add_withdrawal(Credential.script(self.params.coordinator_hash), transfer_act)

        unsigned = tb.build(request.sender, self.fee_utxos(request.sender))
        logger.info(f"Transfer of {request.quantity} {request.unit} planned with "
                    f"{len(selected)} custody inputs and {len(invocations)} logic invocations")
        return UnsignedTxPlan(unsigned, OperationMetadata(
            operation_type=OperationType.TRANSFER,
            tx_id=unsigned.tx_id.hex(),
            extra={
                "unit": request.unit,
                "quantity": request.quantity,
                "registry_proofs": [
                    {"policy_id": p.key.hex(), "kind": p.kind.value} for p in proofs
                ],
                "registered": any(p.kind == ProofKind.EXISTS for p in proofs),
            },
        ))
