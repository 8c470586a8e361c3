"""
Freeze-and-Seize Substandard

A regulated-token substandard. An issuer admin key gates minting, burning
and seizure; a denylist of owner credentials, managed by a separate key,
freezes owners. Transfers carry one non-membership proof into the denylist
per custody input.

Scripts (blueprint titles):
    example_transfer_logic.issuer_admin_contract   issuer and admin logic, applied to the admin key
    example_transfer_logic.transfer                transfer logic, applied to the custody credential
                                                   and the denylist policy
    blacklist_mint                                 denylist marker policy, applied to the one-shot
                                                   init output and the manager key
    blacklist_spend                                denylist node script, applied to the marker policy
"""

from typing import List, Optional

from crypto.addresses import decompose_address, wallet_address
from crypto.credentials import Credential
from registry.linked_list import SortedLinkedList
from registry.schema import ORIGIN_KEY, SENTINEL_KEY, ListKind, ListNode, RegistryNode
from txbuilder.builder import OperationMetadata, OperationType, UnsignedTxPlan
from txbuilder.exceptions import (
    ConflictError,
    InsufficientFundsError,
    MalformedRequestError,
    NotFoundError,
    StateUnavailableError,
    ValidationRejectedError,
)
from txbuilder.ledger import UTxO, Value, constr
from txbuilder.protocol import LogicInvocation, ProtocolBuilder, RuleBinding
from txbuilder.requests import BlacklistInitRequest, BlacklistRequest, SeizeRequest
from txbuilder.scripts import Blueprint, PlutusScript
from txbuilder.selection import select_lovelace
from validator.core import ScriptPurpose
from validator.rules.denylist import DenylistTransferRule, encode_denylist_proofs
from validator.rules.issuer_admin import IssuerAdminRule
from validator.rules.linked_list import (
    LIST_INIT,
    LIST_INSERT,
    LIST_REMOVE,
    SortedListMintRule,
    SortedListSpendRule,
)

from .base import BlacklistManageable, Seizeable, SubstandardHandler
from .context import FreezeAndSeizeContext


ISSUER_ADMIN_VALIDATOR = "example_transfer_logic.issuer_admin_contract"
TRANSFER_VALIDATOR = "example_transfer_logic.transfer"
DENYLIST_MINT_VALIDATOR = "blacklist_mint"
DENYLIST_SPEND_VALIDATOR = "blacklist_spend"


class FreezeAndSeizeHandler(SubstandardHandler, BlacklistManageable, Seizeable):
    """
    Handler bound to one freeze-and-seize deployment.

    Without a context only ``build_blacklist_init`` is available; every
    other operation needs the admin keys, and transfers need the denylist.
    """

    substandard_id = "freeze-and-seize"
    requires_context = True

    def __init__(self, protocol: ProtocolBuilder, blueprint: Blueprint,
                 context: Optional[FreezeAndSeizeContext] = None):
        if context is not None and not isinstance(context, FreezeAndSeizeContext):
            raise MalformedRequestError(
                f"freeze-and-seize requires FreezeAndSeizeContext, got {type(context).__name__}"
            )
        super().__init__(protocol, blueprint, context)
        if context is not None and context.has_denylist:
            protocol.state.register_list(context.denylist_policy, ListKind.DENYLIST)

    def _context(self) -> FreezeAndSeizeContext:
        if self.context is None:
            raise MalformedRequestError("freeze-and-seize operations need a deployment context")
        return self.context

    def _denylist_policy(self) -> bytes:
        context = self._context()
        if not context.has_denylist:
            raise StateUnavailableError("Denylist of this deployment is not initialized")
        return context.denylist_policy

    # Scripts

    def issuer_logic_script(self) -> PlutusScript:
        admin = Credential.key(self._context().issuer_admin)
        return self.blueprint.find(ISSUER_ADMIN_VALIDATOR).apply(admin.to_plutus())

    def transfer_logic_script(self) -> PlutusScript:
        custody = Credential.script(self.protocol.params.custody_hash)
        return self.blueprint.find(TRANSFER_VALIDATOR).apply(custody.to_plutus(), self._denylist_policy())

    def denylist_mint_script(self, init_ref, manager_key_hash: bytes) -> PlutusScript:
        return self.blueprint.find(DENYLIST_MINT_VALIDATOR).apply(init_ref.to_plutus(), manager_key_hash)

    def denylist_spend_script(self, denylist_policy: bytes) -> PlutusScript:
        return self.blueprint.find(DENYLIST_SPEND_VALIDATOR).apply(denylist_policy)

    def denylist_address(self, denylist_policy: bytes) -> str:
        spend = self.denylist_spend_script(denylist_policy)
        return wallet_address(Credential.script(spend.hash), None, self.protocol.params.network)

    def admin_logic_credential(self) -> Credential:
        return Credential.script(self.issuer_logic_script().hash)

    def required_signers(self) -> List[bytes]:
        return [self._context().issuer_admin]

    def validation_rules(self) -> List[RuleBinding]:
        context = self._context()
        rules: List[RuleBinding] = [
            (ScriptPurpose.WITHDRAW, self.issuer_logic_script().hash, IssuerAdminRule(context.issuer_admin)),
        ]
        if context.has_denylist:
            rules.append((ScriptPurpose.WITHDRAW, self.transfer_logic_script().hash,
                          DenylistTransferRule(self.protocol.params.custody_hash, context.denylist_policy)))
        return rules

    def denylist_rules(self, denylist_policy: bytes, manager: bytes, init_ref=None) -> List[RuleBinding]:
        return [
            (ScriptPurpose.MINT, denylist_policy,
             SortedListMintRule(denylist_policy, ListKind.DENYLIST, admin_key_hash=manager, bootstrap_ref=init_ref)),
            (ScriptPurpose.SPEND, self.denylist_spend_script(denylist_policy).hash,
             SortedListSpendRule(denylist_policy, ListKind.DENYLIST)),
        ]

    # Denylist reads

    def denylist(self) -> SortedLinkedList:
        return self.protocol.state.find_list_nodes(self._denylist_policy())

    def is_frozen(self, owner: Credential) -> bool:
        return owner.hash in self.denylist()

    # Transfers

    def transfer_invocation(self, policy_id: bytes, node: RegistryNode,
                            selected: List[UTxO]) -> LogicInvocation:
        """
        Transfer logic invocation with one denylist proof per custody input.

        Raises:
            ValidationRejectedError: If an input owner is frozen
        """
        denylist = self.denylist()
        covering = {}
        for utxo in selected:
            _, owner = decompose_address(utxo.address)
            if owner is None:
                raise ValidationRejectedError(f"Custody record {utxo.ref} has no owner credential")
            if owner.hash in denylist:
                raise ValidationRejectedError(f"Owner {owner} is frozen")
            if owner.hash not in covering:
                try:
                    covering[owner.hash], _ = denylist.find_covering(owner.hash)
                except NotFoundError as e:
                    raise ConflictError(f"Denylist is inconsistent: {e.reason}")

        coordinator = self.protocol.coordinator()

        def denylist_proofs(view):
            return encode_denylist_proofs([
                view.reference_index(covering[owner.hash].utxo.ref)
                for _, _, owner in coordinator.custody_inputs(view)
            ])

        transfer = self.transfer_logic_script()
        self.logger.debug(f"Denylist proofs for {len(covering)} owners of {policy_id.hex()}")
        return LogicInvocation(
            credential=Credential.script(transfer.hash),
            redeemer=denylist_proofs,
            reference_inputs=[record.utxo for record in covering.values()],
            rules=[(ScriptPurpose.WITHDRAW, transfer.hash,
                    DenylistTransferRule(self.protocol.params.custody_hash, self._denylist_policy()))],
        )

    # Denylist management

    def build_blacklist_init(self, request: BlacklistInitRequest) -> UnsignedTxPlan:
        """
        Bootstrap a denylist.

        A lovelace-only output of the fee payer is consumed as the one-shot
        parameter of the marker policy, so the policy (and its manager key)
        can never be bootstrapped twice.
        """
        manager = request.admin
        if manager.is_script:
            raise MalformedRequestError("Denylist manager must be a key credential")
        utxos = self.protocol.fee_utxos(request.fee_payer)
        try:
            one_shot = select_lovelace(utxos, 1)[0]
        except InsufficientFundsError:
            raise InsufficientFundsError(self.protocol.params.fees.min_lovelace, 0,
                                         message="Fee payer has no output to bootstrap the denylist with")

        policy = self.denylist_mint_script(one_shot.ref, manager.hash).hash
        tb = self.protocol.new_transaction(self.denylist_rules(policy, manager.hash, one_shot.ref))
        tb.add_input(one_shot)
        tb.mint_asset(policy, ORIGIN_KEY, 1, constr(LIST_INIT, []))
        tb.add_output(self.denylist_address(policy), Value.of(policy, ORIGIN_KEY, 1),
                      ListNode(key=ORIGIN_KEY, next=SENTINEL_KEY).to_plutus())
        tb.add_required_signer(manager.hash)

        unsigned = tb.build(request.fee_payer, utxos)
        issuer_admin = self.context.issuer_admin_pkh if self.context else manager.hex
        context = FreezeAndSeizeContext(issuer_admin_pkh=issuer_admin, denylist_manager_pkh=manager.hex)
        context = context.with_denylist(one_shot.ref, policy)
        self.logger.info(f"Denylist {policy.hex()} bootstrapped from {one_shot.ref}")
        return UnsignedTxPlan(unsigned, OperationMetadata(
            operation_type=OperationType.BLACKLIST_INIT,
            tx_id=unsigned.tx_id.hex(),
            node_keys_touched=[ORIGIN_KEY.hex()],
            extra={"denylist_policy_id": policy.hex(), "context": context.to_dict()},
        ))

    def _check_manager(self, request: BlacklistRequest):
        if request.admin != Credential.key(self._context().denylist_manager):
            raise ValidationRejectedError(f"{request.admin} is not the denylist manager")

    def build_blacklist_insert(self, request: BlacklistRequest) -> UnsignedTxPlan:
        """Freeze an owner. Raises DuplicateKeyError when it is already frozen."""
        self._check_manager(request)
        policy, key = self._denylist_policy(), request.target.hash
        tb = self.protocol.new_transaction(self.denylist_rules(policy, self._context().denylist_manager))
        plan = self.protocol.insert_node(tb, self.denylist(), key, constr(LIST_INSERT, [key]))
        tb.add_required_signer(self._context().denylist_manager)

        unsigned = tb.build(request.fee_payer, self.protocol.fee_utxos(request.fee_payer))
        self.logger.info(f"Freeze of {request.target} planned in denylist {policy.hex()}")
        return UnsignedTxPlan(unsigned, OperationMetadata(
            operation_type=OperationType.BLACKLIST_INSERT,
            tx_id=unsigned.tx_id.hex(),
            node_keys_touched=[plan.covering.key.hex(), key.hex()],
        ))

    def build_blacklist_remove(self, request: BlacklistRequest) -> UnsignedTxPlan:
        """Unfreeze an owner. Raises NotFoundError when it is not frozen."""
        self._check_manager(request)
        policy, key = self._denylist_policy(), request.target.hash
        tb = self.protocol.new_transaction(self.denylist_rules(policy, self._context().denylist_manager))
        plan = self.protocol.remove_node(tb, self.denylist(), key, constr(LIST_REMOVE, [key]))
        tb.add_required_signer(self._context().denylist_manager)

        unsigned = tb.build(request.fee_payer, self.protocol.fee_utxos(request.fee_payer))
        self.logger.info(f"Unfreeze of {request.target} planned in denylist {policy.hex()}")
        return UnsignedTxPlan(unsigned, OperationMetadata(
            operation_type=OperationType.BLACKLIST_REMOVE,
            tx_id=unsigned.tx_id.hex(),
            node_keys_touched=[plan.previous.key.hex(), plan.burned_key.hex()],
        ))

    # Seizure

    def build_seize(self, request: SeizeRequest) -> UnsignedTxPlan:
        """
        Seize every token of the policy from one custody record.

        Raises:
            ValidationRejectedError: If the record's owner is not frozen and
                the deployment only seizes from frozen owners
        """
        admin = self.admin_invocation()
        if self._context().require_frozen_for_seize:
            record = self.protocol.require_custody_record(request.target_ref)
            _, owner = decompose_address(record.address)
            denylist = self.denylist()
            frozen = denylist.get(owner.hash) if owner is not None else None
            if frozen is None:
                raise ValidationRejectedError(f"Owner of {record.ref} is not frozen")
            admin.reference_inputs.append(frozen.utxo)
        return self.protocol.seize(request, self.scripts(), admin)
