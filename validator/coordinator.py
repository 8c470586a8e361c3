"""
Transfer Coordinator

The coordinator is the stake script every custody spend delegates to. It
runs once per transaction and decides, for all custody inputs together,
whether the transaction is an authorized transfer or an authorized
administrative seizure.

State machine:

    COLLECT_AUTHORIZED -> RESOLVE_PROOFS -> CONSERVE_VALUE -> ACCEPT
                  \\______________\\______________\\_______-> REJECT

The first violated invariant moves the machine to REJECT and is reported.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple, Union

from cbor2 import CBORTag

from crypto.addresses import decompose_address
from crypto.credentials import Credential
from crypto.exceptions import AddressError
from registry.schema import ListKind, NodeRecord, ProofKind, RegistryNode, RegistryProof
from txbuilder.exceptions import MalformedRequestError, ValidationRejectedError
from txbuilder.ledger import TransactionView, UTxO, constr, constr_fields, constr_index

from .core import ValidationContext, ValidationRule


logger = logging.getLogger(__name__)


class CoordinatorState(Enum):
    COLLECT_AUTHORIZED = "collect_authorized"
    RESOLVE_PROOFS = "resolve_proofs"
    CONSERVE_VALUE = "conserve_value"
    ACCEPT = "accept"
    REJECT = "reject"


@dataclass(frozen=True)
class TransferAct:
    """Redeemer of an ordinary transfer: one proof per distinct custody policy, sorted."""
    proofs: Tuple[RegistryProof, ...]

    def to_plutus(self) -> CBORTag:
        return constr(0, [[p.to_plutus() for p in self.proofs]])


@dataclass(frozen=True)
class SeizeAct:
    """Redeemer of an administrative action over one registered policy."""
    registry_node_index: int
    pairs: Tuple[Tuple[int, int], ...]

    def to_plutus(self) -> CBORTag:
        return constr(1, [self.registry_node_index, [[i, o] for i, o in self.pairs]])


CoordinatorAct = Union[TransferAct, SeizeAct]


def decode_coordinator_redeemer(data: Any) -> CoordinatorAct:
    """
    Raises:
        MalformedRequestError: If the redeemer is neither act
    """
    try:
        index = constr_index(data)
        fields = constr_fields(data)
        if index == 0:
            return TransferAct(tuple(RegistryProof.from_plutus(p) for p in fields[0]))
        if index == 1:
            pairs = tuple((int(i), int(o)) for i, o in fields[1])
            return SeizeAct(int(fields[0]), pairs)
    except (ValueError, TypeError, IndexError) as e:
        raise MalformedRequestError(f"Invalid coordinator redeemer: {e}")
    raise MalformedRequestError(f"Unknown coordinator act {index}")


@dataclass
class CoordinatorContext:
    """Outcome of one coordinator run."""
    state: CoordinatorState = CoordinatorState.COLLECT_AUTHORIZED
    act: Optional[CoordinatorAct] = None
    violation: Optional[str] = None
    trace: List[CoordinatorState] = field(default_factory=list)
    registered_policies: Set[bytes] = field(default_factory=set)
    passthrough_policies: Set[bytes] = field(default_factory=set)

    def advance(self, state: CoordinatorState):
        self.trace.append(self.state)
        self.state = state

    def reject(self, violation: str) -> "CoordinatorContext":
        self.violation = violation
        self.advance(CoordinatorState.REJECT)
        return self

    @property
    def accepted(self) -> bool:
        return self.state == CoordinatorState.ACCEPT


class Coordinator:
    """
    Pure evaluation of the coordinator over a transaction view.

    Args:
        custody_script_hash: Payment credential shared by all custody records
        registry_policy: Marker policy of the token registry
    """

    def __init__(self, custody_script_hash: bytes, registry_policy: bytes):
        self.custody_script_hash = custody_script_hash
        self.registry_policy = registry_policy

    def custody_inputs(self, tx: TransactionView) -> List[Tuple[int, UTxO, Credential]]:
        """(input index, output, owner credential) for each custody input, in ledger order."""
        found = []
        for index, utxo in enumerate(tx.inputs):
            owner = self._custody_owner(utxo.address)
            if owner is not None:
                found.append((index, utxo, owner))
        return found

    def is_custody(self, address: str) -> bool:
        return self._custody_owner(address) is not None

    def _custody_owner(self, address: str) -> Optional[Credential]:
        try:
            payment, staking = decompose_address(address)
        except AddressError:
            return None
        if payment.is_script and payment.hash == self.custody_script_hash:
            return staking
        return None

    def evaluate(self, tx: TransactionView, redeemer: Any) -> CoordinatorContext:
        ctx = CoordinatorContext()
        try:
            ctx.act = decode_coordinator_redeemer(redeemer)
        except MalformedRequestError as e:
            return ctx.reject(e.reason)

        custody = self.custody_inputs(tx)
        if isinstance(ctx.act, SeizeAct):
            self._evaluate_seize(tx, ctx, custody)
        else:
            self._evaluate_transfer(tx, ctx, custody)

        if ctx.state == CoordinatorState.REJECT:
            logger.debug(f"Coordinator rejected: {ctx.violation}")
        return ctx

    def require_valid(self, tx: TransactionView, redeemer: Any) -> CoordinatorContext:
        ctx = self.evaluate(tx, redeemer)
        if not ctx.accepted:
            raise ValidationRejectedError(ctx.violation)
        return ctx

    def _evaluate_transfer(self, tx: TransactionView, ctx: CoordinatorContext, custody):
        for index, utxo, owner in custody:
            if owner is None:
                return ctx.reject(f"Custody input {utxo.ref} has no owner credential")
            if not tx.authorizes(owner):
                return ctx.reject(f"Custody input {utxo.ref} is not authorized by owner {owner}")
        ctx.advance(CoordinatorState.RESOLVE_PROOFS)

        policies = sorted({p for _, utxo, _ in custody for p in utxo.value.policies()})
        proofs = ctx.act.proofs
        if len(proofs) != len(policies):
            return ctx.reject(f"Expected {len(policies)} registry proofs, got {len(proofs)}")

        for policy, proof in zip(policies, proofs):
            record = self._registry_node(tx, proof.node_index)
            if isinstance(record, str):
                return ctx.reject(record)
            node = record.node
            if proof.kind == ProofKind.EXISTS:
                if node.key != policy:
                    return ctx.reject(f"Registry node {node.key.hex()} does not match policy {policy.hex()}")
                if node.transfer_logic is None or not tx.authorizes(node.transfer_logic):
                    return ctx.reject(f"Transfer logic of {policy.hex()} is not invoked")
                ctx.registered_policies.add(policy)
            else:
                if not node.covers(policy):
                    return ctx.reject(f"Registry node {node.key.hex()} does not prove absence of {policy.hex()}")
                ctx.passthrough_policies.add(policy)
        ctx.advance(CoordinatorState.CONSERVE_VALUE)

        violation = self._check_conservation(tx, ctx.registered_policies)
        if violation:
            return ctx.reject(violation)
        ctx.advance(CoordinatorState.ACCEPT)
        return ctx

    def _evaluate_seize(self, tx: TransactionView, ctx: CoordinatorContext, custody):
        act: SeizeAct = ctx.act
        record = self._registry_node(tx, act.registry_node_index)
        if isinstance(record, str):
            return ctx.reject(record)
        node = record.node
        policy = node.key
        if node.admin_logic is None or not tx.authorizes(node.admin_logic):
            return ctx.reject(f"Admin logic of {policy.hex()} is not invoked")

        owners = {index: (utxo, owner) for index, utxo, owner in custody}
        seized_inputs = [i for i, _ in act.pairs]
        seized_outputs = [o for _, o in act.pairs]
        if not act.pairs:
            return ctx.reject("Seizure names no inputs")
        if len(set(seized_inputs)) != len(seized_inputs) or len(set(seized_outputs)) != len(seized_outputs):
            return ctx.reject("Seizure pairs must be one to one")

        # Unpaired custody inputs would escape registry proofs and transfer logic
        for index, utxo, _ in custody:
            if index not in seized_inputs:
                return ctx.reject(f"Custody input {utxo.ref} is spent outside the seizure pairs")
        ctx.advance(CoordinatorState.RESOLVE_PROOFS)

        for input_index, output_index in act.pairs:
            if input_index not in owners:
                return ctx.reject(f"Seized input {input_index} is not a custody input")
            if output_index >= len(tx.outputs):
                return ctx.reject(f"Seized output {output_index} does not exist")
            spent, _ = owners[input_index]
            produced = tx.outputs[output_index]
            if produced.address != spent.address:
                return ctx.reject(f"Output {output_index} is not at the seized owner's address")
            if produced.value.without_policy(policy) != spent.value.without_policy(policy):
                return ctx.reject(f"Output {output_index} changes more than policy {policy.hex()}")
            if produced.value == spent.value:
                return ctx.reject(f"Seizure of input {spent.ref} leaves its value unchanged")
        ctx.registered_policies.add(policy)
        ctx.advance(CoordinatorState.CONSERVE_VALUE)

        all_policies = {p for _, utxo, _ in custody for p in utxo.value.policies()} | {policy}
        violation = self._check_conservation(tx, all_policies)
        if violation:
            return ctx.reject(violation)
        ctx.advance(CoordinatorState.ACCEPT)
        return ctx

    def _registry_node(self, tx: TransactionView, index: int):
        """The registry node at a reference-input index, or a violation message."""
        if index < 0 or index >= len(tx.reference_inputs):
            return f"Registry proof index {index} out of range"
        utxo = tx.reference_inputs[index]
        try:
            record = NodeRecord.from_utxo(utxo, ListKind.REGISTRY)
        except (ValueError, MalformedRequestError) as e:
            return f"Reference input {utxo.ref} is not a registry node: {e}"
        if not record.has_marker(self.registry_policy):
            return f"Reference input {utxo.ref} does not carry the registry marker"
        if not isinstance(record.node, RegistryNode):
            return f"Reference input {utxo.ref} is not a registry node"
        return record

    def _check_conservation(self, tx: TransactionView, policies) -> Optional[str]:
        inputs: Dict[Tuple[bytes, bytes], int] = defaultdict(int)
        outputs: Dict[Tuple[bytes, bytes], int] = defaultdict(int)
        for utxo in tx.inputs:
            if self.is_custody(utxo.address):
                for policy in policies:
                    for name, quantity in utxo.value.policy_assets(policy).items():
                        inputs[(policy, name)] += quantity
        for output in tx.outputs:
            if self.is_custody(output.address):
                for policy in policies:
                    for name, quantity in output.value.policy_assets(policy).items():
                        outputs[(policy, name)] += quantity
        for policy in policies:
            for name, quantity in tx.mint.policy_assets(policy).items():
                inputs[(policy, name)] += quantity

        for (policy, name), required in sorted(inputs.items()):
            if outputs[(policy, name)] < required:
                return (f"Custody outputs hold {outputs[(policy, name)]} of "
                        f"{(policy + name).hex()}, expected at least {required}")
        return None


class CoordinatorRule(ValidationRule):
    """The coordinator as a withdraw-zero stake script."""

    def __init__(self, coordinator: Coordinator):
        super().__init__(
            name="coordinator",
            description="Authorizes custody spends, resolves registry proofs and conserves value"
        )
        self.coordinator = coordinator
        self.last_context: Optional[CoordinatorContext] = None

    def validate(self, context: ValidationContext) -> bool:
        result = self.coordinator.evaluate(context.tx, context.redeemer)
        self.last_context = result
        if not result.accepted:
            context.add_error(self.name, result.violation)
            return False
        return True
