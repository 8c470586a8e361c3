"""
Sorted List Rules

The minting policy and spend script guarding a sorted list's nodes. The
minting policy is the only way nodes change: it checks that a bootstrap,
insert or remove produces exactly the node outputs the engine would plan.
The spend script only requires the minting policy to run.

Redeemers:
    Constr 0 []            bootstrap the origin node
    Constr 1 [key, ...]    insert ``key``; registry inserts carry the
                           issuer logic hash as the second field
    Constr 2 [key, ...]    remove ``key``
"""

from typing import Any, List, Optional

from registry.schema import ORIGIN_KEY, SENTINEL_KEY, ListKind, ListNode, NodeRecord
from txbuilder.exceptions import MalformedRequestError
from txbuilder.ledger import OutRef, TxOutput, UTxO, constr_fields, constr_index
from txbuilder.scripts import ScriptTemplate, derive_issuance_policy

from validator.core import ValidationContext, ValidationRule


LIST_INIT = 0
LIST_INSERT = 1
LIST_REMOVE = 2


class SortedListMintRule(ValidationRule):
    """
    Minting policy of a sorted list's markers.

    Args:
        list_policy: The marker policy id (this script's hash)
        kind: Node layout of the list
        admin_key_hash: Key that must sign every change, if any
        bootstrap_ref: One-shot output the bootstrap must consume, if any
        require_key_minted: Inserted keys must be policies minted in the
            same transaction (the registry only accepts issuing policies)
        issuance_template: Registry only. Inserted keys must be the issuance
            policy derived from the issuer logic named in the redeemer
    """

    def __init__(self, list_policy: bytes, kind: ListKind, admin_key_hash: Optional[bytes] = None,
                 bootstrap_ref: Optional[OutRef] = None, require_key_minted: bool = False,
                 issuance_template: Optional[ScriptTemplate] = None):
        super().__init__(
            name=f"{kind.value}_list",
            description="Validates sorted list bootstrap, insert and remove"
        )
        self.list_policy = list_policy
        self.kind = kind
        self.admin_key_hash = admin_key_hash
        self.bootstrap_ref = bootstrap_ref
        self.require_key_minted = require_key_minted
        self.issuance_template = issuance_template

    def validate(self, context: ValidationContext) -> bool:
        tx = context.tx
        if self.admin_key_hash is not None and not tx.is_signed_by(self.admin_key_hash):
            context.add_error(self.name, f"Missing list admin signature {self.admin_key_hash.hex()}")
            return False

        try:
            action = constr_index(context.redeemer)
            fields = constr_fields(context.redeemer)
        except (ValueError, TypeError) as e:
            context.add_error(self.name, f"Invalid list redeemer: {e}")
            return False

        if action == LIST_INIT:
            return self._validate_init(context)
        if action in (LIST_INSERT, LIST_REMOVE) and fields:
            key = bytes(fields[0])
            if action == LIST_INSERT:
                return self._validate_insert(context, key, fields[1:])
            return self._validate_remove(context, key)
        context.add_error(self.name, f"Unknown list action {action}")
        return False

    def _nodes(self, utxos: List[Any]) -> List[NodeRecord]:
        records = []
        for utxo in utxos:
            if self.list_policy not in utxo.value.policies():
                continue
            try:
                records.append(NodeRecord.from_utxo(utxo, self.kind))
            except (ValueError, MalformedRequestError):
                continue
        return records

    def _output_nodes(self, outputs: List[TxOutput]) -> List[NodeRecord]:
        return self._nodes([UTxO(OutRef(b"\x00" * 32, i), o) for i, o in enumerate(outputs)])

    def _validate_init(self, context: ValidationContext) -> bool:
        tx = context.tx
        if self.bootstrap_ref is not None and all(u.ref != self.bootstrap_ref for u in tx.inputs):
            context.add_error(self.name, f"Bootstrap output {self.bootstrap_ref} is not consumed")
            return False
        if tx.mint.policy_assets(self.list_policy) != {ORIGIN_KEY: 1}:
            context.add_error(self.name, "Bootstrap must mint exactly the origin marker")
            return False
        origins = [r for r in self._output_nodes(tx.outputs) if r.has_marker(self.list_policy)]
        if len(origins) != 1 or origins[0].key != ORIGIN_KEY or origins[0].node.next != SENTINEL_KEY:
            context.add_error(self.name, "Bootstrap must produce a single empty origin node")
            return False
        return True

    def _validate_insert(self, context: ValidationContext, key: bytes, extra: List[Any]) -> bool:
        tx = context.tx
        if tx.mint.policy_assets(self.list_policy) != {key: 1}:
            context.add_error(self.name, f"Insert must mint exactly the marker {key.hex()}")
            return False
        if self.require_key_minted and key not in tx.mint.policies():
            context.add_error(self.name, f"Inserted policy {key.hex()} is not minted in this transaction")
            return False

        consumed = [r for r in self._nodes(list(tx.inputs)) if r.has_marker(self.list_policy)]
        covering = [r for r in consumed if r.node.covers(key)]
        if len(consumed) != 1 or len(covering) != 1:
            context.add_error(self.name, f"Insert must consume exactly the node covering {key.hex()}")
            return False
        old = covering[0].node

        produced = {r.key: r for r in self._output_nodes(tx.outputs) if r.has_marker(self.list_policy)}
        updated, inserted = produced.get(old.key), produced.get(key)
        if updated is None or inserted is None or len(produced) != 2:
            context.add_error(self.name, "Insert must produce the updated covering node and the new node")
            return False
        if updated.node != old.with_next(key):
            context.add_error(self.name, f"Covering node {old.key.hex()} must only relink to {key.hex()}")
            return False
        if inserted.node.next != old.next:
            context.add_error(self.name, f"New node must link to {old.next.hex()}")
            return False
        if self.kind == ListKind.REGISTRY:
            return self._validate_registration(context, key, inserted.node, extra)
        return True

    def _validate_registration(self, context: ValidationContext, key: bytes, node, extra: List[Any]) -> bool:
        if not extra:
            context.add_error(self.name, f"Registration of {key.hex()} must name its issuer logic")
            return False
        issuer_logic = bytes(extra[0])
        if not context.tx.is_invoked(issuer_logic):
            context.add_error(self.name, f"Issuer logic {issuer_logic.hex()} is not invoked")
            return False
        if self.issuance_template is not None:
            derived = derive_issuance_policy(self.issuance_template, issuer_logic).hash
            if derived != key:
                context.add_error(self.name,
                                  f"Policy {key.hex()} is not issued under issuer logic {issuer_logic.hex()}")
                return False
        if node.transfer_logic is None:
            context.add_error(self.name, f"Registry node {key.hex()} must name its transfer logic")
            return False
        return True

    def _validate_remove(self, context: ValidationContext, key: bytes) -> bool:
        tx = context.tx
        if tx.mint.policy_assets(self.list_policy) != {key: -1}:
            context.add_error(self.name, f"Remove must burn exactly the marker {key.hex()}")
            return False

        consumed = {r.key: r for r in self._nodes(list(tx.inputs)) if r.has_marker(self.list_policy)}
        target = consumed.get(key)
        previous = [r for r in consumed.values() if r.node.next == key]
        if target is None or len(previous) != 1 or len(consumed) != 2:
            context.add_error(self.name, f"Remove must consume node {key.hex()} and its predecessor")
            return False

        produced = [r for r in self._output_nodes(tx.outputs) if r.has_marker(self.list_policy)]
        expected: ListNode = previous[0].node.with_next(target.node.next)
        if len(produced) != 1 or produced[0].node != expected:
            context.add_error(self.name, f"Predecessor must relink to {target.node.next.hex()}")
            return False
        return True


class SortedListSpendRule(ValidationRule):
    """Node outputs may only be spent while the list's minting policy runs."""

    def __init__(self, list_policy: bytes, kind: ListKind):
        super().__init__(
            name=f"{kind.value}_node_spend",
            description="Requires the list minting policy to run"
        )
        self.list_policy = list_policy

    def validate(self, context: ValidationContext) -> bool:
        if self.list_policy not in context.tx.mint.policies():
            context.add_error(self.name, f"Node {context.spent.ref} spent without list policy {self.list_policy.hex()}")
            return False
        return True
