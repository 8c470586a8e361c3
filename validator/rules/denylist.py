"""
Denylist Transfer Rule with Non-Membership Proof Verification

This module implements the DenylistTransferRule: the transfer logic of the
freeze-and-seize substandard. Every custody input's owner must prove, via a
covering node of the denylist, that it is not frozen.
"""

from typing import Any, Dict, List, Optional

from crypto.addresses import decompose_address
from crypto.exceptions import AddressError
from registry.schema import ListKind, NodeRecord
from txbuilder.exceptions import MalformedRequestError
from txbuilder.ledger import constr, constr_fields, constr_index

from validator.core import ValidationContext, ValidationRule


def encode_denylist_proofs(reference_indices: List[int]) -> List[Any]:
    """Transfer logic redeemer: one ``Constr 0 [index]`` per custody input, in input order."""
    return [constr(0, [i]) for i in reference_indices]


def decode_denylist_proofs(redeemer: Any) -> List[int]:
    if not isinstance(redeemer, list):
        raise ValueError(f"Denylist redeemer must be a list, got {type(redeemer).__name__}")
    indices = []
    for item in redeemer:
        if constr_index(item) != 0:
            raise ValueError("Denylist proofs must be constructor 0")
        indices.append(int(constr_fields(item)[0]))
    return indices


class DenylistTransferRule(ValidationRule):
    """
    Validation rule that rejects transfers from frozen owners.

    For each custody input, in ledger order, the redeemer names a reference
    input holding a denylist node ``n`` with ``n.key < owner < n.next``.
    The node must carry the denylist marker.
    """

    def __init__(self, custody_script_hash: bytes, denylist_policy: bytes):
        super().__init__(
            name="denylist",
            description="Rejects custody spends by owners present in the denylist"
        )
        self.custody_script_hash = custody_script_hash
        self.denylist_policy = denylist_policy
        self.stats = {
            "validations_performed": 0,
            "owners_cleared": 0,
            "owners_rejected": 0,
        }

    def validate(self, context: ValidationContext) -> bool:
        self.stats["validations_performed"] += 1

        try:
            indices = decode_denylist_proofs(context.redeemer)
        except ValueError as e:
            context.add_error(self.name, f"Invalid denylist redeemer: {e}")
            return False

        owners = self._custody_owners(context)
        if len(indices) != len(owners):
            context.add_error(self.name, f"Expected {len(owners)} denylist proofs, got {len(indices)}")
            return False

        for owner, index in zip(owners, indices):
            if not self._verify_owner(owner, index, context):
                self.stats["owners_rejected"] += 1
                return False
            self.stats["owners_cleared"] += 1

        self.logger.debug(f"Denylist cleared {len(owners)} custody inputs")
        return True

    def _custody_owners(self, context: ValidationContext) -> List[Optional[bytes]]:
        owners = []
        for utxo in context.tx.inputs:
            try:
                payment, staking = decompose_address(utxo.address)
            except AddressError:
                continue
            if payment.is_script and payment.hash == self.custody_script_hash:
                owners.append(staking.hash if staking else None)
        return owners

    def _verify_owner(self, owner: Optional[bytes], index: int, context: ValidationContext) -> bool:
        if owner is None:
            context.add_error(self.name, "Custody input without owner credential")
            return False
        refs = context.tx.reference_inputs
        if index < 0 or index >= len(refs):
            context.add_error(self.name, f"Denylist proof index {index} out of range")
            return False
        try:
            record = NodeRecord.from_utxo(refs[index], ListKind.DENYLIST)
        except (ValueError, MalformedRequestError) as e:
            context.add_error(self.name, f"Reference input {refs[index].ref} is not a denylist node: {e}")
            return False
        if not record.has_marker(self.denylist_policy):
            context.add_error(self.name, f"Reference input {refs[index].ref} lacks the denylist marker")
            return False
        if record.key == owner:
            context.add_error(self.name, f"Owner {owner.hex()} is frozen")
            return False
        if not record.node.covers(owner):
            context.add_error(self.name, f"Denylist node {record.key.hex()} does not cover owner {owner.hex()}")
            return False
        return True

    def get_statistics(self) -> Dict[str, Any]:
        return dict(self.stats)
