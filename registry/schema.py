"""
Programmable Tokens - Sorted List Node Schema

This module defines the Pydantic models for sorted-list nodes (registry and
denylist), their inline datum encoding, and the membership proofs that
reference them.
"""

from enum import Enum
from typing import Any, Optional

from cbor2 import CBORTag
from pydantic import BaseModel, ConfigDict, Field, model_validator

from crypto.credentials import Credential
from txbuilder.ledger import UTxO, constr, constr_fields, constr_index


ORIGIN_KEY = b""
SENTINEL_KEY = b"\xff" * 30


class ListKind(str, Enum):
    """Sorted list kind enumeration."""
    REGISTRY = "registry"
    DENYLIST = "denylist"


class ListNode(BaseModel):
    """A node of a sorted linked list keyed by bytes."""

    model_config = ConfigDict(frozen=True)

    key: bytes = Field(..., description="Node key; empty for the origin")
    next: bytes = Field(..., description="Key of the following node; sentinel for the last")

    @model_validator(mode='after')
    def validate_order(self):
        """Keys must strictly precede their successor."""
        if not self.key < self.next:
            raise ValueError(f'Node key {self.key.hex()} must be lower than next {self.next.hex()}')
        return self

    @property
    def is_origin(self) -> bool:
        return self.key == ORIGIN_KEY

    @property
    def is_last(self) -> bool:
        return self.next == SENTINEL_KEY

    def covers(self, key: bytes) -> bool:
        """True when ``key`` would be inserted right after this node."""
        return self.key < key < self.next

    def with_next(self, next_key: bytes) -> "ListNode":
        return self.__class__(**{**self._fields(), "next": next_key})

    def _fields(self):
        return {name: getattr(self, name) for name in self.__class__.model_fields}

    def to_plutus(self) -> CBORTag:
        return constr(0, [self.key, self.next])

    def describe(self) -> dict:
        return {"key": self.key.hex(), "next": self.next.hex()}


class RegistryNode(ListNode):
    """Registry node binding a policy to its transfer and admin logic."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    transfer_logic: Optional[Credential] = Field(None, description="Logic invoked on every transfer")
    admin_logic: Optional[Credential] = Field(None, description="Logic authorizing administrative actions")
    global_state_id: bytes = Field(default=b"", description="Optional global state policy id")

    def to_plutus(self) -> CBORTag:
        return constr(0, [
            self.key,
            self.next,
            _credential_data(self.transfer_logic),
            _credential_data(self.admin_logic),
            self.global_state_id,
        ])

    def describe(self) -> dict:
        return {
            **super().describe(),
            "transfer_logic": str(self.transfer_logic) if self.transfer_logic else None,
            "admin_logic": str(self.admin_logic) if self.admin_logic else None,
            "global_state_id": self.global_state_id.hex(),
        }


def _credential_data(credential: Optional[Credential]) -> CBORTag:
    if credential is None:
        return constr(0, [b""])
    return credential.to_plutus()


def _credential_from(data: CBORTag) -> Optional[Credential]:
    if not constr_fields(data)[0]:
        return None
    return Credential.from_plutus(data)


def node_from_plutus(data: Any, kind: ListKind) -> ListNode:
    """
    Decode an inline datum into a node.

    Raises:
        ValueError: If the datum does not have the node layout
    """
    if not isinstance(data, CBORTag) or constr_index(data) != 0:
        raise ValueError(f"Node datum must be constructor 0, got {data!r}")
    fields = constr_fields(data)
    if kind == ListKind.REGISTRY:
        if len(fields) < 4:
            raise ValueError(f"Registry node datum has {len(fields)} fields")
        return RegistryNode(
            key=bytes(fields[0]),
            next=bytes(fields[1]),
            transfer_logic=_credential_from(fields[2]),
            admin_logic=_credential_from(fields[3]),
            global_state_id=bytes(fields[4]) if len(fields) > 4 else b"",
        )
    if len(fields) != 2:
        raise ValueError(f"List node datum has {len(fields)} fields")
    return ListNode(key=bytes(fields[0]), next=bytes(fields[1]))


class NodeRecord:
    """A node together with the UTxO that carries it, if it is already on the ledger."""

    __slots__ = ("utxo", "node")

    def __init__(self, utxo: Optional[UTxO], node: ListNode):
        self.utxo = utxo
        self.node = node

    @classmethod
    def from_utxo(cls, utxo: UTxO, kind: ListKind) -> "NodeRecord":
        return cls(utxo, node_from_plutus(utxo.datum, kind))

    @property
    def key(self) -> bytes:
        return self.node.key

    def has_marker(self, marker_policy: bytes) -> bool:
        """Exactly one marker token named after the node key."""
        if self.utxo is None:
            return False
        return self.utxo.value.quantity_of(marker_policy, self.node.key) == 1

    def __repr__(self):
        location = self.utxo.ref if self.utxo is not None else "unplaced"
        return f"NodeRecord({location}, key={self.node.key.hex()!r}, next={self.node.next.hex()!r})"


class ProofKind(str, Enum):
    """Membership proof kind enumeration."""
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


class RegistryProof(BaseModel):
    """Proof that a key is, or is not, in a list, by reference-input index."""

    model_config = ConfigDict(frozen=True)

    kind: ProofKind
    node_index: int = Field(..., ge=0, description="Index into the sorted reference inputs")

    def to_plutus(self) -> CBORTag:
        return constr(0 if self.kind == ProofKind.EXISTS else 1, [self.node_index])

    @classmethod
    def from_plutus(cls, data: CBORTag) -> "RegistryProof":
        index = constr_index(data)
        if index not in (0, 1):
            raise ValueError(f"Unknown proof constructor {index}")
        kind = ProofKind.EXISTS if index == 0 else ProofKind.NOT_EXISTS
        return cls(kind=kind, node_index=int(constr_fields(data)[0]))
