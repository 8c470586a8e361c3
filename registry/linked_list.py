"""
Sorted Linked List Engine

Off-ledger mirror of an on-ledger sorted list (the token registry or a
denylist). Nodes are held in an arena keyed by node key, with a sorted key
array for O(log n) covering-node lookups. Links are keys, never object
references, so the mirror can be rebuilt from any state snapshot.

The engine only plans changes; it never mutates a node. Insert splits one
covering node into two and Remove merges two adjacent nodes.
"""

import bisect
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from txbuilder.exceptions import ConflictError, DuplicateKeyError, MalformedRequestError, NotFoundError
from txbuilder.ledger import UTxO

from .schema import (
    ORIGIN_KEY,
    SENTINEL_KEY,
    ListKind,
    ListNode,
    NodeRecord,
    ProofKind,
    RegistryProof,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingProof:
    """A proof whose reference-input index is fixed once the transaction is assembled."""
    kind: ProofKind
    record: NodeRecord
    key: bytes

    def resolve(self, reference_index: int) -> RegistryProof:
        return RegistryProof(kind=self.kind, node_index=reference_index)


@dataclass(frozen=True)
class InsertPlan:
    """Outputs replacing the covering node when inserting ``new_node.key``."""
    covering: NodeRecord
    updated_covering: ListNode
    new_node: ListNode


@dataclass(frozen=True)
class RemovePlan:
    """Outputs replacing ``previous`` and ``target`` when removing ``target.key``."""
    previous: NodeRecord
    target: NodeRecord
    updated_previous: ListNode

    @property
    def burned_key(self) -> bytes:
        return self.target.key


class SortedLinkedList:
    """
    Mirror of one sorted list.

    Args:
        list_id: Marker policy id identifying the list
        kind: Registry or denylist
        records: Node records read from state
        require_markers: Drop records that do not carry their marker
    """

    def __init__(self, list_id: bytes, kind: ListKind, records: Iterable[NodeRecord],
                 require_markers: bool = True):
        self.list_id = list_id
        self.kind = kind
        self.require_markers = require_markers
        self._nodes: Dict[bytes, NodeRecord] = {}

        for record in records:
            if require_markers and not record.has_marker(list_id):
                logger.warning(f"Ignoring untrusted node {record!r}: marker {list_id.hex()} missing")
                continue
            if record.key in self._nodes:
                raise ConflictError(f"Duplicate node key {record.key.hex()} in list {list_id.hex()}")
            self._nodes[record.key] = record

        self._keys: List[bytes] = sorted(self._nodes)
        logger.debug(f"Loaded list {list_id.hex()} ({kind.value}) with {len(self._keys)} nodes")

    @classmethod
    def from_utxos(cls, list_id: bytes, kind: ListKind, utxos: Iterable[UTxO]) -> "SortedLinkedList":
        """Decode node datums; outputs with undecodable datums are skipped."""
        records = []
        for utxo in utxos:
            try:
                records.append(NodeRecord.from_utxo(utxo, kind))
            except (ValueError, MalformedRequestError) as e:
                logger.warning(f"Skipping output {utxo.ref} with invalid node datum: {e}")
        return cls(list_id, kind, records)

    @classmethod
    def from_nodes(cls, list_id: bytes, kind: ListKind, nodes: Iterable[ListNode]) -> "SortedLinkedList":
        return cls(list_id, kind, [NodeRecord(None, node) for node in nodes], require_markers=False)

    def __len__(self):
        return len(self._keys)

    def __contains__(self, key: bytes) -> bool:
        return key in self._nodes

    def keys(self) -> List[bytes]:
        return list(self._keys)

    def records(self) -> List[NodeRecord]:
        return [self._nodes[k] for k in self._keys]

    def nodes(self) -> List[ListNode]:
        return [self._nodes[k].node for k in self._keys]

    def get(self, key: bytes) -> Optional[NodeRecord]:
        return self._nodes.get(key)

    def find(self, key: bytes) -> NodeRecord:
        record = self._nodes.get(key)
        if record is None:
            raise NotFoundError(f"Key {key.hex()} not in list {self.list_id.hex()}")
        return record

    def find_covering(self, key: bytes) -> Tuple[NodeRecord, int]:
        """
        Locate the node after which ``key`` belongs.

        Returns:
            The covering record and its position in list order

        Raises:
            DuplicateKeyError: If ``key`` is already a node
            NotFoundError: If no node covers ``key`` (broken or stale chain)
        """
        if key in self._nodes:
            raise DuplicateKeyError(f"Key {key.hex()} already in list {self.list_id.hex()}")
        position = bisect.bisect_left(self._keys, key) - 1
        if position < 0:
            raise NotFoundError(f"No node precedes key {key.hex()}")
        record = self._nodes[self._keys[position]]
        if not record.node.covers(key):
            raise NotFoundError(
                f"Node {record.key.hex()} links to {record.node.next.hex()} and does not cover {key.hex()}"
            )
        return record, position

    def find_predecessor(self, key: bytes) -> NodeRecord:
        """The node whose ``next`` is ``key``."""
        self.find(key)
        position = bisect.bisect_left(self._keys, key) - 1
        if position < 0:
            raise NotFoundError(f"Key {key.hex()} has no predecessor")
        record = self._nodes[self._keys[position]]
        if record.node.next != key:
            raise NotFoundError(f"Node {record.key.hex()} does not link to {key.hex()}")
        return record

    def build_exists_proof(self, key: bytes) -> PendingProof:
        return PendingProof(ProofKind.EXISTS, self.find(key), key)

    def build_absence_proof(self, key: bytes) -> PendingProof:
        record, _ = self.find_covering(key)
        return PendingProof(ProofKind.NOT_EXISTS, record, key)

    def plan_insert(self, covering: NodeRecord, new_key: bytes, **attributes) -> InsertPlan:
        """
        Split ``covering`` to make room for ``new_key``.

        Extra ``attributes`` populate the new node (registry logic credentials).
        """
        node = covering.node
        if new_key in (node.key, node.next):
            raise DuplicateKeyError(f"Key {new_key.hex()} already in list {self.list_id.hex()}")
        if not node.covers(new_key):
            raise ConflictError(f"Node {node.key.hex()} no longer covers {new_key.hex()}")
        current = self._nodes.get(node.key)
        if current is not None and current.node != node:
            raise ConflictError(f"Node {node.key.hex()} changed since it was read")
        new_node = node.__class__(**{**_base_fields(node), **attributes, "key": new_key, "next": node.next})
        return InsertPlan(covering, node.with_next(new_key), new_node)

    def plan_remove(self, previous: NodeRecord, target: NodeRecord) -> RemovePlan:
        if target.key == ORIGIN_KEY:
            raise NotFoundError("The origin node cannot be removed")
        if previous.node.next != target.key:
            raise NotFoundError(
                f"Node {previous.key.hex()} links to {previous.node.next.hex()}, not {target.key.hex()}"
            )
        return RemovePlan(previous, target, previous.node.with_next(target.node.next))

    def apply_insert(self, plan: InsertPlan) -> "SortedLinkedList":
        records = [r for r in self.records() if r.key != plan.covering.key]
        records.append(NodeRecord(None, plan.updated_covering))
        records.append(NodeRecord(None, plan.new_node))
        return SortedLinkedList(self.list_id, self.kind, records, require_markers=False)

    def apply_remove(self, plan: RemovePlan) -> "SortedLinkedList":
        dropped = (plan.previous.key, plan.target.key)
        records = [r for r in self.records() if r.key not in dropped]
        records.append(NodeRecord(None, plan.updated_previous))
        return SortedLinkedList(self.list_id, self.kind, records, require_markers=False)

    def validate_chain(self) -> bool:
        """
        Walk from the origin to the sentinel.

        Raises:
            ConflictError: If the origin is missing, a link is dangling or
                some node is unreachable
        """
        if ORIGIN_KEY not in self._nodes:
            raise ConflictError(f"List {self.list_id.hex()} has no origin node")
        visited = 0
        current = self._nodes[ORIGIN_KEY].node
        while True:
            visited += 1
            if current.next == SENTINEL_KEY:
                break
            following = self._nodes.get(current.next)
            if following is None:
                raise ConflictError(f"Node {current.key.hex()} links to missing key {current.next.hex()}")
            current = following.node
        if visited != len(self._nodes):
            raise ConflictError(f"{len(self._nodes) - visited} nodes unreachable from origin")
        return True


def _base_fields(node: ListNode) -> dict:
    return {name: getattr(node, name) for name in node.__class__.model_fields}
