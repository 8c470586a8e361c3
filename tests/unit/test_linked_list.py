"""
Tests for the Sorted Linked List Engine

Tests covering-node lookup, membership proofs, insert and remove planning,
and chain validation over registry and denylist mirrors.
"""

import pytest

from crypto.credentials import Credential
from registry.linked_list import SortedLinkedList
from registry.schema import (
    ORIGIN_KEY,
    SENTINEL_KEY,
    ListKind,
    ListNode,
    NodeRecord,
    ProofKind,
    RegistryNode,
    RegistryProof,
    node_from_plutus,
)
from txbuilder.exceptions import ConflictError, DuplicateKeyError, NotFoundError
from txbuilder.ledger import OutRef, TxOutput, UTxO, Value

from tests.conftest import h28


LIST_ID = h28("list")


def chain(*keys):
    """Nodes linking origin -> keys... -> sentinel."""
    ordered = [ORIGIN_KEY] + list(keys)
    nexts = list(keys) + [SENTINEL_KEY]
    return [ListNode(key=k, next=n) for k, n in zip(ordered, nexts)]


def mirror(*keys):
    return SortedLinkedList.from_nodes(LIST_ID, ListKind.DENYLIST, chain(*keys))


class TestListNode:
    """Test node schema."""

    def test_key_must_precede_next(self):
        with pytest.raises(ValueError):
            ListNode(key=b"C", next=b"A")

    def test_covers(self):
        node = ListNode(key=b"A", next=b"C")
        assert node.covers(b"B")
        assert not node.covers(b"A")
        assert not node.covers(b"C")

    def test_registry_node_datum(self):
        """Registry nodes encode their logic credentials; absent ones decode back to None."""
        node = RegistryNode(key=h28("policy"), next=SENTINEL_KEY,
                            transfer_logic=Credential.script(h28("transfer")))
        decoded = node_from_plutus(node.to_plutus(), ListKind.REGISTRY)

        assert decoded == node
        assert decoded.admin_logic is None

    def test_denylist_datum_rejects_registry_layout(self):
        node = RegistryNode(key=b"", next=SENTINEL_KEY)
        with pytest.raises(ValueError):
            node_from_plutus(node.to_plutus(), ListKind.DENYLIST)

    def test_proof_encoding(self):
        proof = RegistryProof(kind=ProofKind.NOT_EXISTS, node_index=3)
        assert proof.to_plutus().tag == 122
        assert RegistryProof.from_plutus(proof.to_plutus()) == proof


class TestInsertPlanning:
    """Test insert planning."""

    def test_insert_into_empty_list(self):
        """Inserting into an empty list splits the origin."""
        lst = mirror()
        covering, position = lst.find_covering(b"B")
        plan = lst.plan_insert(covering, b"B")

        assert position == 0
        assert covering.key == ORIGIN_KEY
        assert plan.updated_covering == ListNode(key=ORIGIN_KEY, next=b"B")
        assert plan.new_node == ListNode(key=b"B", next=SENTINEL_KEY)

    def test_insert_between_nodes(self):
        lst = mirror(b"A", b"C")
        covering, position = lst.find_covering(b"B")
        plan = lst.plan_insert(covering, b"B")

        assert position == 1
        assert plan.updated_covering == ListNode(key=b"A", next=b"B")
        assert plan.new_node == ListNode(key=b"B", next=b"C")

    def test_insert_duplicate_rejected(self):
        lst = mirror(b"A")
        with pytest.raises(DuplicateKeyError):
            lst.find_covering(b"A")

    def test_insert_carries_registry_attributes(self):
        lst = SortedLinkedList.from_nodes(LIST_ID, ListKind.REGISTRY,
                                          [RegistryNode(key=ORIGIN_KEY, next=SENTINEL_KEY)])
        logic = Credential.script(h28("logic"))
        covering, _ = lst.find_covering(h28("policy"))
        plan = lst.plan_insert(covering, h28("policy"), transfer_logic=logic)

        assert isinstance(plan.new_node, RegistryNode)
        assert plan.new_node.transfer_logic == logic
        assert plan.updated_covering.transfer_logic is None

    def test_stale_covering_node_conflicts(self):
        """A covering node read before the list changed no longer applies."""
        lst = mirror(b"A", b"C")
        stale = NodeRecord(None, ListNode(key=b"A", next=b"D"))
        with pytest.raises(ConflictError):
            lst.plan_insert(stale, b"B")

    def test_covering_node_that_does_not_cover(self):
        lst = mirror(b"A", b"C")
        with pytest.raises(ConflictError):
            lst.plan_insert(lst.find(b"A"), b"D")

    def test_apply_insert(self):
        lst = mirror(b"A", b"C")
        covering, _ = lst.find_covering(b"B")
        updated = lst.apply_insert(lst.plan_insert(covering, b"B"))

        assert updated.keys() == [ORIGIN_KEY, b"A", b"B", b"C"]
        assert updated.validate_chain()
        assert lst.keys() == [ORIGIN_KEY, b"A", b"C"]

    def test_planned_records_repr(self):
        lst = mirror(b"A", b"C")
        covering, _ = lst.find_covering(b"B")
        updated = lst.apply_insert(lst.plan_insert(covering, b"B"))

        assert "unplaced" in repr(updated.find(b"B"))
        assert f"key={b'B'.hex()!r}" in repr(updated.find(b"B"))
        assert not updated.find(b"B").has_marker(LIST_ID)


class TestRemovePlanning:
    """Test remove planning."""

    def test_remove_relinks_predecessor(self):
        lst = mirror(b"A", b"B", b"C")
        previous = lst.find_predecessor(b"B")
        plan = lst.plan_remove(previous, lst.find(b"B"))

        assert previous.key == b"A"
        assert plan.updated_previous == ListNode(key=b"A", next=b"C")
        assert plan.burned_key == b"B"

    def test_remove_missing_key(self):
        lst = mirror(b"A")
        with pytest.raises(NotFoundError):
            lst.find_predecessor(b"B")

    def test_origin_cannot_be_removed(self):
        lst = mirror(b"A")
        with pytest.raises(NotFoundError):
            lst.plan_remove(lst.find(ORIGIN_KEY), lst.find(ORIGIN_KEY))

    def test_insert_then_remove_restores_list(self):
        lst = mirror(b"A", b"C")
        covering, _ = lst.find_covering(b"B")
        inserted = lst.apply_insert(lst.plan_insert(covering, b"B"))
        removed = inserted.apply_remove(
            inserted.plan_remove(inserted.find_predecessor(b"B"), inserted.find(b"B"))
        )
        assert removed.nodes() == lst.nodes()


class TestProofs:
    """Test membership and non-membership proofs."""

    def test_exists_and_absence_proofs(self):
        """Existence proofs need the node; absence proofs reference the covering node."""
        lst = mirror(b"A", b"C")

        exists = lst.build_exists_proof(b"A")
        assert exists.kind == ProofKind.EXISTS
        assert exists.record.key == b"A"

        with pytest.raises(NotFoundError):
            lst.build_exists_proof(b"B")

        absent = lst.build_absence_proof(b"B")
        assert absent.kind == ProofKind.NOT_EXISTS
        assert absent.record.key == b"A"
        assert absent.resolve(4) == RegistryProof(kind=ProofKind.NOT_EXISTS, node_index=4)

    def test_absence_proof_of_member_rejected(self):
        lst = mirror(b"A")
        with pytest.raises(DuplicateKeyError):
            lst.build_absence_proof(b"A")

    def test_absence_proof_past_last_node(self):
        lst = mirror(b"A")
        assert lst.build_absence_proof(b"Z").record.key == b"A"


class TestChainValidation:
    """Test chain walking."""

    def test_missing_origin(self):
        lst = SortedLinkedList.from_nodes(LIST_ID, ListKind.DENYLIST, [ListNode(key=b"A", next=SENTINEL_KEY)])
        with pytest.raises(ConflictError):
            lst.validate_chain()

    def test_dangling_link(self):
        nodes = [ListNode(key=ORIGIN_KEY, next=b"A"), ListNode(key=b"A", next=b"C")]
        lst = SortedLinkedList.from_nodes(LIST_ID, ListKind.DENYLIST, nodes)
        with pytest.raises(ConflictError):
            lst.validate_chain()

    def test_unreachable_node(self):
        nodes = chain(b"A") + [ListNode(key=b"M", next=SENTINEL_KEY)]
        lst = SortedLinkedList.from_nodes(LIST_ID, ListKind.DENYLIST, nodes)
        with pytest.raises(ConflictError):
            lst.validate_chain()

    def test_broken_chain_has_no_covering_node(self):
        """A node whose link skips past a key cannot cover it."""
        nodes = [ListNode(key=ORIGIN_KEY, next=b"A"), ListNode(key=b"C", next=SENTINEL_KEY)]
        lst = SortedLinkedList.from_nodes(LIST_ID, ListKind.DENYLIST, nodes)
        with pytest.raises(NotFoundError):
            lst.find_covering(b"B")


class TestFromUtxos:
    """Test loading a mirror from ledger outputs."""

    def _utxo(self, index, node, marker=True):
        value = Value.of(LIST_ID, node.key, 1, lovelace=1) if marker else Value(1)
        return UTxO(OutRef(b"\x01" * 32, index), TxOutput("addr", value, node.to_plutus()))

    def test_nodes_without_marker_ignored(self):
        """Anyone can create an output with a node datum; only marked ones count."""
        nodes = chain(b"A")
        utxos = [self._utxo(0, nodes[0]), self._utxo(1, nodes[1], marker=False)]
        lst = SortedLinkedList.from_utxos(LIST_ID, ListKind.DENYLIST, utxos)
        assert lst.keys() == [ORIGIN_KEY]

    def test_invalid_datums_skipped(self):
        utxo = UTxO(OutRef(b"\x01" * 32, 0), TxOutput("addr", Value.of(LIST_ID, b"", 1), b"garbage"))
        lst = SortedLinkedList.from_utxos(LIST_ID, ListKind.DENYLIST, [utxo])
        assert len(lst) == 0

    def test_duplicate_keys_conflict(self):
        origin = chain()[0]
        with pytest.raises(ConflictError):
            SortedLinkedList.from_utxos(LIST_ID, ListKind.DENYLIST, [self._utxo(0, origin), self._utxo(1, origin)])
