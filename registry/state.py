"""
Ledger State Collaborator

Builders read the minimal slice of ledger state they need through a
StateProvider: outputs at an address, a single output by reference, list
nodes and the protocol bootstrap parameters. Every read is a point-in-time
snapshot; staleness is detected when a plan no longer matches the lists.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import cbor2
import yaml

from txbuilder.exceptions import MalformedRequestError, NotFoundError, StateUnavailableError
from txbuilder.ledger import OutRef, TxOutput, UTxO, Value
from txbuilder.params import ProtocolParams

from .linked_list import SortedLinkedList
from .schema import ListKind, NodeRecord


logger = logging.getLogger(__name__)


class StateProvider(ABC):
    """Read access to the ledger state the builders depend on."""

    def __init__(self):
        self._confirmation_callbacks: List[Callable[[bytes], None]] = []

    def add_confirmation_callback(self, callback: Callable[[bytes], None]):
        """Call ``callback(tx_id)`` once a transaction is confirmed."""
        self._confirmation_callbacks.append(callback)

    def _notify_confirmed(self, tx_id: bytes):
        for callback in self._confirmation_callbacks:
            callback(tx_id)

    @abstractmethod
    def find_records_by_owner(self, address: str) -> List[UTxO]:
        """Unspent outputs sitting at ``address``."""
        pass

    @abstractmethod
    def find_record(self, ref: OutRef) -> Optional[UTxO]:
        pass

    @abstractmethod
    def find_list_nodes(self, list_id: bytes) -> SortedLinkedList:
        """
        Mirror of the list identified by its marker policy.

        Raises:
            StateUnavailableError: If the list is unknown
        """
        pass

    @abstractmethod
    def get_bootstrap_params(self) -> ProtocolParams:
        """
        Raises:
            StateUnavailableError: If the protocol has not been bootstrapped
        """
        pass

    def refresh(self):
        """Drop cached reads before a retry."""
        pass

    def register_list(self, list_id: bytes, kind: ListKind):
        """Start tracking a list deployed after the provider was created."""
        pass

    def find_list_node(self, list_id: bytes, key: bytes) -> Optional[NodeRecord]:
        return self.find_list_nodes(list_id).get(key)

    def find_covering_node(self, list_id: bytes, key: bytes) -> NodeRecord:
        record, _ = self.find_list_nodes(list_id).find_covering(key)
        return record

    def find_predecessor_node(self, list_id: bytes, key: bytes) -> NodeRecord:
        return self.find_list_nodes(list_id).find_predecessor(key)

    def require_record(self, ref: OutRef) -> UTxO:
        utxo = self.find_record(ref)
        if utxo is None:
            raise NotFoundError(f"Output {ref} is not unspent")
        return utxo


class InMemoryStateProvider(StateProvider):
    """
    State provider over an in-memory UTxO set.

    Used by the CLI over a snapshot file and by tests. ``apply_transaction``
    advances the snapshot as if a built transaction had been confirmed.
    """

    def __init__(self, params: Optional[ProtocolParams] = None, utxos: Iterable[UTxO] = (),
                 lists: Optional[Dict[bytes, ListKind]] = None):
        super().__init__()
        self._lock = threading.RLock()
        self._params = params
        self._utxos: Dict[OutRef, UTxO] = {u.ref: u for u in utxos}
        self._lists: Dict[bytes, ListKind] = dict(lists or {})
        self._list_cache: Dict[bytes, SortedLinkedList] = {}

    def register_list(self, list_id: bytes, kind: ListKind):
        with self._lock:
            self._lists[list_id] = kind
            self._list_cache.pop(list_id, None)

    def set_bootstrap_params(self, params: ProtocolParams):
        with self._lock:
            self._params = params
            self._lists.setdefault(params.registry_policy, ListKind.REGISTRY)

    def add_utxo(self, utxo: UTxO):
        with self._lock:
            self._utxos[utxo.ref] = utxo
            self._list_cache.clear()

    def remove_utxo(self, ref: OutRef):
        with self._lock:
            self._utxos.pop(ref, None)
            self._list_cache.clear()

    def known_lists(self) -> Dict[bytes, ListKind]:
        with self._lock:
            return dict(self._lists)

    def has_bootstrap_params(self) -> bool:
        return self._params is not None

    def all_utxos(self) -> List[UTxO]:
        with self._lock:
            return sorted(self._utxos.values(), key=lambda u: u.ref)

    def find_records_by_owner(self, address: str) -> List[UTxO]:
        with self._lock:
            return sorted((u for u in self._utxos.values() if u.address == address), key=lambda u: u.ref)

    def find_record(self, ref: OutRef) -> Optional[UTxO]:
        with self._lock:
            return self._utxos.get(ref)

    def find_list_nodes(self, list_id: bytes) -> SortedLinkedList:
        with self._lock:
            kind = self._lists.get(list_id)
            if kind is None:
                raise StateUnavailableError(f"List {list_id.hex()} is not known to this state")
            cached = self._list_cache.get(list_id)
            if cached is None:
                carriers = [u for u in self._utxos.values() if list_id in u.value.policies()]
                cached = SortedLinkedList.from_utxos(list_id, kind, carriers)
                self._list_cache[list_id] = cached
            return cached

    def get_bootstrap_params(self) -> ProtocolParams:
        with self._lock:
            if self._params is None:
                raise StateUnavailableError("Protocol bootstrap parameters are not available")
            return self._params

    def refresh(self):
        with self._lock:
            self._list_cache.clear()

    def apply_transaction(self, unsigned) -> List[OutRef]:
        """
        Consume the inputs of a built transaction and add its outputs.

        Returns:
            References of the created outputs
        """
        view = unsigned.view
        with self._lock:
            for utxo in view.inputs:
                if utxo.ref not in self._utxos:
                    raise NotFoundError(f"Input {utxo.ref} already spent")
            for utxo in view.inputs:
                del self._utxos[utxo.ref]
            created = []
            for index, output in enumerate(view.outputs):
                ref = OutRef(unsigned.tx_id, index)
                self._utxos[ref] = UTxO(ref, output)
                created.append(ref)
            self._list_cache.clear()
        logger.info(f"Applied transaction {unsigned.tx_id.hex()}: "
                    f"{len(view.inputs)} inputs spent, {len(created)} outputs created")
        self._notify_confirmed(unsigned.tx_id)
        return created


def utxo_from_dict(data: Dict[str, Any]) -> UTxO:
    """Decode a snapshot entry ``{ref, address, value, datum?}``; datum is CBOR hex."""
    try:
        datum = data.get("datum")
        return UTxO(
            OutRef.parse(data["ref"]),
            TxOutput(
                address=data["address"],
                value=Value.from_dict(data.get("value", {})),
                datum=cbor2.loads(bytes.fromhex(datum)) if datum else None,
            ),
        )
    except (KeyError, ValueError, cbor2.CBORDecodeError) as e:
        raise MalformedRequestError(f"Invalid snapshot entry {data.get('ref')}: {e}")


def utxo_to_dict(utxo: UTxO) -> Dict[str, Any]:
    entry = {
        "ref": str(utxo.ref),
        "address": utxo.address,
        "value": utxo.value.to_dict(),
    }
    if utxo.datum is not None:
        entry["datum"] = cbor2.dumps(utxo.datum).hex()
    return entry


def load_snapshot(path: Union[str, Path]) -> InMemoryStateProvider:
    """
    Load a state snapshot from JSON or YAML.

    The file holds ``protocol`` (bootstrap parameters), ``lists`` (marker
    policy hex to ``registry``/``denylist``) and ``utxos``.
    """
    path = Path(path)
    if not path.exists():
        raise StateUnavailableError(f"Snapshot not found: {path}")
    with open(path, 'r') as f:
        if path.suffix in ('.yml', '.yaml'):
            data = yaml.safe_load(f) or {}
        else:
            data = json.load(f)

    params = ProtocolParams(**data["protocol"]) if data.get("protocol") else None
    lists = {bytes.fromhex(k): ListKind(v) for k, v in (data.get("lists") or {}).items()}
    utxos = [utxo_from_dict(entry) for entry in data.get("utxos", [])]

    provider = InMemoryStateProvider(params, utxos, lists)
    if params is not None:
        provider.set_bootstrap_params(params)
    logger.info(f"Loaded snapshot {path}: {len(utxos)} outputs, {len(lists)} lists")
    return provider


def save_snapshot(provider: InMemoryStateProvider, path: Union[str, Path]):
    params = provider.get_bootstrap_params() if provider.has_bootstrap_params() else None
    data = {
        "protocol": params.model_dump() if params else None,
        "lists": {k.hex(): v.value for k, v in provider.known_lists().items()},
        "utxos": [utxo_to_dict(u) for u in provider.all_utxos()],
    }
    path = Path(path)
    with open(path, 'w') as f:
        if path.suffix in ('.yml', '.yaml'):
            yaml.safe_dump(data, f, default_flow_style=False)
        else:
            json.dump(data, f, indent=2)
