"""
Programmable Tokens - Ledger Model

This module defines the UTXO-ledger primitives the builders and validators
operate on: multi-asset values, output references, outputs and an immutable
view of a transaction as a script would observe it.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from cbor2 import CBORTag

from crypto.credentials import Credential


Assets = Dict[bytes, Dict[bytes, int]]

LOVELACE_UNIT = "lovelace"
POLICY_ID_SIZE = 28


def constr(index: int, fields: Iterable[Any] = ()) -> CBORTag:
    """Encode a Plutus constructor as a CBOR tag."""
    if 0 <= index < 7:
        return CBORTag(121 + index, list(fields))
    if 7 <= index < 128:
        return CBORTag(1280 + index - 7, list(fields))
    return CBORTag(102, [index, list(fields)])


def constr_index(data: CBORTag) -> int:
    """Inverse of :func:`constr` for the constructor index."""
    if not isinstance(data, CBORTag):
        raise ValueError(f"Not a constructor: {data!r}")
    if 121 <= data.tag < 128:
        return data.tag - 121
    if 1280 <= data.tag < 1401:
        return data.tag - 1280 + 7
    if data.tag == 102:
        return data.value[0]
    raise ValueError(f"Not a constructor tag: {data.tag}")


def constr_fields(data: CBORTag) -> List[Any]:
    if data.tag == 102:
        return list(data.value[1])
    return list(data.value)


def split_unit(unit: str) -> Tuple[bytes, bytes]:
    """Split a hex unit (policy id followed by asset name) into bytes."""
    try:
        raw = bytes.fromhex(unit)
    except ValueError:
        raise ValueError(f"Unit is not hex: {unit!r}")
    if len(raw) < POLICY_ID_SIZE:
        raise ValueError(f"Unit shorter than a policy id: {unit!r}")
    return raw[:POLICY_ID_SIZE], raw[POLICY_ID_SIZE:]


def make_unit(policy_id: bytes, asset_name: bytes) -> str:
    return (policy_id + asset_name).hex()


class Value:
    """
    Lovelace plus native assets.

    Values are immutable; arithmetic returns new instances and zero
    quantities are dropped so equality is structural.
    """

    __slots__ = ("lovelace", "_assets")

    def __init__(self, lovelace: int = 0, assets: Optional[Assets] = None):
        self.lovelace = int(lovelace)
        normalized: Assets = {}
        for policy, names in (assets or {}).items():
            for name, quantity in names.items():
                if quantity:
                    normalized.setdefault(bytes(policy), {})[bytes(name)] = int(quantity)
        self._assets = normalized

    @classmethod
    def of(cls, policy_id: bytes, asset_name: bytes, quantity: int, lovelace: int = 0) -> "Value":
        return cls(lovelace, {policy_id: {asset_name: quantity}})

    @property
    def assets(self) -> Assets:
        return {policy: dict(names) for policy, names in self._assets.items()}

    def policies(self) -> List[bytes]:
        """Distinct non-lovelace policies, sorted."""
        return sorted(self._assets)

    def quantity_of(self, policy_id: bytes, asset_name: Optional[bytes] = None) -> int:
        """Quantity of one asset, or of every asset under ``policy_id``."""
        names = self._assets.get(policy_id, {})
        if asset_name is None:
            return sum(names.values())
        return names.get(asset_name, 0)

    def policy_assets(self, policy_id: bytes) -> Dict[bytes, int]:
        return dict(self._assets.get(policy_id, {}))

    def without_policy(self, policy_id: bytes) -> "Value":
        return Value(self.lovelace, {p: n for p, n in self._assets.items() if p != policy_id})

    def is_lovelace_only(self) -> bool:
        return not self._assets

    def has_negative(self) -> bool:
        return self.lovelace < 0 or any(q < 0 for names in self._assets.values() for q in names.values())

    def __add__(self, other: "Value") -> "Value":
        merged = self.assets
        for policy, names in other._assets.items():
            bucket = merged.setdefault(policy, {})
            for name, quantity in names.items():
                bucket[name] = bucket.get(name, 0) + quantity
        return Value(self.lovelace + other.lovelace, merged)

    def __sub__(self, other: "Value") -> "Value":
        return self + other.negate()

    def negate(self) -> "Value":
        return Value(-self.lovelace, {p: {n: -q for n, q in names.items()} for p, names in self._assets.items()})

    def __eq__(self, other):
        if not isinstance(other, Value):
            return NotImplemented
        return self.lovelace == other.lovelace and self._assets == other._assets

    def __hash__(self):
        return hash((self.lovelace, tuple(sorted((p, tuple(sorted(n.items()))) for p, n in self._assets.items()))))

    def __repr__(self):
        parts = [f"{make_unit(p, n)}={q}" for p in sorted(self._assets) for n, q in sorted(self._assets[p].items())]
        return f"Value(lovelace={self.lovelace}, {', '.join(parts)})"

    def to_primitive(self):
        """CBOR ledger form: ``coin`` or ``[coin, multiasset]``."""
        if not self._assets:
            return self.lovelace
        return [self.lovelace, {p: dict(sorted(n.items())) for p, n in sorted(self._assets.items())}]

    def multiasset_primitive(self) -> Dict[bytes, Dict[bytes, int]]:
        return {p: dict(sorted(n.items())) for p, n in sorted(self._assets.items())}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lovelace": self.lovelace,
            "assets": {make_unit(p, n): q for p in sorted(self._assets) for n, q in sorted(self._assets[p].items())},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Value":
        assets: Assets = {}
        for unit, quantity in (data.get("assets") or {}).items():
            policy, name = split_unit(unit)
            assets.setdefault(policy, {})[name] = int(quantity)
        return cls(int(data.get("lovelace", 0)), assets)


@dataclass(frozen=True, order=True)
class OutRef:
    """Reference to a transaction output."""
    tx_hash: bytes
    index: int

    @classmethod
    def parse(cls, value: str) -> "OutRef":
        """Parse ``<tx hash hex>#<index>``."""
        tx_hash, sep, index = value.partition("#")
        if not sep:
            raise ValueError(f"Out ref must be '<txhash>#<index>': {value!r}")
        return cls(bytes.fromhex(tx_hash), int(index))

    def to_primitive(self):
        return [self.tx_hash, self.index]

    def to_plutus(self) -> CBORTag:
        return constr(0, [self.tx_hash, self.index])

    def __str__(self):
        return f"{self.tx_hash.hex()}#{self.index}"


@dataclass(frozen=True)
class TxOutput:
    """A transaction output with an optional inline datum."""
    address: str
    value: Value
    datum: Optional[Any] = None


@dataclass(frozen=True)
class UTxO:
    """An unspent output together with its reference."""
    ref: OutRef
    output: TxOutput

    @property
    def address(self) -> str:
        return self.output.address

    @property
    def value(self) -> Value:
        return self.output.value

    @property
    def datum(self) -> Optional[Any]:
        return self.output.datum


@dataclass(frozen=True)
class TransactionView:
    """
    A transaction as a validator sees it.

    Inputs and reference inputs are sorted by out-ref, matching the ledger,
    so redeemer indices computed off-chain line up with what scripts observe.
    """
    inputs: Tuple[UTxO, ...] = ()
    reference_inputs: Tuple[UTxO, ...] = ()
    outputs: Tuple[TxOutput, ...] = ()
    mint: Value = field(default_factory=Value)
    withdrawals: Dict[Credential, Any] = field(default_factory=dict)
    spend_redeemers: Dict[OutRef, Any] = field(default_factory=dict)
    mint_redeemers: Dict[bytes, Any] = field(default_factory=dict)
    required_signers: Tuple[bytes, ...] = ()
    fee: int = 0

    def __post_init__(self):
        object.__setattr__(self, "inputs", tuple(sorted(self.inputs, key=lambda u: u.ref)))
        object.__setattr__(self, "reference_inputs", tuple(sorted(self.reference_inputs, key=lambda u: u.ref)))

    def is_signed_by(self, key_hash: bytes) -> bool:
        return key_hash in self.required_signers

    def is_invoked(self, script_hash: bytes) -> bool:
        """True when the stake script with this hash runs (withdraw-zero)."""
        return any(c.is_script and c.hash == script_hash for c in self.withdrawals)

    def authorizes(self, credential: Credential) -> bool:
        if credential.is_script:
            return self.is_invoked(credential.hash)
        return self.is_signed_by(credential.hash)

    def withdrawal_redeemer(self, script_hash: bytes) -> Optional[Any]:
        for credential, redeemer in self.withdrawals.items():
            if credential.is_script and credential.hash == script_hash:
                return redeemer
        return None

    def input_index(self, ref: OutRef) -> int:
        for i, utxo in enumerate(self.inputs):
            if utxo.ref == ref:
                return i
        raise KeyError(f"Input {ref} not in transaction")

    def reference_index(self, ref: OutRef) -> int:
        for i, utxo in enumerate(self.reference_inputs):
            if utxo.ref == ref:
                return i
        raise KeyError(f"Reference input {ref} not in transaction")

    def total_input(self) -> Value:
        total = Value()
        for utxo in self.inputs:
            total = total + utxo.value
        return total

    def total_output(self) -> Value:
        total = Value()
        for output in self.outputs:
            total = total + output.value
        return total
