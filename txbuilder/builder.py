"""
Programmable Tokens - Transaction Builder

This module provides the TransactionBuilder that assembles, balances and
serializes an unsigned transaction, and evaluates it locally before
returning it.

Redeemers that reference input or reference-input positions are given as
callables over the final TransactionView; they are resolved after inputs are
sorted the way the ledger sorts them.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

import cbor2
from cbor2 import CBORTag
from pycardano import Address, ScriptHash

from crypto.addresses import resolve_network
from crypto.credentials import Credential, ScriptInvocation, authorization_requirement, blake2b_256

from .exceptions import InsufficientFundsError, MalformedRequestError
from .ledger import OutRef, TransactionView, TxOutput, UTxO, Value
from .params import FeeSettings, ProtocolParams
from .selection import select_lovelace


logger = logging.getLogger(__name__)

Redeemer = Union[Any, Callable[[TransactionView], Any]]

DEFAULT_EX_UNITS = [500_000, 200_000_000]
MAX_BALANCE_ROUNDS = 10

REDEEMER_SPEND = 0
REDEEMER_MINT = 1
REDEEMER_REWARD = 3


class OperationType(str, Enum):
    """Operation kinds recorded in transaction metadata."""
    REGISTER = "register"
    MINT = "mint"
    BURN = "burn"
    TRANSFER = "transfer"
    BLACKLIST_INIT = "blacklist_init"
    BLACKLIST_INSERT = "blacklist_insert"
    BLACKLIST_REMOVE = "blacklist_remove"
    SEIZE = "seize"


@dataclass
class OperationMetadata:
    """Operation-specific data returned alongside an unsigned transaction."""
    operation_type: OperationType
    tx_id: str = ""
    node_keys_touched: List[str] = field(default_factory=list)
    new_policy_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "operation_type": self.operation_type.value,
            "tx_id": self.tx_id,
            "node_keys_touched": list(self.node_keys_touched),
        }
        if self.new_policy_id is not None:
            data["new_policy_id"] = self.new_policy_id
        data.update(self.extra)
        return data


@dataclass(frozen=True)
class UnsignedTransaction:
    """Serialized unsigned transaction with the view it was evaluated against."""
    cbor: bytes
    view: TransactionView
    tx_id: bytes

    @property
    def cbor_hex(self) -> str:
        return self.cbor.hex()

    @property
    def fee(self) -> int:
        return self.view.fee


@dataclass(frozen=True)
class UnsignedTxPlan:
    """What every build operation returns."""
    transaction: UnsignedTransaction
    metadata: OperationMetadata

    @property
    def cbor_hex(self) -> str:
        return self.transaction.cbor_hex

    def to_dict(self) -> Dict[str, Any]:
        return {"unsigned_tx": self.cbor_hex, "fee": self.transaction.fee, **self.metadata.to_dict()}


class TransactionBuilder:
    """
    Builder for one unsigned transaction.

    Args:
        params: Protocol parameters (network, fee settings)
        engine: Validation engine used for local evaluation; when given,
            ``build`` refuses to return a transaction it rejects
    """

    def __init__(self, params: ProtocolParams, engine=None, fee_settings: Optional[FeeSettings] = None):
        self.params = params
        self.engine = engine
        self.fees = fee_settings or params.fees
        self.network = resolve_network(params.network)

        self.inputs: List[UTxO] = []
        self.reference_inputs: List[UTxO] = []
        self.outputs: List[TxOutput] = []
        self.mint = Value()
        self.withdrawals: Dict[Credential, Redeemer] = {}
        self.spend_redeemers: Dict[OutRef, Redeemer] = {}
        self.mint_redeemers: Dict[bytes, Redeemer] = {}
        self.required_signers: List[bytes] = []

    def add_input(self, utxo: UTxO, redeemer: Optional[Redeemer] = None) -> None:
        """
        Add an input to the transaction.

        Args:
            utxo: Output being spent
            redeemer: Redeemer when the output is script-locked
        """
        if any(u.ref == utxo.ref for u in self.inputs):
            raise MalformedRequestError(f"Input {utxo.ref} added twice")
        self.inputs.append(utxo)
        if redeemer is not None:
            self.spend_redeemers[utxo.ref] = redeemer

    def add_reference_input(self, utxo: UTxO) -> None:
        if any(u.ref == utxo.ref for u in self.reference_inputs):
            return
        self.reference_inputs.append(utxo)

    def add_output(self, address: str, value: Value, datum: Any = None, enforce_min: bool = True) -> int:
        """
        Add an output; its lovelace is raised to the configured minimum.

        Returns:
            Index of the output
        """
        if value.has_negative():
            raise MalformedRequestError(f"Output to {address} has negative quantities: {value!r}")
        if enforce_min and value.lovelace < self.fees.min_lovelace:
            value = Value(self.fees.min_lovelace, value.assets)
        self.outputs.append(TxOutput(address, value, datum))
        return len(self.outputs) - 1

    def mint_asset(self, policy_id: bytes, asset_name: bytes, quantity: int, redeemer: Redeemer) -> None:
        """Mint (positive) or burn (negative) an asset under ``policy_id``."""
        self.mint = self.mint + Value.of(policy_id, asset_name, quantity)
        self.mint_redeemers[policy_id] = redeemer

    def add_withdrawal(self, credential: Credential, redeemer: Redeemer) -> None:
        """Invoke a stake script once (zero withdrawal)."""
        if not credential.is_script:
            raise MalformedRequestError(f"Only script credentials can be invoked, got {credential}")
        self.withdrawals[credential] = redeemer

    def add_required_signer(self, key_hash: bytes) -> None:
        if key_hash not in self.required_signers:
            self.required_signers.append(key_hash)

    def authorize(self, credential: Credential, redeemer: Redeemer = None) -> None:
        """Add whatever ``credential`` needs to authorize this transaction."""
        requirement = authorization_requirement(credential)
        if isinstance(requirement, ScriptInvocation):
            self.add_withdrawal(credential, redeemer if redeemer is not None else CBORTag(121, []))
        else:
            self.add_required_signer(requirement.key_hash)

    def script_executions(self) -> int:
        return len(self.spend_redeemers) + len(self.mint.policies()) + len(self.withdrawals)

    def build(self, change_address: str, fee_utxos: List[UTxO]) -> UnsignedTransaction:
        """
        Balance, serialize and evaluate the transaction.

        Args:
            change_address: Fee payer address receiving the change
            fee_utxos: Fee payer outputs available for selection

        Returns:
            UnsignedTransaction

        Raises:
            InsufficientFundsError: If the fee payer cannot cover outputs and fee
            ValidationRejectedError: If local evaluation rejects the transaction
        """
        used = {u.ref for u in self.inputs}
        available = [u for u in fee_utxos if u.ref not in used]
        fee = 0

        for _ in range(MAX_BALANCE_ROUNDS):
            view = self._view(fee, None)
            excess = view.total_input() + self.mint - view.total_output()
            if any(q < 0 for names in excess.assets.values() for q in names.values()):
                raise MalformedRequestError(f"Outputs spend assets the inputs do not provide: {excess!r}")

            needed = fee + self.fees.min_lovelace - excess.lovelace
            if needed > 0:
                extra = select_lovelace(available, needed)
                for utxo in extra:
                    self.add_input(utxo)
                available = [u for u in available if u not in extra]
                continue

            change = Value(excess.lovelace - fee, excess.assets)
            view = self._view(fee, TxOutput(change_address, change))
            cbor = self._serialize(view)
            required_fee = self.fees.min_fee_a * len(cbor) + self.fees.min_fee_b \
                + self.fees.script_surcharge * self.script_executions()
            if required_fee <= fee:
                return self._finish(view, cbor)
            fee = required_fee

        raise InsufficientFundsError(fee, 0, message=f"Fee did not converge after {MAX_BALANCE_ROUNDS} rounds")

    def _finish(self, view: TransactionView, cbor: bytes) -> UnsignedTransaction:
        tx_id = blake2b_256(cbor2.dumps(self._body(view)))
        if self.engine is not None:
            self.engine.require_valid(view)
        logger.info(f"Built transaction {tx_id.hex()}: {len(view.inputs)} inputs, "
                    f"{len(view.outputs)} outputs, fee {view.fee}")
        return UnsignedTransaction(cbor, view, tx_id)

    def _view(self, fee: int, change: Optional[TxOutput]) -> TransactionView:
        outputs = list(self.outputs) + ([change] if change is not None else [])
        draft = TransactionView(
            inputs=tuple(self.inputs),
            reference_inputs=tuple(self.reference_inputs),
            outputs=tuple(outputs),
            mint=self.mint,
            withdrawals={c: None for c in self.withdrawals},
            required_signers=tuple(self.required_signers),
            fee=fee,
        )
        return TransactionView(
            inputs=draft.inputs,
            reference_inputs=draft.reference_inputs,
            outputs=draft.outputs,
            mint=self.mint,
            withdrawals={c: _resolve(r, draft) for c, r in self.withdrawals.items()},
            spend_redeemers={ref: _resolve(r, draft) for ref, r in self.spend_redeemers.items()},
            mint_redeemers={p: _resolve(r, draft) for p, r in self.mint_redeemers.items()},
            required_signers=draft.required_signers,
            fee=fee,
        )

    def _reward_account(self, credential: Credential) -> bytes:
        return bytes(Address(staking_part=ScriptHash(credential.hash), network=self.network))

    def _body(self, view: TransactionView) -> Dict[int, Any]:
        body: Dict[int, Any] = {
            0: [u.ref.to_primitive() for u in view.inputs],
            1: [self._output_primitive(o) for o in view.outputs],
            2: view.fee,
        }
        if view.withdrawals:
            body[5] = {self._reward_account(c): 0 for c in sorted(view.withdrawals)}
        if view.mint.policies():
            body[9] = view.mint.multiasset_primitive()
        if view.required_signers:
            body[14] = sorted(view.required_signers)
        if view.reference_inputs:
            body[18] = [u.ref.to_primitive() for u in view.reference_inputs]
        return body

    def _output_primitive(self, output: TxOutput) -> Dict[int, Any]:
        entry = {
            0: bytes(Address.from_primitive(output.address)),
            1: output.value.to_primitive(),
        }
        if output.datum is not None:
            entry[2] = [1, CBORTag(24, cbor2.dumps(output.datum))]
        return entry

    def _redeemers(self, view: TransactionView) -> List[Any]:
        redeemers = []
        for index, utxo in enumerate(view.inputs):
            if utxo.ref in view.spend_redeemers:
                redeemers.append([REDEEMER_SPEND, index, view.spend_redeemers[utxo.ref], DEFAULT_EX_UNITS])
        for index, policy in enumerate(view.mint.policies()):
            if policy in view.mint_redeemers:
                redeemers.append([REDEEMER_MINT, index, view.mint_redeemers[policy], DEFAULT_EX_UNITS])
        for index, credential in enumerate(sorted(view.withdrawals)):
            redeemers.append([REDEEMER_REWARD, index, view.withdrawals[credential], DEFAULT_EX_UNITS])
        return redeemers

    def _serialize(self, view: TransactionView) -> bytes:
        witness = {}
        redeemers = self._redeemers(view)
        if redeemers:
            witness[5] = redeemers
        return cbor2.dumps([self._body(view), witness, True, None])


def _resolve(redeemer: Redeemer, view: TransactionView) -> Any:
    if callable(redeemer):
        return redeemer(view)
    return redeemer
