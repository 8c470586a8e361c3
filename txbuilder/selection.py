"""
Input Selection

Simple sufficient-value accumulation: take outputs in order until the
requested amount is covered, never more than needed.
"""

import logging
from typing import List, Tuple

from .exceptions import InsufficientFundsError
from .ledger import UTxO, Value, make_unit


logger = logging.getLogger(__name__)


def select_asset_utxos(utxos: List[UTxO], policy_id: bytes, asset_name: bytes,
                       quantity: int) -> Tuple[List[UTxO], Value]:
    """
    Select outputs holding at least ``quantity`` of one asset.

    Outputs without the asset are skipped.

    Returns:
        Selected outputs and their combined value

    Raises:
        InsufficientFundsError: If the outputs hold less than ``quantity``
    """
    selected: List[UTxO] = []
    total = Value()
    for utxo in utxos:
        if total.quantity_of(policy_id, asset_name) >= quantity:
            break
        if utxo.value.quantity_of(policy_id, asset_name) <= 0:
            continue
        selected.append(utxo)
        total = total + utxo.value

    held = total.quantity_of(policy_id, asset_name)
    if held < quantity:
        raise InsufficientFundsError(quantity, held, unit=make_unit(policy_id, asset_name))
    logger.debug(f"Selected {len(selected)} outputs holding {held} of {make_unit(policy_id, asset_name)}")
    return selected, total


def select_lovelace(utxos: List[UTxO], amount: int) -> List[UTxO]:
    """
    Select outputs covering ``amount`` lovelace.

    Lovelace-only outputs are taken first so unrelated asset holdings are
    not pulled into the transaction.
    """
    ordered = [u for u in utxos if u.value.is_lovelace_only()] + \
              [u for u in utxos if not u.value.is_lovelace_only()]
    selected: List[UTxO] = []
    total = 0
    for utxo in ordered:
        if total >= amount:
            break
        if utxo.value.lovelace <= 0:
            continue
        selected.append(utxo)
        total += utxo.value.lovelace

    if total < amount:
        raise InsufficientFundsError(amount, total)
    return selected
