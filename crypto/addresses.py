"""
Address Derivation

Custody addresses share one payment credential (the custody script) and
carry the owner credential in the staking part, so every holder's records
live under the same script while remaining attributable to their owner.
"""

import logging
from typing import Optional, Tuple, Union

from pycardano import Address, Network, ScriptHash, VerificationKeyHash

from .credentials import Credential, CredentialKind
from .exceptions import AddressError


logger = logging.getLogger(__name__)

NETWORKS = {
    "mainnet": Network.MAINNET,
    "testnet": Network.TESTNET,
    "preview": Network.TESTNET,
    "preprod": Network.TESTNET,
}


def resolve_network(network: Union[str, Network]) -> Network:
    if isinstance(network, Network):
        return network
    try:
        return NETWORKS[network.lower()]
    except (KeyError, AttributeError):
        raise AddressError(f"Unknown network: {network}")


def _to_part(credential: Credential):
    if credential.kind == CredentialKind.SCRIPT:
        return ScriptHash(credential.hash)
    return VerificationKeyHash(credential.hash)


def _from_part(part) -> Optional[Credential]:
    if part is None:
        return None
    if isinstance(part, ScriptHash):
        return Credential.script(part.payload)
    if isinstance(part, VerificationKeyHash):
        return Credential.key(part.payload)
    raise AddressError(f"Unsupported address part: {type(part).__name__}")


def wallet_address(payment: Credential, staking: Optional[Credential] = None,
                   network: Union[str, Network] = "testnet") -> str:
    """Build a bech32 base (or enterprise) address."""
    address = Address(
        payment_part=_to_part(payment),
        staking_part=_to_part(staking) if staking is not None else None,
        network=resolve_network(network),
    )
    return str(address)


def programmable_address(custody_script_hash: bytes, owner: Credential,
                         network: Union[str, Network] = "testnet") -> str:
    """
    Derive the custody address holding ``owner``'s programmable tokens.

    Args:
        custody_script_hash: Hash of the custody spend guard
        owner: Owner credential placed in the staking part
        network: Network name or pycardano Network

    Returns:
        Bech32 address string
    """
    return wallet_address(Credential.script(custody_script_hash), owner, network)


def decompose_address(address: str) -> Tuple[Credential, Optional[Credential]]:
    """Return the (payment, staking) credentials of a bech32 address."""
    try:
        decoded = Address.from_primitive(address)
    except Exception as e:
        raise AddressError(f"Cannot decode address {address!r}: {e}")
    return _from_part(decoded.payment_part), _from_part(decoded.staking_part)


def owner_credential_of(address: str) -> Credential:
    """Owner credential of a wallet or custody address (its staking part)."""
    _, staking = decompose_address(address)
    if staking is None:
        raise AddressError(f"Address {address} has no staking credential")
    return staking


def is_custody_address(address: str, custody_script_hash: bytes) -> bool:
    try:
        payment, staking = decompose_address(address)
    except AddressError:
        logger.debug(f"Ignoring undecodable address {address}")
        return False
    return payment.is_script and payment.hash == custody_script_hash and staking is not None
