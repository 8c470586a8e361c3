"""
Programmable Tokens - Credentials and Addresses

This module provides the credential model shared by the registry, the
coordinator and the builders:
- Key and script credentials with a total byte ordering
- blake2b hashing for keys, scripts and policies
- Custody address derivation and decomposition

Dependencies:
- pycardano: bech32 address encoding
- cbor2: Plutus data tags for credentials
"""

from .exceptions import (
    InvalidCredentialError,
    AddressError,
)

from .credentials import (
    Credential,
    CredentialKind,
    Signature,
    ScriptInvocation,
    authorization_requirement,
    blake2b_224,
    blake2b_256,
    script_hash,
)

from .addresses import (
    programmable_address,
    wallet_address,
    decompose_address,
    owner_credential_of,
    is_custody_address,
)

__all__ = [
    "InvalidCredentialError",
    "AddressError",
    "Credential",
    "CredentialKind",
    "Signature",
    "ScriptInvocation",
    "authorization_requirement",
    "blake2b_224",
    "blake2b_256",
    "script_hash",
    "programmable_address",
    "wallet_address",
    "decompose_address",
    "owner_credential_of",
    "is_custody_address",
]
