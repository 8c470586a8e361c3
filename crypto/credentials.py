"""
Credential Model

Owner, logic and admin credentials are either a verification key hash or a
script hash, both 28 bytes. Credentials are totally ordered by hash bytes so
sorted-list keys and proof alignment are deterministic.
"""

import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Union

from cbor2 import CBORTag

from .exceptions import InvalidCredentialError


CREDENTIAL_HASH_SIZE = 28
PLUTUS_V3_SCRIPT_PREFIX = b"\x03"


class CredentialKind(str, Enum):
    """Credential kind enumeration."""
    KEY = "key"
    SCRIPT = "script"


def blake2b_224(data: bytes) -> bytes:
    """28-byte blake2b digest used for key, script and policy hashes."""
    return hashlib.blake2b(data, digest_size=28).digest()


def blake2b_256(data: bytes) -> bytes:
    """32-byte blake2b digest used for transaction ids."""
    return hashlib.blake2b(data, digest_size=32).digest()


def script_hash(script_bytes: bytes, prefix: bytes = PLUTUS_V3_SCRIPT_PREFIX) -> bytes:
    """Hash a serialized script the way the ledger derives script credentials."""
    return blake2b_224(prefix + script_bytes)


@dataclass(frozen=True, order=True)
class Credential:
    """
    A key or script credential.

    Ordering compares the hash first so two credentials sort the same way the
    on-ledger sorted lists order their keys.
    """
    hash: bytes
    kind: CredentialKind = CredentialKind.KEY

    def __post_init__(self):
        if not isinstance(self.hash, (bytes, bytearray)):
            raise InvalidCredentialError(f"Credential hash must be bytes, got {type(self.hash).__name__}")
        object.__setattr__(self, "hash", bytes(self.hash))
        if len(self.hash) != CREDENTIAL_HASH_SIZE:
            raise InvalidCredentialError(
                f"Credential hash must be {CREDENTIAL_HASH_SIZE} bytes, got {len(self.hash)}"
            )
        if not isinstance(self.kind, CredentialKind):
            try:
                object.__setattr__(self, "kind", CredentialKind(self.kind))
            except ValueError:
                raise InvalidCredentialError(f"Unknown credential kind: {self.kind}")

    @classmethod
    def key(cls, key_hash: Union[bytes, str]) -> "Credential":
        return cls(_as_bytes(key_hash), CredentialKind.KEY)

    @classmethod
    def script(cls, hash_: Union[bytes, str]) -> "Credential":
        return cls(_as_bytes(hash_), CredentialKind.SCRIPT)

    @classmethod
    def parse(cls, value: Any) -> "Credential":
        """
        Parse a credential from its textual or mapping form.

        Accepts ``"key:<hex>"``, ``"script:<hex>"``, a bare hex string (key),
        a ``{"kind": ..., "hash": ...}`` mapping or an existing credential.
        """
        if isinstance(value, Credential):
            return value
        if isinstance(value, dict):
            return cls(_as_bytes(value.get("hash", "")), value.get("kind", CredentialKind.KEY))
        if isinstance(value, str):
            kind, sep, hex_hash = value.partition(":")
            if not sep:
                return cls.key(value)
            return cls(_as_bytes(hex_hash), kind)
        raise InvalidCredentialError(f"Cannot parse credential from {type(value).__name__}")

    @property
    def is_script(self) -> bool:
        return self.kind == CredentialKind.SCRIPT

    @property
    def hex(self) -> str:
        return self.hash.hex()

    def to_plutus(self) -> CBORTag:
        """Plutus data form: Constr 0 [hash] for keys, Constr 1 [hash] for scripts."""
        return CBORTag(122 if self.is_script else 121, [self.hash])

    @classmethod
    def from_plutus(cls, data: CBORTag) -> "Credential":
        if not isinstance(data, CBORTag) or data.tag not in (121, 122) or len(data.value) != 1:
            raise InvalidCredentialError(f"Not a credential datum: {data!r}")
        kind = CredentialKind.SCRIPT if data.tag == 122 else CredentialKind.KEY
        return cls(bytes(data.value[0]), kind)

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind.value, "hash": self.hex}

    def __str__(self):
        return f"{self.kind.value}:{self.hex}"


@dataclass(frozen=True)
class Signature:
    """Authorization by a signature from the key with this hash."""
    key_hash: bytes


@dataclass(frozen=True)
class ScriptInvocation:
    """Authorization by invoking the stake script with this hash."""
    script_hash: bytes


AuthorizationRequirement = Union[Signature, ScriptInvocation]


def authorization_requirement(credential: Credential) -> AuthorizationRequirement:
    """Return what a transaction must carry to act for ``credential``."""
    if credential.is_script:
        return ScriptInvocation(credential.hash)
    return Signature(credential.hash)


def _as_bytes(value: Union[bytes, str]) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    try:
        return bytes.fromhex(value)
    except (TypeError, ValueError):
        raise InvalidCredentialError(f"Invalid credential hash hex: {value!r}")
