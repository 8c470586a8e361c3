"""
Script Templates and Blueprints

Validators are compiled once and parameterized per deployment. Applying the
same parameters to the same template always yields the same script and
therefore the same hash, which is how policy ids are derived off-ledger.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Union

import cbor2

from crypto.credentials import Credential, script_hash

from .exceptions import MalformedRequestError, ValidationRejectedError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlutusScript:
    """A fully applied script."""
    code: bytes
    title: str = ""

    @property
    def hash(self) -> bytes:
        return script_hash(self.code)

    @property
    def hash_hex(self) -> str:
        return self.hash.hex()


@dataclass(frozen=True)
class ScriptTemplate:
    """Compiled validator code awaiting its parameters."""
    code: bytes
    title: str = ""

    @classmethod
    def from_hex(cls, code_hex: str, title: str = "") -> "ScriptTemplate":
        try:
            return cls(bytes.fromhex(code_hex), title)
        except ValueError:
            raise MalformedRequestError(f"Compiled code for {title or 'script'} is not hex")

    def apply(self, *params: Any) -> PlutusScript:
        """
        Apply Plutus-data parameters.

        The applied script is the canonical CBOR of the code and the
        parameter list, so identical inputs give identical hashes.
        """
        encoded = cbor2.dumps([self.code, list(params)], canonical=True)
        return PlutusScript(encoded, self.title)

    def unapplied(self) -> PlutusScript:
        return PlutusScript(self.code, self.title)


class Blueprint:
    """
    CIP-57 blueprint (``plutus.json``) of a substandard.

    Only ``title`` and ``compiledCode`` of each validator are used.
    """

    def __init__(self, validators: Dict[str, ScriptTemplate], preamble: Dict[str, Any] = None):
        self.validators = validators
        self.preamble = preamble or {}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Blueprint":
        validators = {}
        for entry in data.get("validators", []):
            title = entry.get("title")
            code = entry.get("compiledCode")
            if not title or not code:
                logger.warning(f"Skipping blueprint validator without title or code: {entry.get('title')}")
                continue
            validators[title] = ScriptTemplate.from_hex(code, title)
        return cls(validators, data.get("preamble"))

    @classmethod
    def load(cls, path: Union[str, Path]) -> "Blueprint":
        path = Path(path)
        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise MalformedRequestError(f"Cannot read blueprint {path}: {e}")
        logger.info(f"Loaded blueprint {path} with {len(data.get('validators', []))} validators")
        return cls.from_dict(data)

    def get(self, title: str) -> ScriptTemplate:
        try:
            return self.validators[title]
        except KeyError:
            raise MalformedRequestError(f"Blueprint has no validator titled {title!r}")

    def find(self, prefix: str) -> ScriptTemplate:
        """First validator whose title starts with ``prefix``."""
        for title in sorted(self.validators):
            if title.startswith(prefix):
                return self.validators[title]
        raise MalformedRequestError(f"Blueprint has no validator matching {prefix!r}")


def derive_issuance_policy(issuance_template: ScriptTemplate, issuer_logic_hash: bytes) -> PlutusScript:
    """Issuance policy for tokens whose minting is gated by ``issuer_logic_hash``."""
    return issuance_template.apply(Credential.script(issuer_logic_hash).to_plutus())


def verify_issuance_policy(issuance_template: ScriptTemplate, issuer_logic_hash: bytes,
                           expected_policy_id: bytes) -> PlutusScript:
    """Re-derive the issuance policy and reject when it differs from ``expected_policy_id``."""
    script = derive_issuance_policy(issuance_template, issuer_logic_hash)
    if script.hash != expected_policy_id:
        raise ValidationRejectedError(
            f"Issuance policy mismatch: derived {script.hash_hex}, expected {expected_policy_id.hex()}"
        )
    return script


def load_blueprint(path: Union[str, Path]) -> Blueprint:
    return Blueprint.load(path)
