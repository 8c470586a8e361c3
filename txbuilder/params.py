"""
Protocol Bootstrap Parameters

The deployment-wide parameters every builder needs: script hashes of the
custody guard and coordinator, the registry list policy, the issuance
template and the reference UTxOs carrying them. They are loaded once and
passed explicitly to every build call.
"""

import re
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .ledger import OutRef


HASH28_PATTERN = re.compile(r'^[a-fA-F0-9]{56}$')
OUTREF_PATTERN = re.compile(r'^[a-fA-F0-9]{64}#\d+$')


class FeeSettings(BaseModel):
    """Linear fee parameters used while balancing."""

    min_fee_a: int = Field(default=44, ge=0, description="Fee per serialized byte")
    min_fee_b: int = Field(default=155381, ge=0, description="Constant fee")
    script_surcharge: int = Field(default=200_000, ge=0, description="Flat fee per script execution")
    min_lovelace: int = Field(default=1_000_000, ge=0, description="Minimum lovelace per script output")


class ProtocolParams(BaseModel):
    """Protocol bootstrap parameters for one deployment."""

    network: str = Field(default="testnet", description="Network name")
    tx_hash: str = Field(..., description="Bootstrap transaction hash (hex)")
    custody_script_hash: str = Field(..., description="Custody spend guard script hash")
    coordinator_script_hash: str = Field(..., description="Coordinator stake script hash")
    registry_node_policy_id: str = Field(..., description="Registry marker policy id")
    registry_spend_script_hash: str = Field(..., description="Script guarding registry nodes")
    issuance_template: str = Field(..., description="Compiled issuance policy code (hex)")
    protocol_params_ref: str = Field(..., description="Reference UTxO holding these params")
    issuance_ref: str = Field(..., description="Reference UTxO holding the issuance script")
    registry_admin_key_hash: Optional[str] = Field(None, description="Key allowed to administer the registry")
    fees: FeeSettings = Field(default_factory=FeeSettings)

    @field_validator('custody_script_hash', 'coordinator_script_hash',
                     'registry_node_policy_id', 'registry_spend_script_hash')
    @classmethod
    def validate_hash28(cls, v):
        if not HASH28_PATTERN.match(v):
            raise ValueError('Script hashes and policy ids must be 56-character hex strings')
        return v.lower()

    @field_validator('registry_admin_key_hash')
    @classmethod
    def validate_admin(cls, v):
        if v is not None and not HASH28_PATTERN.match(v):
            raise ValueError('Admin key hash must be a 56-character hex string')
        return v.lower() if v else v

    @field_validator('tx_hash')
    @classmethod
    def validate_tx_hash(cls, v):
        if not re.match(r'^[a-fA-F0-9]{64}$', v):
            raise ValueError('Transaction hash must be 64-character hex string')
        return v.lower()

    @field_validator('protocol_params_ref', 'issuance_ref')
    @classmethod
    def validate_outref(cls, v):
        if not OUTREF_PATTERN.match(v):
            raise ValueError("Reference must look like '<txhash>#<index>'")
        return v.lower()

    @field_validator('issuance_template')
    @classmethod
    def validate_template(cls, v):
        try:
            bytes.fromhex(v)
        except ValueError:
            raise ValueError('Issuance template must be hex encoded')
        return v.lower()

    @property
    def custody_hash(self) -> bytes:
        return bytes.fromhex(self.custody_script_hash)

    @property
    def coordinator_hash(self) -> bytes:
        return bytes.fromhex(self.coordinator_script_hash)

    @property
    def registry_policy(self) -> bytes:
        return bytes.fromhex(self.registry_node_policy_id)

    @property
    def registry_spend_hash(self) -> bytes:
        return bytes.fromhex(self.registry_spend_script_hash)

    @property
    def params_ref(self) -> OutRef:
        return OutRef.parse(self.protocol_params_ref)

    @property
    def issuance_script_ref(self) -> OutRef:
        return OutRef.parse(self.issuance_ref)

    @property
    def registry_admin(self) -> Optional[bytes]:
        return bytes.fromhex(self.registry_admin_key_hash) if self.registry_admin_key_hash else None
