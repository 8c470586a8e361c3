"""
Programmable Tokens - Operation Requests

Pydantic models for the requests accepted by the operations service.
Validation failures surface as MalformedRequestError.
"""

import re
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator

from crypto.addresses import decompose_address
from crypto.credentials import Credential
from crypto.exceptions import AddressError, InvalidCredentialError

from .exceptions import MalformedRequestError
from .ledger import OutRef, split_unit


HEX_PATTERN = re.compile(r'^([a-fA-F0-9]{2})*$')
POLICY_PATTERN = re.compile(r'^[a-fA-F0-9]{56}$')
MAX_ASSET_NAME_BYTES = 32

RequestT = TypeVar("RequestT", bound=BaseModel)


def check_address(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    try:
        decompose_address(v)
    except AddressError as e:
        raise ValueError(e.reason)
    return v


def check_credential(v: str) -> str:
    try:
        return str(Credential.parse(v))
    except InvalidCredentialError as e:
        raise ValueError(e.reason)


def check_out_ref(v: str) -> str:
    try:
        OutRef.parse(v)
    except ValueError as e:
        raise ValueError(f"Invalid output reference: {e}")
    return v.lower()


def check_policy_id(v: str) -> str:
    if not POLICY_PATTERN.match(v):
        raise ValueError('Policy id must be a 56-character hex string')
    return v.lower()


def check_asset_name(v: str) -> str:
    if not HEX_PATTERN.match(v) or len(v) // 2 > MAX_ASSET_NAME_BYTES:
        raise ValueError(f'Asset name must be hex of at most {MAX_ASSET_NAME_BYTES} bytes')
    return v.lower()


class RegisterRequest(BaseModel):
    """Register a new programmable token and mint its initial supply."""

    substandard_id: str = Field(..., description="Substandard implementing the token logic")
    owner_credential: str = Field(..., description="Issuer credential, 'key:<hex>' or 'script:<hex>'")
    asset_name: str = Field(..., description="Asset name (hex)")
    quantity: int = Field(..., gt=0, description="Initial supply")
    recipient: Optional[str] = Field(None, description="Recipient wallet address; defaults to the fee payer")
    fee_payer: str = Field(..., description="Address paying fees and receiving change")
    substandard_config: Optional[Dict[str, Any]] = Field(None, description="Substandard-specific settings")

    @field_validator('recipient', 'fee_payer')
    @classmethod
    def validate_addresses(cls, v):
        return check_address(v)

    @field_validator('owner_credential')
    @classmethod
    def validate_owner(cls, v):
        return check_credential(v)

    @field_validator('asset_name')
    @classmethod
    def validate_asset_name(cls, v):
        return check_asset_name(v)

    @property
    def owner(self) -> Credential:
        return Credential.parse(self.owner_credential)

    @property
    def asset_name_bytes(self) -> bytes:
        return bytes.fromhex(self.asset_name)

    @property
    def recipient_address(self) -> str:
        return self.recipient or self.fee_payer


class MintRequest(BaseModel):
    """Mint more of a registered token."""

    policy_id: str = Field(..., description="Token policy id")
    asset_name: str = Field(..., description="Asset name (hex)")
    quantity: int = Field(..., gt=0)
    recipient: str = Field(..., description="Recipient wallet address")
    fee_payer: str = Field(..., description="Address paying fees and receiving change")

    @field_validator('recipient', 'fee_payer')
    @classmethod
    def validate_addresses(cls, v):
        return check_address(v)

    @field_validator('policy_id')
    @classmethod
    def validate_policy_id(cls, v):
        return check_policy_id(v)

    @field_validator('asset_name')
    @classmethod
    def validate_asset_name(cls, v):
        return check_asset_name(v)

    @property
    def policy(self) -> bytes:
        return bytes.fromhex(self.policy_id)

    @property
    def asset_name_bytes(self) -> bytes:
        return bytes.fromhex(self.asset_name)


class BurnRequest(BaseModel):
    """Burn tokens held in one custody record (an administrative action)."""

    policy_id: str = Field(...)
    asset_name: str = Field(...)
    quantity: int = Field(..., gt=0)
    target_record_ref: str = Field(..., description="Custody record '<txhash>#<index>'")
    fee_payer: str = Field(...)

    @field_validator('fee_payer')
    @classmethod
    def validate_addresses(cls, v):
        return check_address(v)

    @field_validator('target_record_ref')
    @classmethod
    def validate_ref(cls, v):
        return check_out_ref(v)

    @field_validator('policy_id')
    @classmethod
    def validate_policy_id(cls, v):
        return check_policy_id(v)

    @field_validator('asset_name')
    @classmethod
    def validate_asset_name(cls, v):
        return check_asset_name(v)

    @property
    def policy(self) -> bytes:
        return bytes.fromhex(self.policy_id)

    @property
    def asset_name_bytes(self) -> bytes:
        return bytes.fromhex(self.asset_name)

    @property
    def target_ref(self) -> OutRef:
        return OutRef.parse(self.target_record_ref)


class TransferRequest(BaseModel):
    """Move tokens between owners; fees are paid by the sender."""

    sender: str = Field(..., description="Sender wallet address")
    unit: str = Field(..., description="Policy id followed by asset name (hex)")
    quantity: int = Field(..., gt=0)
    recipient: str = Field(..., description="Recipient wallet address")

    @field_validator('sender', 'recipient')
    @classmethod
    def validate_addresses(cls, v):
        return check_address(v)

    @field_validator('unit')
    @classmethod
    def validate_unit(cls, v):
        split_unit(v)
        return v.lower()

    @property
    def policy(self) -> bytes:
        return split_unit(self.unit)[0]

    @property
    def asset_name_bytes(self) -> bytes:
        return split_unit(self.unit)[1]


class BlacklistInitRequest(BaseModel):
    """Bootstrap a denylist for the freeze-and-seize substandard."""

    admin_credential: str = Field(..., description="Denylist manager credential")
    fee_payer: str = Field(...)

    @field_validator('fee_payer')
    @classmethod
    def validate_addresses(cls, v):
        return check_address(v)

    @field_validator('admin_credential')
    @classmethod
    def validate_admin(cls, v):
        return check_credential(v)

    @property
    def admin(self) -> Credential:
        return Credential.parse(self.admin_credential)


class BlacklistRequest(BaseModel):
    """Add an owner to, or remove an owner from, a token's denylist."""

    policy_id: str = Field(...)
    target_credential: str = Field(..., description="Owner credential to freeze or unfreeze")
    admin_credential: str = Field(...)
    fee_payer: str = Field(...)

    @field_validator('fee_payer')
    @classmethod
    def validate_addresses(cls, v):
        return check_address(v)

    @field_validator('target_credential', 'admin_credential')
    @classmethod
    def validate_credentials(cls, v):
        return check_credential(v)

    @field_validator('policy_id')
    @classmethod
    def validate_policy_id(cls, v):
        return check_policy_id(v)

    @property
    def policy(self) -> bytes:
        return bytes.fromhex(self.policy_id)

    @property
    def target(self) -> Credential:
        return Credential.parse(self.target_credential)

    @property
    def admin(self) -> Credential:
        return Credential.parse(self.admin_credential)


class SeizeRequest(BaseModel):
    """Move every token of a policy out of one custody record."""

    policy_id: str = Field(...)
    target_record_ref: str = Field(...)
    recipient: str = Field(..., description="Recipient wallet address")
    fee_payer: str = Field(...)

    @field_validator('recipient', 'fee_payer')
    @classmethod
    def validate_addresses(cls, v):
        return check_address(v)

    @field_validator('target_record_ref')
    @classmethod
    def validate_ref(cls, v):
        return check_out_ref(v)

    @field_validator('policy_id')
    @classmethod
    def validate_policy_id(cls, v):
        return check_policy_id(v)

    @property
    def policy(self) -> bytes:
        return bytes.fromhex(self.policy_id)

    @property
    def target_ref(self) -> OutRef:
        return OutRef.parse(self.target_record_ref)


def parse_request(model: Type[RequestT], data: Dict[str, Any]) -> RequestT:
    """
    Validate a raw request.

    Raises:
        MalformedRequestError: With the first validation problem
    """
    try:
        return model(**data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(p) for p in first.get("loc", ()))
        raise MalformedRequestError(f"{model.__name__}.{location}: {first.get('msg')}")
