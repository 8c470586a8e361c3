"""
Substandard Deployment Contexts

A context pins one deployment of a context-aware substandard: the keys it
trusts and the on-ledger lists it reads. Contexts round-trip through the
configuration file as hex strings.
"""

import re
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from txbuilder.exceptions import MalformedRequestError
from txbuilder.ledger import OutRef


HASH28_PATTERN = re.compile(r'^[a-fA-F0-9]{56}$')


class SubstandardContext(BaseModel):
    """Base of all deployment contexts."""

    model_config = ConfigDict(frozen=True)

    substandard_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class FreezeAndSeizeContext(SubstandardContext):
    """
    One freeze-and-seize deployment.

    The issuer admin key gates minting, burning and seizure; the denylist
    manager key gates denylist changes. The denylist is identified by its
    marker policy, itself derived from the one-shot init output and the
    manager key.
    """

    substandard_id: str = "freeze-and-seize"
    issuer_admin_pkh: str = Field(..., description="Issuer admin key hash (hex)")
    denylist_manager_pkh: str = Field(..., description="Denylist manager key hash (hex)")
    denylist_init_ref: Optional[str] = Field(None, description="One-shot output consumed by the denylist bootstrap")
    denylist_policy_id: Optional[str] = Field(None, description="Denylist marker policy id (hex)")
    require_frozen_for_seize: bool = Field(True, description="Only frozen owners can be seized from")

    @field_validator('issuer_admin_pkh', 'denylist_manager_pkh', 'denylist_policy_id')
    @classmethod
    def validate_hash(cls, v):
        if v is not None and not HASH28_PATTERN.match(v):
            raise ValueError('Key hashes and policy ids must be 56-character hex strings')
        return v.lower() if v else v

    @field_validator('denylist_init_ref')
    @classmethod
    def validate_init_ref(cls, v):
        if v is not None:
            OutRef.parse(v)
        return v

    @property
    def issuer_admin(self) -> bytes:
        return bytes.fromhex(self.issuer_admin_pkh)

    @property
    def denylist_manager(self) -> bytes:
        return bytes.fromhex(self.denylist_manager_pkh)

    @property
    def denylist_policy(self) -> Optional[bytes]:
        return bytes.fromhex(self.denylist_policy_id) if self.denylist_policy_id else None

    @property
    def init_ref(self) -> Optional[OutRef]:
        return OutRef.parse(self.denylist_init_ref) if self.denylist_init_ref else None

    @property
    def has_denylist(self) -> bool:
        return self.denylist_policy_id is not None

    def with_denylist(self, init_ref: OutRef, policy_id: bytes) -> "FreezeAndSeizeContext":
        return self.model_copy(update={
            "denylist_init_ref": str(init_ref),
            "denylist_policy_id": policy_id.hex(),
        })


CONTEXT_TYPES = {
    "freeze-and-seize": FreezeAndSeizeContext,
}


def context_from_dict(substandard_id: str, data: Optional[Dict[str, Any]]) -> Optional[SubstandardContext]:
    """Build the context of ``substandard_id`` from configuration, if it takes one."""
    context_type = CONTEXT_TYPES.get(substandard_id.lower())
    if context_type is None or not data:
        return None
    fields = {k: v for k, v in data.items() if k in context_type.model_fields}
    try:
        return context_type(**fields)
    except ValidationError as e:
        raise MalformedRequestError(f"Invalid {substandard_id} context: {e.errors()[0].get('msg')}")
