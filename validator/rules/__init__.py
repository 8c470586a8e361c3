"""
Programmable Tokens Validator Rules Module

This module contains the rules modelling the protocol's on-ledger scripts:
sorted-list policies, issuance, substandard transfer and admin logic.
"""

from .permissive import PermissiveRule
from .issuer_admin import IssuerAdminRule, IssuanceRule
from .denylist import DenylistTransferRule, encode_denylist_proofs, decode_denylist_proofs
from .linked_list import SortedListMintRule, SortedListSpendRule

__all__ = [
    "PermissiveRule",
    "IssuerAdminRule",
    "IssuanceRule",
    "DenylistTransferRule",
    "encode_denylist_proofs",
    "decode_denylist_proofs",
    "SortedListMintRule",
    "SortedListSpendRule",
]
