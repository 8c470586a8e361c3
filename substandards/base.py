"""
Substandard Handler Interface

A substandard supplies the token-specific half of every operation: its
issuer, transfer and admin logic scripts, the redeemers those scripts
expect and the rules modelling them. Protocol-level assembly stays in
ProtocolBuilder.

Optional capabilities are mixins: BlacklistManageable for denylist
management and Seizeable for seizure.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from crypto.credentials import Credential
from registry.schema import RegistryNode
from txbuilder.builder import UnsignedTxPlan
from txbuilder.exceptions import ValidationRejectedError
from txbuilder.ledger import UTxO
from txbuilder.protocol import (
    LogicInvocation,
    ProtocolBuilder,
    RuleBinding,
    SubstandardScripts,
    TransferLogicResolver,
)
from txbuilder.requests import (
    BlacklistInitRequest,
    BlacklistRequest,
    BurnRequest,
    MintRequest,
    RegisterRequest,
    SeizeRequest,
    TransferRequest,
)
from txbuilder.scripts import Blueprint, PlutusScript, derive_issuance_policy
from validator.core import ScriptPurpose

from .context import SubstandardContext


class SubstandardHandler(ABC):
    """
    Abstract base class for substandard handlers.

    Args:
        protocol: Protocol-level builders over the current state
        blueprint: Compiled validators of the substandard
        context: Deployment context for context-aware substandards
    """

    substandard_id: str = ""
    requires_context: bool = False

    def __init__(self, protocol: ProtocolBuilder, blueprint: Blueprint,
                 context: Optional[SubstandardContext] = None):
        self.protocol = protocol
        self.blueprint = blueprint
        self.context = context
        self.logger = logging.getLogger(f"substandards.{self.substandard_id}")

    @abstractmethod
    def issuer_logic_script(self) -> PlutusScript:
        pass

    @abstractmethod
    def transfer_logic_script(self) -> PlutusScript:
        pass

    @abstractmethod
    def validation_rules(self) -> List[RuleBinding]:
        """Rules modelling this substandard's scripts, keyed like the engine keys them."""
        pass

    def admin_logic_credential(self) -> Optional[Credential]:
        """Credential authorizing burns and seizures; ``None`` when there is none."""
        return None

    def required_signers(self) -> List[bytes]:
        return []

    def scripts(self) -> SubstandardScripts:
        return SubstandardScripts(
            issuer_logic=self.issuer_logic_script(),
            transfer_logic=self.transfer_logic_script(),
            admin_logic=self.admin_logic_credential(),
            rules=self.validation_rules(),
            required_signers=self.required_signers(),
        )

    def policy_id(self) -> bytes:
        """Issuance policy id of tokens registered through this handler."""
        template = self.protocol.issuance_template()
        return derive_issuance_policy(template, self.issuer_logic_script().hash).hash

    def handles(self, node: RegistryNode) -> bool:
        """True when ``node`` names this handler's transfer logic."""
        return node.transfer_logic == Credential.script(self.transfer_logic_script().hash)

    def transfer_invocation(self, policy_id: bytes, node: RegistryNode,
                            selected: List[UTxO]) -> LogicInvocation:
        """Invocation of the transfer logic for a transfer spending ``selected``."""
        transfer = self.transfer_logic_script()
        return LogicInvocation(
            credential=Credential.script(transfer.hash),
            rules=[b for b in self.validation_rules()
                   if b[0] == ScriptPurpose.WITHDRAW and b[1] == transfer.hash],
        )

    def admin_invocation(self) -> LogicInvocation:
        admin = self.admin_logic_credential()
        if admin is None:
            raise ValidationRejectedError(f"Substandard {self.substandard_id} has no admin logic")
        return LogicInvocation(credential=admin, required_signers=self.required_signers())

    def build_registration(self, request: RegisterRequest) -> UnsignedTxPlan:
        return self.protocol.register(request, self.scripts())

    def build_mint(self, request: MintRequest) -> UnsignedTxPlan:
        return self.protocol.mint(request, self.scripts())

    def build_burn(self, request: BurnRequest) -> UnsignedTxPlan:
        return self.protocol.burn(request, self.scripts(), self.admin_invocation())

    def build_transfer(self, request: TransferRequest,
                       resolve_logic: Optional[TransferLogicResolver] = None) -> UnsignedTxPlan:
        """
        Build a transfer.

        ``resolve_logic`` resolves the transfer logic of every registered
        policy the transfer touches; by default this handler serves them all.
        """
        return self.protocol.transfer(request, resolve_logic or self.transfer_invocation)

    def supports_blacklist(self) -> bool:
        return isinstance(self, BlacklistManageable)

    def supports_seize(self) -> bool:
        return isinstance(self, Seizeable)

    def describe(self) -> dict:
        capabilities = ["basic"]
        if self.supports_blacklist():
            capabilities.append("blacklist")
        if self.supports_seize():
            capabilities.append("seize")
        return {
            "substandard_id": self.substandard_id,
            "capabilities": capabilities,
            "context": self.context.to_dict() if self.context else None,
        }


class BlacklistManageable(ABC):
    """Handlers that manage a denylist of owner credentials."""

    @abstractmethod
    def build_blacklist_init(self, request: BlacklistInitRequest) -> UnsignedTxPlan:
        pass

    @abstractmethod
    def build_blacklist_insert(self, request: BlacklistRequest) -> UnsignedTxPlan:
        pass

    @abstractmethod
    def build_blacklist_remove(self, request: BlacklistRequest) -> UnsignedTxPlan:
        pass


class Seizeable(ABC):
    """Handlers whose admin can move tokens out of a custody record."""

    @abstractmethod
    def build_seize(self, request: SeizeRequest) -> UnsignedTxPlan:
        pass
