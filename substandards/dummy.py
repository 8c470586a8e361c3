"""
Dummy Substandard

Unparameterized issue and transfer logic that always succeed. Useful for
exercising the protocol itself; tokens registered with it have no admin
logic and can be neither burned by an admin nor seized.
"""

from typing import List

from txbuilder.protocol import RuleBinding
from txbuilder.scripts import PlutusScript
from validator.core import ScriptPurpose
from validator.rules.permissive import PermissiveRule

from .base import SubstandardHandler


ISSUE_VALIDATOR = "issue_validator"
TRANSFER_VALIDATOR = "transfer_validator"


class DummySubstandardHandler(SubstandardHandler):

    substandard_id = "dummy"

    def issuer_logic_script(self) -> PlutusScript:
        return self.blueprint.find(ISSUE_VALIDATOR).unapplied()

    def transfer_logic_script(self) -> PlutusScript:
        return self.blueprint.find(TRANSFER_VALIDATOR).unapplied()

    def validation_rules(self) -> List[RuleBinding]:
        return [
            (ScriptPurpose.WITHDRAW, self.issuer_logic_script().hash, PermissiveRule("dummy_issue")),
            (ScriptPurpose.WITHDRAW, self.transfer_logic_script().hash, PermissiveRule("dummy_transfer")),
        ]
