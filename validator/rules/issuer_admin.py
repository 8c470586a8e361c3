"""
Issuer Admin Logic

Issue and admin logic that succeeds only when a fixed key signs. Used by
the freeze-and-seize substandard for minting, burning and seizure, and
by the issuance policy to require its issuer logic.
"""

from validator.core import ValidationContext, ValidationRule


class IssuerAdminRule(ValidationRule):
    """Requires a signature from ``admin_key_hash``."""

    def __init__(self, admin_key_hash: bytes):
        super().__init__(
            name="issuer_admin",
            description="Requires the issuer admin signature"
        )
        self.admin_key_hash = admin_key_hash

    def validate(self, context: ValidationContext) -> bool:
        if not context.tx.is_signed_by(self.admin_key_hash):
            context.add_error(self.name, f"Missing admin signature {self.admin_key_hash.hex()}")
            return False
        return True


class IssuanceRule(ValidationRule):
    """
    Issuance policy of a programmable token.

    Minting or burning requires the issuer logic stake script to run.
    """

    def __init__(self, issuer_logic_hash: bytes):
        super().__init__(
            name="issuance",
            description="Requires the issuer logic to be invoked"
        )
        self.issuer_logic_hash = issuer_logic_hash

    def validate(self, context: ValidationContext) -> bool:
        if not context.tx.is_invoked(self.issuer_logic_hash):
            context.add_error(self.name, f"Issuer logic {self.issuer_logic_hash.hex()} is not invoked")
            return False
        return True
