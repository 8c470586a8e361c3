"""
Custody Guard

The spend script on every custody record. It checks nothing about the
record itself; it only requires that the coordinator runs in the same
transaction, so per-input cost stays constant however many records a
transaction consumes.
"""

from .core import ValidationContext, ValidationRule


class CustodyGuardRule(ValidationRule):

    def __init__(self, coordinator_script_hash: bytes):
        super().__init__(
            name="custody_guard",
            description="Delegates custody spends to the coordinator"
        )
        self.coordinator_script_hash = coordinator_script_hash

    def validate(self, context: ValidationContext) -> bool:
        if not context.tx.is_invoked(self.coordinator_script_hash):
            context.add_error(self.name, f"Custody input {context.spent.ref} spent without the coordinator")
            return False
        return True
