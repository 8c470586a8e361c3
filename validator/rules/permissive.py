"""
Permissive Logic

Transfer and issue logic of the dummy substandard: any invocation succeeds.
"""

from validator.core import ValidationContext, ValidationRule


class PermissiveRule(ValidationRule):

    def __init__(self, name: str = "permissive"):
        super().__init__(name=name, description="Always succeeds")

    def validate(self, context: ValidationContext) -> bool:
        self.logger.debug(f"{context.purpose.value} script {context.script_hash.hex()} accepted")
        return True
