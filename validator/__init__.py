"""
Programmable Tokens Validator Module

This module evaluates transactions locally the way the ledger would run the
protocol's scripts: the custody guard, the transfer coordinator, the sorted
list policies and the substandard rules.
"""

from .core import (
    ValidationEngine,
    ValidationContext,
    ValidationRule,
    ValidationResult,
    ScriptPurpose,
    EvaluationReport,
)

from .coordinator import (
    Coordinator,
    CoordinatorRule,
    CoordinatorContext,
    CoordinatorState,
    TransferAct,
    SeizeAct,
    decode_coordinator_redeemer,
)

from .guard import CustodyGuardRule

__all__ = [
    "ValidationEngine",
    "ValidationContext",
    "ValidationRule",
    "ValidationResult",
    "ScriptPurpose",
    "EvaluationReport",
    "Coordinator",
    "CoordinatorRule",
    "CoordinatorContext",
    "CoordinatorState",
    "TransferAct",
    "SeizeAct",
    "decode_coordinator_redeemer",
    "CustodyGuardRule",
]
