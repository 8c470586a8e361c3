"""
Programmable Tokens - Validator Core Engine

This module provides the ValidationEngine that evaluates a transaction the
way the ledger would run its scripts, so builders can refuse to emit a
transaction that would fail on submission.

The ValidationEngine runs:
- the spend rule of every script-locked input (the custody guard, list nodes)
- every invoked stake script exactly once (coordinator, substandard logic)
- every minting policy present in the mint field once

Scripts without a registered rule are treated as opaque and skipped.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from crypto.addresses import decompose_address
from crypto.exceptions import AddressError
from txbuilder.exceptions import ValidationRejectedError
from txbuilder.ledger import TransactionView, UTxO


class ValidationResult(Enum):
    """Validation result codes."""
    APPROVED = "approved"
    REJECTED = "rejected"


class ScriptPurpose(str, Enum):
    """Why a script runs in a transaction."""
    SPEND = "spend"
    MINT = "mint"
    WITHDRAW = "withdraw"


@dataclass
class ValidationContext:
    """
    Context passed to a rule for one script execution.

    Carries the transaction view, the script's redeemer and, for spends, the
    output being spent.
    """
    tx: TransactionView
    purpose: ScriptPurpose
    script_hash: bytes
    redeemer: Any = None
    spent: Optional[UTxO] = None

    validation_errors: List[str] = field(default_factory=list)
    rule_results: Dict[str, bool] = field(default_factory=dict)

    def add_error(self, rule_name: str, message: str):
        """Add a validation error."""
        self.validation_errors.append(f"{rule_name}: {message}")
        self.rule_results[rule_name] = False

    def mark_rule_passed(self, rule_name: str):
        self.rule_results[rule_name] = True

    def has_errors(self) -> bool:
        return len(self.validation_errors) > 0

    def get_summary(self) -> Dict[str, Any]:
        return {
            "purpose": self.purpose.value,
            "script_hash": self.script_hash.hex(),
            "spent": str(self.spent.ref) if self.spent else None,
            "errors": self.validation_errors,
            "rules_passed": sum(1 for passed in self.rule_results.values() if passed),
            "rules_total": len(self.rule_results),
            "validation_result": ValidationResult.APPROVED.value if not self.has_errors() else ValidationResult.REJECTED.value
        }


class ValidationRule(ABC):
    """
    Abstract base class for on-ledger rules.

    A rule models one script: it receives the context of one execution and
    returns whether the script would succeed.
    """

    def __init__(self, name: str, description: str, enabled: bool = True):
        self.name = name
        self.description = description
        self.enabled = enabled
        self.logger = logging.getLogger(f"validator.rules.{name}")

    @abstractmethod
    def validate(self, context: ValidationContext) -> bool:
        """
        Validate one script execution.

        Args:
            context: Validation context for the execution

        Returns:
            True if the script would succeed
        """
        pass

    def is_applicable(self, context: ValidationContext) -> bool:
        return self.enabled


@dataclass
class EvaluationReport:
    """Outcome of evaluating every script of a transaction."""
    executions: List[ValidationContext] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not any(c.has_errors() for c in self.executions)

    @property
    def errors(self) -> List[str]:
        return [e for c in self.executions for e in c.validation_errors]

    def scripts_run(self, purpose: Optional[ScriptPurpose] = None) -> List[bytes]:
        return [c.script_hash for c in self.executions if purpose is None or c.purpose == purpose]

    def get_summary(self) -> Dict[str, Any]:
        return {
            "validation_result": ValidationResult.APPROVED.value if self.passed else ValidationResult.REJECTED.value,
            "executions": len(self.executions),
            "errors": self.errors,
        }


class ValidationEngine:
    """
    Main validation engine.

    Rules are registered per (purpose, script hash). ``evaluate`` schedules
    executions exactly as the ledger would and collects every failure.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.logger = logging.getLogger("validator.engine")
        self.rule_registry: Dict[Tuple[ScriptPurpose, bytes], ValidationRule] = {}
        self.validation_stats = {
            "total_validations": 0,
            "approved_validations": 0,
            "rejected_validations": 0,
        }

    def register_rule(self, purpose: ScriptPurpose, script_hash: bytes, rule: ValidationRule):
        """
        Register the rule modelling a script.

        Args:
            purpose: How the script runs
            script_hash: Script hash (policy id for minting policies)
            rule: Rule to execute
        """
        key = (purpose, script_hash)
        if key in self.rule_registry:
            self.logger.debug(f"Rule for {purpose.value} script {script_hash.hex()} already registered, replacing")
        self.rule_registry[key] = rule
        self.logger.debug(f"Registered {rule.name} for {purpose.value} script {script_hash.hex()}")

    def unregister_rule(self, purpose: ScriptPurpose, script_hash: bytes) -> bool:
        return self.rule_registry.pop((purpose, script_hash), None) is not None

    def has_rule(self, purpose: ScriptPurpose, script_hash: bytes) -> bool:
        return (purpose, script_hash) in self.rule_registry

    def evaluate(self, tx: TransactionView) -> EvaluationReport:
        """
        Evaluate every script a transaction would run.

        Returns:
            EvaluationReport with one context per execution
        """
        self.validation_stats["total_validations"] += 1
        report = EvaluationReport()

        for utxo in tx.inputs:
            payment = self._payment_script(utxo)
            if payment is None:
                continue
            self._execute(report, tx, ScriptPurpose.SPEND, payment, tx.spend_redeemers.get(utxo.ref), utxo)

        for policy_id in tx.mint.policies():
            self._execute(report, tx, ScriptPurpose.MINT, policy_id, tx.mint_redeemers.get(policy_id))

        for credential, redeemer in sorted(tx.withdrawals.items(), key=lambda item: item[0]):
            if credential.is_script:
                self._execute(report, tx, ScriptPurpose.WITHDRAW, credential.hash, redeemer)

        if report.passed:
            self.validation_stats["approved_validations"] += 1
            self.logger.debug(f"Transaction approved after {len(report.executions)} script executions")
        else:
            self.validation_stats["rejected_validations"] += 1
            self.logger.info(f"Transaction rejected: {len(report.errors)} errors")
        return report

    def require_valid(self, tx: TransactionView) -> EvaluationReport:
        """
        Raises:
            ValidationRejectedError: With the first failure, if any script fails
        """
        report = self.evaluate(tx)
        if not report.passed:
            raise ValidationRejectedError(report.errors[0])
        return report

    def _payment_script(self, utxo: UTxO) -> Optional[bytes]:
        try:
            payment, _ = decompose_address(utxo.address)
        except AddressError as e:
            self.logger.warning(f"Input {utxo.ref} has undecodable address: {e}")
            return None
        return payment.hash if payment.is_script else None

    def _execute(self, report: EvaluationReport, tx: TransactionView, purpose: ScriptPurpose,
                 script_hash: bytes, redeemer: Any, spent: Optional[UTxO] = None):
        rule = self.rule_registry.get((purpose, script_hash))
        if rule is None:
            self.logger.debug(f"No rule for {purpose.value} script {script_hash.hex()}, skipping")
            return

        context = ValidationContext(tx=tx, purpose=purpose, script_hash=script_hash,
                                    redeemer=redeemer, spent=spent)
        if not rule.is_applicable(context):
            return

        result = rule.validate(context)
        if result and not context.has_errors():
            context.mark_rule_passed(rule.name)
        elif not context.has_errors():
            context.add_error(rule.name, "script failed")
        self.logger.debug(f"Rule {rule.name} {'passed' if result else 'failed'} for {purpose.value}")
        report.executions.append(context)

    def get_statistics(self) -> Dict[str, Any]:
        return {
            **self.validation_stats,
            "registered_rules": len(self.rule_registry),
        }
