"""
Tests for the Validator Core Engine

Scheduling of script executions and the engine's bookkeeping.
"""

import pytest

from crypto.addresses import wallet_address
from crypto.credentials import Credential
from txbuilder.exceptions import ValidationRejectedError
from txbuilder.ledger import OutRef, TransactionView, TxOutput, UTxO, Value
from validator.core import ScriptPurpose, ValidationContext, ValidationEngine, ValidationRule

from tests.conftest import NETWORK, h28, wallet


class RecordingRule(ValidationRule):
    """Rule returning a fixed result and remembering each execution."""

    def __init__(self, name="recording", result=True, error=None, enabled=True):
        super().__init__(name, "records executions", enabled)
        self.result = result
        self.error = error
        self.seen = []

    def validate(self, context: ValidationContext) -> bool:
        self.seen.append(context)
        if self.error:
            context.add_error(self.name, self.error)
            return False
        return self.result


def script_utxo(label: str, index: int = 0) -> UTxO:
    address = wallet_address(Credential.script(h28(label)), None, NETWORK)
    return UTxO(OutRef(b"\x22" * 32, index), TxOutput(address, Value(2_000_000)))


def key_utxo(index: int = 5) -> UTxO:
    return UTxO(OutRef(b"\x33" * 32, index), TxOutput(wallet("alice"), Value(5_000_000)))


@pytest.fixture
def engine():
    return ValidationEngine()


class TestScheduling:
    """Test which scripts run for a transaction."""

    def test_spend_rules_run_for_script_inputs_only(self, engine):
        rule = RecordingRule()
        engine.register_rule(ScriptPurpose.SPEND, h28("lock"), rule)
        locked = script_utxo("lock")
        tx = TransactionView(inputs=(locked, key_utxo()), spend_redeemers={locked.ref: "redeemer"})

        report = engine.evaluate(tx)

        assert report.passed
        assert len(rule.seen) == 1
        assert rule.seen[0].spent == locked
        assert rule.seen[0].redeemer == "redeemer"
        assert report.scripts_run(ScriptPurpose.SPEND) == [h28("lock")]

    def test_each_spent_input_runs_its_script(self, engine):
        rule = RecordingRule()
        engine.register_rule(ScriptPurpose.SPEND, h28("lock"), rule)

        engine.evaluate(TransactionView(inputs=(script_utxo("lock", 0), script_utxo("lock", 1))))

        assert [c.spent.ref.index for c in rule.seen] == [0, 1]

    def test_mint_policy_runs_once(self, engine):
        rule = RecordingRule()
        engine.register_rule(ScriptPurpose.MINT, h28("policy"), rule)
        mint = Value.of(h28("policy"), b"a", 1) + Value.of(h28("policy"), b"b", -2)

        report = engine.evaluate(TransactionView(mint=mint, mint_redeemers={h28("policy"): 7}))

        assert len(rule.seen) == 1
        assert rule.seen[0].redeemer == 7
        assert report.scripts_run(ScriptPurpose.MINT) == [h28("policy")]

    def test_withdrawal_scripts_run_once(self, engine):
        rule = RecordingRule()
        engine.register_rule(ScriptPurpose.WITHDRAW, h28("logic"), rule)
        tx = TransactionView(withdrawals={
            Credential.script(h28("logic")): "go",
            Credential.key(h28("someone")): None,
        })

        report = engine.evaluate(tx)

        assert len(rule.seen) == 1
        assert report.scripts_run() == [h28("logic")]

    def test_unregistered_scripts_skipped(self, engine):
        tx = TransactionView(
            inputs=(script_utxo("opaque"),),
            mint=Value.of(h28("other"), b"x", 1),
            withdrawals={Credential.script(h28("unknown")): None},
        )

        report = engine.evaluate(tx)

        assert report.passed
        assert report.executions == []

    def test_disabled_rule_skipped(self, engine):
        rule = RecordingRule(result=False, enabled=False)
        engine.register_rule(ScriptPurpose.WITHDRAW, h28("logic"), rule)

        report = engine.evaluate(TransactionView(withdrawals={Credential.script(h28("logic")): None}))

        assert report.passed
        assert rule.seen == []


class TestResults:
    """Test failure reporting."""

    def test_false_without_errors_reports_script_failed(self, engine):
        engine.register_rule(ScriptPurpose.WITHDRAW, h28("logic"), RecordingRule(name="strict", result=False))

        report = engine.evaluate(TransactionView(withdrawals={Credential.script(h28("logic")): None}))

        assert not report.passed
        assert report.errors == ["strict: script failed"]

    def test_rule_errors_collected(self, engine):
        engine.register_rule(ScriptPurpose.MINT, h28("policy"), RecordingRule(name="mint", error="bad mint"))
        engine.register_rule(ScriptPurpose.WITHDRAW, h28("logic"), RecordingRule(name="logic", error="no"))
        tx = TransactionView(mint=Value.of(h28("policy"), b"x", 1),
                             withdrawals={Credential.script(h28("logic")): None})

        report = engine.evaluate(tx)

        assert report.errors == ["mint: bad mint", "logic: no"]
        assert report.get_summary()["validation_result"] == "rejected"

    def test_require_valid_raises_first_error(self, engine):
        engine.register_rule(ScriptPurpose.WITHDRAW, h28("logic"), RecordingRule(name="logic", error="denied"))

        with pytest.raises(ValidationRejectedError) as exc_info:
            engine.require_valid(TransactionView(withdrawals={Credential.script(h28("logic")): None}))
        assert "denied" in str(exc_info.value)

    def test_statistics(self, engine):
        engine.register_rule(ScriptPurpose.WITHDRAW, h28("ok"), RecordingRule())
        engine.register_rule(ScriptPurpose.WITHDRAW, h28("bad"), RecordingRule(result=False))

        engine.evaluate(TransactionView(withdrawals={Credential.script(h28("ok")): None}))
        engine.evaluate(TransactionView(withdrawals={Credential.script(h28("bad")): None}))

        stats = engine.get_statistics()
        assert stats["total_validations"] == 2
        assert stats["approved_validations"] == 1
        assert stats["rejected_validations"] == 1
        assert stats["registered_rules"] == 2

    def test_register_replaces_and_unregisters(self, engine):
        first, second = RecordingRule("first"), RecordingRule("second")
        engine.register_rule(ScriptPurpose.SPEND, h28("lock"), first)
        engine.register_rule(ScriptPurpose.SPEND, h28("lock"), second)

        engine.evaluate(TransactionView(inputs=(script_utxo("lock"),)))

        assert first.seen == [] and len(second.seen) == 1
        assert engine.unregister_rule(ScriptPurpose.SPEND, h28("lock"))
        assert not engine.has_rule(ScriptPurpose.SPEND, h28("lock"))
