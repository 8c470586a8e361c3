"""
Tests for the Programmable Tokens CLI

Commands run through click's CliRunner against a snapshot file written
from the shared test ledger.
"""

import pytest
import yaml
from click.testing import CliRunner

from cli.main import cli
from registry.state import load_snapshot, save_snapshot
from txbuilder.ledger import make_unit

from tests.conftest import ASSET_NAME, owner, wallet


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def cli_config(tmp_path, state, blueprint_files, monkeypatch):
    """Config file pointing at a snapshot of the test ledger and the blueprints."""
    for key in ("PTOK_STATE_SNAPSHOT", "PTOK_NETWORK"):
        monkeypatch.delenv(key, raising=False)

    snapshot = tmp_path / "state.json"
    save_snapshot(state, snapshot)
    path = tmp_path / "progtokens.yml"
    path.write_text(yaml.safe_dump({
        "network": "testnet",
        "state": {"snapshot": str(snapshot)},
        "substandards": {"blueprints": blueprint_files},
    }))
    return str(path)


def invoke(runner, config, *args):
    return runner.invoke(cli, ["-c", config, "-o", "json", *args])


def register_args(apply=True):
    args = [
        "token", "register",
        "--substandard", "dummy",
        "--owner", str(owner("issuer")),
        "--asset-name", ASSET_NAME.hex(),
        "--quantity", "100",
        "--recipient", wallet("alice"),
        "--fee-payer", wallet("issuer"),
    ]
    return args + (["--apply"] if apply else [])


class TestCLI:
    """Test the command line interface."""

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "progtokens v" in result.output

    def test_registry_list(self, runner, cli_config):
        result = invoke(runner, cli_config, "registry", "list")

        assert result.exit_code == 0, result.output
        assert '"key": ""' in result.output
        assert '"next": "' + "ff" * 30 + '"' in result.output

    def test_registry_list_table(self, runner, cli_config):
        result = runner.invoke(cli, ["-c", cli_config, "registry", "list"])

        assert result.exit_code == 0, result.output
        assert "next" in result.output
        assert "+--" in result.output
        assert "ff" * 30 in result.output

    def test_register_and_list(self, runner, cli_config, factory):
        policy = factory.get_handler("dummy").policy_id().hex()

        result = invoke(runner, cli_config, *register_args())
        assert result.exit_code == 0, result.output
        assert '"successful": true' in result.output
        assert policy in result.output

        listing = invoke(runner, cli_config, "registry", "list")
        assert listing.exit_code == 0, listing.output
        assert listing.output.count('"key"') == 2
        assert f'"key": "{policy}"' in listing.output

    def test_build_without_apply_leaves_snapshot(self, runner, cli_config, tmp_path):
        before = load_snapshot(tmp_path / "state.json").all_utxos()
        result = invoke(runner, cli_config, *register_args(apply=False))

        assert result.exit_code == 0, result.output
        assert '"unsigned_tx"' in result.output
        assert load_snapshot(tmp_path / "state.json").all_utxos() == before

    def test_transfer_after_register(self, runner, cli_config, factory):
        policy = factory.get_handler("dummy").policy_id()
        invoke(runner, cli_config, *register_args())

        result = invoke(runner, cli_config, "token", "transfer",
                        "--sender", wallet("alice"),
                        "--unit", make_unit(policy, ASSET_NAME),
                        "--quantity", "40",
                        "--recipient", wallet("bob"))

        assert result.exit_code == 0, result.output
        assert '"registered": true' in result.output

    def test_failed_operation_exits_nonzero(self, runner, cli_config, factory):
        policy = factory.get_handler("dummy").policy_id()
        result = invoke(runner, cli_config, "token", "transfer",
                        "--sender", wallet("alice"),
                        "--unit", make_unit(policy, ASSET_NAME),
                        "--quantity", "40",
                        "--recipient", wallet("bob"))

        assert result.exit_code == 1
        assert "insufficient_funds" in result.output

    def test_registry_proof(self, runner, cli_config, factory):
        policy = factory.get_handler("dummy").policy_id().hex()
        result = invoke(runner, cli_config, "registry", "proof", policy)

        assert result.exit_code == 0, result.output
        assert '"kind": "not_exists"' in result.output

    def test_registry_proof_rejects_bad_key(self, runner, cli_config):
        result = invoke(runner, cli_config, "registry", "proof", "xyz")

        assert result.exit_code == 1
        assert "malformed_request" in result.output

    def test_blacklist_init(self, runner, cli_config):
        manager = owner("manager").hex
        result = invoke(runner, cli_config, "blacklist", "init",
                        "--admin", f"key:{manager}",
                        "--issuer-admin", owner("issuer").hex,
                        "--fee-payer", wallet("manager"))

        assert result.exit_code == 0, result.output
        assert '"denylist_policy_id"' in result.output
        assert f'"issuer_admin_pkh": "{owner("issuer").hex}"' in result.output

    def test_protocol_show(self, runner, cli_config, protocol_params):
        result = invoke(runner, cli_config, "protocol", "show")

        assert result.exit_code == 0, result.output
        assert protocol_params.custody_script_hash in result.output
        assert '"freeze-and-seize"' in result.output

    def test_config_validate(self, runner, cli_config):
        result = runner.invoke(cli, ["-c", cli_config, "config", "validate"])

        assert result.exit_code == 0, result.output
        assert "Configuration is valid" in result.output

    def test_config_show_key(self, runner, cli_config):
        result = invoke(runner, cli_config, "config", "show", "--key", "network")

        assert result.exit_code == 0, result.output
        assert '"network": "testnet"' in result.output
